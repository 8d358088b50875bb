"""Tests for the credential vault: sources, scopes, key files, redaction."""

from __future__ import annotations

import stat
from pathlib import Path

import pytest

from conftest import SECRET_KEY
from shipwright.core.vault import (
    CredentialVault,
    EnvSecretSource,
    FileSecretSource,
    SecretNotFoundError,
    SecretScopeClosedError,
    StaticSecretSource,
)


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


class TestSources:

    def test_file_source(self, tmp_path: Path):
        (tmp_path / "prod_ssh_key").write_text("key-material")
        assert FileSecretSource(tmp_path).fetch("prod_ssh_key").get_secret_value() == "key-material"

    def test_file_source_missing(self, tmp_path: Path):
        with pytest.raises(SecretNotFoundError):
            FileSecretSource(tmp_path).fetch("nope")

    def test_file_source_rejects_path_traversal(self, tmp_path: Path):
        secrets = tmp_path / "secrets"
        secrets.mkdir()
        (tmp_path / "outside").write_text("x")
        with pytest.raises(SecretNotFoundError):
            FileSecretSource(secrets).fetch("../outside")

    def test_env_source(self, monkeypatch):
        monkeypatch.setenv("SHIPWRIGHT_SECRET_PROD_SSH_KEY", "from-env")
        assert EnvSecretSource().fetch("prod_ssh_key").get_secret_value() == "from-env"

    def test_env_source_missing_names_variable(self, monkeypatch):
        monkeypatch.delenv("SHIPWRIGHT_SECRET_ABSENT", raising=False)
        with pytest.raises(SecretNotFoundError, match="SHIPWRIGHT_SECRET_ABSENT"):
            EnvSecretSource().fetch("absent")

    def test_secret_value_hidden_in_repr(self):
        value = StaticSecretSource({"k": "hunter22"}).fetch("k")
        assert "hunter22" not in repr(value)
        assert "hunter22" not in str(value)


# ---------------------------------------------------------------------------
# Scopes
# ---------------------------------------------------------------------------


class TestScope:

    def test_acquire_yields_handles(self, vault: CredentialVault):
        with vault.acquire(["prod_ssh_key"]) as scope:
            handle = scope.handle("prod_ssh_key")
            assert handle.name == "prod_ssh_key"
            assert scope.reveal(handle).get_secret_value() == SECRET_KEY
            assert vault.scope_for(handle) is scope

    def test_handle_str_has_no_secret(self, vault: CredentialVault):
        with vault.acquire(["prod_ssh_key"]) as scope:
            handle = scope.handle("prod_ssh_key")
            assert SECRET_KEY not in str(handle)
            assert SECRET_KEY not in handle.model_dump_json()

    def test_missing_secret_fails_acquire(self, vault: CredentialVault):
        with pytest.raises(SecretNotFoundError):
            with vault.acquire(["prod_ssh_key", "unknown"]):
                pass

    def test_scope_released_on_exit(self, vault: CredentialVault):
        with vault.acquire(["prod_ssh_key"]) as scope:
            handle = scope.handle("prod_ssh_key")
        assert scope.closed
        with pytest.raises(SecretScopeClosedError):
            scope.reveal(handle)
        with pytest.raises(SecretScopeClosedError):
            vault.scope_for(handle)

    def test_scope_released_on_exception(self, vault: CredentialVault):
        with pytest.raises(RuntimeError):
            with vault.acquire(["prod_ssh_key"]) as scope:
                raise RuntimeError("stage blew up")
        assert scope.closed

    def test_handle_from_other_scope_rejected(self, vault: CredentialVault):
        with vault.acquire(["prod_ssh_key"]) as first, vault.acquire(["prod_ssh_key"]) as second:
            handle = first.handle("prod_ssh_key")
            with pytest.raises(SecretScopeClosedError, match="another scope"):
                second.reveal(handle)

    def test_unacquired_name_rejected(self, vault: CredentialVault):
        with vault.acquire(["prod_ssh_key"]) as scope:
            with pytest.raises(SecretNotFoundError):
                scope.handle("other")

    def test_release_is_idempotent(self, vault: CredentialVault):
        with vault.acquire(["prod_ssh_key"]) as scope:
            pass
        scope.release()
        assert scope.closed


# ---------------------------------------------------------------------------
# Key files
# ---------------------------------------------------------------------------


class TestKeyFiles:

    def test_key_file_is_private(self, vault: CredentialVault):
        with vault.acquire(["prod_ssh_key"]) as scope:
            path = scope.key_file(scope.handle("prod_ssh_key"))
            assert stat.S_IMODE(path.stat().st_mode) == 0o600
            assert stat.S_IMODE(path.parent.stat().st_mode) == 0o700
            assert path.read_text().rstrip("\n") == SECRET_KEY

    def test_key_file_reused_within_scope(self, vault: CredentialVault):
        with vault.acquire(["prod_ssh_key"]) as scope:
            handle = scope.handle("prod_ssh_key")
            assert scope.key_file(handle) == scope.key_file(handle)

    def test_key_file_removed_on_release(self, vault: CredentialVault):
        with vault.acquire(["prod_ssh_key"]) as scope:
            path = scope.key_file(scope.handle("prod_ssh_key"))
        assert not path.exists()
        assert not path.parent.exists()


# ---------------------------------------------------------------------------
# Redaction
# ---------------------------------------------------------------------------


class TestRedaction:

    def test_full_value_redacted(self):
        vault = CredentialVault(StaticSecretSource({"token": "s3cr3t-token-value"}))
        with vault.acquire(["token"]) as scope:
            assert scope.redact("auth s3cr3t-token-value ok") == "auth *** ok"

    def test_individual_key_lines_redacted(self, vault: CredentialVault):
        body_line = SECRET_KEY.splitlines()[1]
        with vault.acquire(["prod_ssh_key"]) as scope:
            redacted = scope.redact(f"debug: {body_line}")
        assert body_line not in redacted
        assert "***" in redacted

    def test_short_lines_left_alone(self):
        vault = CredentialVault(StaticSecretSource({"k": "ab\nlong-enough-line"}))
        with vault.acquire(["k"]) as scope:
            assert scope.redact("ab cd") == "ab cd"

    def test_empty_text(self, vault: CredentialVault):
        with vault.acquire(["prod_ssh_key"]) as scope:
            assert scope.redact("") == ""
