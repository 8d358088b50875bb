"""Credential vault access: scoped, read-only secret retrieval.

Secrets are fetched once at run start and held only by a ``SecretScope``::

    with vault.acquire(["prod_ssh_key"]) as scope:
        handle = scope.handle("prod_ssh_key")
        executor.execute(target, handle, operations, timeout=60)

Callers pass ``CredentialHandle`` objects around, never the secret values.
When the scope exits (on every path, including exceptions) the values are
dropped and any key files materialised for ``ssh -i`` are overwritten and
removed.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
import uuid
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, SecretStr

logger = logging.getLogger(__name__)

_REDACTED = "***"


class SecretNotFoundError(LookupError):
    """Raised when a named secret is not available from the source."""


class SecretScopeClosedError(RuntimeError):
    """Raised when a handle is used after its scope has been released."""


class CredentialHandle(BaseModel):
    """Opaque reference to a secret held by a live scope."""

    model_config = ConfigDict(frozen=True)

    name: str
    scope_id: str

    def __str__(self) -> str:
        return f"<credential {self.name}>"


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


@runtime_checkable
class SecretSource(Protocol):
    """Anything that can fetch a secret value by name."""

    def fetch(self, name: str) -> SecretStr:
        ...


class FileSecretSource:
    """Reads secrets from files in a directory (e.g. ``/run/secrets``).

    The file name is the secret name.
    """

    def __init__(self, directory: Path) -> None:
        self._dir = Path(directory)

    def fetch(self, name: str) -> SecretStr:
        path = self._dir / name
        if Path(name).name != name or not path.is_file():
            raise SecretNotFoundError(f"Secret {name!r} not found in {self._dir}")
        return SecretStr(path.read_text(encoding="utf-8"))


class EnvSecretSource:
    """Reads ``<prefix><NAME>`` from the process environment.

    Values are read once when the scope is acquired; nothing is interpolated
    into command text.
    """

    def __init__(self, prefix: str = "SHIPWRIGHT_SECRET_") -> None:
        self._prefix = prefix

    def fetch(self, name: str) -> SecretStr:
        key = f"{self._prefix}{name.upper()}"
        value = os.environ.get(key)
        if value is None:
            raise SecretNotFoundError(f"Secret {name!r} not set (expected ${key})")
        return SecretStr(value)


class StaticSecretSource:
    """In-memory source, for tests and local development."""

    def __init__(self, secrets: dict[str, str]) -> None:
        self._secrets = dict(secrets)

    def fetch(self, name: str) -> SecretStr:
        try:
            return SecretStr(self._secrets[name])
        except KeyError:
            raise SecretNotFoundError(f"Secret {name!r} not found") from None


# ---------------------------------------------------------------------------
# Scope
# ---------------------------------------------------------------------------


class SecretScope:
    """Holds secrets for the lifetime of one run."""

    def __init__(self, secrets: dict[str, SecretStr]) -> None:
        self.scope_id = uuid.uuid4().hex
        self._secrets = secrets
        self._key_dir: Path | None = None
        self._key_files: dict[str, Path] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def names(self) -> list[str]:
        return sorted(self._secrets)

    def handle(self, name: str) -> CredentialHandle:
        self._check_open()
        if name not in self._secrets:
            raise SecretNotFoundError(f"Secret {name!r} was not acquired in this scope")
        return CredentialHandle(name=name, scope_id=self.scope_id)

    def reveal(self, handle: CredentialHandle) -> SecretStr:
        """Return the secret behind *handle* (still wrapped in SecretStr)."""
        self._check_handle(handle)
        return self._secrets[handle.name]

    def key_file(self, handle: CredentialHandle) -> Path:
        """Materialise the secret as a 0600 file for tools that need a path.

        The file lives in a private temp directory removed on release.
        """
        self._check_handle(handle)
        if handle.name in self._key_files:
            return self._key_files[handle.name]
        if self._key_dir is None:
            self._key_dir = Path(tempfile.mkdtemp(prefix="shipwright-keys-"))
            os.chmod(self._key_dir, 0o700)
        path = self._key_dir / uuid.uuid4().hex
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            value = self._secrets[handle.name].get_secret_value()
            fh.write(value if value.endswith("\n") else value + "\n")
        self._key_files[handle.name] = path
        return path

    def redact(self, text: str) -> str:
        """Replace any held secret value (or its lines) in *text*."""
        if not text or self._closed:
            return text
        for secret in self._secrets.values():
            value = secret.get_secret_value().strip()
            if not value:
                continue
            text = text.replace(value, _REDACTED)
            for line in value.splitlines():
                line = line.strip()
                if len(line) >= 8:
                    text = text.replace(line, _REDACTED)
        return text

    def release(self) -> None:
        """Drop all secret material.  Safe to call more than once."""
        if self._closed:
            return
        for path in self._key_files.values():
            try:
                size = path.stat().st_size
                with path.open("r+b") as fh:
                    fh.write(b"\0" * size)
            except OSError as exc:
                logger.warning("Could not scrub key file %s: %s", path, exc)
        if self._key_dir is not None:
            shutil.rmtree(self._key_dir, ignore_errors=True)
        self._key_files.clear()
        self._secrets.clear()
        self._key_dir = None
        self._closed = True
        logger.debug("Secret scope %s released", self.scope_id[:8])

    def _check_open(self) -> None:
        if self._closed:
            raise SecretScopeClosedError(f"Secret scope {self.scope_id[:8]} is closed")

    def _check_handle(self, handle: CredentialHandle) -> None:
        self._check_open()
        if handle.scope_id != self.scope_id:
            raise SecretScopeClosedError(
                f"Handle for {handle.name!r} belongs to another scope"
            )
        if handle.name not in self._secrets:
            raise SecretNotFoundError(f"Secret {handle.name!r} not held by this scope")


class CredentialVault:
    """Read-only front door to a secret source.

    Parameters
    ----------
    source:
        Where secret values come from.
    """

    def __init__(self, source: SecretSource) -> None:
        self._source = source
        self._live: dict[str, SecretScope] = {}
        self._lock = threading.Lock()

    @contextmanager
    def acquire(self, names: Iterable[str]) -> Iterator[SecretScope]:
        """Fetch *names* and yield a scope that is released on exit."""
        wanted = sorted(set(names))
        secrets = {name: self._source.fetch(name) for name in wanted}
        scope = SecretScope(secrets)
        with self._lock:
            self._live[scope.scope_id] = scope
        logger.debug("Acquired secrets %s in scope %s", wanted, scope.scope_id[:8])
        try:
            yield scope
        finally:
            with self._lock:
                self._live.pop(scope.scope_id, None)
            scope.release()

    def scope_for(self, handle: CredentialHandle) -> SecretScope:
        """Return the live scope that issued *handle*."""
        with self._lock:
            scope = self._live.get(handle.scope_id)
        if scope is None:
            raise SecretScopeClosedError(
                f"No live scope for {handle.name!r}; it was released or never acquired"
            )
        return scope
