"""Tests for RollbackController: restore, verify, then move the pointer back."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from conftest import make_target
from shipwright.core.rollback import RollbackController
from shipwright.models.remote import RemoteOpKind


@pytest.fixture
def controller(store, executor, verifier, registry) -> RollbackController:
    return RollbackController(store, executor, verifier, registry, timeout=30, verify_timeout=20)


@pytest.fixture
def broken_v6(seed_store, registry, store, transport):
    """prod-1 committed at v6 and running it badly; v5 is the known-good release."""
    seed_store(6)
    registry.register(make_target(active_version="v6"))
    transport.installed["prod-1"] = "v6"
    transport.running["prod-1"] = None
    return store.get("v5")


class TestRollback:

    def test_restores_and_verifies(self, controller, broken_v6, registry, transport, vault):
        with vault.acquire(["prod_ssh_key"]) as scope:
            outcome = controller.rollback(
                registry.get("prod-1"), broken_v6, scope.handle("prod_ssh_key"), run_id="sw-1"
            )
        assert outcome.succeeded
        assert not outcome.exhausted
        assert outcome.version == "v5"
        assert outcome.health.healthy
        assert transport.running["prod-1"] == "v5"
        assert registry.get("prod-1").active_version == "v5"
        latest = registry.history("prod-1")[0]
        assert (latest.previous_version, latest.version, latest.reason) == ("v6", "v5", "rollback")

    def test_pointer_already_at_restored_version(self, controller, seed_store, registry, transport, store, vault):
        seed_store(5)
        registry.register(make_target(active_version="v5"))
        with vault.acquire(["prod_ssh_key"]) as scope:
            outcome = controller.rollback(
                registry.get("prod-1"), store.get("v5"), scope.handle("prod_ssh_key"), run_id="sw-1"
            )
        assert outcome.succeeded
        assert registry.history("prod-1") == []

    def test_corrupted_prior_artifact_is_never_pushed(
        self, controller, broken_v6, registry, transport, vault, caplog
    ):
        Path(broken_v6.location).write_bytes(b"bit rot")
        with caplog.at_level(logging.ERROR), vault.acquire(["prod_ssh_key"]) as scope:
            outcome = controller.rollback(
                registry.get("prod-1"), broken_v6, scope.handle("prod_ssh_key"), run_id="sw-1"
            )
        assert not outcome.succeeded
        assert outcome.exhausted
        assert "integrity" in outcome.detail
        assert transport.log == []
        assert "rollback exhausted" in caplog.text

    def test_command_failure_exhausts(self, controller, broken_v6, registry, transport, vault):
        transport.fail_install_for.add("v5")
        with vault.acquire(["prod_ssh_key"]) as scope:
            outcome = controller.rollback(
                registry.get("prod-1"), broken_v6, scope.handle("prod_ssh_key"), run_id="sw-1"
            )
        assert outcome.exhausted
        assert "install v5 failed during rollback" in outcome.detail
        assert outcome.report.failed_result.exit_status == 2
        assert registry.get("prod-1").active_version == "v6"

    def test_connection_loss_exhausts(self, controller, broken_v6, registry, transport, vault):
        transport.unreachable_kinds.add(RemoteOpKind.TRANSFER_ARTIFACT)
        with vault.acquire(["prod_ssh_key"]) as scope:
            outcome = controller.rollback(
                registry.get("prod-1"), broken_v6, scope.handle("prod_ssh_key"), run_id="sw-1"
            )
        assert outcome.exhausted
        assert "connection lost" in outcome.detail
        assert registry.get("prod-1").active_version == "v6"

    def test_unhealthy_restore_does_not_move_pointer(
        self, controller, broken_v6, registry, transport, vault
    ):
        transport.broken_versions.add("v5")
        with vault.acquire(["prod_ssh_key"]) as scope:
            outcome = controller.rollback(
                registry.get("prod-1"), broken_v6, scope.handle("prod_ssh_key"), run_id="sw-1"
            )
        assert outcome.exhausted
        assert not outcome.health.healthy
        assert registry.get("prod-1").active_version == "v6"

    def test_no_retry_after_failure(self, controller, broken_v6, registry, transport, vault):
        transport.fail_kinds.add(RemoteOpKind.START_SERVICE)
        with vault.acquire(["prod_ssh_key"]) as scope:
            controller.rollback(
                registry.get("prod-1"), broken_v6, scope.handle("prod_ssh_key"), run_id="sw-1"
            )
        starts = [k for k in transport.kinds() if k == RemoteOpKind.START_SERVICE]
        assert len(starts) == 1
