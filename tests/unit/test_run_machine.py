"""Tests for RunStateMachine: transitions, append-only results, terminal freeze."""

from __future__ import annotations

import pytest

from shipwright.core.run_ledger import RunLedger
from shipwright.core.run_machine import InvalidRunTransitionError, RunStateMachine
from shipwright.models.runs import (
    RUN_TRANSITIONS,
    TERMINAL_STATUSES,
    RunStatus,
    StageName,
    StageResult,
    StageStatus,
)


@pytest.fixture
def machine(ledger: RunLedger) -> RunStateMachine:
    return RunStateMachine("sw-test-001", "r1", "prod-1", ledger)


def _ok(stage: StageName) -> StageResult:
    return StageResult(stage=stage, status=StageStatus.SUCCESS)


class TestTransitions:

    def test_starts_pending(self, machine: RunStateMachine):
        assert machine.status == RunStatus.PENDING
        assert machine.snapshot().finished_at is None

    @pytest.mark.parametrize("final", [RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.ROLLED_BACK])
    def test_running_to_terminal(self, machine: RunStateMachine, final: RunStatus):
        machine.transition(RunStatus.RUNNING)
        run = machine.transition(final)
        assert run.status == final
        assert run.is_terminal
        assert run.finished_at is not None

    def test_pending_can_fail_directly(self, machine: RunStateMachine):
        assert machine.transition(RunStatus.FAILED).status == RunStatus.FAILED

    @pytest.mark.parametrize("bad", [RunStatus.SUCCEEDED, RunStatus.ROLLED_BACK])
    def test_pending_cannot_finish_without_running(self, machine: RunStateMachine, bad):
        with pytest.raises(InvalidRunTransitionError):
            machine.transition(bad)

    def test_terminal_statuses_have_no_exits(self):
        for status in TERMINAL_STATUSES:
            assert RUN_TRANSITIONS[status] == set()

    def test_terminal_run_cannot_transition(self, machine: RunStateMachine):
        machine.transition(RunStatus.RUNNING)
        machine.transition(RunStatus.SUCCEEDED)
        with pytest.raises(InvalidRunTransitionError, match="from succeeded to failed"):
            machine.transition(RunStatus.FAILED)

    def test_terminal_clears_current_stage(self, machine: RunStateMachine):
        machine.transition(RunStatus.RUNNING)
        machine.enter_stage(StageName.DEPLOY)
        assert machine.snapshot().current_stage == StageName.DEPLOY
        assert machine.transition(RunStatus.FAILED).current_stage is None


class TestStageResults:

    def test_results_accumulate_in_order(self, machine: RunStateMachine):
        machine.transition(RunStatus.RUNNING)
        machine.append(_ok(StageName.BUILD))
        machine.append(_ok(StageName.TEST))
        assert [r.stage for r in machine.snapshot().stage_results] == [
            StageName.BUILD,
            StageName.TEST,
        ]

    def test_snapshots_are_independent(self, machine: RunStateMachine):
        machine.transition(RunStatus.RUNNING)
        before = machine.snapshot()
        machine.append(_ok(StageName.BUILD))
        assert before.stage_results == []

    def test_append_after_terminal_rejected(self, machine: RunStateMachine):
        machine.transition(RunStatus.RUNNING)
        machine.transition(RunStatus.FAILED)
        with pytest.raises(InvalidRunTransitionError, match="can no longer change"):
            machine.append(_ok(StageName.BUILD))

    def test_annotate(self, machine: RunStateMachine):
        machine.transition(RunStatus.RUNNING)
        run = machine.annotate(candidate_version="v6", prior_version="v5", escalated=True)
        assert (run.candidate_version, run.prior_version, run.escalated) == ("v6", "v5", True)

    def test_annotate_unknown_field_rejected(self, machine: RunStateMachine):
        with pytest.raises(ValueError, match="status"):
            machine.annotate(status=RunStatus.SUCCEEDED)

    def test_annotate_after_terminal_rejected(self, machine: RunStateMachine):
        machine.transition(RunStatus.FAILED)
        with pytest.raises(InvalidRunTransitionError):
            machine.annotate(cancelled=True)


class TestLedgerRecording:

    def test_each_result_recorded(self, machine: RunStateMachine, ledger: RunLedger):
        machine.transition(RunStatus.RUNNING)
        machine.append(_ok(StageName.BUILD))
        entries = ledger.get_run_entries("sw-test-001")
        assert [(e.kind, e.stage, e.status) for e in entries] == [("stage", "build", "success")]

    def test_terminal_record_written_once(self, machine: RunStateMachine, ledger: RunLedger):
        machine.transition(RunStatus.RUNNING)
        assert ledger.get_run("sw-test-001") is None
        machine.transition(RunStatus.SUCCEEDED)
        run = ledger.get_run("sw-test-001")
        assert run.status == RunStatus.SUCCEEDED
        assert [e.kind for e in ledger.get_run_entries("sw-test-001")] == ["run"]

    def test_works_without_ledger(self):
        machine = RunStateMachine("sw-x", "r1", "prod-1")
        machine.transition(RunStatus.RUNNING)
        machine.append(_ok(StageName.BUILD))
        assert machine.transition(RunStatus.SUCCEEDED).is_terminal
