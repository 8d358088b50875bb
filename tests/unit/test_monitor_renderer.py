"""Unit tests for the RunRenderer.

Renders into a recording Console and checks the exported text, plus the
status color mapping.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from conftest import make_target
from shipwright.core.errors import FailureKind
from shipwright.models.artifacts import Artifact
from shipwright.models.runs import (
    ErrorDetail,
    PipelineRun,
    RunStatus,
    StageName,
    StageResult,
    StageStatus,
)
from shipwright.models.targets import Activation
from shipwright.monitor.renderer import RunRenderer, run_status_markup


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _console() -> Console:
    return Console(record=True, width=160, color_system=None)


def _text(renderable) -> str:
    console = _console()
    console.print(renderable)
    return console.export_text()


def _rolled_back_run() -> PipelineRun:
    return PipelineRun(
        run_id="sw-20261018-101500-abc123",
        revision="r2",
        target="prod-1",
        status=RunStatus.ROLLED_BACK,
        candidate_version="v6",
        prior_version="v5",
        stage_results=[
            StageResult(stage=StageName.BUILD, status=StageStatus.SUCCESS, output="compiled"),
            StageResult(stage=StageName.PACKAGE, status=StageStatus.SUCCESS, details={"version": "v6"}),
            StageResult(
                stage=StageName.VERIFY,
                status=StageStatus.FAILURE,
                error=ErrorDetail(
                    kind=FailureKind.VERIFICATION,
                    message="prod-1 not healthy within 30s",
                    command="curl -fsS http://127.0.0.1:8080/health",
                ),
            ),
            StageResult(stage=StageName.ROLLBACK, status=StageStatus.SUCCESS, details={"version": "v5"}),
        ],
        finished_at=datetime(2026, 10, 18, 10, 16, tzinfo=timezone.utc),
    )


# ---------------------------------------------------------------------------
# Single run
# ---------------------------------------------------------------------------


class TestRenderRun:

    @pytest.fixture
    def renderer(self) -> RunRenderer:
        return RunRenderer(console=_console())

    def test_returns_panel(self, renderer):
        assert isinstance(renderer.render_run(_rolled_back_run()), Panel)

    def test_summary_and_stages(self, renderer):
        text = _text(renderer.render_run(_rolled_back_run()))
        assert "Run sw-20261018-101500-abc123" in text
        assert "ROLLED_BACK" in text
        assert "Candidate: v6" in text
        assert "Prior: v5" in text
        assert "version v6" in text
        assert "verification_failure: prod-1 not healthy within 30s" in text
        assert "$ curl -fsS http://127.0.0.1:8080/health" in text
        assert "Finished: 2026-10-18 10:16:00 UTC" in text

    def test_output_hidden_by_default(self, renderer):
        assert "compiled" not in _text(renderer.render_run(_rolled_back_run()))
        shown = _text(renderer.render_run(_rolled_back_run(), show_output=True))
        assert "--- build ---" in shown
        assert "compiled" in shown

    def test_flags(self, renderer):
        run = _rolled_back_run().model_copy(
            update={"status": RunStatus.FAILED, "escalated": True, "inconsistent": True}
        )
        text = _text(renderer.render_run(run))
        assert "ESCALATED: rollback exhausted" in text
        assert "INCONSISTENT target state" in text

    def test_skipped_stage_shows_reason(self, renderer):
        run = PipelineRun(
            run_id="sw-x",
            revision="r1",
            target="prod-1",
            status=RunStatus.FAILED,
            cancelled=True,
            stage_results=[StageResult(stage=StageName.DEPLOY, status=StageStatus.SKIPPED, output="cancelled")],
        )
        text = _text(renderer.render_run(run))
        assert "SKIPPED" in text
        assert "Finished: -" in text
        assert text.count("cancelled") >= 2


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


class TestListings:

    def test_history(self):
        runs = [
            _rolled_back_run(),
            PipelineRun(run_id="sw-2", revision="r3", target="prod-1", status=RunStatus.FAILED, escalated=True),
        ]
        table = RunRenderer().render_history(runs)
        assert isinstance(table, Table)
        assert table.row_count == 2
        text = _text(table)
        assert "ROLLED_BACK" in text
        assert "escalated" in text

    def test_targets(self):
        targets = [make_target("prod-1", active_version="v5"), make_target("prod-2")]
        text = _text(RunRenderer().render_targets(targets))
        assert "deploy@10.0.0.5:22" in text
        assert "v5" in text
        assert "none" in text

    def test_activations(self):
        activations = [
            Activation(target="prod-1", previous_version="v6", version="v5", run_id="sw-2", reason="rollback"),
            Activation(target="prod-1", previous_version=None, version="v6", run_id="sw-1", reason="deploy"),
        ]
        text = _text(RunRenderer().render_history_of_target(activations))
        assert "rollback" in text
        assert "deploy" in text

    def test_artifacts_mark_active(self):
        artifacts = [
            Artifact(
                version=f"v{i}",
                name=f"app-r{i}.tar.gz",
                source_revision=f"r{i}",
                digest="sha256:" + "ab" * 32,
                size_bytes=1_234_567,
                location=f"/store/v{i}",
            )
            for i in (1, 2)
        ]
        table = RunRenderer().render_artifacts(artifacts, active={"v2"})
        text = _text(table)
        assert "1,234,567" in text
        assert "sha256:abababababab" in text
        assert text.count("yes") == 1


class TestStatusMarkup:

    @pytest.mark.parametrize(
        "status, style",
        [
            (RunStatus.SUCCEEDED, "green"),
            (RunStatus.FAILED, "red"),
            (RunStatus.ROLLED_BACK, "yellow"),
        ],
    )
    def test_terminal_colors(self, status, style):
        markup = run_status_markup(status)
        assert style in markup
        assert status.value.upper() in markup
