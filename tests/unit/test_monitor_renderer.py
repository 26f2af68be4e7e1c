"""Unit tests for MatrixRenderer: tables and harness panel output."""

from __future__ import annotations

from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from crossforge.core.orchestrator import JobOutcome, JobStatus
from crossforge.models.platforms import PlatformTriple
from crossforge.models.results import HarnessReport, HarnessState, HarnessTransition
from crossforge.models.variants import BuildVariant, TargetSpec
from crossforge.monitor.renderer import MatrixRenderer


def _render(renderable) -> str:
    console = Console(record=True, width=200)
    console.print(renderable)
    return console.export_text()


def _variant() -> BuildVariant:
    return BuildVariant(target=TargetSpec.static_cross("aarch64-unknown-linux-musl"))


class TestMatrixRenderer:
    def test_outcomes_table(self):
        outcomes = [
            JobOutcome(variant=_variant(), status=JobStatus.SUCCEEDED, binary_path=Path("/b")),
            JobOutcome(
                variant=BuildVariant(
                    target=TargetSpec.native(PlatformTriple.parse("x86_64-unknown-linux-gnu"))
                ),
                status=JobStatus.FAILED,
                error="cargo exited with 101",
                error_kind="BuildFailed",
            ),
        ]
        table = MatrixRenderer().outcomes_table(outcomes)
        assert isinstance(table, Table)
        text = _render(table)
        assert "default-aarch64-unknown-linux-musl" in text
        assert "SUCCEEDED" in text and "FAILED" in text
        assert "BuildFailed" in text

    def test_environment_table_marks_empty_values(self):
        text = _render(MatrixRenderer().environment_table("env", {"ROCKSDB_STATIC": ""}))
        assert "ROCKSDB_STATIC" in text
        assert "(empty)" in text

    def test_harness_panel(self):
        report = HarnessReport(
            image_reference="complement-conduit:dev",
            raw_path=Path("raw.jsonl"),
            normalized_path=Path("normalized.jsonl"),
            exit_code=1,
            record_count=3,
            counts={"fail": 1, "pass": 2},
            transitions=[
                HarnessTransition(from_state=HarnessState.NORMALIZED, to_state=HarnessState.DONE)
            ],
        )
        panel = MatrixRenderer().harness_panel(report)
        assert isinstance(panel, Panel)
        text = _render(panel)
        assert "complement-conduit:dev" in text
        assert "pass: 2" in text
        assert "done" in text
