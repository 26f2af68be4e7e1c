"""Harness state and conformance result models."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class TestAction(str, Enum):
    """The event actions kept in the normalized result set."""

    __test__ = False  # not a pytest class

    PASS = "pass"
    FAIL = "fail"
    SKIP = "skip"


class TestResultRecord(BaseModel):
    """One projected ``{Action, Test}`` pair."""

    __test__ = False

    model_config = ConfigDict(frozen=True)

    action: TestAction
    test_name: str

    def to_line(self) -> str:
        """Compact JSON text; the sort key and the persisted form."""
        return json.dumps(
            {"Action": self.action.value, "Test": self.test_name},
            separators=(",", ":"),
            ensure_ascii=False,
        )


class HarnessState(str, Enum):
    """Lifecycle of one harness run."""

    IDLE = "idle"
    IMAGE_LOADED = "image_loaded"
    SUITE_RUNNING = "suite_running"
    RESULTS_CAPTURED = "results_captured"
    NORMALIZED = "normalized"
    DONE = "done"
    FAILED = "failed"


# Valid transitions: enforced by HarnessMachine.
# DONE and FAILED are terminal.
VALID_TRANSITIONS: dict[HarnessState, set[HarnessState]] = {
    HarnessState.IDLE: {HarnessState.IMAGE_LOADED, HarnessState.FAILED},
    HarnessState.IMAGE_LOADED: {HarnessState.SUITE_RUNNING, HarnessState.FAILED},
    HarnessState.SUITE_RUNNING: {HarnessState.RESULTS_CAPTURED, HarnessState.FAILED},
    HarnessState.RESULTS_CAPTURED: {HarnessState.NORMALIZED, HarnessState.FAILED},
    HarnessState.NORMALIZED: {HarnessState.DONE, HarnessState.FAILED},
    HarnessState.DONE: set(),
    HarnessState.FAILED: set(),
}


class HarnessTransition(BaseModel):
    """Records a single state transition for the run log."""

    model_config = ConfigDict(frozen=True)

    from_state: HarnessState
    to_state: HarnessState
    reason: str | None = None
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class HarnessReport(BaseModel):
    """Summary of one finished harness run."""

    model_config = ConfigDict(frozen=True)

    image_reference: str
    raw_path: Path
    normalized_path: Path
    exit_code: int
    record_count: int
    counts: dict[str, int] = Field(default_factory=dict)
    skipped_lines: int = 0
    transitions: list[HarnessTransition] = Field(default_factory=list)

    @property
    def final_state(self) -> HarnessState:
        if not self.transitions:
            return HarnessState.IDLE
        return self.transitions[-1].to_state
