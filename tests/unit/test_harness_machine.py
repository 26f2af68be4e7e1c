"""Tests for HarnessMachine: transition table enforcement and history."""

from __future__ import annotations

import pytest

from crossforge.core.harness_machine import HarnessMachine, InvalidTransitionError
from crossforge.models.results import VALID_TRANSITIONS, HarnessState

HAPPY_PATH = [
    HarnessState.IMAGE_LOADED,
    HarnessState.SUITE_RUNNING,
    HarnessState.RESULTS_CAPTURED,
    HarnessState.NORMALIZED,
    HarnessState.DONE,
]


class TestHarnessMachine:
    def test_happy_path(self):
        machine = HarnessMachine("conduit:dev")
        for state in HAPPY_PATH:
            machine.transition(state)
        assert machine.state is HarnessState.DONE
        assert machine.is_terminal
        assert [t.to_state for t in machine.history] == HAPPY_PATH

    def test_cannot_skip_states(self):
        machine = HarnessMachine()
        with pytest.raises(InvalidTransitionError):
            machine.transition(HarnessState.SUITE_RUNNING)
        assert machine.state is HarnessState.IDLE
        assert machine.history == []

    @pytest.mark.parametrize(
        "state", [s for s in HarnessState if s not in (HarnessState.DONE, HarnessState.FAILED)]
    )
    def test_failed_reachable_from_every_non_terminal_state(self, state):
        assert HarnessState.FAILED in VALID_TRANSITIONS[state]

    def test_terminal_states_have_no_exits(self):
        assert VALID_TRANSITIONS[HarnessState.DONE] == set()
        assert VALID_TRANSITIONS[HarnessState.FAILED] == set()

    def test_fail_records_reason(self):
        machine = HarnessMachine()
        machine.transition(HarnessState.IMAGE_LOADED)
        record = machine.fail("suite crashed")
        assert record is not None and record.reason == "suite crashed"
        assert machine.state is HarnessState.FAILED

    def test_fail_is_noop_when_terminal(self):
        machine = HarnessMachine()
        machine.fail("first")
        assert machine.fail("second") is None
        assert len(machine.history) == 1

    def test_no_transition_out_of_done(self):
        machine = HarnessMachine()
        for state in HAPPY_PATH:
            machine.transition(state)
        with pytest.raises(InvalidTransitionError):
            machine.transition(HarnessState.FAILED)
        assert machine.fail("too late") is None
        assert machine.state is HarnessState.DONE
