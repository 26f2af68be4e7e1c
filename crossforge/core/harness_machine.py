"""Deterministic harness state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- FAILED reachable from every non-terminal state
- Every transition recorded, in order
"""

from __future__ import annotations

import logging
import threading

from crossforge.models.results import VALID_TRANSITIONS, HarnessState, HarnessTransition

logger = logging.getLogger(__name__)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class HarnessMachine:
    """Tracks the state of one harness run.

    Parameters
    ----------
    label:
        Identifies the run in log messages (usually the image reference).
    """

    def __init__(self, label: str = "") -> None:
        self._label = label
        self._state = HarnessState.IDLE
        self._history: list[HarnessTransition] = []
        self._lock = threading.Lock()

    @property
    def state(self) -> HarnessState:
        return self._state

    @property
    def history(self) -> list[HarnessTransition]:
        """Snapshot of all recorded transitions."""
        with self._lock:
            return list(self._history)

    @property
    def is_terminal(self) -> bool:
        return not VALID_TRANSITIONS[self._state]

    def transition(self, target: HarnessState, reason: str | None = None) -> HarnessTransition:
        """Move to *target*, recording the transition.

        Raises ``InvalidTransitionError`` if the table does not allow it.
        """
        with self._lock:
            current = self._state
            allowed = VALID_TRANSITIONS.get(current, set())
            if target not in allowed:
                raise InvalidTransitionError(
                    f"Cannot transition harness from {current.value} to {target.value}. "
                    f"Allowed: {sorted(s.value for s in allowed)}"
                )
            record = HarnessTransition(from_state=current, to_state=target, reason=reason)
            self._history.append(record)
            self._state = target

        if target == HarnessState.FAILED:
            logger.error("Harness %s: %s -> failed (%s)", self._label, current.value, reason)
        else:
            logger.info("Harness %s: %s -> %s", self._label, current.value, target.value)
        return record

    def fail(self, reason: str) -> HarnessTransition | None:
        """Move to FAILED unless already terminal."""
        with self._lock:
            if not VALID_TRANSITIONS[self._state]:
                return None
        return self.transition(HarnessState.FAILED, reason)
