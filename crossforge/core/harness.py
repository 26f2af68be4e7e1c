"""Complement conformance harness.

Loads a packaged image into the container runtime, runs the external
suite (``go test -json``) against it, tees the event stream verbatim to a
raw artifact and reduces it to a sorted ``{Action, Test}`` artifact:

    idle -> image_loaded -> suite_running -> results_captured
         -> normalized -> done            (failed from any non-terminal state)

Failing conformance tests are data: a non-zero suite exit is expected.
Only an unstartable or crashed suite process, a failed image load, or a
timeout/cancellation fails the run.
"""

from __future__ import annotations

import json
import logging
import os
import re
import signal
import subprocess
import threading
from collections import Counter
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from crossforge.core.harness_machine import HarnessMachine
from crossforge.errors import (
    CrossforgeError,
    ImageLoadFailed,
    RuntimeNamespaceConflict,
    SuiteCancelled,
    SuiteProcessCrashed,
    SuiteProcessUnstartable,
)
from crossforge.models.images import ImageArchive
from crossforge.models.results import HarnessReport, HarnessState, TestAction, TestResultRecord

logger = logging.getLogger(__name__)

BASE_IMAGE_VAR = "COMPLEMENT_BASE_IMAGE"
_RESULT_ACTIONS = frozenset(a.value for a in TestAction)


# ---------------------------------------------------------------------------
# Event stream normalization
# ---------------------------------------------------------------------------


def project_event(event: Any) -> TestResultRecord | None:
    """Project one decoded event to a record, or None if it is filtered out.

    Kept: objects whose ``Action`` is pass, fail or skip and whose ``Test``
    is a non-empty string.
    """
    if not isinstance(event, Mapping):
        return None
    action = event.get("Action")
    test = event.get("Test")
    if action not in _RESULT_ACTIONS or not isinstance(test, str) or not test:
        return None
    return TestResultRecord(action=TestAction(action), test_name=test)


def filter_events(lines: Iterable[str | bytes]) -> tuple[list[TestResultRecord], int]:
    """Decode newline-delimited JSON and keep result events, in stream order.

    Returns ``(records, skipped)`` where *skipped* counts non-blank lines
    that were not valid JSON.  Duplicate records are preserved.
    """
    records: list[TestResultRecord] = []
    skipped = 0
    for line in lines:
        if isinstance(line, bytes):
            line = line.decode("utf-8", errors="replace")
        if not line.strip():
            continue
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            skipped += 1
            continue
        record = project_event(event)
        if record is not None:
            records.append(record)
    return records, skipped


def sort_records(records: Iterable[TestResultRecord]) -> list[TestResultRecord]:
    """Sort by full textual form; removes execution-order nondeterminism."""
    return sorted(records, key=lambda r: r.to_line())


def render_records(records: Iterable[TestResultRecord]) -> str:
    return "".join(f"{record.to_line()}\n" for record in records)


def normalize_lines(lines: Iterable[str | bytes]) -> list[TestResultRecord]:
    """Filter, project and sort an event stream."""
    records, _ = filter_events(lines)
    return sort_records(records)


def normalize_file(raw_path: Path, normalized_path: Path) -> tuple[list[TestResultRecord], int]:
    """Normalize the raw artifact at *raw_path* into *normalized_path*."""
    with Path(raw_path).open("rb") as fh:
        records, skipped = filter_events(fh)
    ordered = sort_records(records)
    normalized_path = Path(normalized_path)
    normalized_path.parent.mkdir(parents=True, exist_ok=True)
    normalized_path.write_text(render_records(ordered), encoding="utf-8")
    if skipped:
        logger.warning("Skipped %d non-JSON line(s) in %s", skipped, raw_path)
    return ordered, skipped


# ---------------------------------------------------------------------------
# Container runtime
# ---------------------------------------------------------------------------


@runtime_checkable
class ContainerRuntime(Protocol):
    """Loads image archives so the suite can start containers from them."""

    def load(self, archive: Path) -> None:
        """Load *archive*; raise ``ImageLoadFailed`` on any error."""
        ...


class DockerRuntime:
    """``docker load`` backed runtime."""

    def __init__(self, docker: str = "docker", timeout: float = 600.0) -> None:
        self._docker = docker
        self._timeout = timeout

    def load(self, archive: Path) -> None:
        try:
            result = subprocess.run(
                [self._docker, "load", "-i", str(archive)],
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise ImageLoadFailed(f"cannot run {self._docker} load: {exc}", subject=str(archive)) from exc
        if result.returncode != 0:
            raise ImageLoadFailed(
                f"{self._docker} load exited with {result.returncode}: {result.stderr.strip()}",
                subject=str(archive),
            )
        logger.info("Loaded %s: %s", archive, result.stdout.strip())


# ---------------------------------------------------------------------------
# Suite invocation
# ---------------------------------------------------------------------------


class SuiteCommand(BaseModel):
    """How to start the conformance suite against one image."""

    model_config = ConfigDict(frozen=True)

    argv: tuple[str, ...]
    cwd: Path
    env: dict[str, str] = Field(default_factory=dict)


def complement_command(
    suite_dir: Path,
    image_reference: str,
    *,
    go: str = "go",
    packages: str = "./tests",
    extra_env: Mapping[str, str] | None = None,
) -> SuiteCommand:
    """``go test -json ./tests`` in the suite checkout, pointed at the image."""
    env = dict(os.environ)
    env.update(extra_env or {})
    env[BASE_IMAGE_VAR] = image_reference
    return SuiteCommand(argv=(go, "test", "-json", packages), cwd=Path(suite_dir), env=env)


# ---------------------------------------------------------------------------
# Runtime namespace coordination
# ---------------------------------------------------------------------------

_serial_lock = threading.Lock()
_active_refs: set[str] = set()
_active_lock = threading.Lock()


@contextmanager
def claim_image_namespace(reference: str, *, allow_concurrent: bool) -> Iterator[None]:
    """Coordinate harness runs sharing the container runtime.

    Without *allow_concurrent* every run in the process is serialised.
    With it, runs may overlap but two concurrent runs may not use the same
    image reference.
    """
    if not allow_concurrent:
        with _serial_lock:
            yield
        return
    with _active_lock:
        if reference in _active_refs:
            raise RuntimeNamespaceConflict(
                "another harness run is using this image reference", subject=reference
            )
        _active_refs.add(reference)
    try:
        yield
    finally:
        with _active_lock:
            _active_refs.discard(reference)


def _artifact_stem(reference: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]+", "_", reference)


# ---------------------------------------------------------------------------
# Harness
# ---------------------------------------------------------------------------


class ComplementHarness:
    """Runs the conformance suite against a packaged image.

    Parameters
    ----------
    runtime:
        Container runtime the image is loaded into.
    suite_dir:
        Checkout of the conformance suite.
    results_dir:
        Default location of the raw and normalized artifacts.
    timeout:
        Seconds the suite may run before it is cancelled.
    kill_grace:
        Seconds between SIGTERM and SIGKILL when stopping the suite.
    allow_concurrent:
        See ``claim_image_namespace``.
    command_factory:
        ``(suite_dir, image_reference) -> SuiteCommand``; defaults to
        ``complement_command``.
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        *,
        suite_dir: Path,
        results_dir: Path,
        timeout: float | None = None,
        kill_grace: float = 10.0,
        allow_concurrent: bool = False,
        command_factory: Any | None = None,
    ) -> None:
        self._runtime = runtime
        self._suite_dir = Path(suite_dir)
        self._results_dir = Path(results_dir)
        self._timeout = timeout
        self._kill_grace = kill_grace
        self._allow_concurrent = allow_concurrent
        self._command_factory = command_factory or complement_command

        self._proc: subprocess.Popen | None = None
        self._proc_lock = threading.Lock()
        self._stop_reason: str | None = None
        self.machine = HarnessMachine()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run_image(self, image: ImageArchive, **kwargs: Any) -> HarnessReport:
        """Run against a packaged image archive."""
        return self.run(image.path, image.spec.reference, **kwargs)

    def run(
        self,
        archive: Path,
        image_reference: str,
        *,
        raw_path: Path | None = None,
        normalized_path: Path | None = None,
    ) -> HarnessReport:
        """Load *archive*, run the suite against *image_reference*, normalize.

        Returns a ``HarnessReport``; raises a ``CrossforgeError`` subclass
        after moving the machine to FAILED.
        """
        stem = _artifact_stem(image_reference)
        raw_path = Path(raw_path or self._results_dir / f"{stem}.raw.jsonl")
        normalized_path = Path(normalized_path or self._results_dir / f"{stem}.normalized.jsonl")

        self.machine = HarnessMachine(label=image_reference)
        self._stop_reason = None

        try:
            with claim_image_namespace(image_reference, allow_concurrent=self._allow_concurrent):
                self._runtime.load(Path(archive))
                self.machine.transition(HarnessState.IMAGE_LOADED)

                exit_code = self._run_suite(image_reference, raw_path)
                self.machine.transition(
                    HarnessState.RESULTS_CAPTURED, reason=f"suite exit code {exit_code}"
                )

                with raw_path.open("rb") as fh:
                    records, skipped = filter_events(fh)
                self.machine.transition(HarnessState.NORMALIZED)
                if skipped:
                    logger.warning("Skipped %d non-JSON line(s) in %s", skipped, raw_path)

                ordered = sort_records(records)
                normalized_path.parent.mkdir(parents=True, exist_ok=True)
                normalized_path.write_text(render_records(ordered), encoding="utf-8")
                self.machine.transition(HarnessState.DONE)
        except CrossforgeError as exc:
            self.machine.fail(str(exc))
            raise
        except OSError as exc:
            self.machine.fail(f"I/O error: {exc}")
            raise

        counts = Counter(r.action.value for r in ordered)
        return HarnessReport(
            image_reference=image_reference,
            raw_path=raw_path,
            normalized_path=normalized_path,
            exit_code=exit_code,
            record_count=len(ordered),
            counts=dict(sorted(counts.items())),
            skipped_lines=skipped,
            transitions=self.machine.history,
        )

    def cancel(self, reason: str = "cancelled") -> None:
        """Stop a running suite. Captured output is kept; the run fails.

        A suite that has already exited is left alone and its run completes.
        """
        with self._proc_lock:
            proc = self._proc
            if proc is not None and proc.poll() is not None:
                return
            if self._stop_reason is None:
                self._stop_reason = reason
        if proc is not None:
            self._terminate(proc)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run_suite(self, image_reference: str, raw_path: Path) -> int:
        command: SuiteCommand = self._command_factory(self._suite_dir, image_reference)
        raw_path.parent.mkdir(parents=True, exist_ok=True)

        with raw_path.open("wb") as raw:
            try:
                proc = subprocess.Popen(
                    list(command.argv),
                    cwd=command.cwd,
                    env=command.env,
                    stdout=subprocess.PIPE,
                    stdin=subprocess.DEVNULL,
                    start_new_session=True,
                )
            except OSError as exc:
                raise SuiteProcessUnstartable(
                    f"cannot start {command.argv[0]}: {exc}", subject=" ".join(command.argv)
                ) from exc

            with self._proc_lock:
                self._proc = proc
                already_cancelled = self._stop_reason is not None
            self.machine.transition(HarnessState.SUITE_RUNNING)
            if already_cancelled:
                self._terminate(proc)

            watchdog = None
            if self._timeout is not None:
                watchdog = threading.Timer(
                    self._timeout, self.cancel, kwargs={"reason": f"timed out after {self._timeout}s"}
                )
                watchdog.daemon = True
                watchdog.start()

            try:
                assert proc.stdout is not None
                for line in proc.stdout:
                    raw.write(line)
                    raw.flush()
                returncode = proc.wait()
            finally:
                if watchdog is not None:
                    watchdog.cancel()
                with self._proc_lock:
                    self._proc = None
                    stop_reason = self._stop_reason

        if stop_reason is not None:
            raise SuiteCancelled(
                f"suite {stop_reason}; partial output kept in {raw_path}",
                subject=image_reference,
            )
        if returncode < 0:
            raise SuiteProcessCrashed(
                f"suite killed by signal {-returncode}", subject=image_reference
            )
        logger.info("Suite finished with exit code %d for %s", returncode, image_reference)
        return returncode

    def _terminate(self, proc: subprocess.Popen) -> None:
        if proc.poll() is not None:
            return
        try:
            os.killpg(proc.pid, signal.SIGTERM)
        except ProcessLookupError:
            return
        try:
            proc.wait(timeout=self._kill_grace)
        except subprocess.TimeoutExpired:
            logger.warning("Suite did not stop after SIGTERM; sending SIGKILL")
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
