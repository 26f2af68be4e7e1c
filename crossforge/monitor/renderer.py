"""Rich terminal rendering for matrix outcomes and harness reports.

Color scheme
------------
- green     : succeeded / pass / done
- red       : failed / fail
- yellow    : skip
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from crossforge.core.orchestrator import JobOutcome, JobStatus
from crossforge.models.results import HarnessReport, HarnessState
from crossforge.models.variants import BuildJob

_STATUS_MARKUP: dict[JobStatus, str] = {
    JobStatus.SUCCEEDED: "[green]SUCCEEDED[/green]",
    JobStatus.FAILED: "[bold red]FAILED[/bold red]",
}

_ACTION_STYLES: dict[str, str] = {"pass": "green", "fail": "bold red", "skip": "yellow"}


class MatrixRenderer:
    """Renders matrix and harness results as Rich output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def jobs_table(self, jobs: Sequence[BuildJob]) -> Table:
        table = Table(title="Build Matrix", show_lines=False)
        table.add_column("Output", style="cyan", no_wrap=True)
        table.add_column("Profile")
        table.add_column("Target")
        table.add_column("Static", justify="center")
        table.add_column("Features")
        table.add_column("Job ID", style="dim")
        for job in jobs:
            variant = job.variant
            table.add_row(
                variant.output_name,
                variant.profile.value,
                variant.target.triple.rustc_target,
                "yes" if variant.target.static else "no",
                ",".join(job.features) or "-",
                job.job_id,
            )
        return table

    def outcomes_table(self, outcomes: Sequence[JobOutcome]) -> Table:
        table = Table(title="Matrix Results")
        table.add_column("Output", style="cyan", no_wrap=True)
        table.add_column("Profile")
        table.add_column("Status", justify="center")
        table.add_column("Artifact / Error", overflow="fold")
        for outcome in outcomes:
            if outcome.status is JobStatus.SUCCEEDED:
                detail = (
                    outcome.stored_image.content_address
                    if outcome.stored_image
                    else str(outcome.binary_path)
                )
            else:
                detail = f"[red]{outcome.error_kind}[/red]: {escape(outcome.error or '')}"
            table.add_row(
                outcome.output_name,
                outcome.variant.profile.value,
                _STATUS_MARKUP[outcome.status],
                detail,
            )
        return table

    def environment_table(self, title: str, environment: Mapping[str, str]) -> Table:
        table = Table(title=title)
        table.add_column("Variable", style="cyan", no_wrap=True)
        table.add_column("Value", overflow="fold")
        for key, value in environment.items():
            table.add_row(key, escape(value) if value else "[dim](empty)[/dim]")
        return table

    def harness_panel(self, report: HarnessReport) -> Panel:
        counts = "  ".join(
            f"[{_ACTION_STYLES.get(action, 'white')}]{action}: {count}[/]"
            for action, count in report.counts.items()
        )
        state = report.final_state
        state_markup = (
            "[green]done[/green]" if state is HarnessState.DONE else f"[red]{state.value}[/red]"
        )
        lines = [
            f"[bold]Image:[/bold]      {report.image_reference}",
            f"[bold]State:[/bold]      {state_markup}",
            f"[bold]Suite exit:[/bold] {report.exit_code}",
            f"[bold]Records:[/bold]    {report.record_count}  {counts}",
            f"[bold]Raw:[/bold]        {report.raw_path}",
            f"[bold]Normalized:[/bold] {report.normalized_path}",
        ]
        if report.skipped_lines:
            lines.append(f"[yellow]Skipped non-JSON lines: {report.skipped_lines}[/yellow]")
        return Panel(
            "\n".join(lines),
            title="[bold]Complement[/bold]",
            border_style="green" if state is HarnessState.DONE else "red",
            padding=(1, 2),
        )

    def print_outcomes(self, outcomes: Sequence[JobOutcome]) -> None:
        self.console.print(self.outcomes_table(outcomes))
