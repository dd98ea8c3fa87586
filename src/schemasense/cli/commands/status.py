"""Status command - show extraction run status."""

from __future__ import annotations

import json
from typing import Annotated

import typer
from rich.table import Table as RichTable

from schemasense.cli.common import (
    DatabaseOption,
    JsonFlag,
    OntologyOption,
    ProjectOption,
    console,
    get_manager,
    resolve_ontology,
)
from schemasense.core.errors import NotFoundError

_STATUS_STYLE = {
    "succeeded": "green",
    "failed": "red",
    "skipped": "yellow",
    "running": "cyan",
    "pending": "dim",
}


def status(
    project: ProjectOption = "default",
    ontology: OntologyOption = "default",
    database_url: DatabaseOption = None,
    run_id: Annotated[
        str | None,
        typer.Option("--run", help="Run ID (default: latest run)"),
    ] = None,
    json_output: JsonFlag = False,
) -> None:
    """Show the status of an extraction run.

    Examples:

        schemasense status -P acme -O sales

        schemasense status --run 2f6c... --json
    """
    from schemasense.pipeline.status import get_run_status

    manager = get_manager(database_url)
    try:
        project_id, ontology_id = resolve_ontology(manager, project, ontology)
        with manager.session_scope(project_id) as session:
            try:
                run_status = get_run_status(session, ontology_id, run_id)
            except NotFoundError as e:
                console.print(f"[yellow]{e}[/yellow]")
                raise typer.Exit(1) from e

            if json_output:
                console.print(json.dumps(run_status.to_dict(), indent=2))
                return

            style = _STATUS_STYLE.get(run_status.status, "white")
            console.print(f"\n[bold]Run {run_status.run_id}[/bold]")
            console.print(f"  Status: [{style}]{run_status.status}[/{style}]")
            console.print(f"  Started: {run_status.started_at:%Y-%m-%d %H:%M:%S}")
            if run_status.resumed_from_run_id:
                console.print(f"  Resumed from: {run_status.resumed_from_run_id}")
            if run_status.cancelled:
                console.print("  [yellow]Cancelled[/yellow]")
            if run_status.degraded:
                console.print(
                    f"  [yellow]Degraded (skipped: {', '.join(run_status.skipped_steps)})[/yellow]"
                )
            if run_status.error:
                console.print(f"  [red]{run_status.failing_step}: {run_status.error}[/red]")

            table = RichTable(title="Steps")
            table.add_column("Step", style="cyan")
            table.add_column("Status")
            table.add_column("Progress", justify="right")
            table.add_column("Attempts", justify="right")
            table.add_column("Duration", justify="right")
            table.add_column("Note")

            for phase in run_status.phases:
                phase_style = _STATUS_STYLE.get(phase.status.value, "white")
                note = phase.error or ""
                if phase.reused_from_run_id:
                    note = f"reused from {phase.reused_from_run_id[:8]}"
                table.add_row(
                    phase.name + (" (optional)" if phase.optional else ""),
                    f"[{phase_style}]{phase.status.value}[/{phase_style}]",
                    f"{phase.progress_percentage:.0f}%",
                    str(phase.attempts) if phase.attempts else "-",
                    f"{phase.duration_seconds:.1f}s" if phase.duration_seconds else "-",
                    note,
                )

            console.print(table)
            console.print(
                f"\n[bold]{run_status.completed_count}/{run_status.total_count}[/bold] "
                f"steps succeeded"
            )
    finally:
        manager.close()
