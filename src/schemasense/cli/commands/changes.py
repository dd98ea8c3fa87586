"""Changes commands - review schema and data changes detected by runs."""

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
from schemasense.core.errors import FatalError, NotFoundError

app = typer.Typer(help="Review pending schema and data changes.", no_args_is_help=True)

ChangeIdArg = Annotated[str, typer.Argument(help="Pending change ID")]
ReviewerOption = Annotated[
    str | None,
    typer.Option("--by", help="Reviewer recorded on the change"),
]


@app.command("list")
def list_changes(
    project: ProjectOption = "default",
    ontology: OntologyOption = "default",
    database_url: DatabaseOption = None,
    status: Annotated[
        str | None,
        typer.Option(
            "--status",
            "-s",
            help="Filter by status (pending, approved, rejected, auto_applied)",
        ),
    ] = "pending",
    limit: Annotated[int, typer.Option("--limit", help="Maximum rows (0 = all)")] = 0,
    json_output: JsonFlag = False,
) -> None:
    """List detected schema changes."""
    from schemasense.ontology.changes import PendingChangeService

    manager = get_manager(database_url)
    try:
        project_id, ontology_id = resolve_ontology(manager, project, ontology)
        with manager.session_scope(project_id) as session:
            changes = PendingChangeService(session).list(ontology_id, status=status, limit=limit)

            if json_output:
                rows = [
                    {
                        "change_id": c.change_id,
                        "change_type": c.change_type,
                        "table_name": c.table_name,
                        "column_name": c.column_name,
                        "old_value": c.old_value,
                        "new_value": c.new_value,
                        "suggested_action": c.suggested_action,
                        "status": c.status,
                        "detected_at": c.detected_at.isoformat(),
                    }
                    for c in changes
                ]
                console.print(json.dumps(rows, indent=2))
                return

            if not changes:
                console.print("[dim]No changes[/dim]")
                return

            table = RichTable(title=f"Schema changes ({status or 'all'})")
            table.add_column("ID", style="dim")
            table.add_column("Type", style="cyan")
            table.add_column("Table")
            table.add_column("Column")
            table.add_column("Suggested action")
            table.add_column("Status")
            for c in changes:
                table.add_row(
                    c.change_id,
                    c.change_type,
                    c.table_name,
                    c.column_name or "",
                    c.suggested_action or "",
                    c.status,
                )
            console.print(table)
    finally:
        manager.close()


def _review(
    change_id: str,
    approve: bool,
    project: str,
    ontology: str,
    database_url: str | None,
    reviewed_by: str | None,
    reason: str | None = None,
) -> None:
    from schemasense.ontology.changes import PendingChangeService

    manager = get_manager(database_url)
    try:
        project_id, _ = resolve_ontology(manager, project, ontology)
        with manager.session_scope(project_id) as session:
            service = PendingChangeService(session)
            try:
                if approve:
                    result = service.approve(change_id, reviewed_by=reviewed_by)
                else:
                    result = service.reject(change_id, reason=reason, reviewed_by=reviewed_by)
            except (NotFoundError, FatalError) as e:
                console.print(f"[red]{e}[/red]")
                raise typer.Exit(1) from e

            change = result.unwrap()
            console.print(f"[green]{change.change_id}: {change.status}[/green]")
    finally:
        manager.close()


@app.command()
def approve(
    change_id: ChangeIdArg,
    project: ProjectOption = "default",
    ontology: OntologyOption = "default",
    database_url: DatabaseOption = None,
    reviewed_by: ReviewerOption = None,
) -> None:
    """Approve a change and apply its suggested action."""
    _review(change_id, True, project, ontology, database_url, reviewed_by)


@app.command()
def reject(
    change_id: ChangeIdArg,
    project: ProjectOption = "default",
    ontology: OntologyOption = "default",
    database_url: DatabaseOption = None,
    reviewed_by: ReviewerOption = None,
    reason: Annotated[
        str | None,
        typer.Option("--reason", help="Why the change is rejected"),
    ] = None,
) -> None:
    """Reject a change.

    A rejected table or column is deselected from later runs and a rejected
    reference is withdrawn; other rejections leave the ontology untouched.
    """
    _review(change_id, False, project, ontology, database_url, reviewed_by, reason)
