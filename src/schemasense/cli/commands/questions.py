"""Questions commands - answer what the data could not explain."""

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

app = typer.Typer(help="Answer clarification questions.", no_args_is_help=True)

QuestionIdArg = Annotated[str, typer.Argument(help="Question ID")]
AnsweredByOption = Annotated[
    str | None,
    typer.Option("--by", help="Who answered the question"),
]


@app.command("list")
def list_questions(
    project: ProjectOption = "default",
    ontology: OntologyOption = "default",
    database_url: DatabaseOption = None,
    status: Annotated[
        str | None,
        typer.Option("--status", "-s", help="Filter by status (pending, answered, dismissed)"),
    ] = "pending",
    limit: Annotated[int, typer.Option("--limit", help="Maximum rows (0 = all)")] = 0,
    json_output: JsonFlag = False,
) -> None:
    """List clarification questions, most urgent first."""
    from schemasense.ontology.questions import QuestionService

    manager = get_manager(database_url)
    try:
        project_id, ontology_id = resolve_ontology(manager, project, ontology)
        with manager.session_scope(project_id) as session:
            questions = QuestionService(session).list(ontology_id, status=status, limit=limit)

            if json_output:
                rows = [
                    {
                        "question_id": q.question_id,
                        "table_name": q.table_name,
                        "column_name": q.column_name,
                        "category": q.category,
                        "detected_pattern": q.detected_pattern,
                        "text": q.text,
                        "priority": q.priority,
                        "is_required": q.is_required,
                        "status": q.status,
                        "answer": q.answer,
                    }
                    for q in questions
                ]
                console.print(json.dumps(rows, indent=2))
                return

            if not questions:
                console.print("[dim]No questions[/dim]")
                return

            table = RichTable(title=f"Questions ({status or 'all'})")
            table.add_column("ID", style="dim")
            table.add_column("P", justify="right")
            table.add_column("Question")
            table.add_column("Status")
            for q in questions:
                marker = "*" if q.is_required else ""
                table.add_row(q.question_id, f"{q.priority}{marker}", q.text, q.status)
            console.print(table)
    finally:
        manager.close()


def _close(
    question_id: str,
    project: str,
    ontology: str,
    database_url: str | None,
    answered_by: str | None,
    answer: str | None = None,
) -> None:
    from schemasense.ontology.questions import QuestionService

    manager = get_manager(database_url)
    try:
        project_id, _ = resolve_ontology(manager, project, ontology)
        with manager.session_scope(project_id) as session:
            service = QuestionService(session)
            try:
                if answer is None:
                    result = service.dismiss(question_id, answered_by=answered_by)
                else:
                    result = service.answer(question_id, answer, answered_by=answered_by)
            except (NotFoundError, FatalError) as e:
                console.print(f"[red]{e}[/red]")
                raise typer.Exit(1) from e

            if not result.success:
                console.print(f"[red]{result.error}[/red]")
                raise typer.Exit(1)
            question = result.unwrap()
            console.print(f"[green]{question.question_id}: {question.status}[/green]")
    finally:
        manager.close()


@app.command()
def answer(
    question_id: QuestionIdArg,
    text: Annotated[str, typer.Argument(help="The answer")],
    project: ProjectOption = "default",
    ontology: OntologyOption = "default",
    database_url: DatabaseOption = None,
    answered_by: AnsweredByOption = None,
) -> None:
    """Answer a question."""
    _close(question_id, project, ontology, database_url, answered_by, answer=text)


@app.command()
def dismiss(
    question_id: QuestionIdArg,
    project: ProjectOption = "default",
    ontology: OntologyOption = "default",
    database_url: DatabaseOption = None,
    answered_by: AnsweredByOption = None,
) -> None:
    """Dismiss a question that needs no answer."""
    _close(question_id, project, ontology, database_url, answered_by)
