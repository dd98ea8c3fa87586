"""Main CLI application entry point."""

from __future__ import annotations

import typer

from schemasense.cli.commands import changes, extract, questions, status

app = typer.Typer(
    name="schemasense",
    help="SchemaSense - build a semantic metadata layer over a relational database.",
    no_args_is_help=True,
)

# Register commands
app.command()(extract.extract)
app.command()(status.status)
app.add_typer(changes.app, name="changes")
app.add_typer(questions.app, name="questions")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
