"""Shared CLI utilities and constants."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

import typer
from dotenv import load_dotenv
from rich.console import Console
from sqlalchemy import select

from schemasense.core.logging import configure_logging

if TYPE_CHECKING:
    from schemasense.core.connections import ConnectionManager

# Load .env file from current directory (for API keys, etc.)
load_dotenv()

# Shared console instance
console = Console()

# Common type aliases for typer options
DatabaseOption = Annotated[
    str | None,
    typer.Option(
        "--db",
        help="SQLAlchemy URL of the metadata store (default: SCHEMASENSE_DATABASE_URL)",
    ),
]

ProjectOption = Annotated[
    str,
    typer.Option("--project", "-P", help="Project name"),
]

OntologyOption = Annotated[
    str,
    typer.Option("--ontology", "-O", help="Ontology name"),
]

JsonFlag = Annotated[
    bool,
    typer.Option(
        "--json",
        help="Output as JSON for scripting",
    ),
]

VerboseOption = Annotated[
    int,
    typer.Option(
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-v=INFO, -vv=DEBUG)",
    ),
]


def setup_logging(verbosity: int = 0, log_format: str = "console") -> None:
    """Configure structured logging based on verbosity level.

    Args:
        verbosity: 0=WARNING, 1=INFO, 2+=DEBUG
        log_format: "console" for development, "json" for production/cloud
    """
    if verbosity >= 2:
        level = "DEBUG"
    elif verbosity >= 1:
        level = "INFO"
    else:
        level = "WARNING"

    configure_logging(
        log_level=level,
        log_format=log_format,
        show_timestamps=verbosity >= 1,
        color=log_format == "console",
    )


def get_manager(
    database_url: str | None = None, duckdb_path: str | None = None
) -> ConnectionManager:
    """Create and initialize a ConnectionManager.

    The datasource is opened read-only when a DuckDB file is given.
    Returns the manager. Caller is responsible for closing it.
    """
    from schemasense.core.connections import ConnectionConfig, ConnectionManager

    overrides: dict[str, object] = {}
    if database_url:
        overrides["database_url"] = database_url
    if duckdb_path:
        overrides["duckdb_path"] = duckdb_path
        overrides["duckdb_read_only"] = True

    manager = ConnectionManager(ConnectionConfig.from_settings(**overrides))
    try:
        manager.initialize()
    except RuntimeError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e
    return manager


def resolve_ontology(
    manager: ConnectionManager, project: str, ontology: str, create: bool = False
) -> tuple[str, str]:
    """Look up (or create) a project and ontology by name.

    Returns:
        (project_id, ontology_id)
    """
    from schemasense.storage.models import Ontology, Project

    with manager.session_scope() as session:
        project_row = session.execute(
            select(Project).where(Project.name == project)
        ).scalar_one_or_none()
        if project_row is None:
            if not create:
                console.print(f"[red]Project '{project}' not found[/red]")
                raise typer.Exit(1)
            project_row = Project(name=project)
            session.add(project_row)
            session.flush()
        project_id = project_row.project_id

    with manager.session_scope(project_id) as session:
        ontology_row = session.execute(
            select(Ontology).where(Ontology.name == ontology)
        ).scalar_one_or_none()
        if ontology_row is None:
            if not create:
                console.print(f"[red]Ontology '{ontology}' not found in project '{project}'[/red]")
                raise typer.Exit(1)
            ontology_row = Ontology(name=ontology)
            session.add(ontology_row)
            session.flush()
        return project_id, ontology_row.ontology_id
