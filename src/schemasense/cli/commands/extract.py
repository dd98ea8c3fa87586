"""Extract command - build an ontology from a DuckDB database."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer

from schemasense.cli.common import (
    DatabaseOption,
    OntologyOption,
    ProjectOption,
    console,
    get_manager,
    resolve_ontology,
    setup_logging,
)
from schemasense.core.errors import ConfigurationError, RunAlreadyActiveError

if TYPE_CHECKING:
    from schemasense.datasource import DataSource
    from schemasense.pipeline import Collaborators


def _build_collaborators(datasource: DataSource, use_llm: bool) -> Collaborators:
    from schemasense.analysis.features.agent import ColumnClassificationAgent
    from schemasense.analysis.relationships.agent import RelationshipRoleAgent
    from schemasense.llm import create_llm_components
    from schemasense.ontology.terminology import TerminologyAgent
    from schemasense.pipeline import Collaborators

    collaborators = Collaborators(datasource=datasource)
    if not use_llm:
        return collaborators

    try:
        config, provider, renderer = create_llm_components()
    except ConfigurationError as e:
        console.print(f"[yellow]LLM disabled: {e}[/yellow]")
        return collaborators

    collaborators.classification_agent = ColumnClassificationAgent(config, provider, renderer)
    collaborators.role_agent = RelationshipRoleAgent(config, provider, renderer)
    collaborators.terminology_agent = TerminologyAgent(config, provider, renderer)
    return collaborators


def extract(
    source: Annotated[
        Path,
        typer.Argument(
            help="Path to the DuckDB database file to analyze",
            exists=True,
            file_okay=True,
            dir_okay=False,
            resolve_path=True,
        ),
    ],
    project: ProjectOption = "default",
    ontology: OntologyOption = "default",
    database_url: DatabaseOption = None,
    phase: Annotated[
        str | None,
        typer.Option(
            "--phase",
            "-p",
            help="Run only this step and its dependencies",
        ),
    ] = None,
    force: Annotated[
        bool,
        typer.Option(
            "--force",
            help="Run every step, even those completed by a previous failed run",
        ),
    ] = False,
    no_llm: Annotated[
        bool,
        typer.Option(
            "--no-llm",
            help="Classify with rules only and skip terminology discovery",
        ),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option(
            "--quiet",
            "-q",
            help="Suppress progress output",
        ),
    ] = False,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose",
            "-v",
            count=True,
            help="Increase logging verbosity (-v=INFO, -vv=DEBUG)",
        ),
    ] = 0,
    log_format: Annotated[
        str,
        typer.Option(
            "--log-format",
            help="Log output format (console or json)",
        ),
    ] = "console",
) -> None:
    """Build or refresh an ontology from a DuckDB database.

    Examples:

        schemasense extract ./warehouse.duckdb

        schemasense extract ./warehouse.duckdb -P acme -O sales

        schemasense extract ./warehouse.duckdb --phase relationships

        schemasense extract ./warehouse.duckdb --no-llm -v
    """
    setup_logging(verbosity=verbose, log_format=log_format)

    from schemasense.datasource import DuckDBDataSource
    from schemasense.pipeline import run_pipeline

    manager = get_manager(database_url, duckdb_path=str(source))
    try:
        project_id, ontology_id = resolve_ontology(manager, project, ontology, create=True)
        collaborators = _build_collaborators(DuckDBDataSource(manager.duckdb_conn), not no_llm)

        try:
            result = run_pipeline(
                manager,
                project_id,
                ontology_id,
                collaborators=collaborators,
                force=force,
                target_phase=phase,
            )
        except (ConfigurationError, RunAlreadyActiveError) as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1) from e

        if not quiet:
            console.print("\n[bold]Extraction Run[/bold]")
            console.print("=" * 60)
            console.print(f"Source: {source}")
            console.print(f"Ontology: {project}/{ontology} ({ontology_id})")
            console.print(f"Run ID: {result.run_id}")
            if result.resumed_from_run_id:
                console.print(
                    f"Resumed from: {result.resumed_from_run_id} "
                    f"(reused: {', '.join(result.reused_steps)})"
                )

            console.print()
            console.print("[bold]Step Results[/bold]")
            console.print("-" * 60)
            for name, step in result.steps.items():
                status_icon = {
                    "succeeded": "[green]✓[/green]",
                    "failed": "[red]✗[/red]",
                    "skipped": "[yellow]○[/yellow]",
                }.get(step.status.value, "?")
                duration_str = (
                    f" ({step.duration_seconds:.1f}s)" if step.duration_seconds > 0 else ""
                )
                console.print(f"  {status_icon} {name}: {step.status.value}{duration_str}")
                if step.error:
                    console.print(f"      [red]Error: {step.error}[/red]")
                for warning in step.warnings[:5]:
                    console.print(f"      [yellow]{warning}[/yellow]")

            console.print()
            console.print("[bold]Summary[/bold]")
            console.print("-" * 60)
            console.print(f"  Status: {result.summary()}")
            console.print(f"  Duration: {result.duration_seconds:.2f}s")

        if not result.succeeded:
            raise typer.Exit(1)
    finally:
        manager.close()
