"""Profiling step.

Observes the datasource schema, applies it to the recorded schema (which
produces pending changes on every refresh after the first) and profiles
every selected column through the bounded worker pool.
"""

from __future__ import annotations

from sqlalchemy import select

from schemasense.analysis.features.models import ColumnProfile
from schemasense.analysis.features.profiler import profile_table
from schemasense.analysis.features.store import save_profile
from schemasense.core.concurrency import run_bounded
from schemasense.core.logging import get_logger, record_tables_processed
from schemasense.core.models import Result
from schemasense.datasource import SchemaTable
from schemasense.ontology.changes import (
    load_observed_schema,
    load_recorded_tables,
    refresh_schema,
)
from schemasense.pipeline.base import PhaseContext, PhaseResult
from schemasense.pipeline.phases.base import BasePhase
from schemasense.storage.models import Ontology, Table

logger = get_logger(__name__)


class ProfilingPhase(BasePhase):
    """Schema refresh and column profiling."""

    @property
    def name(self) -> str:
        return "profiling"

    @property
    def description(self) -> str:
        return "Record the observed schema and profile every column"

    @property
    def dependencies(self) -> list[str]:
        return []

    @property
    def outputs(self) -> list[str]:
        return ["tables", "columns", "failed_columns", "schema_changes"]

    @property
    def required_collaborators(self) -> list[str]:
        return ["datasource"]

    def _run(self, ctx: PhaseContext) -> PhaseResult:
        datasource = ctx.collaborators.datasource
        assert datasource is not None

        ontology = ctx.session.execute(
            select(Ontology).where(Ontology.ontology_id == ctx.ontology_id)
        ).scalar_one_or_none()
        if ontology is None:
            return PhaseResult.failed(f"Ontology not found: {ctx.ontology_id}")

        observed = datasource.get_schema()
        ctx.check_cancelled()
        refresh = refresh_schema(ctx.session, ontology, observed)
        # Deselected tables and columns are recorded but never profiled
        selected = load_observed_schema(ctx.session, ctx.ontology_id)

        sample_size = int(ctx.config.get("sample_size", ctx.settings.sample_size))
        max_workers = int(ctx.config.get("max_workers", ctx.settings.max_workers))
        total = len(selected.tables)
        ctx.report(0, total, "Profiling tables")

        def on_complete(done: int, total: int) -> None:
            ctx.report(done, total, f"Profiled {done}/{total} tables")

        outcomes = run_bounded(
            selected.tables,
            lambda table: profile_table(datasource, table, sample_size),
            max_workers=max_workers,
            cancel_token=ctx.cancel_token,
            on_complete=on_complete,
        )

        recorded = load_recorded_tables(ctx.session, ctx.ontology_id, selected_only=True)
        warnings: list[str] = []
        columns = 0
        failed_columns = 0
        for table, profiles, error in outcomes:
            if error is not None or profiles is None:
                warnings.append(f"{table.qualified_name}: profiling failed: {error}")
                failed_columns += len(table.columns)
                continue
            failed_columns += self._store_profiles(recorded, table, profiles, warnings)
            columns += len(table.columns)

        ctx.session.flush()
        record_tables_processed(total)
        logger.info(
            "profiling_complete",
            tables=total,
            columns=columns,
            failed_columns=failed_columns,
            schema_changes=len(refresh.changes),
        )

        return PhaseResult.success(
            outputs={
                "tables": total,
                "columns": columns,
                "failed_columns": failed_columns,
                "schema_changes": len(refresh.changes),
                "pending_changes": len(refresh.pending),
                "first_refresh": refresh.first_refresh,
            },
            records_processed=columns,
            records_created=refresh.tables_recorded if refresh.first_refresh else 0,
            warnings=warnings,
        )

    @staticmethod
    def _store_profiles(
        recorded: dict[str, Table],
        table: SchemaTable,
        profiles: dict[str, Result[ColumnProfile]],
        warnings: list[str],
    ) -> int:
        """Write profiles onto the recorded columns. Returns the number of failed columns."""
        recorded_table = recorded.get(table.qualified_name)
        if recorded_table is None:
            warnings.append(f"{table.qualified_name}: not in recorded schema")
            return len(table.columns)

        failed = 0
        by_name = {c.column_name: c for c in recorded_table.columns}
        for column_name, result in profiles.items():
            column = by_name.get(column_name)
            if column is None:
                continue
            if not result.success or result.value is None:
                failed += 1
                column.profiled_at = None
                warnings.append(result.error or f"{table.qualified_name}.{column_name}: failed")
                continue
            save_profile(recorded_table, column, result.value)
        return failed
