"""Enrichment step.

Merges one entity per recorded table and one annotation per classified
column into the ontology with inferred provenance. Curated records are
never overwritten; the merge engine only notes that this run saw them.
"""

from __future__ import annotations

from typing import Any

from schemasense.analysis.features.models import EnumFeatures, FeatureBagHolder
from schemasense.analysis.features.store import load_feature_records
from schemasense.core.logging import get_logger
from schemasense.core.models.base import Provenance
from schemasense.ontology.changes import load_recorded_tables
from schemasense.ontology.db_models import ColumnAnnotation, Entity
from schemasense.ontology.entities import to_entity_name
from schemasense.ontology.merge import MergeAction, MergeEngine
from schemasense.pipeline.base import PhaseContext, PhaseResult
from schemasense.pipeline.phases.base import BasePhase

logger = get_logger(__name__)


def _enum_values(features: dict[str, Any] | None) -> list[str] | None:
    bag = FeatureBagHolder.model_validate({"bag": features}).bag
    if not isinstance(bag, EnumFeatures):
        return None
    return [v.value for v in bag.values]


class EnrichmentPhase(BasePhase):
    """Entities and column annotations."""

    @property
    def name(self) -> str:
        return "enrichment"

    @property
    def description(self) -> str:
        return "Entities and column annotations"

    @property
    def dependencies(self) -> list[str]:
        return ["relationships"]

    @property
    def outputs(self) -> list[str]:
        return ["entities", "annotations"]

    def _run(self, ctx: PhaseContext) -> PhaseResult:
        merge = MergeEngine(ctx.session, project_id=ctx.project_id)
        actions: dict[MergeAction, int] = dict.fromkeys(MergeAction, 0)

        tables = load_recorded_tables(ctx.session, ctx.ontology_id, selected_only=True)
        for qualified_name, table in sorted(tables.items()):
            outcome = merge.upsert(
                Entity,
                {"ontology_id": ctx.ontology_id, "primary_table": qualified_name},
                {"name": to_entity_name(qualified_name), "row_count": table.row_count},
                Provenance.INFERRED,
                run_id=ctx.run_id,
            )
            actions[outcome.action] += 1
        ctx.report(1, 2, "Entities merged")
        ctx.check_cancelled()

        records = load_feature_records(ctx.session, ctx.ontology_id)
        for (table_name, column_name), (record, _table, column) in sorted(records.items()):
            outcome = merge.upsert(
                ColumnAnnotation,
                {
                    "ontology_id": ctx.ontology_id,
                    "table_name": table_name,
                    "column_name": column_name,
                },
                {
                    "data_type": column.data_type,
                    "semantic_type": record.semantic_type,
                    "role": record.role,
                    "description": record.description,
                    "confidence": record.confidence,
                    "needs_review": record.needs_review,
                    "enum_values": _enum_values(record.features),
                },
                Provenance.INFERRED,
                run_id=ctx.run_id,
            )
            actions[outcome.action] += 1
        ctx.report(2, 2, "Annotations merged")

        logger.info(
            "enrichment_complete",
            entities=len(tables),
            annotations=len(records),
            **{action.value: count for action, count in actions.items()},
        )
        return PhaseResult.success(
            outputs={
                "entities": len(tables),
                "annotations": len(records),
                "created": actions[MergeAction.CREATED],
                "updated": actions[MergeAction.UPDATED],
                "skipped": actions[MergeAction.SKIPPED],
            },
            records_processed=len(tables) + len(records),
            records_created=actions[MergeAction.CREATED],
        )
