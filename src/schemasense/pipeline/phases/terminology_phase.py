"""Terminology step.

Optional enhancement: asks the semantic classifier for business terms and
merges them as facts. The orchestrator degrades the run instead of failing
it when this step fails or is skipped.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select

from schemasense.analysis.relationships.db_models import Relationship
from schemasense.core.logging import get_logger
from schemasense.core.models.base import Provenance
from schemasense.ontology.db_models import ColumnAnnotation, Entity, Fact
from schemasense.ontology.merge import MergeAction, MergeEngine
from schemasense.pipeline.base import PhaseContext, PhaseResult
from schemasense.pipeline.phases.base import BasePhase

logger = get_logger(__name__)


class TerminologyPhase(BasePhase):
    """Business terminology discovery."""

    @property
    def name(self) -> str:
        return "terminology"

    @property
    def description(self) -> str:
        return "Business terminology discovery"

    @property
    def dependencies(self) -> list[str]:
        return ["enrichment"]

    @property
    def outputs(self) -> list[str]:
        return ["facts"]

    def should_skip(self, ctx: PhaseContext) -> str | None:
        agent = ctx.collaborators.terminology_agent
        if agent is None or not agent.enabled:
            return "Terminology discovery unavailable (no semantic classifier)"
        return None

    def _run(self, ctx: PhaseContext) -> PhaseResult:
        agent = ctx.collaborators.terminology_agent
        assert agent is not None

        entities = self._entities(ctx)
        relationships = self._relationships(ctx)
        ctx.report(0, 1, "Discovering terminology")

        result = agent.discover(entities, relationships)
        if not result.success or result.value is None:
            return PhaseResult.failed(result.error or "Terminology discovery failed")

        merge = MergeEngine(ctx.session, project_id=ctx.project_id)
        created = 0
        for term in result.value:
            outcome = merge.upsert(
                Fact,
                {"ontology_id": ctx.ontology_id, "term": term.term.strip()},
                {
                    "definition": term.definition,
                    "related_tables": term.tables,
                    "confidence": term.confidence,
                },
                Provenance.INFERRED,
                run_id=ctx.run_id,
            )
            created += outcome.action == MergeAction.CREATED
        ctx.report(1, 1, f"{len(result.value)} terms")

        logger.info("terminology_complete", terms=len(result.value), created=created)
        return PhaseResult.success(
            outputs={"facts": len(result.value)},
            records_processed=len(result.value),
            records_created=created,
            warnings=result.warnings,
        )

    @staticmethod
    def _entities(ctx: PhaseContext) -> list[dict[str, Any]]:
        annotations: dict[str, list[dict[str, Any]]] = {}
        stmt = select(ColumnAnnotation).where(ColumnAnnotation.ontology_id == ctx.ontology_id)
        for annotation in ctx.session.execute(stmt).scalars().all():
            annotations.setdefault(annotation.table_name, []).append(
                {
                    "name": annotation.column_name,
                    "semantic_type": annotation.semantic_type,
                    "role": annotation.role,
                }
            )

        stmt_entities = (
            select(Entity).where(Entity.ontology_id == ctx.ontology_id).order_by(Entity.name)
        )
        return [
            {
                "name": entity.name,
                "table": entity.primary_table,
                "description": entity.description,
                "columns": annotations.get(entity.primary_table, []),
            }
            for entity in ctx.session.execute(stmt_entities).scalars().all()
        ]

    @staticmethod
    def _relationships(ctx: PhaseContext) -> list[dict[str, Any]]:
        stmt = select(Relationship).where(Relationship.ontology_id == ctx.ontology_id)
        return [
            {
                "from": f"{r.source_table}.{r.source_column}",
                "to": f"{r.target_table}.{r.target_column}",
                "cardinality": r.cardinality,
                "role": r.role,
            }
            for r in ctx.session.execute(stmt).scalars().all()
        ]
