"""Finalization step.

Retires merge-managed records that no run contributing to this build saw
(inferred ones are deleted, curated ones flagged stale) and marks the
ontology ready.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import select

from schemasense.analysis.relationships.db_models import Relationship
from schemasense.core.logging import get_logger
from schemasense.ontology.db_models import ColumnAnnotation, Entity, Fact
from schemasense.ontology.merge import MergeEngine, RetireOutcome
from schemasense.pipeline.base import PhaseContext, PhaseResult
from schemasense.pipeline.phases.base import BasePhase
from schemasense.storage.base import ProvenanceTracked
from schemasense.storage.models import Ontology

logger = get_logger(__name__)


class FinalizationPhase(BasePhase):
    """Retire unseen records and mark the ontology ready."""

    @property
    def name(self) -> str:
        return "finalization"

    @property
    def description(self) -> str:
        return "Retire unseen records and mark the ontology ready"

    @property
    def dependencies(self) -> list[str]:
        return ["enrichment"]

    @property
    def outputs(self) -> list[str]:
        return ["retired", "flagged_stale"]

    def _run(self, ctx: PhaseContext) -> PhaseResult:
        models: list[type[ProvenanceTracked]] = [Entity, ColumnAnnotation, Relationship]
        # Facts are only refreshed when terminology actually ran
        if "terminology" in ctx.previous_outputs:
            models.append(Fact)

        seen_run_ids = ctx.seen_run_ids or [ctx.run_id]
        merge = MergeEngine(ctx.session, project_id=ctx.project_id)
        total = RetireOutcome()
        for index, model in enumerate(models, start=1):
            outcome = merge.retire_unseen(model, ctx.ontology_id, seen_run_ids)
            total.deleted += outcome.deleted
            total.flagged_stale += outcome.flagged_stale
            ctx.report(index, len(models), f"Retired unseen {model.__name__} records")

        ontology = ctx.session.execute(
            select(Ontology).where(Ontology.ontology_id == ctx.ontology_id)
        ).scalar_one()
        ontology.status = "ready"
        ontology.last_built_at = datetime.now(UTC)
        ctx.session.flush()

        logger.info(
            "ontology_finalized",
            retired=total.deleted,
            flagged_stale=total.flagged_stale,
        )
        return PhaseResult.success(
            outputs={"retired": total.deleted, "flagged_stale": total.flagged_stale},
            records_processed=total.deleted + total.flagged_stale,
        )
