"""Relationships step.

Runs the resolver over the stored column features and merges every
verified relationship with inferred provenance. Source columns of verified
relationships are promoted to foreign keys in their feature records.
Once an ontology has been built, a newly verified relationship is also
proposed for review, and relationships a reviewer rejected stay out.
"""

from __future__ import annotations

from schemasense.analysis.features.store import (
    load_feature_records,
    load_features,
    promote_foreign_key,
)
from schemasense.analysis.relationships import RelationshipResolver, TypeCompatibility
from schemasense.analysis.relationships.db_models import Relationship
from schemasense.core.logging import get_logger
from schemasense.core.models.base import Provenance
from schemasense.ontology.changes import DataChangeDetector, load_observed_schema
from schemasense.ontology.merge import MergeAction, MergeEngine
from schemasense.ontology.questions import withdraw_enum_question
from schemasense.pipeline.base import PhaseContext, PhaseResult
from schemasense.pipeline.phases.base import BasePhase
from schemasense.storage.models import Ontology

logger = get_logger(__name__)


class RelationshipsPhase(BasePhase):
    """Relationship discovery from value overlap."""

    @property
    def name(self) -> str:
        return "relationships"

    @property
    def description(self) -> str:
        return "Relationship discovery from value overlap"

    @property
    def dependencies(self) -> list[str]:
        return ["classification"]

    @property
    def outputs(self) -> list[str]:
        return ["relationships", "candidates", "rejected", "proposed"]

    @property
    def required_collaborators(self) -> list[str]:
        return ["datasource"]

    def _run(self, ctx: PhaseContext) -> PhaseResult:
        datasource = ctx.collaborators.datasource
        assert datasource is not None

        schema = load_observed_schema(ctx.session, ctx.ontology_id)
        features = load_features(ctx.session, ctx.ontology_id)

        resolver = RelationshipResolver(
            datasource,
            compatibility=TypeCompatibility.from_settings(ctx.settings),
            role_agent=ctx.collaborators.role_agent,
            overlap_sample_size=int(
                ctx.config.get("overlap_sample_size", ctx.settings.overlap_sample_size)
            ),
            min_overlap=float(ctx.config.get("min_overlap", ctx.settings.min_overlap)),
            max_workers=int(ctx.config.get("max_workers", ctx.settings.max_workers)),
        )

        def on_progress(done: int, total: int) -> None:
            ctx.report(done, total, f"Tested {done}/{total} source columns")

        result = resolver.resolve(schema, features, ctx.cancel_token, on_progress=on_progress)

        ontology = ctx.session.get(Ontology, ctx.ontology_id)
        if ontology is None:
            return PhaseResult.failed(f"Ontology not found: {ctx.ontology_id}")
        detector = DataChangeDetector(ctx.session, ontology)
        declined = detector.rejected_relationships()

        merge = MergeEngine(ctx.session, project_id=ctx.project_id)
        feature_records = load_feature_records(ctx.session, ctx.ontology_id)
        created = 0
        proposed = 0
        accepted = 0
        for relationship in result.relationships:
            if relationship.key in declined:
                logger.debug("relationship_declined", key=relationship.key)
                continue
            accepted += 1
            outcome = merge.upsert(
                Relationship,
                {
                    "ontology_id": ctx.ontology_id,
                    "source_table": relationship.source_table,
                    "source_column": relationship.source_column,
                    "target_table": relationship.target_table,
                    "target_column": relationship.target_column,
                },
                {
                    "cardinality": relationship.cardinality.value,
                    "match_rate": relationship.match_rate,
                    "orphan_count": relationship.orphan_count,
                    "confidence": relationship.confidence,
                    "role": relationship.role,
                    "role_description": relationship.role_description,
                    "role_confidence": relationship.role_confidence,
                    "role_source": relationship.role_source,
                    "evidence": relationship.evidence,
                },
                Provenance.INFERRED,
                run_id=ctx.run_id,
            )
            if outcome.action == MergeAction.CREATED:
                created += 1
                proposed += detector.relationship(relationship) is not None

            found = feature_records.get((relationship.source_table, relationship.source_column))
            if found is not None:
                promote_foreign_key(
                    found[0],
                    relationship.target_table,
                    relationship.target_column,
                    relationship.confidence,
                )
            withdraw_enum_question(
                ctx.session, ctx.ontology_id, relationship.source_table, relationship.source_column
            )
        ctx.session.flush()

        return PhaseResult.success(
            outputs={
                "relationships": accepted,
                "candidates": result.candidates_found,
                "rejected": len(result.rejected),
                "sources_tested": result.sources_tested,
                "proposed": proposed,
            },
            records_processed=result.sources_tested,
            records_created=created,
            warnings=result.warnings,
        )
