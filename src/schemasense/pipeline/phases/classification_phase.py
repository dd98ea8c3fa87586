"""Classification step.

Assigns a role and semantic type to every recorded column from its stored
profile. Tables are classified through the bounded worker pool; results
are written from the step's own thread, together with the clarification
questions and new enum values the fresh classification raises.
"""

from __future__ import annotations

from schemasense.analysis.features import ColumnFeatureClassifier, TableClassification
from schemasense.analysis.features.store import load_features, load_profiles, save_table_features
from schemasense.core.concurrency import run_bounded
from schemasense.core.logging import get_logger, record_tables_processed
from schemasense.datasource import SchemaTable
from schemasense.ontology.changes import (
    DataChangeDetector,
    load_observed_schema,
    load_recorded_tables,
)
from schemasense.ontology.questions import generate_questions, record_questions
from schemasense.pipeline.base import PhaseContext, PhaseResult
from schemasense.pipeline.phases.base import BasePhase
from schemasense.storage.models import Ontology

logger = get_logger(__name__)


class ClassificationPhase(BasePhase):
    """Column roles and semantic types."""

    @property
    def name(self) -> str:
        return "classification"

    @property
    def description(self) -> str:
        return "Column roles and semantic types"

    @property
    def dependencies(self) -> list[str]:
        return ["profiling"]

    @property
    def outputs(self) -> list[str]:
        return [
            "classified_columns",
            "rule_columns",
            "llm_columns",
            "needs_review",
            "questions",
            "data_changes",
        ]

    @property
    def required_collaborators(self) -> list[str]:
        return ["datasource"]

    def should_skip(self, ctx: PhaseContext) -> str | None:
        if not load_recorded_tables(ctx.session, ctx.ontology_id, selected_only=True):
            return "No tables recorded for ontology"
        return None

    def _run(self, ctx: PhaseContext) -> PhaseResult:
        datasource = ctx.collaborators.datasource
        assert datasource is not None

        schema = load_observed_schema(ctx.session, ctx.ontology_id)
        profiles = load_profiles(ctx.session, ctx.ontology_id)
        classifier = ColumnFeatureClassifier(
            datasource,
            agent=ctx.collaborators.classification_agent,
            sample_size=int(ctx.config.get("sample_size", ctx.settings.sample_size)),
        )

        def classify(table: SchemaTable) -> TableClassification:
            return classifier.classify_table(table, profiles.get(table.qualified_name, {}))

        def on_complete(done: int, total: int) -> None:
            ctx.report(done, total, f"Classified {done}/{total} tables")

        total = len(schema.tables)
        ctx.report(0, total, "Classifying columns")
        outcomes = run_bounded(
            schema.tables,
            classify,
            max_workers=int(ctx.config.get("max_workers", ctx.settings.max_workers)),
            cancel_token=ctx.cancel_token,
            on_complete=on_complete,
        )

        recorded = load_recorded_tables(ctx.session, ctx.ontology_id, selected_only=True)
        # Classifier output of the previous run, before it is replaced
        previous = load_features(ctx.session, ctx.ontology_id)
        ontology = ctx.session.get(Ontology, ctx.ontology_id)
        if ontology is None:
            return PhaseResult.failed(f"Ontology not found: {ctx.ontology_id}")
        detector = DataChangeDetector(ctx.session, ontology)

        warnings: list[str] = []
        counts = {
            "classified": 0,
            "rule": 0,
            "llm": 0,
            "review": 0,
            "failed": 0,
            "questions": 0,
            "data_changes": 0,
        }
        for table, output, error in outcomes:
            if error is not None or output is None:
                logger.warning(
                    "table_classification_failed", table=table.qualified_name, error=str(error)
                )
                warnings.append(f"{table.qualified_name}: classification failed: {error}")
                continue

            warnings.extend(output.warnings)
            save_table_features(
                ctx.session,
                ctx.ontology_id,
                recorded[table.qualified_name],
                output.features,
                run_id=ctx.run_id,
            )
            name = table.qualified_name
            table_profiles = {
                column: result.value
                for column, result in profiles.get(name, {}).items()
                if result.success and result.value is not None
            }
            drafts = generate_questions(
                name, table_profiles, output.features, previous.get(name, {})
            )
            counts["questions"] += record_questions(
                ctx.session, ctx.ontology_id, ctx.project_id, name, drafts, run_id=ctx.run_id
            )
            counts["data_changes"] += len(
                detector.enum_values(name, previous.get(name, {}), output.features)
            )
            for feature in output.features.values():
                if feature.error is not None:
                    counts["failed"] += 1
                    continue
                counts["classified"] += 1
                counts["rule"] += feature.classified_by == "rule"
                counts["llm"] += feature.classified_by == "llm"
                counts["review"] += feature.needs_review

        record_tables_processed(total)
        logger.info(
            "classification_complete",
            tables=total,
            classified=counts["classified"],
            rule_columns=counts["rule"],
            llm_columns=counts["llm"],
            needs_review=counts["review"],
            failed=counts["failed"],
            questions=counts["questions"],
            data_changes=counts["data_changes"],
        )
        return PhaseResult.success(
            outputs={
                "classified_columns": counts["classified"],
                "rule_columns": counts["rule"],
                "llm_columns": counts["llm"],
                "needs_review": counts["review"],
                "failed_columns": counts["failed"],
                "questions": counts["questions"],
                "data_changes": counts["data_changes"],
            },
            records_processed=counts["classified"] + counts["failed"],
            warnings=warnings,
        )
