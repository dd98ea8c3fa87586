"""Column Feature Classifier.

Per table: profile -> route + deterministic rules -> semantic classifier
for residual columns -> cross-column analysis. A failing column never
aborts its siblings; it is logged with the column identified and kept
with whatever was obtainable.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from schemasense.analysis.features.agent import ColumnClassificationAgent
from schemasense.analysis.features.cross_column import (
    detect_self_references,
    pair_currency_columns,
    pair_interval_columns,
)
from schemasense.analysis.features.models import (
    AUTO_APPLY_CONFIDENCE,
    FLAGGED_APPLY_CONFIDENCE,
    ColumnFeatures,
    ColumnProfile,
    LLMColumnClassification,
)
from schemasense.analysis.features.patterns import PatternConfig, get_pattern_config
from schemasense.analysis.features.profiler import profile_table
from schemasense.analysis.features.rules import (
    RuleContext,
    apply_rules,
    classify_path,
    is_reference_candidate,
)
from schemasense.core.errors import RetryExhaustedError, RunCancelledError
from schemasense.core.logging import (
    get_logger,
    record_columns_processed,
    record_operation_timing,
)
from schemasense.core.models import Result
from schemasense.core.models.base import ColumnRole, SemanticType
from schemasense.datasource import DataSource, SchemaTable, TableRef

logger = get_logger(__name__)


@dataclass
class TableClassification:
    """Classifier output for one table."""

    table_name: str
    profiles: dict[str, ColumnProfile] = field(default_factory=dict)
    features: dict[str, ColumnFeatures] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    llm_columns: int = 0
    failed_columns: int = 0


def _apply_llm(feature: ColumnFeatures, answer: LLMColumnClassification) -> None:
    feature.semantic_type = SemanticType.parse(answer.semantic_type)
    try:
        feature.role = ColumnRole(answer.role.strip().lower())
    except ValueError:
        feature.role = ColumnRole.UNKNOWN
    feature.description = answer.description
    feature.confidence = answer.confidence
    feature.reasoning = answer.reasoning
    feature.classified_by = "llm"
    feature.needs_review = answer.confidence < AUTO_APPLY_CONFIDENCE
    if feature.role == ColumnRole.FOREIGN_KEY:
        feature.needs_fk_resolution = True


class ColumnFeatureClassifier:
    """Classifies every column of a table.

    Args:
        datasource: Schema/data source used for profiling and self-reference checks
        patterns: Value patterns (defaults to config/patterns/default.yaml)
        agent: Semantic classifier for residual columns; None keeps them unknown
        sample_size: Reservoir size per column
    """

    def __init__(
        self,
        datasource: DataSource,
        patterns: PatternConfig | None = None,
        agent: ColumnClassificationAgent | None = None,
        sample_size: int = 1000,
    ) -> None:
        self.datasource = datasource
        self.patterns = patterns or get_pattern_config()
        self.agent = agent
        self.sample_size = sample_size

    def classify_table(
        self,
        table: SchemaTable,
        profiles: dict[str, Result[ColumnProfile]] | None = None,
    ) -> TableClassification:
        """Classify all columns of ``table``.

        Args:
            table: Observed table
            profiles: Precomputed profiles; computed here when omitted
        """
        start = time.time()
        output = TableClassification(table_name=table.qualified_name)
        if profiles is None:
            profiles = profile_table(self.datasource, table, self.sample_size)

        for column in table.columns:
            result = profiles.get(column.name)
            if result is not None and result.success and result.value is not None:
                output.profiles[column.name] = result.value

        has_declared_pk = any(c.is_primary_key for c in table.columns)
        residual: list[ColumnProfile] = []

        for column in table.columns:
            feature = ColumnFeatures(table_name=table.qualified_name, column_name=column.name)
            output.features[column.name] = feature

            profile = output.profiles.get(column.name)
            if profile is None:
                result = profiles.get(column.name)
                feature.error = (result.error if result else None) or "profile unavailable"
                feature.needs_review = True
                output.failed_columns += 1
                continue

            try:
                self._classify_column(profile, feature, output.profiles, has_declared_pk)
            except Exception as e:
                logger.warning(
                    "column_analysis_failed",
                    table=table.qualified_name,
                    column=column.name,
                    error=str(e),
                )
                feature.error = str(e)
                feature.needs_review = True
                output.failed_columns += 1
                continue

            if feature.confidence < FLAGGED_APPLY_CONFIDENCE:
                residual.append(profile)

        if residual:
            self._classify_residual(table, residual, output)

        self._cross_column(table, output)

        record_columns_processed(len(table.columns))
        record_operation_timing("classify_table", time.time() - start)
        logger.debug(
            "table_classified",
            table=table.qualified_name,
            columns=len(table.columns),
            llm_columns=output.llm_columns,
            failed_columns=output.failed_columns,
        )
        return output

    def _classify_column(
        self,
        profile: ColumnProfile,
        feature: ColumnFeatures,
        siblings: dict[str, ColumnProfile],
        has_declared_pk: bool,
    ) -> None:
        routing = classify_path(profile, self.patterns)
        feature.classification_path = routing.path

        ctx = RuleContext(
            routing=routing,
            siblings=siblings,
            patterns=self.patterns,
            table_has_declared_pk=has_declared_pk,
        )
        match = apply_rules(profile, ctx)
        if match is not None and match.confidence >= FLAGGED_APPLY_CONFIDENCE:
            feature.apply_rule(match)
            if match.features is not None and match.features.kind == "monetary":
                feature.needs_cross_column_check = True

        if feature.role != ColumnRole.PRIMARY_KEY and is_reference_candidate(profile, routing):
            feature.needs_fk_resolution = True

    def _classify_residual(
        self,
        table: SchemaTable,
        residual: list[ColumnProfile],
        output: TableClassification,
    ) -> None:
        def leave_unresolved(reason: str) -> None:
            for profile in residual:
                feature = output.features[profile.column_name]
                feature.needs_review = True
                if feature.reasoning is None:
                    feature.reasoning = reason

        if self.agent is None or not self.agent.enabled:
            leave_unresolved("no deterministic rule matched; semantic classifier unavailable")
            return

        row_count = residual[0].row_count
        try:
            result = self.agent.classify(table.qualified_name, row_count, residual)
        except (RunCancelledError, RetryExhaustedError):
            raise
        except Exception as e:
            logger.warning("llm_classification_failed", table=table.qualified_name, error=str(e))
            output.warnings.append(f"{table.qualified_name}: semantic classification failed: {e}")
            leave_unresolved("semantic classifier failed")
            return

        if not result.success or result.value is None:
            output.warnings.append(f"{table.qualified_name}: {result.error}")
            leave_unresolved("semantic classifier failed")
            return

        output.warnings.extend(result.warnings)
        for profile in residual:
            feature = output.features[profile.column_name]
            answer = result.value.get(profile.column_name)
            if answer is None:
                feature.needs_review = True
                continue
            was_reference = feature.needs_fk_resolution
            _apply_llm(feature, answer)
            feature.needs_fk_resolution = feature.needs_fk_resolution or was_reference
            output.llm_columns += 1

    def _cross_column(self, table: SchemaTable, output: TableClassification) -> None:
        features = {n: f for n, f in output.features.items() if f.error is None}
        try:
            pair_currency_columns(features)
            pair_interval_columns(features)
            detect_self_references(
                self.datasource,
                TableRef(schema_name=table.schema_name, table_name=table.table_name),
                output.profiles,
                features,
            )
        except Exception as e:
            logger.warning("cross_column_analysis_failed", table=table.qualified_name, error=str(e))
            output.warnings.append(f"{table.qualified_name}: cross-column analysis failed: {e}")
