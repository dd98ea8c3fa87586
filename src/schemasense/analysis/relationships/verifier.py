"""Full-data verification of overlap candidates.

Recomputes the match rate over complete data and derives cardinality
from how many rows share each value on either side. Candidates whose
overlap only covers a small corner of the target are rejected.
"""

from __future__ import annotations

from schemasense.analysis.relationships.models import (
    RelationshipCandidate,
    VerifiedRelationship,
)
from schemasense.analysis.types import TypeCategory, type_category
from schemasense.core.models import Result
from schemasense.core.models.base import Cardinality
from schemasense.datasource import DataSource, JoinAnalysis, TableRef

# Small integer codes (ratings, levels) overlap any integer key
SMALL_INTEGER_MAX_VALUE = 10
SMALL_INTEGER_MIN_TARGET_DISTINCT = 10

# Targets this repetitive are status-like columns, not keys
MIN_TARGET_DISTINCT_RATIO = 0.01

# Above this share of unreferenced target values a full match is coincidental
MAX_REVERSE_ORPHAN_RATE = 0.5

MANY_TO_MANY_CONFIDENCE_FACTOR = 0.95


def infer_cardinality(analysis: JoinAnalysis) -> Cardinality:
    """Cardinality read source -> target.

    A side is "one" when no value repeats on it.
    """
    source_unique = analysis.max_source_repeat <= 1
    target_unique = analysis.max_target_repeat <= 1
    if source_unique and target_unique:
        return Cardinality.ONE_TO_ONE
    if target_unique:
        return Cardinality.MANY_TO_ONE
    if source_unique:
        return Cardinality.ONE_TO_MANY
    return Cardinality.MANY_TO_MANY


def match_rate_percent(analysis: JoinAnalysis) -> float:
    if analysis.source_rows == 0:
        return 0.0
    return round(analysis.matched_rows / analysis.source_rows * 100, 2)


def rejection_reason(candidate: RelationshipCandidate, analysis: JoinAnalysis) -> str | None:
    """Why a candidate must not become a relationship, if anything."""
    if analysis.source_rows == 0:
        return "source column has no values"

    category = type_category(candidate.source.data_type)
    if (
        category in (TypeCategory.INTEGER, TypeCategory.NUMERIC)
        and analysis.max_source_value is not None
        and analysis.max_source_value <= SMALL_INTEGER_MAX_VALUE
        and analysis.target_distinct > SMALL_INTEGER_MIN_TARGET_DISTINCT
    ):
        return (
            f"small integer codes (max {analysis.max_source_value:g}) against a key "
            f"with {analysis.target_distinct} distinct values"
        )

    target_ratio = analysis.target_distinct / analysis.target_rows if analysis.target_rows else 1.0
    if target_ratio < MIN_TARGET_DISTINCT_RATIO:
        return (
            f"target has {analysis.target_distinct} distinct values over "
            f"{analysis.target_rows} rows"
        )

    if analysis.target_distinct:
        reverse_rate = analysis.reverse_orphan_count / analysis.target_distinct
        if reverse_rate > MAX_REVERSE_ORPHAN_RATE:
            return (
                f"only {analysis.target_matched_distinct} of {analysis.target_distinct} "
                "target values are referenced"
            )
    return None


def relationship_confidence(match_rate: float, cardinality: Cardinality) -> float:
    confidence = min(1.0, match_rate / 100)
    if cardinality == Cardinality.MANY_TO_MANY:
        confidence *= MANY_TO_MANY_CONFIDENCE_FACTOR
    return round(confidence, 4)


def verify_candidate(
    datasource: DataSource,
    candidate: RelationshipCandidate,
    min_overlap: float = 0.5,
) -> Result[VerifiedRelationship]:
    """Verify a candidate over complete data.

    Returns a failed result carrying the rejection reason when the full
    match rate falls below ``min_overlap`` or a guard applies.
    """
    source, target = candidate.source, candidate.target
    analysis = datasource.analyze_join(
        TableRef(schema_name=source.schema_name, table_name=source.table_name),
        source.column_name,
        TableRef(schema_name=target.schema_name, table_name=target.table_name),
        target.column_name,
    )

    reason = rejection_reason(candidate, analysis)
    if reason is not None:
        return Result.fail(reason)

    rate = match_rate_percent(analysis)
    if rate < min_overlap * 100:
        return Result.fail(f"full match rate {rate}% below {min_overlap * 100:g}%")

    cardinality = infer_cardinality(analysis)
    return Result.ok(
        VerifiedRelationship(
            source_table=source.qualified_table,
            source_column=source.column_name,
            target_table=target.qualified_table,
            target_column=target.column_name,
            cardinality=cardinality,
            match_rate=rate,
            orphan_count=analysis.orphan_rows,
            sample_match_rate=round(candidate.sample_match_rate, 4),
            confidence=relationship_confidence(rate, cardinality),
            evidence={
                "source_rows": analysis.source_rows,
                "matched_rows": analysis.matched_rows,
                "source_distinct": analysis.source_distinct,
                "max_source_repeat": analysis.max_source_repeat,
                "target_rows": analysis.target_rows,
                "target_distinct": analysis.target_distinct,
                "target_matched_distinct": analysis.target_matched_distinct,
                "reverse_orphan_count": analysis.reverse_orphan_count,
                "max_target_repeat": analysis.max_target_repeat,
                "sampled": candidate.sampled,
                "sample_matched": candidate.matched,
            },
        )
    )
