"""Candidate search by sampled value overlap.

Existence of a candidate is decided from data only: distinct source values
are sampled and looked up in every type-compatible key column.
"""

from __future__ import annotations

from schemasense.analysis.relationships.compatibility import TypeCompatibility
from schemasense.analysis.relationships.models import (
    KeyColumn,
    RelationshipCandidate,
    SourceColumn,
)
from schemasense.core.logging import get_logger
from schemasense.datasource import DataSource, TableRef

logger = get_logger(__name__)


def compatible_targets(
    source: SourceColumn,
    keys: list[KeyColumn],
    compatibility: TypeCompatibility,
) -> list[KeyColumn]:
    """Key columns ``source`` may reference. Same-table keys are kept (self-references)."""
    return [
        key
        for key in keys
        if not (
            key.qualified_table == source.qualified_table
            and key.column_name == source.column_name
        )
        and compatibility.is_compatible(source.data_type, key.data_type)
    ]


def find_candidates(
    datasource: DataSource,
    source: SourceColumn,
    keys: list[KeyColumn],
    compatibility: TypeCompatibility,
    sample_size: int = 500,
    min_overlap: float = 0.5,
) -> list[RelationshipCandidate]:
    """Overlap candidates for one source column, best match first.

    Args:
        datasource: Schema/data source
        source: Column to test
        keys: All key columns of the schema
        compatibility: Type allow-list
        sample_size: Distinct source values sampled
        min_overlap: Minimum fraction of sampled values found in the target
    """
    targets = compatible_targets(source, keys, compatibility)
    if not targets:
        return []

    source_ref = TableRef(schema_name=source.schema_name, table_name=source.table_name)
    values = datasource.sample_distinct_values(source_ref, source.column_name, sample_size)
    if not values:
        return []

    candidates: list[RelationshipCandidate] = []
    for target in targets:
        target_ref = TableRef(schema_name=target.schema_name, table_name=target.table_name)
        overlap = datasource.test_overlap(values, target_ref, target.column_name)
        candidate = RelationshipCandidate(
            source=source,
            target=target,
            sampled=overlap.sampled,
            matched=overlap.matched,
        )
        if candidate.sample_match_rate >= min_overlap:
            candidates.append(candidate)
        else:
            logger.debug(
                "candidate_below_overlap",
                source=str(source),
                target=f"{target.qualified_table}.{target.column_name}",
                match_rate=round(candidate.sample_match_rate, 4),
            )

    candidates.sort(key=lambda c: c.sample_match_rate, reverse=True)
    return candidates
