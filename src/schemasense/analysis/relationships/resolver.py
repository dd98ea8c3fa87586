"""Relationship Resolver.

For every reference-candidate column: overlap search against all
type-compatible keys, full-data verification, then a semantic role label.
Column names never decide existence; they may only label a relationship
after it was verified.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from schemasense.analysis.features.models import ColumnFeatures
from schemasense.analysis.relationships.agent import (
    RelationshipRoleAgent,
    RoleAssignment,
    fallback_role,
)
from schemasense.analysis.relationships.candidates import find_candidates
from schemasense.analysis.relationships.compatibility import TypeCompatibility
from schemasense.analysis.relationships.models import (
    KeyColumn,
    RejectedCandidate,
    ResolverResult,
    SourceColumn,
    VerifiedRelationship,
)
from schemasense.analysis.relationships.verifier import verify_candidate
from schemasense.core.concurrency import run_bounded
from schemasense.core.errors import RetryExhaustedError
from schemasense.core.logging import get_logger, record_operation_timing
from schemasense.core.models.base import ColumnRole, SemanticType
from schemasense.datasource import DataSource, ObservedSchema

if TYPE_CHECKING:
    from schemasense.pipeline.base import CancellationToken

logger = get_logger(__name__)

_IDENTIFIER_TYPES = frozenset(
    {
        SemanticType.UUID_IDENTIFIER,
        SemanticType.SEQUENTIAL_IDENTIFIER,
    }
)

# Table features keyed by qualified table name, then column name
SchemaFeatures = dict[str, dict[str, ColumnFeatures]]


def collect_keys(schema: ObservedSchema, features: SchemaFeatures) -> list[KeyColumn]:
    """Declared primary keys plus columns classified as a table's key."""
    keys: list[KeyColumn] = []
    for table in schema.tables:
        table_features = features.get(table.qualified_name, {})
        for column in table.columns:
            feature = table_features.get(column.name)
            inferred = feature is not None and feature.role == ColumnRole.PRIMARY_KEY
            if column.is_primary_key or inferred:
                keys.append(
                    KeyColumn(
                        schema_name=table.schema_name,
                        table_name=table.table_name,
                        column_name=column.name,
                        data_type=column.data_type,
                        declared=column.is_primary_key,
                    )
                )
    return keys


def collect_sources(schema: ObservedSchema, features: SchemaFeatures) -> list[SourceColumn]:
    """Identifier-typed or reference-flagged columns that are not keys."""
    sources: list[SourceColumn] = []
    for table in schema.tables:
        table_features = features.get(table.qualified_name, {})
        for column in table.columns:
            if column.is_primary_key:
                continue
            feature = table_features.get(column.name)
            if feature is None or feature.role == ColumnRole.PRIMARY_KEY:
                continue
            if feature.needs_fk_resolution or feature.semantic_type in _IDENTIFIER_TYPES:
                sources.append(
                    SourceColumn(
                        schema_name=table.schema_name,
                        table_name=table.table_name,
                        column_name=column.name,
                        data_type=column.data_type,
                    )
                )
    return sources


class RelationshipResolver:
    """Discovers and verifies relationships from data overlap.

    Args:
        datasource: Schema/data source
        compatibility: Type allow-list (defaults from settings)
        role_agent: Semantic role collaborator; None uses the name-derived fallback
        overlap_sample_size: Distinct values sampled per source column
        min_overlap: Minimum match fraction, sampled and full
        max_workers: Bounded pool size for per-column sub-operations
    """

    def __init__(
        self,
        datasource: DataSource,
        compatibility: TypeCompatibility | None = None,
        role_agent: RelationshipRoleAgent | None = None,
        overlap_sample_size: int = 500,
        min_overlap: float = 0.5,
        max_workers: int = 4,
    ) -> None:
        self.datasource = datasource
        self.compatibility = compatibility or TypeCompatibility.from_settings()
        self.role_agent = role_agent
        self.overlap_sample_size = overlap_sample_size
        self.min_overlap = min_overlap
        self.max_workers = max_workers

    def resolve(
        self,
        schema: ObservedSchema,
        features: SchemaFeatures,
        cancel_token: CancellationToken | None = None,
        on_progress: Callable[[int, int], None] | None = None,
    ) -> ResolverResult:
        start = time.time()
        keys = collect_keys(schema, features)
        sources = collect_sources(schema, features)
        result = ResolverResult(sources_tested=len(sources))
        if not keys or not sources:
            return result

        outcomes = run_bounded(
            sources,
            lambda source: self._resolve_source(source, keys),
            max_workers=self.max_workers,
            cancel_token=cancel_token,
            on_complete=on_progress,
        )

        for source, outcome, error in outcomes:
            if error is not None:
                logger.warning(
                    "relationship_resolution_failed",
                    table=source.qualified_table,
                    column=source.column_name,
                    error=str(error),
                )
                result.warnings.append(f"{source}: {error}")
                continue
            if outcome is None:
                continue
            verified, rejected, found = outcome
            result.relationships.extend(verified)
            result.rejected.extend(rejected)
            result.candidates_found += found

        if result.relationships:
            self._assign_roles(schema, result, cancel_token)

        record_operation_timing("resolve_relationships", time.time() - start)
        logger.info(
            "relationships_resolved",
            sources=len(sources),
            candidates=result.candidates_found,
            verified=len(result.relationships),
            rejected=len(result.rejected),
        )
        return result

    def _resolve_source(
        self, source: SourceColumn, keys: list[KeyColumn]
    ) -> tuple[list[VerifiedRelationship], list[RejectedCandidate], int]:
        candidates = find_candidates(
            self.datasource,
            source,
            keys,
            self.compatibility,
            sample_size=self.overlap_sample_size,
            min_overlap=self.min_overlap,
        )

        verified: list[VerifiedRelationship] = []
        rejected: list[RejectedCandidate] = []
        for candidate in candidates:
            outcome = verify_candidate(self.datasource, candidate, self.min_overlap)
            if outcome.success and outcome.value is not None:
                verified.append(outcome.value)
            else:
                rejected.append(
                    RejectedCandidate(
                        source_table=source.qualified_table,
                        source_column=source.column_name,
                        target_table=candidate.target.qualified_table,
                        target_column=candidate.target.column_name,
                        reason=outcome.error or "rejected",
                    )
                )

        # Keep the best-matching target(s) only
        if len(verified) > 1:
            best = max(r.match_rate for r in verified)
            for relationship in verified:
                if relationship.match_rate < best:
                    rejected.append(
                        RejectedCandidate(
                            source_table=relationship.source_table,
                            source_column=relationship.source_column,
                            target_table=relationship.target_table,
                            target_column=relationship.target_column,
                            reason=f"weaker than best match ({relationship.match_rate}% < {best}%)",
                        )
                    )
            verified = [r for r in verified if r.match_rate == best]
        return verified, rejected, len(candidates)

    def _assign_roles(
        self,
        schema: ObservedSchema,
        result: ResolverResult,
        cancel_token: CancellationToken | None,
    ) -> None:
        for relationship in result.relationships:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            assignment = None
            if self.role_agent is not None and self.role_agent.enabled:
                assignment = self._ask_role(schema, relationship, result)
                if assignment is not None:
                    relationship.role_source = "llm"

            if assignment is None:
                assignment = fallback_role(relationship)
                relationship.role_source = "name"

            relationship.role = assignment.role
            relationship.role_description = assignment.description
            relationship.role_confidence = assignment.confidence

    def _ask_role(
        self,
        schema: ObservedSchema,
        relationship: VerifiedRelationship,
        result: ResolverResult,
    ) -> RoleAssignment | None:
        assert self.role_agent is not None
        source_table = schema.get_table(relationship.source_table)
        target_table = schema.get_table(relationship.target_table)
        source_col = source_table.get_column(relationship.source_column) if source_table else None
        target_col = target_table.get_column(relationship.target_column) if target_table else None

        try:
            outcome = self.role_agent.assign_role(
                relationship,
                source_type=source_col.data_type if source_col else "unknown",
                target_type=target_col.data_type if target_col else "unknown",
                source_columns=[c.name for c in source_table.columns] if source_table else [],
                target_columns=[c.name for c in target_table.columns] if target_table else [],
            )
        except RetryExhaustedError as e:
            result.warnings.append(f"role for {relationship.key}: {e}")
            return None

        if not outcome.success or outcome.value is None:
            result.warnings.append(f"role for {relationship.key}: {outcome.error}")
            return None
        return outcome.value
