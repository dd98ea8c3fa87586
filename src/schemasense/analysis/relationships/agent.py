"""Semantic role labelling for verified relationships.

Runs only on relationships already verified from data. The label
annotates; it never changes existence, cardinality or match rate.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, ValidationError

from schemasense.analysis.relationships.models import VerifiedRelationship
from schemasense.core.models import Result
from schemasense.llm.features._base import LLMFeature

if TYPE_CHECKING:
    from schemasense.core.retry import RetryPolicy
    from schemasense.llm.config import LLMConfig
    from schemasense.llm.prompts import PromptRenderer
    from schemasense.llm.providers.base import LLMProvider

_IDENTIFIER_SUFFIX_RE = re.compile(r"(_id|_uuid|_key|_fk|id)$", re.IGNORECASE)

# Confidence of a role derived from the column name alone
NAME_ROLE_CONFIDENCE = 0.5


class RoleAssignment(BaseModel):
    role: str
    description: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


def role_from_column_name(column_name: str, target_table: str) -> str:
    """``host_id`` -> ``host``; falls back to the target table name."""
    stripped = _IDENTIFIER_SUFFIX_RE.sub("", column_name).strip("_")
    if stripped:
        return stripped.lower()
    return target_table.split(".")[-1].lower()


def fallback_role(relationship: VerifiedRelationship) -> RoleAssignment:
    return RoleAssignment(
        role=role_from_column_name(relationship.source_column, relationship.target_table),
        description=None,
        confidence=NAME_ROLE_CONFIDENCE,
    )


class RelationshipRoleAgent(LLMFeature):
    """Asks the semantic classifier for a role label."""

    def __init__(
        self,
        config: LLMConfig,
        provider: LLMProvider,
        prompt_renderer: PromptRenderer,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        super().__init__(config, provider, prompt_renderer, retry_policy)

    @property
    def enabled(self) -> bool:
        return self.config.features.relationship_roles.enabled

    def assign_role(
        self,
        relationship: VerifiedRelationship,
        source_type: str,
        target_type: str,
        source_columns: list[str],
        target_columns: list[str],
    ) -> Result[RoleAssignment]:
        if not self.enabled:
            return Result.fail("Relationship roles are disabled in config")

        context = {
            "source_table": relationship.source_table,
            "source_column": relationship.source_column,
            "source_type": source_type,
            "target_table": relationship.target_table,
            "target_column": relationship.target_column,
            "target_type": target_type,
            "match_rate": relationship.match_rate,
            "orphan_count": relationship.orphan_count,
            "cardinality": relationship.cardinality.value,
            "source_columns": ", ".join(source_columns),
            "target_columns": ", ".join(target_columns),
        }
        result = self._call_llm(
            "relationship_roles",
            "relationship_role",
            context,
            self.config.features.relationship_roles.model_tier,
        )
        if not result.success or result.value is None:
            return Result.fail(result.error or "LLM call failed")

        parsed = self._parse_json(result.value.content)
        if not parsed.success or parsed.value is None:
            return Result.fail(parsed.error or "Unparseable response")

        data = parsed.value
        try:
            data["confidence"] = min(1.0, max(0.0, float(data.get("confidence", 0.0))))
            assignment = RoleAssignment.model_validate(data)
        except (TypeError, ValueError, ValidationError) as e:
            return Result.fail(f"Invalid role response: {e}")
        if not assignment.role.strip():
            return Result.fail("Empty role in response")
        return Result.ok(assignment)
