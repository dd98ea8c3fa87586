"""Business terminology discovery.

An optional enhancement: the semantic classifier proposes business terms
from the extracted entities and relationships. Terms never feed back into
classification or relationship existence.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, ValidationError

from schemasense.core.logging import get_logger
from schemasense.core.models import Result
from schemasense.llm.features._base import LLMFeature

if TYPE_CHECKING:
    from schemasense.core.retry import RetryPolicy
    from schemasense.llm.config import LLMConfig
    from schemasense.llm.prompts import PromptRenderer
    from schemasense.llm.providers.base import LLMProvider

logger = get_logger(__name__)


class TermSuggestion(BaseModel):
    term: str
    definition: str
    tables: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class TerminologyAgent(LLMFeature):
    """Suggests business terms for an ontology."""

    def __init__(
        self,
        config: LLMConfig,
        provider: LLMProvider,
        prompt_renderer: PromptRenderer,
        retry_policy: RetryPolicy | None = None,
        max_terms: int = 20,
    ) -> None:
        super().__init__(config, provider, prompt_renderer, retry_policy)
        self.max_terms = max_terms

    @property
    def enabled(self) -> bool:
        return self.config.features.terminology.enabled

    def discover(
        self,
        entities: list[dict[str, Any]],
        relationships: list[dict[str, Any]],
    ) -> Result[list[TermSuggestion]]:
        """Ask for up to ``max_terms`` terms.

        Malformed entries are dropped with a warning rather than failing the
        whole answer.
        """
        if not self.enabled:
            return Result.fail("Terminology discovery is disabled in config")
        if not entities:
            return Result.ok([])

        context = {
            "entities_json": json.dumps(entities, indent=2),
            "relationships_json": json.dumps(relationships, indent=2),
            "max_terms": self.max_terms,
        }
        result = self._call_llm(
            "terminology",
            "terminology_discovery",
            context,
            self.config.features.terminology.model_tier,
        )
        if not result.success or result.value is None:
            return Result.fail(result.error or "LLM call failed")

        parsed = self._parse_json(result.value.content)
        if not parsed.success or parsed.value is None:
            return Result.fail(parsed.error or "Unparseable response")

        raw_terms = parsed.value.get("terms", [])
        if not isinstance(raw_terms, list):
            return Result.fail("Expected 'terms' to be a list")

        terms: list[TermSuggestion] = []
        warnings: list[str] = []
        seen: set[str] = set()
        for item in raw_terms[: self.max_terms]:
            if not isinstance(item, dict):
                warnings.append(f"Ignored non-object term entry: {item!r}")
                continue
            try:
                item["confidence"] = min(1.0, max(0.0, float(item.get("confidence", 0.0))))
                term = TermSuggestion.model_validate(item)
            except (TypeError, ValueError, ValidationError) as e:
                warnings.append(f"Ignored invalid term entry: {e}")
                continue
            key = term.term.strip().lower()
            if not key or key in seen:
                continue
            seen.add(key)
            terms.append(term)

        if warnings:
            logger.debug("terminology_entries_dropped", count=len(warnings))
        return Result.ok(terms, warnings)
