"""Semantic column classifier backed by an LLM.

Only residual columns (no deterministic rule reached 0.7) are sent. One
prompt per table, split into chunks of ``max_columns_per_prompt``.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from schemasense.analysis.features.models import ColumnProfile, LLMColumnClassification
from schemasense.core.logging import get_logger
from schemasense.core.models import Result
from schemasense.core.models.base import SemanticType
from schemasense.llm.features._base import LLMFeature

if TYPE_CHECKING:
    from schemasense.core.retry import RetryPolicy
    from schemasense.llm.config import LLMConfig
    from schemasense.llm.prompts import PromptRenderer
    from schemasense.llm.providers.base import LLMProvider

logger = get_logger(__name__)


class ColumnClassificationAgent(LLMFeature):
    """Classifies residual columns of one table in a single bounded prompt."""

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
        return self.config.features.column_classification.enabled

    def _column_payload(self, profile: ColumnProfile) -> dict[str, Any]:
        max_samples = self.config.limits.max_sample_values
        return {
            "column_name": profile.column_name,
            "data_type": profile.data_type,
            "null_rate": round(profile.null_rate, 4),
            "distinct_count": profile.distinct_count,
            "distinct_ratio": round(profile.distinct_ratio, 4),
            "min_length": profile.min_length,
            "max_length": profile.max_length,
            "min_value": profile.min_value,
            "max_value": profile.max_value,
            "sample_values": profile.sample_values[:max_samples],
        }

    def classify(
        self,
        table_name: str,
        row_count: int | None,
        profiles: list[ColumnProfile],
    ) -> Result[dict[str, LLMColumnClassification]]:
        """Classify columns, keyed by column name.

        Columns the model did not answer for are absent from the result.
        Confidence is clamped into [0, 1].
        """
        if not profiles:
            return Result.ok({})
        if not self.enabled:
            return Result.fail("Column classification is disabled in config")

        feature = self.config.features.column_classification
        chunk_size = max(1, self.config.limits.max_columns_per_prompt)
        requested = {p.column_name for p in profiles}
        classified: dict[str, LLMColumnClassification] = {}
        warnings: list[str] = []

        for start in range(0, len(profiles), chunk_size):
            chunk = profiles[start : start + chunk_size]
            context = {
                "table_name": table_name,
                "row_count": row_count if row_count is not None else "unknown",
                "columns_json": json.dumps([self._column_payload(p) for p in chunk], indent=2),
                "semantic_types": ", ".join(t.value for t in SemanticType),
            }
            result = self._call_llm(
                "column_classification", "column_classification", context, feature.model_tier
            )
            if not result.success or result.value is None:
                return Result.fail(result.error or "LLM call failed")

            parsed = self._parse_json(result.value.content)
            if not parsed.success or parsed.value is None:
                return Result.fail(parsed.error or "Unparseable response")

            for item in parsed.value.get("columns", []) or []:
                if not isinstance(item, dict):
                    continue
                if "confidence" in item:
                    try:
                        item["confidence"] = min(1.0, max(0.0, float(item["confidence"])))
                    except (TypeError, ValueError):
                        item["confidence"] = 0.0
                try:
                    classification = LLMColumnClassification.model_validate(item)
                except ValidationError as e:
                    warnings.append(f"Invalid classification entry: {e.error_count()} errors")
                    continue
                if classification.column_name not in requested:
                    warnings.append(f"Ignoring unrequested column {classification.column_name}")
                    continue
                classified[classification.column_name] = classification

        missing = requested - classified.keys()
        if missing:
            logger.info(
                "llm_classification_incomplete",
                table=table_name,
                missing=sorted(missing),
            )
        return Result.ok(classified, warnings)
