"""Base class for LLM features with common functionality."""

from __future__ import annotations

import json
import re
from typing import Any

from schemasense.core.logging import get_logger, increment_llm_call
from schemasense.core.models import Result
from schemasense.core.retry import RetryPolicy
from schemasense.llm.config import LLMConfig
from schemasense.llm.prompts import PromptRenderer
from schemasense.llm.providers.base import LLMProvider, LLMRequest, LLMResponse

logger = get_logger(__name__)

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


class LLMFeature:
    """Base class for LLM features.

    Provides common functionality:
    - Prompt rendering
    - LLM calling through the shared retry policy
    - Token accounting in the current step metrics
    - JSON response parsing
    """

    def __init__(
        self,
        config: LLMConfig,
        provider: LLMProvider,
        prompt_renderer: PromptRenderer,
        retry_policy: RetryPolicy | None = None,
    ):
        self.config = config
        self.provider = provider
        self.renderer = prompt_renderer
        self.retry_policy = retry_policy or RetryPolicy.from_settings()

    def _call_llm(
        self,
        feature_name: str,
        template_name: str,
        context: dict[str, Any],
        model_tier: str,
    ) -> Result[LLMResponse]:
        """Render a template and call the provider.

        Transient provider errors are retried; ``RetryExhaustedError``
        propagates to the caller.
        """
        try:
            system, prompt, temperature = self.renderer.render_split(template_name, context)
        except (FileNotFoundError, KeyError, ValueError) as e:
            return Result.fail(f"Failed to render prompt '{template_name}': {e}")

        request = LLMRequest(
            prompt=prompt,
            system=system,
            max_tokens=self.config.limits.max_output_tokens_per_request,
            temperature=temperature,
            model=self.provider.get_model_for_tier(model_tier),
            response_format="json",
        )

        result = self.retry_policy.call(
            lambda: self.provider.complete(request), operation=f"llm:{feature_name}"
        )
        if result.success and result.value is not None:
            increment_llm_call(result.value.input_tokens, result.value.output_tokens)
        else:
            logger.warning("llm_call_failed", feature=feature_name, error=result.error)
        return result

    @staticmethod
    def _parse_json(content: str) -> Result[dict[str, Any]]:
        """Parse a JSON object out of a model response."""
        text = _CODE_FENCE_RE.sub("", content.strip())
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            return Result.fail(f"Failed to parse LLM response as JSON: {e}")
        if not isinstance(data, dict):
            return Result.fail(f"Expected a JSON object, got {type(data).__name__}")
        return Result.ok(data)
