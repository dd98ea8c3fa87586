"""Anthropic Claude provider implementation."""

import os
from typing import Any, cast

import anthropic
from anthropic.types import MessageParam
from pydantic import BaseModel

from schemasense.core.errors import ConfigurationError, TransientError
from schemasense.core.models.base import Result
from schemasense.llm.providers.base import LLMProvider, LLMRequest, LLMResponse

_JSON_SYSTEM_PROMPT = (
    "Respond with valid JSON only. "
    "Do not use markdown code blocks or any other formatting. "
    "Your entire response should be parseable as JSON."
)


class AnthropicConfig(BaseModel):
    """Configuration for Anthropic provider."""

    api_key_env: str = "ANTHROPIC_API_KEY"
    default_model: str
    models: dict[str, str] = {}
    timeout_seconds: float = 60.0


class AnthropicProvider(LLMProvider):
    """Anthropic Claude provider implementation.

    Uses the synchronous Anthropic client; the extraction steps call it from
    worker threads.
    """

    def __init__(self, config: AnthropicConfig):
        """Initialize Anthropic provider.

        Raises:
            ConfigurationError: If API key environment variable not set
        """
        self.config = config

        api_key = os.getenv(config.api_key_env)
        if not api_key:
            raise ConfigurationError(
                f"Missing environment variable: {config.api_key_env}. "
                f"Set your Anthropic API key in .env file."
            )

        # Retries are owned by RetryPolicy, not the client
        self.client = anthropic.Anthropic(
            api_key=api_key, max_retries=0, timeout=config.timeout_seconds
        )

    def complete(self, request: LLMRequest) -> Result[LLMResponse]:
        """Send completion request to Claude API.

        Raises:
            TransientError: rate limit, overload, 5xx or connection failure
        """
        model = request.model or self.config.default_model
        messages: list[MessageParam] = [
            cast(MessageParam, {"role": "user", "content": request.prompt})
        ]

        system_parts = [request.system] if request.system else []
        if request.response_format == "json":
            system_parts.append(_JSON_SYSTEM_PROMPT)

        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": messages,
        }
        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)

        try:
            response = self.client.messages.create(**kwargs)
        except anthropic.APIStatusError as e:
            if e.status_code == 429 or e.status_code >= 500:
                raise TransientError(f"Anthropic API error: {e}", status_code=e.status_code) from e
            return Result.fail(f"Anthropic API error: {e}")
        except (anthropic.APIConnectionError, anthropic.APITimeoutError) as e:
            raise TransientError(f"Anthropic connection error: {e}") from e
        except anthropic.APIError as e:
            return Result.fail(f"Anthropic API error: {e}")

        content = "".join(block.text for block in response.content if block.type == "text")
        if not content:
            return Result.fail(
                f"No text content in response. Content blocks: {[b.type for b in response.content]}"
            )

        return Result.ok(
            LLMResponse(
                content=content,
                model=response.model,
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            )
        )

    def get_model_for_tier(self, tier: str) -> str:
        """Get Claude model name for tier."""
        return self.config.models.get(tier, self.config.default_model)
