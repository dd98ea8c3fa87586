"""LLM provider implementations and factory."""

from typing import Any

from schemasense.core.errors import ConfigurationError
from schemasense.llm.providers.base import LLMProvider, LLMRequest, LLMResponse

__all__ = ["LLMProvider", "LLMRequest", "LLMResponse", "create_provider"]


def create_provider(provider_name: str, provider_config: dict[str, Any]) -> LLMProvider:
    """Create LLM provider based on configuration.

    Args:
        provider_name: Provider name ('anthropic')
        provider_config: Provider-specific configuration dict

    Raises:
        ConfigurationError: If provider name is unknown
    """
    if provider_name == "anthropic":
        from schemasense.llm.providers.anthropic import AnthropicConfig, AnthropicProvider

        return AnthropicProvider(AnthropicConfig(**provider_config))

    raise ConfigurationError(
        f"Unknown LLM provider: {provider_name}. Supported providers: anthropic"
    )
