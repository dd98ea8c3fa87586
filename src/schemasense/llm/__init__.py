"""LLM module - semantic classifier collaborators.

Example usage:

    from schemasense.llm import create_llm_components

    config, provider, renderer = create_llm_components()
    agent = ColumnClassificationAgent(config, provider, renderer)
"""

from schemasense.llm.config import LLMConfig, load_llm_config
from schemasense.llm.prompts import PromptRenderer
from schemasense.llm.providers import LLMProvider, create_provider

__all__ = [
    "LLMConfig",
    "LLMProvider",
    "PromptRenderer",
    "create_llm_components",
    "create_provider",
    "load_llm_config",
]


def create_llm_components(
    config: LLMConfig | None = None,
) -> tuple[LLMConfig, LLMProvider, PromptRenderer]:
    """Build config, provider and renderer for the active provider.

    Raises:
        ConfigurationError: If the provider is unknown or its API key is missing
    """
    config = config or load_llm_config()
    provider = create_provider(config.active_provider, config.provider_config())
    return config, provider, PromptRenderer()
