"""LLM configuration loaded from config/llm.yaml."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from schemasense.core.config import get_settings
from schemasense.core.errors import ConfigurationError


class FeatureConfig(BaseModel):
    """Per-feature switch and model tier."""

    enabled: bool = True
    model_tier: str = "balanced"


class FeaturesConfig(BaseModel):
    column_classification: FeatureConfig = Field(default_factory=FeatureConfig)
    relationship_roles: FeatureConfig = Field(
        default_factory=lambda: FeatureConfig(model_tier="fast")
    )
    terminology: FeatureConfig = Field(default_factory=FeatureConfig)


class LimitsConfig(BaseModel):
    max_output_tokens_per_request: int = 4000
    max_columns_per_prompt: int = 40
    max_sample_values: int = 10


class LLMConfig(BaseModel):
    """Top-level LLM configuration."""

    active_provider: str = "anthropic"
    providers: dict[str, dict[str, Any]] = Field(default_factory=dict)
    features: FeaturesConfig = Field(default_factory=FeaturesConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)

    def provider_config(self) -> dict[str, Any]:
        if self.active_provider not in self.providers:
            raise ConfigurationError(
                f"Active provider '{self.active_provider}' not found in config. "
                f"Available: {list(self.providers.keys())}"
            )
        return self.providers[self.active_provider]


def load_llm_config(path: Path | None = None) -> LLMConfig:
    """Load LLM configuration from YAML.

    Args:
        path: Config file. Defaults to <config_path>/llm.yaml

    Raises:
        ConfigurationError: If the file is missing or invalid
    """
    if path is None:
        path = get_settings().config_path / "llm.yaml"
    if not path.exists():
        raise ConfigurationError(f"LLM config not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    try:
        return LLMConfig(**data)
    except ValueError as e:
        raise ConfigurationError(f"Invalid LLM config {path}: {e}") from e
