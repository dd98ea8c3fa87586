"""Abstract base class for LLM providers.

This module defines the interface that all LLM providers must implement.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel

from schemasense.core.models import Result


class LLMRequest(BaseModel):
    """Request to LLM provider."""

    prompt: str
    system: str | None = None
    max_tokens: int = 4000
    temperature: float = 0.0
    model: str | None = None
    response_format: str = "json"  # "json" or "text"


class LLMResponse(BaseModel):
    """Response from LLM provider."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int


class LLMProvider(ABC):
    """Abstract base for LLM providers.

    Transient failures (rate limits, 5xx, connection problems) are raised as
    ``TransientError`` so the retry policy can handle them; every other
    failure is returned as ``Result.fail``.
    """

    @abstractmethod
    def complete(self, request: LLMRequest) -> Result[LLMResponse]:
        """Send completion request to provider."""
        pass

    @abstractmethod
    def get_model_for_tier(self, tier: str) -> str:
        """Get model name for a given tier ('fast', 'balanced')."""
        pass
