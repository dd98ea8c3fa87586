"""Shared infrastructure for LLM-backed features."""

from schemasense.llm.features._base import LLMFeature

__all__ = ["LLMFeature"]
