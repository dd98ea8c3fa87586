"""Core models: ONLY truly shared base types.

Domain models live in their respective packages:
- analysis/features/models.py      -> column profiles and feature bags
- analysis/relationships/models.py -> relationship candidates and verified relationships
- datasource/models.py             -> observed schema and join analysis
"""

from schemasense.core.models.base import (
    Cardinality,
    ClassificationPath,
    ColumnRef,
    ColumnRole,
    Provenance,
    Result,
    SemanticType,
)

__all__ = [
    "Result",
    "Provenance",
    "Cardinality",
    "ColumnRole",
    "ClassificationPath",
    "SemanticType",
    "ColumnRef",
]
