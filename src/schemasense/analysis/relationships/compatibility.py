"""Join-compatible type pairs for overlap candidates.

An allow-list: types compare equal after normalization, or both belong to
one family, or the pair was configured explicitly.
"""

from __future__ import annotations

from collections.abc import Iterable

from schemasense.analysis.types import INTEGER_TYPES, TEXT_TYPES, normalize_type
from schemasense.core.config import Settings, get_settings

UUID_TEXT_FAMILY = frozenset({"uuid"} | TEXT_TYPES)
INTEGER_FAMILY = INTEGER_TYPES

DEFAULT_FAMILIES: tuple[frozenset[str], ...] = (UUID_TEXT_FAMILY, INTEGER_FAMILY)


class TypeCompatibility:
    """Decides whether a source type may reference a target type.

    Args:
        families: Groups of mutually compatible normalized types
        extra_pairs: Additional (source, target) pairs, compatible both ways
    """

    def __init__(
        self,
        families: Iterable[Iterable[str]] = DEFAULT_FAMILIES,
        extra_pairs: Iterable[Iterable[str]] = (),
    ) -> None:
        self.families = [frozenset(normalize_type(t) for t in family) for family in families]
        self.extra_pairs: set[frozenset[str]] = set()
        for pair in extra_pairs:
            types = [normalize_type(t) for t in pair]
            if len(types) != 2:
                raise ValueError(f"Type compatibility pair must have two types, got {types}")
            self.extra_pairs.add(frozenset(types))

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> TypeCompatibility:
        settings = settings or get_settings()
        return cls(extra_pairs=settings.type_compatibility)

    def is_compatible(self, source_type: str, target_type: str) -> bool:
        source = normalize_type(source_type)
        target = normalize_type(target_type)
        if source == target:
            return True
        if frozenset((source, target)) in self.extra_pairs:
            return True
        return any(source in family and target in family for family in self.families)
