"""Value pattern detection for column classification.

Patterns are defined in config/patterns/default.yaml.

IMPORTANT: Patterns match cell values ONLY, never column names. Column
names are fragile evidence ("status_id" may be an enum, "creator" may be
a foreign key).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

import yaml

from schemasense.core.config import get_settings

_CATEGORIES = (
    "identifier_patterns",
    "external_id_patterns",
    "timestamp_patterns",
    "text_patterns",
)


@dataclass
class Pattern:
    """A single pattern definition for value matching."""

    name: str
    pattern: str
    category: str
    case_sensitive: bool = True
    service: str | None = None  # external identifier issuer
    scale: str | None = None  # epoch scale for timestamp patterns

    _regex: re.Pattern[str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        flags = 0 if self.case_sensitive else re.IGNORECASE
        self._regex = re.compile(self.pattern, flags)

    def matches(self, value: str) -> bool:
        if not value:
            return False
        return self._regex.match(value) is not None

    def match_rate(self, values: list[str]) -> float:
        """Fraction of values matching (0.0 for an empty list)."""
        if not values:
            return 0.0
        return sum(1 for v in values if self.matches(v)) / len(values)


class PatternConfig:
    """Pattern configuration loaded from YAML."""

    def __init__(self, config_dict: dict[str, object]):
        self._patterns: dict[str, Pattern] = {}
        for category in _CATEGORIES:
            patterns_list = cast(list[dict[str, Any]], config_dict.get(category, []) or [])
            for pattern_dict in patterns_list:
                try:
                    pattern = Pattern(
                        name=pattern_dict["name"],
                        pattern=pattern_dict["pattern"],
                        category=category.removesuffix("_patterns"),
                        case_sensitive=pattern_dict.get("case_sensitive", True),
                        service=pattern_dict.get("service"),
                        scale=pattern_dict.get("scale"),
                    )
                except KeyError:
                    continue
                self._patterns[pattern.name] = pattern

    def get(self, name: str) -> Pattern | None:
        return self._patterns.get(name)

    def by_category(self, category: str) -> list[Pattern]:
        return [p for p in self._patterns.values() if p.category == category]

    def best_match(self, category: str, values: list[str]) -> tuple[Pattern | None, float]:
        """Pattern of a category with the highest match rate over ``values``."""
        best: Pattern | None = None
        best_rate = 0.0
        for pattern in self.by_category(category):
            rate = pattern.match_rate(values)
            if rate > best_rate:
                best, best_rate = pattern, rate
        return best, best_rate


def load_pattern_config(path: Path | None = None) -> PatternConfig:
    """Load patterns from YAML (defaults to <config_path>/patterns/default.yaml)."""
    if path is None:
        path = get_settings().config_path / "patterns" / "default.yaml"
    with open(path) as f:
        return PatternConfig(yaml.safe_load(f) or {})


@lru_cache
def get_pattern_config() -> PatternConfig:
    """Get cached default pattern configuration."""
    return load_pattern_config()
