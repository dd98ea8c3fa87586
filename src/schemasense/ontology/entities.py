"""Entity naming from table names."""

from __future__ import annotations

import re

_IRREGULAR = {
    "people": "person",
    "children": "child",
    "men": "man",
    "women": "woman",
    "data": "data",
    "media": "media",
    "series": "series",
    "news": "news",
}

_KEEP_S = ("ss", "us", "is")
_US_PLURALS = ("statuses", "buses", "campuses", "bonuses", "viruses")


def singularize(word: str) -> str:
    """Best-effort English singular of a lowercase word."""
    if word in _IRREGULAR:
        return _IRREGULAR[word]
    if word.endswith("ies") and len(word) > 3:
        return word[:-3] + "y"
    if word.endswith(("sses", "xes", "ches", "shes", "zes")):
        return word[:-2]
    if word.endswith(_US_PLURALS):
        return word[:-2]
    if word.endswith("s") and not word.endswith(_KEEP_S):
        return word[:-1]
    return word


def to_entity_name(table_name: str) -> str:
    """``public.categories`` -> ``Category``; ``order_items`` -> ``OrderItem``."""
    bare = table_name.rsplit(".", 1)[-1]
    parts = [p for p in re.split(r"[_\s-]+", bare.lower()) if p]
    if not parts:
        return bare
    parts[-1] = singularize(parts[-1])
    return "".join(p[:1].upper() + p[1:] for p in parts)
