"""Data type normalization shared by the classifier and the resolver."""

from __future__ import annotations

import re
from enum import Enum

_LENGTH_SUFFIX_RE = re.compile(r"\s*\(.*\)\s*$")


class TypeCategory(str, Enum):
    """Coarse category of a column data type."""

    INTEGER = "integer"
    NUMERIC = "numeric"
    TEXT = "text"
    UUID = "uuid"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    JSON = "json"
    OTHER = "other"


INTEGER_TYPES = frozenset(
    {
        "int",
        "int1",
        "int2",
        "int4",
        "int8",
        "integer",
        "bigint",
        "smallint",
        "tinyint",
        "hugeint",
        "ubigint",
        "uinteger",
        "usmallint",
        "utinyint",
        "serial",
        "bigserial",
        "smallserial",
        "long",
        "short",
    }
)
NUMERIC_TYPES = frozenset(
    {"decimal", "numeric", "double", "float", "float4", "float8", "real", "money"}
)
TEXT_TYPES = frozenset(
    {"varchar", "text", "string", "char", "character", "character varying", "bpchar", "nvarchar"}
)
BOOLEAN_TYPES = frozenset({"boolean", "bool", "bit"})
JSON_TYPES = frozenset({"json", "jsonb"})


def normalize_type(data_type: str) -> str:
    """Lowercase and strip length/precision suffixes: ``VARCHAR(255)`` -> ``varchar``."""
    return _LENGTH_SUFFIX_RE.sub("", data_type.strip().lower())


def type_category(data_type: str) -> TypeCategory:
    """Map a database type name to its category."""
    t = normalize_type(data_type)
    if t in INTEGER_TYPES:
        return TypeCategory.INTEGER
    if t in NUMERIC_TYPES:
        return TypeCategory.NUMERIC
    if t == "uuid":
        return TypeCategory.UUID
    if t in TEXT_TYPES:
        return TypeCategory.TEXT
    if t in BOOLEAN_TYPES:
        return TypeCategory.BOOLEAN
    if t in JSON_TYPES:
        return TypeCategory.JSON
    if t.startswith(("timestamp", "date", "time")):
        return TypeCategory.TIMESTAMP
    return TypeCategory.OTHER
