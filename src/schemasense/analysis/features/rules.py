"""Deterministic column classification.

Two layers run before any LLM call:

1. ``classify_path`` routes a column from its data type and value patterns
   (timestamp, boolean, enum, uuid, external_id, numeric, text, json).
2. The rules below turn a routed column into a semantic type with a
   confidence. Matches >= 0.9 are applied, 0.7-0.9 are applied with a
   review flag, anything lower falls through to the semantic classifier.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field

import numpy as np
import pandas as pd

from schemasense.analysis.features.models import (
    FLAGGED_APPLY_CONFIDENCE,
    BooleanFeatures,
    ColumnProfile,
    EnumFeatures,
    EnumValue,
    IdentifierFeatures,
    MonetaryFeatures,
    RatingFeatures,
    RuleMatch,
    TimestampFeatures,
)
from schemasense.analysis.features.patterns import PatternConfig
from schemasense.analysis.types import TypeCategory
from schemasense.core.models.base import ClassificationPath, ColumnRole, SemanticType

# Routing thresholds
UUID_MATCH_RATE = 0.95
EXTERNAL_ID_MATCH_RATE = 0.8
TIMESTAMP_MATCH_RATE = 0.8
ENUM_MAX_DISTINCT_RATIO = 0.01
ENUM_MAX_DISTINCT = 50
CURRENCY_MATCH_RATE = 0.95

_EPOCH_DIVISORS = {
    "seconds": 1.0,
    "milliseconds": 1e3,
    "microseconds": 1e6,
    "nanoseconds": 1e9,
}

_SOFT_DELETE_NAME_RE = re.compile(r"(^|_)(deleted|removed|archived|trashed)_(at|on|date|time)$")
_CREATED_NAME_RE = re.compile(r"^(created|inserted|creation)(_at|_on|_date|_time)?$")
_UPDATED_NAME_RE = re.compile(r"^(updated|modified|last_modified|changed)(_at|_on|_date|_time)?$")
_CENTS_NAME_RE = re.compile(r"(^|_)cents($|_)")

_STATE_WORDS = frozenset(
    {
        "pending",
        "active",
        "inactive",
        "completed",
        "cancelled",
        "canceled",
        "failed",
        "approved",
        "rejected",
        "draft",
        "open",
        "closed",
        "shipped",
        "delivered",
        "processing",
        "paid",
        "refunded",
    }
)

# (scale_min, scale_max), smallest first
KNOWN_RATING_SCALES: tuple[tuple[int, int], ...] = ((1, 5), (0, 5), (1, 10), (0, 10))
RATING_MIN_COVERAGE = 0.6


@dataclass
class RoutingResult:
    """Classification path plus the evidence behind it."""

    path: ClassificationPath
    epoch_scale: str | None = None
    external_service: str | None = None
    match_rates: dict[str, float] = field(default_factory=dict)


@dataclass
class RuleContext:
    """What a rule may look at besides the column itself."""

    routing: RoutingResult
    siblings: dict[str, ColumnProfile]
    patterns: PatternConfig
    table_has_declared_pk: bool


def _numeric(values: list[str]) -> pd.Series:
    return pd.to_numeric(pd.Series(values, dtype="object"), errors="coerce").dropna()


def _is_enum_like(profile: ColumnProfile) -> bool:
    return (
        1 <= profile.distinct_count <= ENUM_MAX_DISTINCT
        and profile.distinct_ratio < ENUM_MAX_DISTINCT_RATIO
    )


def _epoch_years_plausible(values: list[str], scale: str) -> bool:
    """True when every value converts to a year between 1970 and 2100."""
    nums = _numeric(values)
    if nums.empty or scale not in _EPOCH_DIVISORS:
        return False
    seconds = nums.to_numpy(dtype=float) / _EPOCH_DIVISORS[scale]
    years = 1970 + seconds / (365.25 * 86400)
    return bool(np.all((years >= 1970) & (years <= 2100)))


def classify_path(profile: ColumnProfile, patterns: PatternConfig) -> RoutingResult:
    """Route a column by data type and sampled value patterns."""
    category = profile.category
    values = profile.sample_values

    if category == TypeCategory.BOOLEAN:
        return RoutingResult(ClassificationPath.BOOLEAN)
    if category == TypeCategory.TIMESTAMP:
        return RoutingResult(ClassificationPath.TIMESTAMP)
    if category == TypeCategory.UUID:
        return RoutingResult(ClassificationPath.UUID)
    if category == TypeCategory.JSON:
        return RoutingResult(ClassificationPath.JSON)

    if category == TypeCategory.INTEGER:
        if values and set(values) <= {"0", "1"} and profile.distinct_count <= 2:
            return RoutingResult(ClassificationPath.BOOLEAN)
        epoch, rate = patterns.best_match("timestamp", values)
        if (
            epoch is not None
            and epoch.scale in _EPOCH_DIVISORS
            and rate >= TIMESTAMP_MATCH_RATE
            and _epoch_years_plausible(values, epoch.scale)
        ):
            return RoutingResult(
                ClassificationPath.TIMESTAMP,
                epoch_scale=epoch.scale,
                match_rates={epoch.name: rate},
            )
        if _is_enum_like(profile):
            return RoutingResult(ClassificationPath.ENUM)
        return RoutingResult(ClassificationPath.NUMERIC)

    if category == TypeCategory.NUMERIC:
        return RoutingResult(ClassificationPath.NUMERIC)

    if category == TypeCategory.TEXT:
        uuid = patterns.get("uuid")
        uuid_rate = uuid.match_rate(values) if uuid else 0.0
        if uuid_rate >= UUID_MATCH_RATE:
            return RoutingResult(ClassificationPath.UUID, match_rates={"uuid": uuid_rate})

        external, ext_rate = patterns.best_match("external_id", values)
        if external is not None and ext_rate >= EXTERNAL_ID_MATCH_RATE:
            return RoutingResult(
                ClassificationPath.EXTERNAL_ID,
                external_service=external.service,
                match_rates={external.name: ext_rate},
            )

        ts, ts_rate = patterns.best_match("timestamp", values)
        if ts is not None and ts_rate >= TIMESTAMP_MATCH_RATE:
            scale = ts.scale if ts.scale in _EPOCH_DIVISORS else None
            if scale is None or _epoch_years_plausible(values, scale):
                return RoutingResult(
                    ClassificationPath.TIMESTAMP,
                    epoch_scale=scale,
                    match_rates={ts.name: ts_rate},
                )

        if _is_enum_like(profile):
            return RoutingResult(ClassificationPath.ENUM)
        return RoutingResult(ClassificationPath.TEXT)

    return RoutingResult(ClassificationPath.UNKNOWN)


# === Rules ===


def soft_delete_rule(profile: ColumnProfile, ctx: RuleContext) -> RuleMatch | None:
    """Deletion-timestamp naming + timestamp type + mostly null."""
    if ctx.routing.path != ClassificationPath.TIMESTAMP:
        return None
    if not _SOFT_DELETE_NAME_RE.search(profile.column_name.lower()):
        return None

    null_rate = profile.null_rate
    if null_rate > 0.9:
        confidence = 0.95
    elif null_rate > 0.5:
        confidence = 0.75
    else:
        return None

    return RuleMatch(
        rule="soft_delete",
        semantic_type=SemanticType.SOFT_DELETE,
        role=ColumnRole.ATTRIBUTE,
        confidence=confidence,
        reasoning=(
            f"timestamp column named like a deletion marker, {null_rate:.1%} null "
            "(rows are live until stamped)"
        ),
        features=TimestampFeatures(
            purpose="soft_delete",
            is_soft_delete=True,
            epoch_scale=ctx.routing.epoch_scale,
        ),
    )


def audit_timestamp_rule(profile: ColumnProfile, ctx: RuleContext) -> RuleMatch | None:
    """created_at / updated_at style audit columns."""
    if ctx.routing.path != ClassificationPath.TIMESTAMP:
        return None
    name = profile.column_name.lower()
    if _CREATED_NAME_RE.match(name):
        semantic_type, purpose = SemanticType.AUDIT_CREATED, "audit_created"
    elif _UPDATED_NAME_RE.match(name):
        semantic_type, purpose = SemanticType.AUDIT_UPDATED, "audit_updated"
    else:
        return None

    confidence = 0.9 if profile.null_rate < 0.05 else 0.75
    return RuleMatch(
        rule="audit_timestamp",
        semantic_type=semantic_type,
        role=ColumnRole.ATTRIBUTE,
        confidence=confidence,
        reasoning=f"audit timestamp naming, {profile.null_rate:.1%} null",
        features=TimestampFeatures(
            purpose=purpose, is_audit_field=True, epoch_scale=ctx.routing.epoch_scale
        ),
    )


def event_time_rule(profile: ColumnProfile, ctx: RuleContext) -> RuleMatch | None:
    """Any other timestamp: an event time, applied with a review flag."""
    if ctx.routing.path != ClassificationPath.TIMESTAMP:
        return None
    return RuleMatch(
        rule="event_time",
        semantic_type=SemanticType.EVENT_TIME,
        role=ColumnRole.ATTRIBUTE,
        confidence=FLAGGED_APPLY_CONFIDENCE,
        reasoning="timestamp values without a more specific signal",
        features=TimestampFeatures(purpose="event_time", epoch_scale=ctx.routing.epoch_scale),
    )


def boolean_rule(profile: ColumnProfile, ctx: RuleContext) -> RuleMatch | None:
    if ctx.routing.path != ClassificationPath.BOOLEAN:
        return None
    lowered = [v.lower() for v in profile.sample_values]
    true_count = sum(1 for v in lowered if v in ("1", "true", "t"))
    return RuleMatch(
        rule="boolean",
        semantic_type=SemanticType.BOOLEAN,
        role=ColumnRole.ATTRIBUTE,
        confidence=0.95,
        reasoning="boolean type or values restricted to {0, 1}",
        features=BooleanFeatures(true_count=true_count, false_count=len(lowered) - true_count),
    )


def rating_scale_rule(profile: ColumnProfile, ctx: RuleContext) -> RuleMatch | None:
    """Small closed integer range inside a known rating scale."""
    if profile.category != TypeCategory.INTEGER or profile.is_primary_key:
        return None
    if ctx.routing.path == ClassificationPath.BOOLEAN:
        return None
    nums = _numeric(profile.sample_values)
    if nums.empty or profile.distinct_ratio >= 0.5:
        return None

    observed = np.unique(nums.to_numpy(dtype=float))
    if not np.all(observed == np.round(observed)):
        return None
    low, high = int(observed.min()), int(observed.max())

    for scale_min, scale_max in KNOWN_RATING_SCALES:
        if low < scale_min or high > scale_max:
            continue
        size = scale_max - scale_min + 1
        if profile.distinct_count > size:
            continue
        coverage = len(observed) / size
        if coverage < RATING_MIN_COVERAGE:
            continue
        contiguous = (high - low + 1) == len(observed)
        confidence = 0.9 if contiguous else 0.75
        return RuleMatch(
            rule="rating_scale",
            semantic_type=SemanticType.RATING,
            role=ColumnRole.MEASURE,
            confidence=confidence,
            reasoning=(
                f"integer values {low}..{high} cover {coverage:.0%} of the "
                f"{scale_min}-{scale_max} scale"
            ),
            features=RatingFeatures(scale_min=scale_min, scale_max=scale_max),
        )
    return None


def _key_role(profile: ColumnProfile, ctx: RuleContext) -> ColumnRole:
    if profile.is_primary_key:
        return ColumnRole.PRIMARY_KEY
    if profile.is_unique and not ctx.table_has_declared_pk:
        return ColumnRole.PRIMARY_KEY
    return ColumnRole.ATTRIBUTE


def identifier_format_rule(profile: ColumnProfile, ctx: RuleContext) -> RuleMatch | None:
    """UUID-shaped values, external service ids, dense sequential integers."""
    path = ctx.routing.path
    if path == ClassificationPath.UUID:
        role = _key_role(profile, ctx)
        return RuleMatch(
            rule="uuid_identifier",
            semantic_type=SemanticType.UUID_IDENTIFIER,
            role=role,
            confidence=0.95,
            reasoning="values are UUID-shaped",
            features=IdentifierFeatures(identifier_type="uuid"),
            needs_fk_resolution=role != ColumnRole.PRIMARY_KEY,
        )

    if path == ClassificationPath.EXTERNAL_ID:
        return RuleMatch(
            rule="external_identifier",
            semantic_type=SemanticType.EXTERNAL_IDENTIFIER,
            role=ColumnRole.ATTRIBUTE,
            confidence=0.9,
            reasoning=f"values match {ctx.routing.external_service} identifier format",
            features=IdentifierFeatures(
                identifier_type="external", external_service=ctx.routing.external_service
            ),
        )

    if profile.category == TypeCategory.INTEGER and profile.is_unique:
        nums = _numeric([v for v in (profile.min_value, profile.max_value) if v is not None])
        if len(nums) == 2 and profile.distinct_count >= 2:
            span = float(nums.iloc[1]) - float(nums.iloc[0]) + 1
            if span <= profile.distinct_count * 1.1:
                return RuleMatch(
                    rule="sequential_identifier",
                    semantic_type=SemanticType.SEQUENTIAL_IDENTIFIER,
                    role=_key_role(profile, ctx),
                    confidence=0.9,
                    reasoning=(
                        f"unique integers densely covering {int(nums.iloc[0])}"
                        f"..{int(nums.iloc[1])}"
                    ),
                    features=IdentifierFeatures(identifier_type="sequential"),
                )
    return None


def enum_rule(profile: ColumnProfile, ctx: RuleContext) -> RuleMatch | None:
    if ctx.routing.path != ClassificationPath.ENUM:
        return None
    counts = pd.Series(profile.sample_values, dtype="object").value_counts()
    total = int(counts.sum())
    values = [
        EnumValue(value=str(v), count=int(c), percentage=round(100.0 * int(c) / total, 2))
        for v, c in counts.items()
    ]
    lowered = {v.value.lower() for v in values}
    return RuleMatch(
        rule="enum",
        semantic_type=SemanticType.ENUM,
        role=ColumnRole.ATTRIBUTE,
        confidence=0.85,
        reasoning=f"{profile.distinct_count} distinct values over {profile.non_null_count} rows",
        features=EnumFeatures(values=values, is_state_machine=len(lowered & _STATE_WORDS) >= 2),
    )


def text_format_rule(profile: ColumnProfile, ctx: RuleContext) -> RuleMatch | None:
    """Emails, URLs and JSON documents."""
    if ctx.routing.path == ClassificationPath.JSON:
        return RuleMatch(
            rule="json",
            semantic_type=SemanticType.JSON,
            role=ColumnRole.ATTRIBUTE,
            confidence=0.95,
            reasoning="JSON column type",
        )
    if ctx.routing.path != ClassificationPath.TEXT:
        return None
    for name, semantic_type in (("email", SemanticType.EMAIL), ("url", SemanticType.URL)):
        pattern = ctx.patterns.get(name)
        if pattern is None:
            continue
        rate = pattern.match_rate(profile.sample_values)
        if rate >= 0.9:
            return RuleMatch(
                rule=name,
                semantic_type=semantic_type,
                role=ColumnRole.ATTRIBUTE,
                confidence=0.9,
                reasoning=f"{rate:.0%} of sampled values are {name}s",
            )
    return None


def find_currency_sibling(profile: ColumnProfile, ctx: RuleContext) -> str | None:
    """Name of a text sibling holding ISO-4217 codes, if any."""
    iso = ctx.patterns.get("iso4217")
    if iso is None:
        return None
    for name, sibling in ctx.siblings.items():
        if name == profile.column_name or sibling.category != TypeCategory.TEXT:
            continue
        if not sibling.sample_values or sibling.distinct_count > 200:
            continue
        if iso.match_rate(sibling.sample_values) >= CURRENCY_MATCH_RATE:
            return name
    return None


def monetary_pair_rule(profile: ColumnProfile, ctx: RuleContext) -> RuleMatch | None:
    """Amount column co-located with an ISO currency code column."""
    if profile.category not in (TypeCategory.INTEGER, TypeCategory.NUMERIC):
        return None
    if profile.is_primary_key or ctx.routing.path not in (
        ClassificationPath.NUMERIC,
        ClassificationPath.ENUM,
    ):
        return None
    currency = find_currency_sibling(profile, ctx)
    if currency is None:
        return None

    unit = None
    if _CENTS_NAME_RE.search(profile.column_name.lower()):
        unit = "cents"
    return RuleMatch(
        rule="monetary_pair",
        semantic_type=SemanticType.MONETARY_AMOUNT,
        role=ColumnRole.MEASURE,
        confidence=0.9,
        reasoning=f"numeric amount next to currency code column {currency}",
        features=MonetaryFeatures(currency_unit=unit, paired_currency_column=currency),
    )


Rule = Callable[[ColumnProfile, RuleContext], RuleMatch | None]

DEFAULT_RULES: tuple[Rule, ...] = (
    soft_delete_rule,
    audit_timestamp_rule,
    event_time_rule,
    boolean_rule,
    rating_scale_rule,
    identifier_format_rule,
    enum_rule,
    text_format_rule,
    monetary_pair_rule,
)


def apply_rules(
    profile: ColumnProfile, ctx: RuleContext, rules: tuple[Rule, ...] = DEFAULT_RULES
) -> RuleMatch | None:
    """Best rule match; ties keep the earlier rule."""
    best: RuleMatch | None = None
    for rule in rules:
        match = rule(profile, ctx)
        if match is not None and (best is None or match.confidence > best.confidence):
            best = match
    return best


def _short_tokens(values: list[str]) -> bool:
    return bool(values) and all(len(v) <= 64 and not any(c.isspace() for c in v) for v in values)


def is_reference_candidate(profile: ColumnProfile, routing: RoutingResult) -> bool:
    """Whether the overlap pass should test this column as a reference.

    Decided from type and values only. Low-cardinality references (a few
    stores, a handful of regions) route as enums; overlap decides for them
    like for any other key-shaped column.
    """
    if profile.is_primary_key or profile.non_null_count == 0:
        return False
    if routing.path == ClassificationPath.UUID:
        return True
    key_paths = (ClassificationPath.NUMERIC, ClassificationPath.ENUM)
    if routing.path in key_paths and profile.category == TypeCategory.INTEGER:
        nums = _numeric(profile.sample_values)
        return not nums.empty and bool((nums >= 0).all())
    if routing.path == ClassificationPath.TEXT or (
        routing.path == ClassificationPath.ENUM and profile.category == TypeCategory.TEXT
    ):
        return _short_tokens(profile.sample_values)
    return False
