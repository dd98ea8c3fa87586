"""Cross-column analysis within one table.

Detects column pairs whose joint reading changes interpretation:
amount + currency code, self-referencing identifiers, start/end intervals.
"""

from __future__ import annotations

import re

from schemasense.analysis.features.models import (
    AUTO_APPLY_CONFIDENCE,
    ColumnFeatures,
    ColumnProfile,
    IdentifierFeatures,
    MonetaryFeatures,
)
from schemasense.analysis.types import TypeCategory
from schemasense.core.logging import get_logger
from schemasense.core.models.base import ClassificationPath, ColumnRole, SemanticType
from schemasense.datasource import DataSource, TableRef

logger = get_logger(__name__)

SELF_REFERENCE_MIN_RATE = 0.9

_INTERVAL_PAIRS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"^(?P<stem>.+)_start(?P<suffix>_at|_date|_time)?$"), "{stem}_end{suffix}"),
    (re.compile(r"^start_(?P<stem>.+)$"), "end_{stem}"),
    (re.compile(r"^starts_at$"), "ends_at"),
    (re.compile(r"^started_at$"), "ended_at"),
    (re.compile(r"^valid_from$"), "valid_to"),
)


def pair_currency_columns(features: dict[str, ColumnFeatures]) -> list[tuple[str, str]]:
    """Mark currency columns referenced by monetary amounts. Returns (amount, currency) pairs."""
    pairs: list[tuple[str, str]] = []
    for name, feature in features.items():
        bag = feature.features
        if not isinstance(bag, MonetaryFeatures) or not bag.paired_currency_column:
            continue
        currency = features.get(bag.paired_currency_column)
        if currency is None:
            continue
        if currency.confidence < AUTO_APPLY_CONFIDENCE or currency.classified_by != "rule":
            currency.semantic_type = SemanticType.CURRENCY_CODE
            currency.role = ColumnRole.ATTRIBUTE
            currency.confidence = AUTO_APPLY_CONFIDENCE
            currency.classified_by = "rule"
            currency.needs_review = False
            currency.reasoning = f"ISO-4217 codes paired with amount column {name}"
        pairs.append((name, bag.paired_currency_column))
    return pairs


def _interval_partner(name: str) -> str | None:
    for pattern, template in _INTERVAL_PAIRS:
        match = pattern.match(name)
        if match:
            groups = {k: v or "" for k, v in match.groupdict().items()}
            return template.format(**groups)
    return None


def pair_interval_columns(features: dict[str, ColumnFeatures]) -> list[tuple[str, str]]:
    """Annotate start/end timestamp pairs. Returns (start, end) pairs."""
    lowered = {name.lower(): name for name in features}
    pairs: list[tuple[str, str]] = []
    for start_name, start in features.items():
        if start.classification_path != ClassificationPath.TIMESTAMP:
            continue
        partner = _interval_partner(start_name.lower())
        end_name = lowered.get(partner) if partner else None
        if end_name is None:
            continue
        end = features[end_name]
        if end.classification_path != ClassificationPath.TIMESTAMP:
            continue

        for feature, semantic_type in (
            (start, SemanticType.INTERVAL_START),
            (end, SemanticType.INTERVAL_END),
        ):
            if feature.semantic_type in (SemanticType.EVENT_TIME, SemanticType.UNKNOWN):
                feature.semantic_type = semantic_type
                feature.role = ColumnRole.ATTRIBUTE
                feature.confidence = max(feature.confidence, 0.85)
                feature.classified_by = "rule"
                feature.needs_review = True
                feature.reasoning = f"interval pair {start_name} / {end_name}"
        pairs.append((start_name, end_name))
    return pairs


def _table_key(
    profiles: dict[str, ColumnProfile], features: dict[str, ColumnFeatures]
) -> str | None:
    for name, profile in profiles.items():
        if profile.is_primary_key:
            return name
    for name, feature in features.items():
        if feature.role == ColumnRole.PRIMARY_KEY:
            return name
    return None


def detect_self_references(
    datasource: DataSource,
    table: TableRef,
    profiles: dict[str, ColumnProfile],
    features: dict[str, ColumnFeatures],
) -> list[tuple[str, str]]:
    """Flag reference columns whose sampled values all live in the table's own key.

    Only sets a hint; the relationship itself is verified by the resolver.
    """
    key = _table_key(profiles, features)
    if key is None:
        return []
    key_category = profiles[key].category

    pairs: list[tuple[str, str]] = []
    for name, feature in features.items():
        if name == key or not feature.needs_fk_resolution:
            continue
        profile = profiles.get(name)
        if profile is None or not profile.sample_values:
            continue
        compatible = profile.category == key_category or {
            profile.category,
            key_category,
        } <= {TypeCategory.UUID, TypeCategory.TEXT}
        if not compatible:
            continue

        values = sorted(set(profile.sample_values))
        try:
            overlap = datasource.test_overlap(values, table, key)
        except Exception as e:
            logger.warning(
                "self_reference_check_failed",
                table=str(table),
                column=name,
                error=str(e),
            )
            continue
        if overlap.match_rate < SELF_REFERENCE_MIN_RATE:
            continue

        bag = feature.features
        if not isinstance(bag, IdentifierFeatures):
            bag = IdentifierFeatures(identifier_type="reference")
        bag.fk_target_table = str(table)
        bag.fk_target_column = key
        bag.fk_confidence = round(overlap.match_rate, 4)
        feature.features = bag
        feature.needs_cross_column_check = False
        pairs.append((name, key))
    return pairs
