"""Column feature models.

Feature bags form a tagged union keyed by ``kind``; pydantic selects the
concrete class from the discriminator when records are loaded back from
the metadata store.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, Field

from schemasense.analysis.types import TypeCategory, type_category
from schemasense.core.models.base import ClassificationPath, ColumnRole, SemanticType

# Confidence thresholds for deterministic rules
AUTO_APPLY_CONFIDENCE = 0.9
FLAGGED_APPLY_CONFIDENCE = 0.7


class ColumnProfile(BaseModel):
    """Statistics of one column plus its reservoir sample."""

    table_name: str
    column_name: str
    data_type: str
    is_primary_key: bool = False
    row_count: int
    null_count: int
    distinct_count: int
    min_length: int | None = None
    max_length: int | None = None
    min_value: str | None = None
    max_value: str | None = None
    sample_values: list[str] = Field(default_factory=list)

    @property
    def non_null_count(self) -> int:
        return self.row_count - self.null_count

    @property
    def null_rate(self) -> float:
        return self.null_count / self.row_count if self.row_count else 0.0

    @property
    def distinct_ratio(self) -> float:
        non_null = self.non_null_count
        return self.distinct_count / non_null if non_null else 0.0

    @property
    def is_unique(self) -> bool:
        return self.non_null_count > 0 and self.distinct_count == self.non_null_count

    @property
    def category(self) -> TypeCategory:
        return type_category(self.data_type)


# === Feature bags ===


class TimestampFeatures(BaseModel):
    kind: Literal["timestamp"] = "timestamp"
    purpose: str = "event_time"  # audit_created, audit_updated, soft_delete, event_time, ...
    is_soft_delete: bool = False
    is_audit_field: bool = False
    epoch_scale: str | None = None  # seconds, milliseconds, microseconds, nanoseconds


class BooleanFeatures(BaseModel):
    kind: Literal["boolean"] = "boolean"
    true_count: int = 0
    false_count: int = 0


class EnumValue(BaseModel):
    value: str
    count: int
    percentage: float


class EnumFeatures(BaseModel):
    kind: Literal["enum"] = "enum"
    values: list[EnumValue] = Field(default_factory=list)
    is_state_machine: bool = False


class IdentifierFeatures(BaseModel):
    kind: Literal["identifier"] = "identifier"
    identifier_type: str  # uuid, sequential, external
    external_service: str | None = None
    fk_target_table: str | None = None
    fk_target_column: str | None = None
    fk_confidence: float | None = None


class MonetaryFeatures(BaseModel):
    kind: Literal["monetary"] = "monetary"
    currency_unit: str | None = None  # cents, dollars, basis_points
    paired_currency_column: str | None = None


class RatingFeatures(BaseModel):
    kind: Literal["rating"] = "rating"
    scale_min: int
    scale_max: int


FeatureBag = Annotated[
    TimestampFeatures
    | BooleanFeatures
    | EnumFeatures
    | IdentifierFeatures
    | MonetaryFeatures
    | RatingFeatures,
    Field(discriminator="kind"),
]


class FeatureBagHolder(BaseModel):
    """Wrapper used to validate a stored bag back into its concrete class."""

    bag: FeatureBag | None = None


class RuleMatch(BaseModel):
    """Outcome of one deterministic rule."""

    rule: str
    semantic_type: SemanticType
    role: ColumnRole
    confidence: float
    reasoning: str
    features: FeatureBag | None = None
    needs_fk_resolution: bool = False


class ColumnFeatures(BaseModel):
    """Classifier output for one column."""

    table_name: str
    column_name: str
    classification_path: ClassificationPath = ClassificationPath.UNKNOWN
    semantic_type: SemanticType = SemanticType.UNKNOWN
    role: ColumnRole = ColumnRole.UNKNOWN
    description: str | None = None
    confidence: float = 0.0
    reasoning: str | None = None
    classified_by: str = "none"  # rule, llm, none
    features: FeatureBag | None = None

    # Processing flags
    needs_review: bool = False
    needs_fk_resolution: bool = False
    needs_cross_column_check: bool = False
    error: str | None = None

    def apply_rule(self, match: RuleMatch) -> None:
        """Take over a rule outcome, flagging mid-confidence matches for review."""
        self.semantic_type = match.semantic_type
        self.role = match.role
        self.confidence = match.confidence
        self.reasoning = match.reasoning
        self.features = match.features
        self.classified_by = "rule"
        self.needs_fk_resolution = self.needs_fk_resolution or match.needs_fk_resolution
        self.needs_review = match.confidence < AUTO_APPLY_CONFIDENCE


class LLMColumnClassification(BaseModel):
    """Semantic classifier output for one column."""

    column_name: str
    semantic_type: str
    role: str = "unknown"
    description: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: str | None = None
