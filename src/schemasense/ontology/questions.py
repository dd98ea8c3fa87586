"""Clarification questions raised from data patterns.

Questions are generated deterministically after classification; no
semantic classifier is consulted. Two patterns raise one:

* a mostly-null column whose name or classification does not explain the
  nulls (soft-delete timestamps, notes and optional contact fields do)
* an enum whose values are cryptic codes: single letters, short numbers
  and two- or three-letter abbreviations somebody has to decode

Answered and dismissed questions are never reopened. Pending questions the
data no longer raises are withdrawn on the next run.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime

from pydantic import BaseModel
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from schemasense.analysis.features.models import ColumnFeatures, ColumnProfile, EnumFeatures
from schemasense.core.errors import FatalError, NotFoundError
from schemasense.core.logging import get_logger, increment_db_write
from schemasense.core.models import Result
from schemasense.core.models.base import ColumnRole, SemanticType
from schemasense.ontology.db_models import ClarificationQuestion

logger = get_logger(__name__)

HIGH_NULL_RATE = 0.8
MAX_ENUM_DISTINCT = 20
MAX_LISTED_VALUES = 5

HIGH_NULL_RATE_PATTERN = "high_null_rate"
CRYPTIC_ENUM_PATTERN = "cryptic_enum_values"


class QuestionStatus:
    PENDING = "pending"
    ANSWERED = "answered"
    DISMISSED = "dismissed"


# Classifications that account for mostly-null values on their own
_NULLS_EXPLAINED_BY = frozenset(
    {SemanticType.SOFT_DELETE, SemanticType.INTERVAL_END, SemanticType.AUDIT_UPDATED}
)

_OPTIONAL_NAMES = frozenset(
    {
        # lifecycle
        "last_login",
        "last_seen",
        "last_active",
        "expiry_date",
        "end_date",
        # optional references
        "parent_id",
        "manager_id",
        "supervisor_id",
        "referrer_id",
        "referred_by",
        "assigned_to",
        "assigned_to_id",
        "reviewed_by",
        "approved_by",
        "updated_by",
        "modified_by",
        # descriptive
        "description",
        "notes",
        "comment",
        "comments",
        "memo",
        "remarks",
        "middle_name",
        "suffix",
        "title",
        "nickname",
        "mobile",
        "fax",
        "address2",
        "address_line_2",
        "apt",
        "suite",
        "unit",
        "company",
        "organization",
        "website",
        "url",
        "bio",
        "avatar",
        "photo",
        # tracking
        "source",
        "source_id",
        "origin",
        "referral_source",
        "campaign",
        "campaign_id",
        "utm_source",
        "utm_medium",
        "external_id",
        "legacy_id",
        "metadata",
        "tags",
        "labels",
        # billing
        "discount",
        "discount_amount",
        "coupon",
        "coupon_code",
        "promo_code",
        "refund_amount",
        "tax",
        "tax_amount",
        "shipping_address",
        "billing_address",
    }
)
_OPTIONAL_SUFFIXES = (
    "_notes",
    "_note",
    "_comment",
    "_comments",
    "_memo",
    "_remarks",
    "_description",
    "_desc",
    "_url",
    "_link",
    "_at",
    "_on",
)
_OPTIONAL_PREFIXES = (
    "old_",
    "legacy_",
    "deprecated_",
    "alt_",
    "alternate_",
    "secondary_",
    "custom_",
    "extra_",
    "meta_",
)

_BOOLEAN_PAIRS = (
    {"true", "false"},
    {"t", "f"},
    {"yes", "no"},
    {"y", "n"},
    {"1", "0"},
    {"on", "off"},
    {"active", "inactive"},
    {"enabled", "disabled"},
)

_SINGLE_LETTER_RE = re.compile(r"^[A-Za-z]$")
_NUMERIC_CODE_RE = re.compile(r"^[0-9]{1,3}$")
_ABBREVIATION_RE = re.compile(r"^[A-Z]{2,3}$")


class QuestionDraft(BaseModel):
    """A question the generator wants asked, before it is stored."""

    table_name: str
    column_name: str
    category: str
    detected_pattern: str
    text: str
    reasoning: str
    priority: int = 3
    is_required: bool = False


def is_known_optional(column_name: str) -> bool:
    """Names of columns that are commonly left empty."""
    name = column_name.lower()
    return (
        name in _OPTIONAL_NAMES
        or name.endswith(_OPTIONAL_SUFFIXES)
        or name.startswith(_OPTIONAL_PREFIXES)
    )


def is_cryptic(value: str) -> bool:
    v = value.strip()
    if not v:
        return False
    if _SINGLE_LETTER_RE.match(v) or _NUMERIC_CODE_RE.match(v) or _ABBREVIATION_RE.match(v):
        return True
    # A1, 2B, X99
    return (
        len(v) <= 3 and any(c.isalpha() for c in v) and any(c.isdigit() for c in v)
    )


def _quoted(values: list[str]) -> str:
    shown = ", ".join(f"'{v}'" for v in values[:MAX_LISTED_VALUES])
    if len(values) > MAX_LISTED_VALUES:
        shown += f" (and {len(values) - MAX_LISTED_VALUES} more)"
    return shown


def high_null_rate_question(
    table_name: str, profile: ColumnProfile, feature: ColumnFeatures | None
) -> QuestionDraft | None:
    if profile.row_count == 0 or profile.null_rate <= HIGH_NULL_RATE:
        return None
    if is_known_optional(profile.column_name):
        return None
    if feature is not None and feature.semantic_type in _NULLS_EXPLAINED_BY:
        return None

    percent = round(profile.null_rate * 100)
    return QuestionDraft(
        table_name=table_name,
        column_name=profile.column_name,
        category="data_quality",
        detected_pattern=HIGH_NULL_RATE_PATTERN,
        text=f"Column {table_name}.{profile.column_name} is {percent}% NULL. Is that expected?",
        reasoning=(
            f"{percent}% of {profile.row_count} rows are NULL and nothing about the "
            "column explains it"
        ),
        priority=3,
    )


def cryptic_enum_question(
    table_name: str,
    profile: ColumnProfile,
    feature: ColumnFeatures | None,
    previous: ColumnFeatures | None = None,
) -> QuestionDraft | None:
    if feature is None or feature.semantic_type != SemanticType.ENUM:
        return None
    # Codes that turned out to be references are explained by their target
    for known in (feature, previous):
        if known is not None and known.role in (ColumnRole.PRIMARY_KEY, ColumnRole.FOREIGN_KEY):
            return None
    if profile.distinct_count > MAX_ENUM_DISTINCT:
        return None

    if isinstance(feature.features, EnumFeatures) and feature.features.values:
        values = [v.value for v in feature.features.values]
    else:
        values = sorted(set(profile.sample_values))
    if not values:
        return None
    if len(values) == 2 and {v.lower() for v in values} in _BOOLEAN_PAIRS:
        return None

    cryptic = [v for v in values if is_cryptic(v)]
    if not cryptic or (2 * len(cryptic) < len(values) and len(cryptic) < 3):
        return None

    shown = _quoted(cryptic)
    return QuestionDraft(
        table_name=table_name,
        column_name=profile.column_name,
        category="enumeration",
        detected_pattern=CRYPTIC_ENUM_PATTERN,
        text=f"What do the values {shown} represent in {table_name}.{profile.column_name}?",
        reasoning=f"Enum values look like codes that need domain knowledge: {shown}",
        priority=1,
        is_required=True,
    )


def generate_questions(
    table_name: str,
    profiles: dict[str, ColumnProfile],
    features: dict[str, ColumnFeatures],
    previous: dict[str, ColumnFeatures] | None = None,
) -> list[QuestionDraft]:
    """Questions for one table, in column order of ``profiles``.

    Args:
        table_name: Qualified table name
        profiles: Column profiles keyed by column name
        features: This run's classifier output keyed by column name
        previous: The prior run's classifier output, if any
    """
    previous = previous or {}
    drafts: list[QuestionDraft] = []
    for column_name, profile in profiles.items():
        feature = features.get(column_name)
        if feature is not None and feature.error is not None:
            continue
        for draft in (
            high_null_rate_question(table_name, profile, feature),
            cryptic_enum_question(table_name, profile, feature, previous.get(column_name)),
        ):
            if draft is not None:
                drafts.append(draft)
    return drafts


def record_questions(
    session: Session,
    ontology_id: str,
    project_id: str,
    table_name: str,
    drafts: list[QuestionDraft],
    run_id: str | None = None,
) -> int:
    """Store one table's questions.

    Returns:
        Number of questions created
    """
    stmt = select(ClarificationQuestion).where(
        ClarificationQuestion.ontology_id == ontology_id,
        ClarificationQuestion.table_name == table_name,
    )
    existing = {
        (q.column_name, q.detected_pattern): q for q in session.execute(stmt).scalars().all()
    }

    created = 0
    raised: set[tuple[str, str]] = set()
    for draft in drafts:
        key = (draft.column_name, draft.detected_pattern)
        raised.add(key)
        question = existing.get(key)
        if question is None:
            session.add(
                ClarificationQuestion(
                    ontology_id=ontology_id,
                    project_id=project_id,
                    run_id=run_id,
                    **draft.model_dump(),
                )
            )
            created += 1
        elif question.status == QuestionStatus.PENDING:
            question.text = draft.text
            question.reasoning = draft.reasoning
            question.priority = draft.priority
            question.is_required = draft.is_required
            question.run_id = run_id
            question.updated_at = datetime.now(UTC)

    withdrawn = 0
    for key, question in existing.items():
        if key not in raised and question.status == QuestionStatus.PENDING:
            session.delete(question)
            withdrawn += 1

    session.flush()
    increment_db_write(created + withdrawn)
    if created or withdrawn:
        logger.debug("questions_recorded", table=table_name, created=created, withdrawn=withdrawn)
    return created


def withdraw_enum_question(
    session: Session, ontology_id: str, table_name: str, column_name: str
) -> None:
    """Drop a pending cryptic-enum question on a column now known to be a reference."""
    session.execute(
        delete(ClarificationQuestion).where(
            ClarificationQuestion.ontology_id == ontology_id,
            ClarificationQuestion.table_name == table_name,
            ClarificationQuestion.column_name == column_name,
            ClarificationQuestion.detected_pattern == CRYPTIC_ENUM_PATTERN,
            ClarificationQuestion.status == QuestionStatus.PENDING,
        )
    )


class QuestionService:
    """List, answer and dismiss clarification questions."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def list(
        self, ontology_id: str, status: str | None = None, limit: int = 0
    ) -> list[ClarificationQuestion]:
        """Questions most urgent first."""
        stmt = select(ClarificationQuestion).where(
            ClarificationQuestion.ontology_id == ontology_id
        )
        if status is not None:
            stmt = stmt.where(ClarificationQuestion.status == status)
        stmt = stmt.order_by(
            ClarificationQuestion.priority,
            ClarificationQuestion.table_name,
            ClarificationQuestion.column_name,
            ClarificationQuestion.detected_pattern,
        )
        if limit > 0:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars().all())

    def get(self, question_id: str) -> ClarificationQuestion:
        question = self.session.get(ClarificationQuestion, question_id)
        if question is None:
            raise NotFoundError(f"Question {question_id} not found")
        return question

    def _close(
        self, question_id: str, status: str, answer: str | None, answered_by: str | None
    ) -> Result[ClarificationQuestion]:
        question = self.get(question_id)
        if question.status != QuestionStatus.PENDING:
            raise FatalError(f"Question {question_id} is already {question.status}")
        question.status = status
        question.answer = answer
        question.answered_by = answered_by
        question.answered_at = datetime.now(UTC)
        question.updated_at = question.answered_at
        self.session.flush()
        logger.info("question_closed", question_id=question_id, status=status)
        return Result.ok(question)

    def answer(
        self, question_id: str, answer: str, answered_by: str | None = None
    ) -> Result[ClarificationQuestion]:
        if not answer.strip():
            return Result.fail("Answer must not be empty")
        return self._close(question_id, QuestionStatus.ANSWERED, answer, answered_by)

    def dismiss(
        self, question_id: str, answered_by: str | None = None
    ) -> Result[ClarificationQuestion]:
        return self._close(question_id, QuestionStatus.DISMISSED, None, answered_by)
