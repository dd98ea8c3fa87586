"""Tests for clarification question generation and answering."""

import pytest

from schemasense.analysis.features.models import (
    ColumnFeatures,
    ColumnProfile,
    EnumFeatures,
    EnumValue,
)
from schemasense.core.errors import FatalError, NotFoundError
from schemasense.core.models.base import ColumnRole, SemanticType
from schemasense.ontology.questions import (
    CRYPTIC_ENUM_PATTERN,
    HIGH_NULL_RATE_PATTERN,
    QuestionService,
    QuestionStatus,
    generate_questions,
    is_cryptic,
    is_known_optional,
    record_questions,
)

TABLE = "main.accounts"


def profile(column, null_count=0, row_count=100, data_type="VARCHAR", values=()):
    return ColumnProfile(
        table_name=TABLE,
        column_name=column,
        data_type=data_type,
        row_count=row_count,
        null_count=null_count,
        distinct_count=len(set(values)) or row_count - null_count,
        sample_values=list(values),
    )


def feature(column, semantic_type=SemanticType.UNKNOWN, role=ColumnRole.ATTRIBUTE, values=()):
    bag = None
    if values:
        bag = EnumFeatures(
            values=[EnumValue(value=v, count=10, percentage=10.0) for v in values]
        )
    return ColumnFeatures(
        table_name=TABLE,
        column_name=column,
        semantic_type=semantic_type,
        role=role,
        features=bag,
    )


def ask(*columns, previous=None):
    """Questions raised by (profile, feature) pairs."""
    profiles = {p.column_name: p for p, _ in columns}
    features = {f.column_name: f for _, f in columns if f is not None}
    return generate_questions(TABLE, profiles, features, previous)


def enum_column(column, *values, role=ColumnRole.ATTRIBUTE):
    return (
        profile(column, values=values),
        feature(column, SemanticType.ENUM, role=role, values=values),
    )


class TestNullRateQuestions:
    """Mostly-null columns nothing explains."""

    def test_soft_delete_marker_is_explained(self):
        deleted = (
            profile("deleted_at", null_count=97, data_type="TIMESTAMP"),
            feature("deleted_at", SemanticType.SOFT_DELETE),
        )
        assert ask(deleted) == []

    def test_soft_delete_classification_explains_unlisted_name(self):
        assert not is_known_optional("trashed_time")
        trashed = (
            profile("trashed_time", null_count=97, data_type="TIMESTAMP"),
            feature("trashed_time", SemanticType.SOFT_DELETE),
        )
        assert ask(trashed) == []

    def test_unexplained_nulls_raise_a_question(self):
        (question,) = ask((profile("referral_code", null_count=85), feature("referral_code")))

        assert question.detected_pattern == HIGH_NULL_RATE_PATTERN
        assert question.category == "data_quality"
        assert question.column_name == "referral_code"
        assert question.text == "Column main.accounts.referral_code is 85% NULL. Is that expected?"
        assert question.priority == 3
        assert not question.is_required

    def test_threshold_is_exclusive(self):
        assert ask((profile("referral_code", null_count=80), feature("referral_code"))) == []

    @pytest.mark.parametrize(
        "column", ["middle_name", "shipping_notes", "profile_url", "legacy_code", "closed_on"]
    )
    def test_known_optional_names(self, column):
        assert ask((profile(column, null_count=95), feature(column))) == []

    def test_empty_table(self):
        assert ask((profile("referral_code", null_count=0, row_count=0), None)) == []

    def test_unclassified_column_is_still_asked_about(self):
        assert len(ask((profile("referral_code", null_count=90), None))) == 1


class TestCrypticEnumQuestions:
    """Enums whose values need decoding."""

    def test_letter_codes(self):
        (question,) = ask(enum_column("tier", "A", "B", "C"))

        assert question.detected_pattern == CRYPTIC_ENUM_PATTERN
        assert question.category == "enumeration"
        assert question.text == "What do the values 'A', 'B', 'C' represent in main.accounts.tier?"
        assert question.priority == 1
        assert question.is_required

    def test_long_value_lists_are_abbreviated(self):
        codes = [str(i) for i in range(1, 9)]
        (question,) = ask(enum_column("region", *codes))
        assert "'1', '2', '3', '4', '5' (and 3 more)" in question.text

    def test_worded_values_are_clear(self):
        assert ask(enum_column("status", "pending", "shipped", "delivered")) == []

    def test_boolean_like_pair_is_clear(self):
        assert ask(enum_column("flag", "Y", "N")) == []

    def test_minority_of_codes_is_clear(self):
        assert ask(enum_column("plan", "free", "basic", "pro", "enterprise", "X")) == []

    def test_references_are_not_questioned(self):
        assert ask(enum_column("store_id", "1", "2", "3", role=ColumnRole.FOREIGN_KEY)) == []

    def test_reference_from_previous_run_is_not_questioned(self):
        previous = {"store_id": feature("store_id", role=ColumnRole.FOREIGN_KEY)}
        assert ask(enum_column("store_id", "1", "2", "3"), previous=previous) == []

    def test_wide_enums_are_skipped(self):
        codes = [f"{c}{d}" for c in "ABCDE" for d in "12345"]
        assert ask(enum_column("bin", *codes)) == []

    @pytest.mark.parametrize(
        ("value", "expected"),
        [("A", True), ("42", True), ("USD", True), ("X9", True), ("1234", False), ("usd", False)],
    )
    def test_cryptic_values(self, value, expected):
        assert is_cryptic(value) is expected


def record(manager, project_id, ontology_id, drafts):
    with manager.session_scope(project_id) as session:
        return record_questions(session, ontology_id, project_id, TABLE, drafts, run_id="r1")


@pytest.fixture
def raised():
    return ask(
        (profile("referral_code", null_count=85), feature("referral_code")),
        enum_column("tier", "A", "B", "C"),
    )


class TestRecordQuestions:
    """Questions persist across runs."""

    def test_records_once(self, manager, project_id, ontology_id, raised):
        assert record(manager, project_id, ontology_id, raised) == 2
        assert record(manager, project_id, ontology_id, raised) == 0

        with manager.session_scope(project_id) as session:
            assert len(QuestionService(session).list(ontology_id)) == 2

    def test_answered_question_is_not_reopened(self, manager, project_id, ontology_id, raised):
        record(manager, project_id, ontology_id, raised)
        with manager.session_scope(project_id) as session:
            service = QuestionService(session)
            first = service.list(ontology_id)[0]
            service.answer(first.question_id, "A=gold, B=silver, C=bronze")

        assert record(manager, project_id, ontology_id, raised) == 0
        with manager.session_scope(project_id) as session:
            service = QuestionService(session)
            assert len(service.list(ontology_id, status=QuestionStatus.PENDING)) == 1
            assert len(service.list(ontology_id, status=QuestionStatus.ANSWERED)) == 1

    def test_pending_question_is_withdrawn(self, manager, project_id, ontology_id, raised):
        record(manager, project_id, ontology_id, raised)
        record(manager, project_id, ontology_id, raised[:1])

        with manager.session_scope(project_id) as session:
            (remaining,) = QuestionService(session).list(ontology_id)
            assert remaining.column_name == "referral_code"


class TestQuestionService:
    """Answering and dismissing."""

    @pytest.fixture
    def question_ids(self, manager, project_id, ontology_id, raised):
        record(manager, project_id, ontology_id, raised)
        with manager.session_scope(project_id) as session:
            return [q.question_id for q in QuestionService(session).list(ontology_id)]

    def test_most_urgent_first(self, manager, project_id, ontology_id, question_ids):
        with manager.session_scope(project_id) as session:
            questions = QuestionService(session).list(ontology_id)
            assert [q.detected_pattern for q in questions] == [
                CRYPTIC_ENUM_PATTERN,
                HIGH_NULL_RATE_PATTERN,
            ]

    def test_answer(self, manager, project_id, question_ids):
        with manager.session_scope(project_id) as session:
            result = QuestionService(session).answer(
                question_ids[0], "membership tiers", answered_by="dana"
            )
            question = result.unwrap()
            assert question.status == QuestionStatus.ANSWERED
            assert question.answer == "membership tiers"
            assert question.answered_by == "dana"
            assert question.answered_at is not None

    def test_empty_answer_fails(self, manager, project_id, question_ids):
        with manager.session_scope(project_id) as session:
            result = QuestionService(session).answer(question_ids[0], "  ")
            assert not result.success

    def test_dismiss_then_answer_fails(self, manager, project_id, question_ids):
        with manager.session_scope(project_id) as session:
            service = QuestionService(session)
            assert service.dismiss(question_ids[1]).unwrap().status == QuestionStatus.DISMISSED
            with pytest.raises(FatalError, match="already dismissed"):
                service.answer(question_ids[1], "too late")

    def test_unknown_question(self, manager, project_id):
        with manager.session_scope(project_id) as session:
            with pytest.raises(NotFoundError):
                QuestionService(session).get("missing")
