"""Tests for the per-table column feature classifier."""

import pytest

from schemasense.analysis.features.classifier import ColumnFeatureClassifier
from schemasense.analysis.features.models import LLMColumnClassification
from schemasense.core.models import Result
from schemasense.core.models.base import ColumnRole, SemanticType
from schemasense.datasource import DuckDBDataSource


class FakeAgent:
    """Semantic classifier double answering from a fixed table."""

    def __init__(self, answers=None, error=None, enabled=True):
        self.answers = answers or {}
        self.error = error
        self.enabled = enabled
        self.calls = []

    def classify(self, table_name, row_count, profiles):
        self.calls.append([p.column_name for p in profiles])
        if self.error is not None:
            raise self.error
        return Result.ok(
            {
                p.column_name: self.answers[p.column_name]
                for p in profiles
                if p.column_name in self.answers
            }
        )


@pytest.fixture
def orders_db(duckdb_conn):
    duckdb_conn.execute(
        """
        CREATE TABLE orders (
            order_id INTEGER PRIMARY KEY,
            parent_order_id INTEGER,
            status VARCHAR,
            notes VARCHAR,
            created_at TIMESTAMP,
            deleted_at TIMESTAMP
        )
        """
    )
    duckdb_conn.execute(
        """
        INSERT INTO orders
        SELECT
            i,
            CASE WHEN i > 1 THEN i - 1 END,
            CASE i % 3 WHEN 0 THEN 'pending' WHEN 1 THEN 'shipped' ELSE 'delivered' END,
            'order note number ' || i || ' written by support',
            TIMESTAMP '2024-01-01' + INTERVAL (i) MINUTE,
            CASE WHEN i % 100 < 3 THEN TIMESTAMP '2024-06-01' END
        FROM range(1, 1001) t(i)
        """
    )
    return duckdb_conn


@pytest.fixture
def orders_table(orders_db):
    schema = DuckDBDataSource(orders_db).get_schema()
    return schema.get_table("main.orders")


class TestClassifyTable:
    """End-to-end classification of one table."""

    def test_rule_based_columns(self, orders_db, orders_table):
        classifier = ColumnFeatureClassifier(DuckDBDataSource(orders_db))
        output = classifier.classify_table(orders_table)
        features = output.features

        deleted = features["deleted_at"]
        assert deleted.semantic_type == SemanticType.SOFT_DELETE
        assert deleted.confidence >= 0.9
        assert not deleted.needs_review
        assert deleted.classified_by == "rule"

        assert features["order_id"].role == ColumnRole.PRIMARY_KEY
        assert features["created_at"].semantic_type == SemanticType.AUDIT_CREATED
        assert features["status"].semantic_type == SemanticType.ENUM

    def test_self_reference_hint(self, orders_db, orders_table):
        classifier = ColumnFeatureClassifier(DuckDBDataSource(orders_db))
        parent = classifier.classify_table(orders_table).features["parent_order_id"]

        assert parent.needs_fk_resolution
        assert parent.features is not None
        assert parent.features.kind == "identifier"
        assert parent.features.fk_target_column == "order_id"

    def test_residual_columns_without_agent_need_review(self, orders_db, orders_table):
        classifier = ColumnFeatureClassifier(DuckDBDataSource(orders_db))
        notes = classifier.classify_table(orders_table).features["notes"]

        assert notes.semantic_type == SemanticType.UNKNOWN
        assert notes.needs_review
        assert notes.classified_by == "none"

    def test_residual_columns_go_to_the_agent(self, orders_db, orders_table):
        agent = FakeAgent(
            answers={
                "notes": LLMColumnClassification(
                    column_name="notes",
                    semantic_type="free_text",
                    role="attribute",
                    description="Support notes",
                    confidence=0.92,
                )
            }
        )
        classifier = ColumnFeatureClassifier(DuckDBDataSource(orders_db), agent=agent)
        output = classifier.classify_table(orders_table)

        assert agent.calls and "notes" in agent.calls[0]
        assert "deleted_at" not in agent.calls[0]
        notes = output.features["notes"]
        assert notes.classified_by == "llm"
        assert notes.description == "Support notes"
        assert not notes.needs_review
        assert output.llm_columns == 1

    def test_agent_failure_keeps_rule_results(self, orders_db, orders_table):
        agent = FakeAgent(error=RuntimeError("model returned garbage"))
        classifier = ColumnFeatureClassifier(DuckDBDataSource(orders_db), agent=agent)
        output = classifier.classify_table(orders_table)

        assert output.features["deleted_at"].semantic_type == SemanticType.SOFT_DELETE
        assert output.features["notes"].needs_review
        assert any("semantic classification failed" in w for w in output.warnings)


class TestColumnIsolation:
    """A failing column never takes its siblings down."""

    def test_failed_profile_is_isolated(self, orders_db, orders_table):
        classifier = ColumnFeatureClassifier(DuckDBDataSource(orders_db))
        profiles = classifier.classify_table(orders_table).profiles
        results = {name: Result.ok(p) for name, p in profiles.items()}
        results["status"] = Result.fail("Profiling main.orders.status failed: boom")

        output = classifier.classify_table(orders_table, results)

        status = output.features["status"]
        assert status.error is not None and "boom" in status.error
        assert status.needs_review
        assert output.failed_columns == 1
        assert output.features["deleted_at"].semantic_type == SemanticType.SOFT_DELETE

    def test_datasource_error_on_one_column(self, orders_db, orders_table):
        class BrokenNotes(DuckDBDataSource):
            def profile_column(self, table, column, sample_size):
                if column == "notes":
                    raise RuntimeError("permission denied for column notes")
                return super().profile_column(table, column, sample_size)

        classifier = ColumnFeatureClassifier(BrokenNotes(orders_db))
        output = classifier.classify_table(orders_table)

        assert output.failed_columns == 1
        assert "permission denied" in (output.features["notes"].error or "")
        assert output.features["order_id"].role == ColumnRole.PRIMARY_KEY
