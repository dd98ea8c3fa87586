"""Tests for pending changes revealed by the data between builds."""

from datetime import UTC, datetime

import pytest
from sqlalchemy import select

from schemasense.analysis.features.models import (
    ColumnFeatures,
    EnumFeatures,
    EnumValue,
    IdentifierFeatures,
)
from schemasense.analysis.relationships.db_models import Relationship
from schemasense.analysis.relationships.models import VerifiedRelationship
from schemasense.core.models.base import Cardinality, Provenance, SemanticType
from schemasense.ontology.changes import (
    DATA_CHANGE_SOURCE,
    ChangeStatus,
    DataChangeDetector,
    PendingChangeService,
)
from schemasense.ontology.db_models import ColumnAnnotation
from schemasense.ontology.merge import MergeEngine
from schemasense.storage.models import Ontology

ORDERS = "main.orders"


def enum(column, *values):
    return ColumnFeatures(
        table_name=ORDERS,
        column_name=column,
        semantic_type=SemanticType.ENUM,
        features=EnumFeatures(
            values=[EnumValue(value=v, count=1, percentage=1.0) for v in values]
        ),
    )


def reference(source_column="store_id", target_column="id"):
    return VerifiedRelationship(
        source_table=ORDERS,
        source_column=source_column,
        target_table="main.stores",
        target_column=target_column,
        cardinality=Cardinality.MANY_TO_ONE,
        match_rate=100.0,
        orphan_count=0,
        sample_match_rate=1.0,
        confidence=0.9,
    )


@pytest.fixture
def built(manager, project_id, ontology_id):
    """An ontology that has been built once."""
    with manager.session_scope(project_id) as session:
        session.get(Ontology, ontology_id).last_built_at = datetime.now(UTC)
    return ontology_id


def detect_enum(manager, project_id, ontology_id, previous, current):
    with manager.session_scope(project_id) as session:
        detector = DataChangeDetector(session, session.get(Ontology, ontology_id))
        changes = detector.enum_values(ORDERS, previous, current)
        return [(c.column_name, c.new_value["new_values"]) for c in changes]


def propose(manager, project_id, ontology_id, relationship):
    with manager.session_scope(project_id) as session:
        detector = DataChangeDetector(session, session.get(Ontology, ontology_id))
        change = detector.relationship(relationship)
        return change.change_id if change is not None else None


class TestNewEnumValues:
    """Values that appear in a column already known to be an enum."""

    def test_new_value_is_proposed(self, manager, project_id, built):
        previous = {"status": enum("status", "pending", "shipped")}
        current = {"status": enum("status", "shipped", "pending", "returned")}

        found = detect_enum(manager, project_id, built, previous, current)
        assert found == [("status", ["returned"])]

        with manager.session_scope(project_id) as session:
            (change,) = PendingChangeService(session).list(built)
            assert change.change_type == "new_enum_value"
            assert change.change_source == DATA_CHANGE_SOURCE
            assert change.status == ChangeStatus.PENDING
            assert change.old_value == {"enum_values": ["pending", "shipped"]}
            assert change.suggested_action == "update_enum_values"
            assert change.suggested_payload == {
                "enum_values": ["pending", "shipped", "returned"]
            }

    def test_nothing_before_first_build(self, manager, project_id, ontology_id):
        previous = {"status": enum("status", "pending")}
        current = {"status": enum("status", "pending", "returned")}
        assert detect_enum(manager, project_id, ontology_id, previous, current) == []

    def test_unchanged_and_new_columns_are_quiet(self, manager, project_id, built):
        previous = {"status": enum("status", "pending", "shipped")}
        current = {
            "status": enum("status", "shipped"),
            "channel": enum("channel", "web", "store"),
        }
        assert detect_enum(manager, project_id, built, previous, current) == []

    def test_column_that_was_not_an_enum(self, manager, project_id, built):
        previous = {
            "status": ColumnFeatures(
                table_name=ORDERS,
                column_name="status",
                features=IdentifierFeatures(identifier_type="reference"),
            )
        }
        current = {"status": enum("status", "pending")}
        assert detect_enum(manager, project_id, built, previous, current) == []

    def test_waiting_proposal_is_not_repeated(self, manager, project_id, built):
        previous = {"status": enum("status", "pending")}
        current = {"status": enum("status", "pending", "returned")}
        assert detect_enum(manager, project_id, built, previous, current)
        assert detect_enum(manager, project_id, built, previous, current) == []

    def test_approval_curates_enum_values(self, manager, project_id, built):
        previous = {"status": enum("status", "pending")}
        current = {"status": enum("status", "pending", "returned")}
        detect_enum(manager, project_id, built, previous, current)

        with manager.session_scope(project_id) as session:
            service = PendingChangeService(session)
            (change,) = service.list(built)
            service.approve(change.change_id, reviewed_by="dana")

        with manager.session_scope(project_id) as session:
            annotation = session.execute(select(ColumnAnnotation)).scalar_one()
            assert (annotation.table_name, annotation.column_name) == (ORDERS, "status")
            assert annotation.enum_values == ["pending", "returned"]
            assert annotation.source == Provenance.MANUAL.value


class TestNewReferences:
    """Relationships verified after the first build."""

    def test_new_reference_is_proposed(self, manager, project_id, built):
        change_id = propose(manager, project_id, built, reference())
        assert change_id is not None

        with manager.session_scope(project_id) as session:
            change = PendingChangeService(session).get(change_id)
            assert change.change_type == "new_fk_pattern"
            assert change.change_source == DATA_CHANGE_SOURCE
            assert (change.table_name, change.column_name) == (ORDERS, "store_id")
            assert change.new_value == {"references": "main.stores.id", "match_rate": 100.0}
            assert change.suggested_action == "create_relationship"
            assert change.suggested_payload["cardinality"] == "N:1"

    def test_nothing_before_first_build(self, manager, project_id, ontology_id):
        assert propose(manager, project_id, ontology_id, reference()) is None

    def test_proposed_once(self, manager, project_id, built):
        assert propose(manager, project_id, built, reference()) is not None
        assert propose(manager, project_id, built, reference()) is None
        assert propose(manager, project_id, built, reference(target_column="code")) is not None

    def test_rejection_withdraws_the_relationship(self, manager, project_id, built):
        relationship = reference()
        with manager.session_scope(project_id) as session:
            MergeEngine(session, project_id=project_id).upsert(
                Relationship,
                {
                    "ontology_id": built,
                    "source_table": ORDERS,
                    "source_column": "store_id",
                    "target_table": "main.stores",
                    "target_column": "id",
                },
                {"cardinality": "N:1", "confidence": 0.9},
                Provenance.INFERRED,
            )
        change_id = propose(manager, project_id, built, relationship)

        with manager.session_scope(project_id) as session:
            PendingChangeService(session).reject(change_id, reason="coincidence")

        with manager.session_scope(project_id) as session:
            assert session.execute(select(Relationship)).scalars().all() == []
            detector = DataChangeDetector(session, session.get(Ontology, built))
            assert detector.rejected_relationships() == {relationship.key}

    def test_approval_curates_the_relationship(self, manager, project_id, built):
        change_id = propose(manager, project_id, built, reference())

        with manager.session_scope(project_id) as session:
            PendingChangeService(session).approve(change_id)

        with manager.session_scope(project_id) as session:
            stored = session.execute(select(Relationship)).scalar_one()
            assert (stored.source_column, stored.target_column) == ("store_id", "id")
            assert stored.cardinality == "N:1"
            assert stored.source == Provenance.MANUAL.value
