"""Tests for provenance precedence and keyed upserts."""

import pytest
from sqlalchemy import select

from schemasense.core.models.base import Provenance
from schemasense.ontology.db_models import ColumnAnnotation, Fact
from schemasense.ontology.merge import MergeAction, MergeEngine
from schemasense.ontology.provenance import can_write, promote


@pytest.fixture
def annotation_key(ontology_id):
    return {"ontology_id": ontology_id, "table_name": "main.orders", "column_name": "status"}


class TestProvenance:
    """manual > agent_tool > inferred."""

    def test_ordering(self):
        assert Provenance.MANUAL > Provenance.AGENT_TOOL > Provenance.INFERRED
        assert max([Provenance.INFERRED, Provenance.MANUAL]) == Provenance.MANUAL

    def test_can_write(self):
        assert can_write(Provenance.INFERRED, Provenance.MANUAL)
        assert can_write(Provenance.AGENT_TOOL, Provenance.AGENT_TOOL)
        assert not can_write(Provenance.MANUAL, Provenance.INFERRED)
        assert not can_write(Provenance.AGENT_TOOL, Provenance.INFERRED)

    def test_promote_never_moves_down(self):
        assert promote(Provenance.INFERRED, Provenance.AGENT_TOOL) == Provenance.AGENT_TOOL
        assert promote(Provenance.MANUAL, Provenance.INFERRED) == Provenance.MANUAL


class TestUpsert:
    """Keyed upserts through the merge engine."""

    def test_create_then_update_in_place(self, manager, project_id, annotation_key):
        with manager.session_scope(project_id) as session:
            engine = MergeEngine(session)
            created = engine.upsert(
                ColumnAnnotation, annotation_key, {"semantic_type": "enum"}, Provenance.INFERRED
            )
            updated = engine.upsert(
                ColumnAnnotation, annotation_key, {"semantic_type": "status"}, Provenance.MANUAL
            )

            assert created.action == MergeAction.CREATED
            assert created.record.project_id == project_id
            assert updated.action == MergeAction.UPDATED
            assert updated.record is created.record
            assert updated.record.source == "manual"
            assert len(session.execute(select(ColumnAnnotation)).scalars().all()) == 1

    def test_inference_never_overwrites_manual(self, manager, project_id, annotation_key):
        with manager.session_scope(project_id) as session:
            engine = MergeEngine(session)
            engine.upsert(
                ColumnAnnotation,
                annotation_key,
                {"description": "Order lifecycle state"},
                Provenance.MANUAL,
            )
            outcome = engine.upsert(
                ColumnAnnotation,
                annotation_key,
                {"description": "Status code"},
                Provenance.INFERRED,
                run_id="run-2",
            )

            assert outcome.action == MergeAction.SKIPPED
            assert not outcome.written
            assert outcome.record.description == "Order lifecycle state"
            assert outcome.record.source == "manual"
            assert outcome.record.last_seen_run_id == "run-2"

    def test_agent_tool_cannot_overwrite_manual(self, manager, project_id, annotation_key):
        with manager.session_scope(project_id) as session:
            engine = MergeEngine(session)
            engine.upsert(
                ColumnAnnotation, annotation_key, {"role": "attribute"}, Provenance.MANUAL
            )
            outcome = engine.upsert(
                ColumnAnnotation, annotation_key, {"role": "measure"}, Provenance.AGENT_TOOL
            )
            assert outcome.action == MergeAction.SKIPPED
            assert outcome.record.role == "attribute"

    def test_repeated_inference_is_idempotent(self, manager, project_id, annotation_key):
        values = {"semantic_type": "enum", "confidence": 0.85}
        with manager.session_scope(project_id) as session:
            engine = MergeEngine(session)
            engine.upsert(ColumnAnnotation, annotation_key, values, Provenance.INFERRED, "run-1")
            again = engine.upsert(
                ColumnAnnotation, annotation_key, values, Provenance.INFERRED, "run-2"
            )

            assert again.action == MergeAction.UNCHANGED
            assert again.record.last_seen_run_id == "run-2"
            assert len(session.execute(select(ColumnAnnotation)).scalars().all()) == 1


class TestRetireUnseen:
    """Records no run saw are deleted or flagged stale."""

    def test_inferred_deleted_curated_flagged(self, manager, project_id, ontology_id):
        with manager.session_scope(project_id) as session:
            engine = MergeEngine(session)
            engine.upsert(
                Fact,
                {"ontology_id": ontology_id, "term": "churn"},
                {"definition": "Users who left"},
                Provenance.INFERRED,
                "run-1",
            )
            engine.upsert(
                Fact,
                {"ontology_id": ontology_id, "term": "arr"},
                {"definition": "Annual recurring revenue"},
                Provenance.MANUAL,
                "run-1",
            )
            engine.upsert(
                Fact,
                {"ontology_id": ontology_id, "term": "order"},
                {"definition": "A purchase"},
                Provenance.INFERRED,
                "run-2",
            )

            outcome = engine.retire_unseen(Fact, ontology_id, ["run-2"])

            assert outcome.deleted == 1
            assert outcome.flagged_stale == 1
            remaining = {f.term: f for f in session.execute(select(Fact)).scalars().all()}
            assert set(remaining) == {"arr", "order"}
            assert remaining["arr"].is_stale
            assert not remaining["order"].is_stale

    def test_seen_again_clears_stale_flag(self, manager, project_id, ontology_id):
        key = {"ontology_id": ontology_id, "term": "arr"}
        with manager.session_scope(project_id) as session:
            engine = MergeEngine(session)
            engine.upsert(Fact, key, {"definition": "ARR"}, Provenance.MANUAL, "run-1")
            engine.retire_unseen(Fact, ontology_id, ["run-2"])
            assert engine.get(Fact, key).is_stale

            engine.upsert(Fact, key, {"definition": "inferred"}, Provenance.INFERRED, "run-3")
            record = engine.get(Fact, key)
            assert not record.is_stale
            assert record.definition == "ARR"


class TestDelete:
    """Inference never deletes curated records."""

    def test_inferred_delete_flags_manual_stale(self, manager, project_id, annotation_key):
        with manager.session_scope(project_id) as session:
            engine = MergeEngine(session)
            record = engine.upsert(
                ColumnAnnotation, annotation_key, {"role": "attribute"}, Provenance.MANUAL
            ).record

            assert not engine.delete(record, Provenance.INFERRED)
            assert record.is_stale
            assert engine.delete(record, Provenance.MANUAL)
            session.flush()
            assert engine.get(ColumnAnnotation, annotation_key) is None
