"""End-to-end runs of the built-in steps over an in-memory DuckDB source."""

from sqlalchemy import select

from schemasense.analysis.relationships.db_models import Relationship
from schemasense.core.models.base import Provenance
from schemasense.datasource import DuckDBDataSource
from schemasense.ontology.changes import ChangeStatus, PendingChangeService
from schemasense.ontology.db_models import ColumnAnnotation, Entity, Fact
from schemasense.ontology.merge import MergeEngine
from schemasense.ontology.questions import QuestionService
from schemasense.pipeline.base import Collaborators
from schemasense.pipeline.orchestrator import PipelineConfig, run_pipeline
from schemasense.storage.models import Ontology


def provenance(record):
    return record.source, record.last_edit_source, record.is_stale


def snapshot(manager, project_id, ontology_id):
    """Merged records with their provenance, plus the ontology status."""
    with manager.session_scope(project_id) as session:
        entities = sorted(
            (e.name, *provenance(e)) for e in session.execute(select(Entity)).scalars()
        )
        annotations = sorted(
            (a.table_name, a.column_name, *provenance(a))
            for a in session.execute(select(ColumnAnnotation)).scalars()
        )
        relationships = sorted(
            (
                r.source_table,
                r.source_column,
                r.target_table,
                r.target_column,
                r.cardinality,
                *provenance(r),
            )
            for r in session.execute(select(Relationship)).scalars()
        )
        facts = sorted((f.term, *provenance(f)) for f in session.execute(select(Fact)).scalars())
        status = session.get(Ontology, ontology_id).status
    return {
        "entities": entities,
        "annotations": annotations,
        "relationships": relationships,
        "facts": facts,
        "status": status,
    }


def row(record):
    """Every stored field of ``record`` except the run that last saw it."""
    return {
        column.key: getattr(record, column.key)
        for column in record.__table__.columns
        if column.key != "last_seen_run_id"
    }


def inferred(*key):
    return (*key, "inferred", "inferred", False)


class TestBuiltinPipeline:
    """Profiling through finalization with no semantic classifier."""

    def test_builds_ontology(self, manager, project_id, ontology_id, hosts_source, fast_retry):
        result = run_pipeline(
            manager,
            project_id,
            ontology_id,
            collaborators=Collaborators(datasource=hosts_source),
            config=PipelineConfig(retry=fast_retry, max_workers=2),
        )

        assert result.succeeded, result.summary()
        # Terminology needs a semantic classifier
        assert result.degraded
        assert result.skipped_steps == ["terminology"]
        assert result.steps["profiling"].outputs["tables"] == 2
        assert result.steps["profiling"].outputs["first_refresh"] is True

        built = snapshot(manager, project_id, ontology_id)
        assert built["entities"] == [inferred("Server"), inferred("User")]
        assert len(built["annotations"]) == 6
        assert all(a[2:] == ("inferred", "inferred", False) for a in built["annotations"])
        assert (
            inferred("main.servers", "host_id", "main.users", "user_id", "N:1")
            in built["relationships"]
        )
        assert built["facts"] == []
        assert built["status"] == "ready"

    def test_second_run_is_idempotent(
        self, manager, project_id, ontology_id, hosts_source, fast_retry
    ):
        collaborators = Collaborators(datasource=hosts_source)
        config = PipelineConfig(retry=fast_retry, max_workers=2)
        run_pipeline(manager, project_id, ontology_id, collaborators, config)
        before = snapshot(manager, project_id, ontology_id)

        second = run_pipeline(manager, project_id, ontology_id, collaborators, config)

        assert second.succeeded
        assert second.reused_steps == []
        assert second.steps["profiling"].outputs["schema_changes"] == 0
        assert second.steps["finalization"].outputs["retired"] == 0
        assert snapshot(manager, project_id, ontology_id) == before


class TestCuratedMetadata:
    """Manual edits across rebuilds."""

    def test_manual_annotation_survives_rebuild(
        self, manager, project_id, ontology_id, hosts_source, fast_retry
    ):
        collaborators = Collaborators(datasource=hosts_source)
        config = PipelineConfig(retry=fast_retry, max_workers=2)
        run_pipeline(manager, project_id, ontology_id, collaborators, config)

        key = {"ontology_id": ontology_id, "table_name": "main.users", "column_name": "email"}
        with manager.session_scope(project_id) as session:
            MergeEngine(session).upsert(
                ColumnAnnotation,
                key,
                {"description": "Login address, unique per user", "semantic_type": "email"},
                Provenance.MANUAL,
            )
        with manager.session_scope(project_id) as session:
            curated = row(session.execute(select(ColumnAnnotation).filter_by(**key)).scalar_one())
        assert curated["source"] == "manual"

        rebuilt = run_pipeline(manager, project_id, ontology_id, collaborators, config)
        run_pipeline(manager, project_id, ontology_id, collaborators, config)

        assert rebuilt.succeeded
        with manager.session_scope(project_id) as session:
            after = session.execute(select(ColumnAnnotation).filter_by(**key)).scalar_one()
            assert row(after) == curated
            assert after.last_seen_run_id is not None
        built = snapshot(manager, project_id, ontology_id)
        assert ("main.users", "email", "manual", "manual", False) in built["annotations"]


class TestReviewedChanges:
    """Reviewer decisions on schema additions between runs."""

    def test_rejected_table_stays_out(
        self, manager, project_id, ontology_id, hosts_db, hosts_source, fast_retry
    ):
        collaborators = Collaborators(datasource=hosts_source)
        config = PipelineConfig(retry=fast_retry, max_workers=2)
        run_pipeline(manager, project_id, ontology_id, collaborators, config)

        hosts_db.execute("CREATE TABLE scratch (scratch_id INTEGER PRIMARY KEY, note VARCHAR)")
        hosts_db.execute("INSERT INTO scratch SELECT i, 'n' || i FROM range(1, 51) t(i)")
        second = run_pipeline(manager, project_id, ontology_id, collaborators, config)
        assert second.steps["profiling"].outputs["pending_changes"] == 1
        assert inferred("Scratch") in snapshot(manager, project_id, ontology_id)["entities"]

        with manager.session_scope(project_id) as session:
            service = PendingChangeService(session)
            (change,) = [
                c
                for c in service.list(ontology_id, status=ChangeStatus.PENDING)
                if c.change_type == "new_table"
            ]
            assert change.table_name == "main.scratch"
            service.reject(change.change_id, reason="scratch space")

        third = run_pipeline(manager, project_id, ontology_id, collaborators, config)

        assert third.succeeded
        assert third.steps["profiling"].outputs["schema_changes"] == 0
        assert third.steps["profiling"].outputs["tables"] == 2
        built = snapshot(manager, project_id, ontology_id)
        assert built["entities"] == [inferred("Server"), inferred("User")]
        assert not any(a[0] == "main.scratch" for a in built["annotations"])
        with manager.session_scope(project_id) as session:
            primary_tables = session.execute(select(Entity.primary_table)).scalars().all()
            assert "main.scratch" not in primary_tables


def pending(manager, project_id, ontology_id, change_type):
    with manager.session_scope(project_id) as session:
        return [
            (c.table_name, c.column_name, c.change_source, c.new_value, c.change_id)
            for c in PendingChangeService(session).list(ontology_id, status=ChangeStatus.PENDING)
            if c.change_type == change_type
        ]


class TestDataChanges:
    """What the data reveals between builds."""

    def test_new_status_value_is_proposed(
        self, manager, project_id, ontology_id, hosts_db, hosts_source, fast_retry
    ):
        collaborators = Collaborators(datasource=hosts_source)
        config = PipelineConfig(retry=fast_retry, max_workers=2)
        first = run_pipeline(manager, project_id, ontology_id, collaborators, config)
        assert first.steps["classification"].outputs["data_changes"] == 0

        hosts_db.execute("UPDATE servers SET status = 'retired' WHERE server_id % 10 = 0")
        second = run_pipeline(manager, project_id, ontology_id, collaborators, config)

        assert second.steps["classification"].outputs["data_changes"] == 1
        ((table_name, column_name, source, new_value, _),) = pending(
            manager, project_id, ontology_id, "new_enum_value"
        )
        assert (table_name, column_name, source) == ("main.servers", "status", "data_scan")
        assert new_value["new_values"] == ["retired"]

        third = run_pipeline(manager, project_id, ontology_id, collaborators, config)
        assert third.steps["classification"].outputs["data_changes"] == 0
        assert len(pending(manager, project_id, ontology_id, "new_enum_value")) == 1

    def test_new_reference_is_proposed_and_can_be_declined(
        self, manager, project_id, ontology_id, hosts_db, hosts_source, fast_retry
    ):
        collaborators = Collaborators(datasource=hosts_source)
        config = PipelineConfig(retry=fast_retry, max_workers=2)
        first = run_pipeline(manager, project_id, ontology_id, collaborators, config)
        assert first.steps["relationships"].outputs["proposed"] == 0

        hosts_db.execute("ALTER TABLE servers ADD COLUMN owner_id VARCHAR")
        hosts_db.execute("UPDATE servers SET owner_id = host_id")
        second = run_pipeline(manager, project_id, ontology_id, collaborators, config)

        owner = inferred("main.servers", "owner_id", "main.users", "user_id", "N:1")
        assert second.steps["relationships"].outputs["proposed"] == 1
        assert owner in snapshot(manager, project_id, ontology_id)["relationships"]
        ((table_name, column_name, source, new_value, change_id),) = pending(
            manager, project_id, ontology_id, "new_fk_pattern"
        )
        assert (table_name, column_name, source) == ("main.servers", "owner_id", "data_scan")
        assert new_value["references"] == "main.users.user_id"

        with manager.session_scope(project_id) as session:
            PendingChangeService(session).reject(change_id, reason="copy of host_id")
        third = run_pipeline(manager, project_id, ontology_id, collaborators, config)

        assert third.succeeded
        assert third.steps["relationships"].outputs["proposed"] == 0
        relationships = snapshot(manager, project_id, ontology_id)["relationships"]
        assert owner not in relationships
        assert (
            inferred("main.servers", "host_id", "main.users", "user_id", "N:1") in relationships
        )


class TestClarificationQuestions:
    """Questions raised by classification."""

    def test_only_unexplained_nulls_are_questioned(
        self, manager, project_id, ontology_id, duckdb_conn, fast_retry
    ):
        duckdb_conn.execute(
            """
            CREATE TABLE accounts AS
            SELECT
                i AS account_id,
                CASE WHEN i % 100 < 3 THEN TIMESTAMP '2024-01-01 00:00:00' END AS deleted_at,
                CASE WHEN i % 100 < 15 THEN 'ref-' || i END AS referral_code
            FROM range(1, 1001) t(i)
            """
        )
        collaborators = Collaborators(datasource=DuckDBDataSource(duckdb_conn))
        config = PipelineConfig(retry=fast_retry, max_workers=2)

        first = run_pipeline(manager, project_id, ontology_id, collaborators, config)
        second = run_pipeline(manager, project_id, ontology_id, collaborators, config)

        assert first.steps["classification"].outputs["questions"] == 1
        assert second.steps["classification"].outputs["questions"] == 0
        with manager.session_scope(project_id) as session:
            (question,) = QuestionService(session).list(ontology_id)
            assert (question.table_name, question.column_name) == (
                "main.accounts",
                "referral_code",
            )
            assert question.detected_pattern == "high_null_rate"
            assert "85% NULL" in question.text
