"""Tests for the pipeline orchestrator with mock steps."""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import delete, select

from schemasense.core.errors import (
    ConfigurationError,
    FatalError,
    RunAlreadyActiveError,
    TransientError,
)
from schemasense.pipeline.base import PIPELINE_DAG, CancellationToken, PhaseResult, PhaseStatus
from schemasense.pipeline.db_models import ExtractionRun, StepCheckpoint
from schemasense.pipeline.orchestrator import Pipeline, PipelineConfig
from schemasense.pipeline.progress import ProgressReporter
from schemasense.storage.models import Ontology

ALL_STEPS = [d.name for d in PIPELINE_DAG]


def checkpoints(manager, project_id, run_id):
    """Step name -> (status, attempts, retries, reused_from_run_id, error)."""
    with manager.session_scope(project_id) as session:
        rows = session.execute(
            select(StepCheckpoint).where(StepCheckpoint.run_id == run_id)
        ).scalars()
        return {
            c.step_name: (c.status, c.attempts, c.retries, c.reused_from_run_id, c.error)
            for c in rows
        }


def ontology_status(manager, project_id, ontology_id):
    with manager.session_scope(project_id) as session:
        return session.get(Ontology, ontology_id).status


class TestPipelineRun:
    """Sequential execution in DAG order."""

    def test_all_steps_succeed(
        self, pipeline, mock_phases, manager, project_id, ontology_id, settings
    ):
        result = pipeline.run(manager, project_id, ontology_id, settings=settings)

        assert result.succeeded
        assert list(result.steps) == ALL_STEPS
        assert all(p.run_count == 1 for p in mock_phases.values())
        assert not result.degraded
        assert result.summary() == "succeeded"
        assert ontology_status(manager, project_id, ontology_id) == "ready"

        steps = checkpoints(manager, project_id, result.run_id)
        assert {s[0] for s in steps.values()} == {"succeeded"}
        with manager.session_scope(project_id) as session:
            run = session.get(ExtractionRun, result.run_id)
            assert run.status == "succeeded"
            assert run.steps_succeeded == 6
            assert run.completed_at is not None

    def test_outputs_flow_to_later_steps(
        self, pipeline, mock_phases, manager, project_id, ontology_id, settings
    ):
        pipeline.run(manager, project_id, ontology_id, settings=settings)

        seen = mock_phases["relationships"].seen_outputs[0]
        assert seen["profiling"] == {"done": "profiling"}
        assert seen["classification"] == {"done": "classification"}

    def test_target_phase_runs_dependencies_only(
        self, pipeline, mock_phases, manager, project_id, ontology_id, settings
    ):
        result = pipeline.run(
            manager, project_id, ontology_id, settings=settings, target_phase="classification"
        )

        assert result.succeeded
        assert list(result.steps) == ["profiling", "classification"]
        assert mock_phases["relationships"].run_count == 0
        assert ontology_status(manager, project_id, ontology_id) == "empty"

    def test_skip_reason_marks_step_skipped(
        self, pipeline, mock_phases, manager, project_id, ontology_id, settings
    ):
        mock_phases["relationships"].skip_reason = "No reference candidates"
        result = pipeline.run(manager, project_id, ontology_id, settings=settings)

        assert result.succeeded
        assert result.steps["relationships"].status == PhaseStatus.SKIPPED
        assert mock_phases["relationships"].run_count == 0
        assert mock_phases["enrichment"].run_count == 1

    def test_missing_implementation_fails_the_run(
        self, mock_phases, fast_retry, manager, project_id, ontology_id, settings
    ):
        phases = {name: phase for name, phase in mock_phases.items() if name != "enrichment"}
        pipeline = Pipeline(
            phases=phases, config=PipelineConfig(retry=fast_retry), reporter=ProgressReporter()
        )
        result = pipeline.run(manager, project_id, ontology_id, settings=settings)

        assert result.status == "failed"
        assert result.failing_step == "enrichment"
        assert "No implementation registered" in result.error


class TestRunValidation:
    """Identifiers are required and must resolve."""

    def test_missing_ids(self, pipeline, manager, project_id, settings):
        with pytest.raises(ConfigurationError):
            pipeline.run(manager, project_id, "", settings=settings)
        with pytest.raises(ConfigurationError):
            pipeline.run(manager, "", "some-ontology", settings=settings)

    def test_unknown_ontology(self, pipeline, manager, project_id, settings):
        with pytest.raises(ConfigurationError):
            pipeline.run(manager, project_id, "no-such-ontology", settings=settings)


class TestRetries:
    """Step attempts go through the injected retry policy."""

    def test_transient_error_is_retried(
        self, pipeline, mock_phases, manager, project_id, ontology_id, settings
    ):
        mock_phases["classification"].script = [TransientError("connection reset by peer")]
        result = pipeline.run(manager, project_id, ontology_id, settings=settings)

        assert result.succeeded
        assert mock_phases["classification"].run_count == 2
        status, attempts, retries, _, _ = checkpoints(manager, project_id, result.run_id)[
            "classification"
        ]
        assert (status, attempts, retries) == ("succeeded", 2, 1)

    def test_exhausted_retries_fail_the_step(
        self, pipeline, mock_phases, manager, project_id, ontology_id, settings
    ):
        mock_phases["classification"].script = [TransientError("timeout")] * 3
        result = pipeline.run(manager, project_id, ontology_id, settings=settings)

        assert result.status == "failed"
        assert result.failing_step == "classification"
        assert "failed after 3 attempts" in result.error
        status, attempts, retries, _, _ = checkpoints(manager, project_id, result.run_id)[
            "classification"
        ]
        assert (status, attempts, retries) == ("failed", 3, 2)

    def test_non_retryable_error_is_not_retried(
        self, pipeline, mock_phases, manager, project_id, ontology_id, settings
    ):
        mock_phases["classification"].script = [ValueError("bad threshold")]
        result = pipeline.run(manager, project_id, ontology_id, settings=settings)

        assert result.status == "failed"
        assert result.error == "bad threshold"
        assert mock_phases["classification"].run_count == 1
        _, attempts, retries, _, _ = checkpoints(manager, project_id, result.run_id)[
            "classification"
        ]
        assert (attempts, retries) == (1, 0)

    def test_failed_result_is_not_retried(
        self, pipeline, mock_phases, manager, project_id, ontology_id, settings
    ):
        mock_phases["classification"].script = [PhaseResult.failed("no profiles")]
        result = pipeline.run(manager, project_id, ontology_id, settings=settings)

        assert result.status == "failed"
        assert mock_phases["classification"].run_count == 1


class TestFailure:
    """A failing required step stops the run."""

    def test_later_steps_do_not_run(
        self, pipeline, mock_phases, manager, project_id, ontology_id, settings
    ):
        mock_phases["classification"].script = [PhaseResult.failed("boom")]
        result = pipeline.run(manager, project_id, ontology_id, settings=settings)

        assert result.status == "failed"
        assert result.failing_step == "classification"
        assert result.summary() == "failed at step 'classification': boom"
        assert mock_phases["relationships"].run_count == 0
        assert ontology_status(manager, project_id, ontology_id) == "failed"

        steps = checkpoints(manager, project_id, result.run_id)
        assert set(steps) == {"profiling", "classification"}
        assert steps["classification"][4] == "boom"

    def test_optional_step_failure_degrades(
        self, pipeline, mock_phases, manager, project_id, ontology_id, settings
    ):
        mock_phases["terminology"].script = [RuntimeError("llm down")]
        result = pipeline.run(manager, project_id, ontology_id, settings=settings)

        assert result.succeeded
        assert result.degraded
        assert result.skipped_steps == ["terminology"]
        assert mock_phases["finalization"].run_count == 1
        assert "degraded" in result.summary()

        status, _, _, _, error = checkpoints(manager, project_id, result.run_id)["terminology"]
        assert status == "skipped"
        assert error == "llm down"
        with manager.session_scope(project_id) as session:
            run = session.get(ExtractionRun, result.run_id)
            assert run.degraded
            assert run.skipped_steps == ["terminology"]

    def test_lost_checkpoint_fails_the_run(
        self, pipeline, mock_phases, manager, project_id, ontology_id, settings
    ):
        def drop_checkpoint(ctx):
            ctx.session.execute(delete(StepCheckpoint).where(StepCheckpoint.run_id == ctx.run_id))
            return PhaseResult.success()

        mock_phases["classification"].script = [drop_checkpoint]
        with pytest.raises(FatalError, match="No checkpoint for step 'classification'"):
            pipeline.run(manager, project_id, ontology_id, settings=settings)

        assert mock_phases["relationships"].run_count == 0
        with manager.session_scope(project_id) as session:
            run = session.execute(select(ExtractionRun)).scalar_one()
            assert run.status == "failed"
            assert run.failing_step == "classification"
        assert ontology_status(manager, project_id, ontology_id) == "failed"


class TestCancellation:
    """Cooperative cancellation between and inside steps."""

    def test_cancel_inside_step(
        self, pipeline, mock_phases, manager, project_id, ontology_id, settings
    ):
        def cancel(ctx):
            ctx.cancel_token.cancel("user request")
            ctx.check_cancelled()

        mock_phases["classification"].script = [cancel]
        result = pipeline.run(manager, project_id, ontology_id, settings=settings)

        assert result.status == "failed"
        assert result.cancelled
        assert result.failing_step == "classification"
        assert result.summary().startswith("cancelled at step 'classification'")
        assert mock_phases["relationships"].run_count == 0

        status, attempts, _, _, error = checkpoints(manager, project_id, result.run_id)[
            "classification"
        ]
        assert (status, attempts) == ("failed", 1)
        assert error == "cancelled: user request"

    def test_cancelled_before_start(self, pipeline, mock_phases, manager, project_id, ontology_id):
        token = CancellationToken()
        token.cancel()
        result = pipeline.run(manager, project_id, ontology_id, cancel_token=token)

        assert result.cancelled
        assert result.failing_step == "profiling"
        assert mock_phases["profiling"].run_count == 0


class TestResume:
    """Succeeded steps of a failed run are reused by the next run."""

    def test_resume_reuses_completed_steps(
        self, pipeline, mock_phases, manager, project_id, ontology_id, settings
    ):
        mock_phases["relationships"].script = [PhaseResult.failed("boom")]
        first = pipeline.run(manager, project_id, ontology_id, settings=settings)
        second = pipeline.run(manager, project_id, ontology_id, settings=settings)

        assert first.status == "failed"
        assert second.succeeded
        assert second.resumed_from_run_id == first.run_id
        assert second.reused_steps == ["profiling", "classification"]
        assert mock_phases["profiling"].run_count == 1
        assert mock_phases["classification"].run_count == 1
        assert mock_phases["relationships"].run_count == 2

        # Reused outputs are available to the steps that do run
        assert mock_phases["relationships"].seen_outputs[1]["profiling"] == {"done": "profiling"}

        steps = checkpoints(manager, project_id, second.run_id)
        assert steps["profiling"][3] == first.run_id
        assert steps["relationships"][3] is None

    def test_reuse_points_at_the_producing_run(
        self, pipeline, mock_phases, manager, project_id, ontology_id, settings
    ):
        mock_phases["relationships"].script = [PhaseResult.failed("first")]
        mock_phases["enrichment"].script = [PhaseResult.failed("second")]
        first = pipeline.run(manager, project_id, ontology_id, settings=settings)
        second = pipeline.run(manager, project_id, ontology_id, settings=settings)
        third = pipeline.run(manager, project_id, ontology_id, settings=settings)

        assert second.failing_step == "enrichment"
        assert third.succeeded
        assert third.resumed_from_run_id == second.run_id

        steps = checkpoints(manager, project_id, third.run_id)
        assert steps["profiling"][3] == first.run_id
        assert steps["classification"][3] == first.run_id
        assert steps["relationships"][3] == second.run_id
        assert mock_phases["profiling"].run_count == 1

    def test_force_ignores_previous_run(
        self, pipeline, mock_phases, manager, project_id, ontology_id, settings
    ):
        mock_phases["relationships"].script = [PhaseResult.failed("boom")]
        pipeline.run(manager, project_id, ontology_id, settings=settings)
        second = pipeline.run(manager, project_id, ontology_id, settings=settings, force=True)

        assert second.succeeded
        assert second.reused_steps == []
        assert second.resumed_from_run_id is None
        assert mock_phases["profiling"].run_count == 2

    def test_succeeded_run_is_not_resumed(
        self, pipeline, mock_phases, manager, project_id, ontology_id, settings
    ):
        pipeline.run(manager, project_id, ontology_id, settings=settings)
        second = pipeline.run(manager, project_id, ontology_id, settings=settings)

        assert second.reused_steps == []
        assert mock_phases["profiling"].run_count == 2


class TestActiveRuns:
    """At most one running run per ontology."""

    def add_running_run(self, manager, project_id, ontology_id, age):
        touched = datetime.now(UTC) - age
        with manager.session_scope(project_id) as session:
            run = ExtractionRun(
                ontology_id=ontology_id,
                project_id=project_id,
                status="running",
                started_at=touched,
                updated_at=touched,
            )
            session.add(run)
            session.flush()
            return run.run_id

    def test_active_run_blocks_a_second_start(
        self, pipeline, mock_phases, manager, project_id, ontology_id, settings
    ):
        active = self.add_running_run(manager, project_id, ontology_id, timedelta(seconds=1))

        with pytest.raises(RunAlreadyActiveError) as exc_info:
            pipeline.run(manager, project_id, ontology_id, settings=settings)

        assert exc_info.value.run_id == active
        assert mock_phases["profiling"].run_count == 0
        assert ontology_status(manager, project_id, ontology_id) == "empty"

    def test_stale_run_is_taken_over(
        self, mock_phases, fast_retry, manager, project_id, ontology_id, settings
    ):
        stale = self.add_running_run(manager, project_id, ontology_id, timedelta(hours=2))
        pipeline = Pipeline(
            phases=dict(mock_phases),
            config=PipelineConfig(retry=fast_retry, stale_run_timeout_seconds=60),
            reporter=ProgressReporter(),
        )
        result = pipeline.run(manager, project_id, ontology_id, settings=settings)

        assert result.succeeded
        with manager.session_scope(project_id) as session:
            abandoned = session.get(ExtractionRun, stale)
            assert abandoned.status == "failed"
            assert abandoned.error.startswith("abandoned: no progress for")


class TestProgress:
    """Progress events are monotonic per step."""

    def test_backwards_updates_are_ignored(
        self, mock_phases, fast_retry, manager, project_id, ontology_id, settings
    ):
        events = []

        def report(ctx):
            for current in (1, 3, 2, 4):
                ctx.report(current, 4, f"table {current}")
            return PhaseResult.success()

        mock_phases["profiling"].script = [report]
        pipeline = Pipeline(
            phases=dict(mock_phases),
            config=PipelineConfig(retry=fast_retry),
            reporter=ProgressReporter(listeners=[events.append]),
        )
        result = pipeline.run(manager, project_id, ontology_id, settings=settings)

        percentages = [e.percentage for e in events if e.step == "profiling"]
        assert percentages == [25.0, 75.0, 100.0, 100.0]
        assert all(e.run_id == result.run_id for e in events)

        with manager.session_scope(project_id) as session:
            checkpoint = session.execute(
                select(StepCheckpoint).where(
                    StepCheckpoint.run_id == result.run_id,
                    StepCheckpoint.step_name == "profiling",
                )
            ).scalar_one()
            assert checkpoint.progress_percentage == 100.0
            assert checkpoint.progress_message == "table 4"
