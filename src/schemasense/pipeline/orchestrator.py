"""Pipeline orchestrator.

Runs the steps of one extraction run sequentially, in DAG order. Each step
attempt gets its own project-scoped session; the injected retry policy
decides whether a failed attempt is tried again. Step state is persisted
at every step boundary so a failed or cancelled run can be resumed from
its last completed step.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any

import numpy as np
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from schemasense.core.config import Settings, get_settings
from schemasense.core.connections import ConnectionManager
from schemasense.core.errors import (
    ConfigurationError,
    FatalError,
    RetryExhaustedError,
    RunAlreadyActiveError,
    RunCancelledError,
)
from schemasense.core.logging import (
    PhaseMetrics,
    PipelineMetrics,
    end_phase_metrics,
    end_pipeline_metrics,
    get_logger,
    log_context,
    start_phase_metrics,
    start_pipeline_metrics,
)
from schemasense.core.retry import RetryPolicy
from schemasense.pipeline.base import (
    PIPELINE_DAG,
    CancellationToken,
    Collaborators,
    Phase,
    PhaseContext,
    PhaseResult,
    PhaseStatus,
    get_all_dependencies,
    get_phase_definition,
)
from schemasense.pipeline.db_models import ExtractionRun, StepCheckpoint
from schemasense.pipeline.progress import ProgressReporter, StepProgress, get_progress_reporter
from schemasense.storage.models import Ontology

logger = get_logger(__name__)

RUN_RUNNING = "running"
RUN_SUCCEEDED = "succeeded"
RUN_FAILED = "failed"


def _sanitize_for_json(obj: Any) -> Any:
    """Recursively convert a value into something the JSON columns accept.

    numpy scalars become Python scalars, NaN/Inf become None, dates become
    ISO strings, enums their values and pydantic models plain dicts.
    """
    if isinstance(obj, np.generic):
        obj = obj.item()
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, float):
        return obj if math.isfinite(obj) else None
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, BaseModel):
        return _sanitize_for_json(obj.model_dump(mode="json"))
    if isinstance(obj, dict):
        return {str(k): _sanitize_for_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [_sanitize_for_json(item) for item in obj]
    return obj


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


@dataclass
class PipelineConfig:
    """Configuration for pipeline execution.

    Attributes:
        max_workers: Bounded pool size for per-step sub-operations
        skip_completed: Reuse succeeded steps of the previous failed run
        retry: Retry policy for step attempts (built from settings when None)
        stale_run_timeout_seconds: Age after which a running run counts as
            abandoned (settings value when None)
    """

    max_workers: int | None = None
    skip_completed: bool = True
    retry: RetryPolicy | None = None
    stale_run_timeout_seconds: int | None = None


@dataclass
class RunResult:
    """Outcome of one extraction run."""

    run_id: str
    ontology_id: str
    status: str = RUN_RUNNING
    steps: dict[str, PhaseResult] = field(default_factory=dict)
    cancelled: bool = False
    degraded: bool = False
    skipped_steps: list[str] = field(default_factory=list)
    failing_step: str | None = None
    error: str | None = None
    resumed_from_run_id: str | None = None
    reused_steps: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == RUN_SUCCEEDED

    def summary(self) -> str:
        """One-line, user-facing description of the outcome."""
        if self.status == RUN_FAILED:
            prefix = "cancelled" if self.cancelled else "failed"
            return f"{prefix} at step '{self.failing_step}': {self.error}"
        if self.degraded:
            return f"succeeded (degraded, skipped: {', '.join(self.skipped_steps)})"
        return self.status


@dataclass
class _RunState:
    """Mutable state of one run while it executes."""

    run_id: str
    previous_ontology_status: str
    outputs: dict[str, dict[str, Any]] = field(default_factory=dict)
    reused: dict[str, str] = field(default_factory=dict)  # step -> run that produced it
    seen_run_ids: set[str] = field(default_factory=set)
    resumed_from_run_id: str | None = None


@dataclass
class Pipeline:
    """Pipeline orchestrator.

    Manages step execution with:
    - Dependency order from the static DAG
    - Per-step retry through one injected policy
    - Checkpoint-based resume
    - At most one running run per ontology
    - Cooperative cancellation
    - Progress tracking
    """

    phases: dict[str, Phase] = field(default_factory=dict)
    config: PipelineConfig = field(default_factory=PipelineConfig)
    reporter: ProgressReporter = field(default_factory=get_progress_reporter)

    def register(self, phase: Phase) -> None:
        """Register a step implementation."""
        self.phases[phase.name] = phase

    def get_phases_to_run(self, target_phase: str | None = None) -> list[str]:
        """Get steps to run in dependency order.

        Args:
            target_phase: If set, only run this step and its dependencies.
                         If None, run all steps.
        """
        if target_phase:
            deps = get_all_dependencies(target_phase)
            deps.add(target_phase)
            return [p.name for p in PIPELINE_DAG if p.name in deps]
        return [p.name for p in PIPELINE_DAG]

    def run(
        self,
        manager: ConnectionManager,
        project_id: str,
        ontology_id: str,
        collaborators: Collaborators | None = None,
        settings: Settings | None = None,
        force: bool = False,
        cancel_token: CancellationToken | None = None,
        target_phase: str | None = None,
        run_config: dict[str, Any] | None = None,
    ) -> RunResult:
        """Run the extraction workflow for one ontology.

        Args:
            manager: Connection manager for the metadata store
            project_id: Owning project; every session of the run is scoped to it
            ontology_id: Ontology to build
            collaborators: Datasource and optional semantic classifier agents
            settings: Application settings (cached settings when None)
            force: Run every step even if the previous run left completed steps
            cancel_token: Token checked between steps and sub-operations
            target_phase: Only run this step and its dependencies
            run_config: Per-run overrides passed to the steps

        Raises:
            ConfigurationError: Missing identifiers or unknown ontology
            RunAlreadyActiveError: Another run is active for the ontology
        """
        if not project_id or not ontology_id:
            raise ConfigurationError("project_id and ontology_id are required")

        settings = settings or get_settings()
        collaborators = collaborators or Collaborators()
        cancel_token = cancel_token or CancellationToken()
        policy = self.config.retry or RetryPolicy.from_settings(settings)
        run_config = dict(run_config or {})
        if self.config.max_workers is not None:
            run_config.setdefault("max_workers", self.config.max_workers)

        state = self._start_run(manager, project_id, ontology_id, settings, force, run_config)
        result = RunResult(
            run_id=state.run_id,
            ontology_id=ontology_id,
            resumed_from_run_id=state.resumed_from_run_id,
            reused_steps=list(state.reused),
        )
        start_time = time.time()
        start_pipeline_metrics(run_id=state.run_id, ontology_id=ontology_id)
        current: str | None = None

        with log_context(run_id=state.run_id, ontology_id=ontology_id):
            logger.info(
                "run_started",
                resumed_from=state.resumed_from_run_id,
                reused_steps=list(state.reused),
            )
            try:
                for name in self.get_phases_to_run(target_phase):
                    current = name
                    cancel_token.raise_if_cancelled()

                    if name in state.reused:
                        result.steps[name] = PhaseResult.success(outputs=state.outputs[name])
                        logger.info("step_reused", step=name, from_run=state.reused[name])
                        continue

                    step_result, degraded = self._run_step(
                        name,
                        manager,
                        project_id,
                        ontology_id,
                        settings,
                        collaborators,
                        cancel_token,
                        policy,
                        state,
                        run_config,
                    )
                    result.steps[name] = step_result

                    if degraded:
                        result.degraded = True
                        result.skipped_steps.append(name)
                    elif step_result.status == PhaseStatus.SUCCEEDED:
                        state.outputs[name] = step_result.outputs
                    elif step_result.status == PhaseStatus.FAILED:
                        result.status = RUN_FAILED
                        result.failing_step = name
                        result.error = step_result.error
                        break
            except RunCancelledError as e:
                result.status = RUN_FAILED
                result.cancelled = True
                result.failing_step = current
                result.error = str(e) or "cancelled"
                logger.warning("run_cancelled", step=current, reason=result.error)
            except Exception as e:
                result.status = RUN_FAILED
                result.failing_step = current
                result.error = str(e)
                result.duration_seconds = time.time() - start_time
                self._finish_run(manager, project_id, result, state, end_pipeline_metrics())
                logger.error("run_failed", step=current, error=str(e))
                raise

            if result.status == RUN_RUNNING:
                result.status = RUN_SUCCEEDED
            result.duration_seconds = time.time() - start_time
            self._finish_run(manager, project_id, result, state, end_pipeline_metrics())

            log = logger.info if result.succeeded else logger.error
            log(
                "run_finished",
                status=result.status,
                degraded=result.degraded,
                skipped_steps=result.skipped_steps,
                failing_step=result.failing_step,
                error=result.error,
                duration_seconds=round(result.duration_seconds, 3),
            )
        return result

    # --- run lifecycle ---

    def _start_run(
        self,
        manager: ConnectionManager,
        project_id: str,
        ontology_id: str,
        settings: Settings,
        force: bool,
        run_config: dict[str, Any],
    ) -> _RunState:
        timeout = self.config.stale_run_timeout_seconds or settings.stale_run_timeout_seconds
        try:
            with manager.session_scope(project_id) as session:
                ontology = session.execute(
                    select(Ontology).where(Ontology.ontology_id == ontology_id)
                ).scalar_one_or_none()
                if ontology is None:
                    raise ConfigurationError(
                        f"Ontology {ontology_id} not found in project {project_id}"
                    )

                self._take_over_stale_runs(session, ontology_id, timeout)

                run = ExtractionRun(
                    ontology_id=ontology_id,
                    project_id=project_id,
                    status=RUN_RUNNING,
                    config=_sanitize_for_json({**run_config, "force": force}),
                )
                session.add(run)
                session.flush()

                state = _RunState(run_id=run.run_id, previous_ontology_status=ontology.status)
                state.seen_run_ids.add(run.run_id)
                ontology.status = "building"

                if self.config.skip_completed and not force:
                    self._resume_previous(session, run, state)
        except IntegrityError as e:
            # Lost the race against a concurrent start
            raise RunAlreadyActiveError(ontology_id, "unknown") from e
        return state

    def _take_over_stale_runs(self, session: Session, ontology_id: str, timeout: int) -> None:
        stmt = select(ExtractionRun).where(
            ExtractionRun.ontology_id == ontology_id,
            ExtractionRun.status == RUN_RUNNING,
        )
        now = datetime.now(UTC)
        for active in session.execute(stmt).scalars().all():
            idle = (now - _as_utc(active.updated_at)).total_seconds()
            if idle < timeout:
                raise RunAlreadyActiveError(ontology_id, active.run_id)
            active.status = RUN_FAILED
            active.error = f"abandoned: no progress for {int(idle)}s"
            active.completed_at = now
            logger.warning("stale_run_taken_over", stale_run_id=active.run_id, idle_seconds=idle)
        session.flush()

    def _resume_previous(self, session: Session, run: ExtractionRun, state: _RunState) -> None:
        """Reuse the succeeded steps of the latest run when that run failed."""
        previous = session.execute(
            select(ExtractionRun)
            .where(
                ExtractionRun.ontology_id == run.ontology_id,
                ExtractionRun.run_id != run.run_id,
            )
            .order_by(ExtractionRun.started_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        if previous is None or previous.status != RUN_FAILED:
            return

        checkpoints = session.execute(
            select(StepCheckpoint).where(
                StepCheckpoint.run_id == previous.run_id,
                StepCheckpoint.status == PhaseStatus.SUCCEEDED.value,
            )
        ).scalars()
        order = {d.name: i for i, d in enumerate(PIPELINE_DAG)}
        for checkpoint in sorted(checkpoints, key=lambda c: order.get(c.step_name, len(order))):
            origin = checkpoint.reused_from_run_id or previous.run_id
            session.add(
                StepCheckpoint(
                    run_id=run.run_id,
                    ontology_id=run.ontology_id,
                    project_id=run.project_id,
                    step_name=checkpoint.step_name,
                    status=PhaseStatus.SUCCEEDED.value,
                    outputs=checkpoint.outputs,
                    warnings=checkpoint.warnings,
                    reused_from_run_id=origin,
                    progress_current=checkpoint.progress_current,
                    progress_total=checkpoint.progress_total,
                    progress_message=checkpoint.progress_message,
                    progress_percentage=100.0,
                    started_at=checkpoint.started_at,
                    completed_at=checkpoint.completed_at,
                    duration_seconds=checkpoint.duration_seconds,
                )
            )
            state.reused[checkpoint.step_name] = origin
            state.outputs[checkpoint.step_name] = dict(checkpoint.outputs or {})
            state.seen_run_ids.add(origin)

        if state.reused:
            run.resumed_from_run_id = previous.run_id
            state.resumed_from_run_id = previous.run_id
        session.flush()

    def _finish_run(
        self,
        manager: ConnectionManager,
        project_id: str,
        result: RunResult,
        state: _RunState,
        metrics: PipelineMetrics | None,
    ) -> None:
        totals = metrics.totals() if metrics else {}
        statuses = [r.status for r in result.steps.values()]
        with manager.session_scope(project_id) as session:
            run = session.get(ExtractionRun, result.run_id)
            if run is None:
                raise FatalError(f"Run record {result.run_id} no longer exists")
            now = datetime.now(UTC)
            run.status = result.status
            run.cancelled = result.cancelled
            run.degraded = result.degraded
            run.skipped_steps = list(result.skipped_steps)
            run.failing_step = result.failing_step
            run.error = result.error
            run.completed_at = now
            run.updated_at = now
            run.total_duration_seconds = result.duration_seconds
            run.steps_succeeded = statuses.count(PhaseStatus.SUCCEEDED)
            run.steps_failed = statuses.count(PhaseStatus.FAILED)
            run.steps_skipped = statuses.count(PhaseStatus.SKIPPED)
            run.total_llm_calls = totals.get("llm_calls", 0)
            run.total_llm_input_tokens = totals.get("llm_input_tokens", 0)
            run.total_llm_output_tokens = totals.get("llm_output_tokens", 0)
            run.total_retries = totals.get("retries", 0)

            ontology = session.get(Ontology, result.ontology_id)
            if ontology is not None:
                if result.status == RUN_FAILED:
                    ontology.status = "failed"
                elif ontology.status == "building":
                    # Partial (target_phase) run: finalization did not run
                    ontology.status = state.previous_ontology_status

    # --- steps ---

    def _run_step(
        self,
        name: str,
        manager: ConnectionManager,
        project_id: str,
        ontology_id: str,
        settings: Settings,
        collaborators: Collaborators,
        cancel_token: CancellationToken,
        policy: RetryPolicy,
        state: _RunState,
        run_config: dict[str, Any],
    ) -> tuple[PhaseResult, bool]:
        """Run one step to a settled result.

        Returns:
            The step result and whether the step degraded the run

        Raises:
            RunCancelledError: after the cancelled step has been recorded
        """
        definition = get_phase_definition(name)
        phase = self.phases.get(name)
        run_id = state.run_id
        started_at = datetime.now(UTC)
        start = time.time()
        progress = self.reporter.start_step(run_id, name)
        self._mark_step_running(manager, project_id, ontology_id, run_id, name, started_at)
        start_phase_metrics(name)

        attempts = 0
        retries = 0

        def attempt() -> PhaseResult:
            nonlocal attempts
            attempts += 1
            if phase is None:
                raise FatalError(f"No implementation registered for step: {name}")
            with manager.session_scope(project_id) as session:
                ctx = PhaseContext(
                    session=session,
                    project_id=project_id,
                    ontology_id=ontology_id,
                    run_id=run_id,
                    settings=settings,
                    collaborators=collaborators,
                    previous_outputs=dict(state.outputs),
                    seen_run_ids=sorted(state.seen_run_ids),
                    cancel_token=cancel_token,
                    progress=progress,
                    config=run_config,
                )
                skip_reason = phase.should_skip(ctx)
                if skip_reason:
                    return PhaseResult.skipped(skip_reason)
                outcome = phase.run(ctx)
                if outcome.status != PhaseStatus.SUCCEEDED:
                    session.rollback()
                return outcome

        def on_retry(attempt_number: int, error: BaseException, delay: float) -> None:
            nonlocal retries
            retries += 1
            self._record_retry(manager, project_id, run_id, name, retries)

        cancelled: RunCancelledError | None = None
        with log_context(step=name):
            logger.info("step_started", step=name)
            try:
                if phase is None:
                    result = PhaseResult.failed(f"No implementation registered for step: {name}")
                else:
                    result = policy.call(
                        attempt,
                        operation=f"step:{name}",
                        cancel_token=cancel_token,
                        on_retry=on_retry,
                    )
            except RunCancelledError as e:
                cancelled = e
                result = PhaseResult.failed(f"cancelled: {e}")
            except RetryExhaustedError as e:
                result = PhaseResult.failed(str(e))
            except Exception as e:
                logger.error("step_crashed", step=name, error=str(e), error_type=type(e).__name__)
                result = PhaseResult.failed(str(e))
            result.duration_seconds = time.time() - start

            degraded = False
            optional = definition is not None and definition.optional
            if optional and cancelled is None and result.status != PhaseStatus.SUCCEEDED:
                reason = result.error or "skipped"
                result = PhaseResult(
                    status=PhaseStatus.SKIPPED,
                    error=reason,
                    duration_seconds=result.duration_seconds,
                    warnings=[*result.warnings, f"Optional step '{name}' skipped: {reason}"],
                )
                degraded = True
                logger.warning("optional_step_skipped", step=name, reason=reason)
            elif result.status == PhaseStatus.SUCCEEDED:
                progress.complete()

            metrics = end_phase_metrics()
            self._finish_step(
                manager, project_id, run_id, name, result, attempts, retries, progress, metrics
            )
            self.reporter.end_step(run_id, name)

            for warning in result.warnings:
                logger.warning("step_warning", step=name, warning=warning)
            if result.status == PhaseStatus.FAILED:
                logger.error("step_failed", step=name, error=result.error, attempts=attempts)
            else:
                logger.info(
                    "step_finished",
                    step=name,
                    status=result.status.value,
                    attempts=attempts,
                    duration_seconds=round(result.duration_seconds, 3),
                )

        if cancelled is not None:
            raise cancelled
        return result, degraded

    def _mark_step_running(
        self,
        manager: ConnectionManager,
        project_id: str,
        ontology_id: str,
        run_id: str,
        name: str,
        started_at: datetime,
    ) -> None:
        with manager.session_scope(project_id) as session:
            session.add(
                StepCheckpoint(
                    run_id=run_id,
                    ontology_id=ontology_id,
                    project_id=project_id,
                    step_name=name,
                    status=PhaseStatus.RUNNING.value,
                    started_at=started_at,
                )
            )
            self._heartbeat(session, run_id)

    def _record_retry(
        self, manager: ConnectionManager, project_id: str, run_id: str, name: str, retries: int
    ) -> None:
        with manager.session_scope(project_id) as session:
            checkpoint = self._get_checkpoint(session, run_id, name)
            if checkpoint is not None:
                checkpoint.retries = retries
            self._heartbeat(session, run_id)

    def _finish_step(
        self,
        manager: ConnectionManager,
        project_id: str,
        run_id: str,
        name: str,
        result: PhaseResult,
        attempts: int,
        retries: int,
        progress: StepProgress,
        metrics: PhaseMetrics | None,
    ) -> None:
        with manager.session_scope(project_id) as session:
            checkpoint = self._get_checkpoint(session, run_id, name)
            if checkpoint is None:
                raise FatalError(f"No checkpoint for step '{name}' of run {run_id}")
            checkpoint.status = result.status.value
            checkpoint.attempts = attempts
            checkpoint.retries = retries
            checkpoint.outputs = _sanitize_for_json(result.outputs)
            checkpoint.warnings = list(result.warnings)
            checkpoint.error = result.error
            checkpoint.completed_at = datetime.now(UTC)
            checkpoint.duration_seconds = result.duration_seconds
            checkpoint.records_processed = result.records_processed
            checkpoint.records_created = result.records_created
            checkpoint.progress_current = progress.current
            checkpoint.progress_total = progress.total
            checkpoint.progress_message = progress.message
            checkpoint.progress_percentage = progress.percentage
            if metrics is not None:
                checkpoint.tables_processed = metrics.tables_processed
                checkpoint.columns_processed = metrics.columns_processed
                checkpoint.llm_calls = metrics.llm_calls
                checkpoint.llm_input_tokens = metrics.llm_input_tokens
                checkpoint.llm_output_tokens = metrics.llm_output_tokens
                checkpoint.db_queries = metrics.db_queries
                checkpoint.db_writes = metrics.db_writes
                checkpoint.timings = _sanitize_for_json(metrics.timings)
            self._heartbeat(session, run_id)

    @staticmethod
    def _get_checkpoint(session: Session, run_id: str, name: str) -> StepCheckpoint | None:
        return session.execute(
            select(StepCheckpoint).where(
                StepCheckpoint.run_id == run_id,
                StepCheckpoint.step_name == name,
            )
        ).scalar_one_or_none()

    @staticmethod
    def _heartbeat(session: Session, run_id: str) -> None:
        run = session.get(ExtractionRun, run_id)
        if run is not None:
            run.updated_at = datetime.now(UTC)


# Global pipeline instance
_pipeline: Pipeline | None = None


def get_pipeline() -> Pipeline:
    """Get the global pipeline instance."""
    global _pipeline
    if _pipeline is None:
        _pipeline = Pipeline()
        _register_builtin_phases(_pipeline)
    return _pipeline


def _register_builtin_phases(pipeline: Pipeline) -> None:
    """Register all built-in step implementations."""
    from schemasense.pipeline.phases import (
        ClassificationPhase,
        EnrichmentPhase,
        FinalizationPhase,
        ProfilingPhase,
        RelationshipsPhase,
        TerminologyPhase,
    )

    pipeline.register(ProfilingPhase())
    pipeline.register(ClassificationPhase())
    pipeline.register(RelationshipsPhase())
    pipeline.register(EnrichmentPhase())
    pipeline.register(TerminologyPhase())
    pipeline.register(FinalizationPhase())


def run_pipeline(
    manager: ConnectionManager,
    project_id: str,
    ontology_id: str,
    collaborators: Collaborators | None = None,
    config: PipelineConfig | None = None,
    force: bool = False,
    cancel_token: CancellationToken | None = None,
    target_phase: str | None = None,
    run_config: dict[str, Any] | None = None,
) -> RunResult:
    """Run the pipeline.

    Convenience function that uses the built-in steps.

    Args:
        manager: Connection manager for the metadata store
        project_id: Owning project
        ontology_id: Ontology to build
        collaborators: Datasource and optional semantic classifier agents
        config: Pipeline configuration
        force: Ignore completed steps of a previous failed run
        cancel_token: Cooperative cancellation token
        target_phase: Optional target step (runs step + dependencies)
        run_config: Runtime configuration overrides

    Returns:
        RunResult with per-step results
    """
    builtin = get_pipeline()
    pipeline = Pipeline(phases=builtin.phases, config=config or PipelineConfig())
    return pipeline.run(
        manager,
        project_id,
        ontology_id,
        collaborators=collaborators,
        force=force,
        cancel_token=cancel_token,
        target_phase=target_phase,
        run_config=run_config,
    )
