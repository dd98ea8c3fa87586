"""Extraction pipeline.

Runs the extraction steps of one ontology in DAG order with per-step retry,
checkpoint-based resume, cooperative cancellation and progress reporting.

Usage:
    from schemasense.pipeline import Collaborators, run_pipeline

    result = run_pipeline(manager, project_id, ontology_id,
                          collaborators=Collaborators(datasource=source))

    # Run specific step (+ dependencies)
    result = run_pipeline(manager, project_id, ontology_id, target_phase="relationships")

    # Check status
    with manager.session_scope(project_id) as session:
        status = get_run_status(session, ontology_id)
"""

from schemasense.pipeline.base import (
    CancellationToken,
    Collaborators,
    Phase,
    PhaseContext,
    PhaseResult,
    PhaseStatus,
)
from schemasense.pipeline.orchestrator import Pipeline, PipelineConfig, RunResult, run_pipeline
from schemasense.pipeline.progress import ProgressEvent, ProgressReporter, get_progress_reporter
from schemasense.pipeline.status import RunStatus, get_run_status, list_runs, reset_runs

__all__ = [
    # Base types
    "CancellationToken",
    "Collaborators",
    "Phase",
    "PhaseContext",
    "PhaseResult",
    "PhaseStatus",
    # Orchestrator
    "Pipeline",
    "PipelineConfig",
    "RunResult",
    "run_pipeline",
    # Progress
    "ProgressEvent",
    "ProgressReporter",
    "get_progress_reporter",
    # Status
    "RunStatus",
    "get_run_status",
    "list_runs",
    "reset_runs",
]
