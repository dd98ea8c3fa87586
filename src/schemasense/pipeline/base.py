"""Pipeline base types.

Defines the step status, context, result and the static DAG used by the
orchestrator, plus the cooperative cancellation token.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from schemasense.core.errors import RunCancelledError

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from schemasense.analysis.features.agent import ColumnClassificationAgent
    from schemasense.analysis.relationships.agent import RelationshipRoleAgent
    from schemasense.core.config import Settings
    from schemasense.datasource import DataSource
    from schemasense.ontology.terminology import TerminologyAgent
    from schemasense.pipeline.progress import StepProgress


class PhaseStatus(str, Enum):
    """Status of a pipeline step."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class CancellationToken:
    """Cooperative cancellation flag shared by a run and its workers."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunCancelledError(self.reason or "cancelled")


@dataclass
class Collaborators:
    """External collaborators a step may need. LLM agents are optional."""

    datasource: DataSource | None = None
    classification_agent: ColumnClassificationAgent | None = None
    role_agent: RelationshipRoleAgent | None = None
    terminology_agent: TerminologyAgent | None = None


@dataclass
class PhaseContext:
    """Context passed to each step.

    The ontology and project are explicit on every run; nothing reads a
    global "current ontology".
    """

    session: Session
    project_id: str
    ontology_id: str
    run_id: str
    settings: Settings
    collaborators: Collaborators = field(default_factory=Collaborators)

    # Outputs from previous steps (keyed by step name)
    previous_outputs: dict[str, dict[str, Any]] = field(default_factory=dict)

    # Runs whose records count as seen by this run (itself plus resumed runs)
    seen_run_ids: list[str] = field(default_factory=list)

    cancel_token: CancellationToken | None = None
    progress: StepProgress | None = None

    # Configuration overrides
    config: dict[str, Any] = field(default_factory=dict)

    def get_output(self, phase_name: str, key: str, default: Any = None) -> Any:
        """Get an output from a previous step."""
        return self.previous_outputs.get(phase_name, {}).get(key, default)

    def check_cancelled(self) -> None:
        if self.cancel_token is not None:
            self.cancel_token.raise_if_cancelled()

    def report(self, current: int, total: int, message: str | None = None) -> None:
        if self.progress is not None:
            self.progress.update(current, total, message)


@dataclass
class PhaseResult:
    """Result from a step execution."""

    status: PhaseStatus
    outputs: dict[str, Any] = field(default_factory=dict)
    duration_seconds: float = 0.0
    error: str | None = None
    warnings: list[str] = field(default_factory=list)

    # Metrics for observability
    records_processed: int = 0
    records_created: int = 0

    @classmethod
    def success(
        cls,
        outputs: dict[str, Any] | None = None,
        duration: float = 0.0,
        records_processed: int = 0,
        records_created: int = 0,
        warnings: list[str] | None = None,
    ) -> PhaseResult:
        """Create a successful result."""
        return cls(
            status=PhaseStatus.SUCCEEDED,
            outputs=outputs or {},
            duration_seconds=duration,
            records_processed=records_processed,
            records_created=records_created,
            warnings=warnings or [],
        )

    @classmethod
    def failed(cls, error: str, duration: float = 0.0) -> PhaseResult:
        """Create a failed result."""
        return cls(
            status=PhaseStatus.FAILED,
            error=error,
            duration_seconds=duration,
        )

    @classmethod
    def skipped(cls, reason: str) -> PhaseResult:
        """Create a skipped result."""
        return cls(
            status=PhaseStatus.SKIPPED,
            error=reason,
        )


class Phase(Protocol):
    """Protocol for pipeline steps.

    Steps declare their dependencies and what they produce. Retryable errors
    may escape ``run``; anything else is reported through the result.
    """

    @property
    def name(self) -> str: ...

    @property
    def description(self) -> str: ...

    @property
    def dependencies(self) -> list[str]: ...

    @property
    def outputs(self) -> list[str]: ...

    def run(self, ctx: PhaseContext) -> PhaseResult: ...

    def should_skip(self, ctx: PhaseContext) -> str | None:
        """Return a reason string to skip the step, or None to run it."""
        ...


@dataclass
class PhaseDefinition:
    """Static definition of a step for the DAG."""

    name: str
    description: str
    dependencies: list[str]
    outputs: list[str]
    requires_llm: bool = False
    optional: bool = False  # failure degrades the run instead of failing it


# Fixed topological order; implementations are in phases/
PIPELINE_DAG: list[PhaseDefinition] = [
    PhaseDefinition(
        name="profiling",
        description="Record the observed schema and profile every column",
        dependencies=[],
        outputs=["tables", "columns", "failed_columns", "schema_changes"],
    ),
    PhaseDefinition(
        name="classification",
        description="Column roles and semantic types",
        dependencies=["profiling"],
        outputs=["classified_columns", "rule_columns", "llm_columns", "needs_review"],
    ),
    PhaseDefinition(
        name="relationships",
        description="Relationship discovery from value overlap",
        dependencies=["classification"],
        outputs=["relationships", "candidates", "rejected"],
    ),
    PhaseDefinition(
        name="enrichment",
        description="Entities and column annotations",
        dependencies=["relationships"],
        outputs=["entities", "annotations"],
    ),
    PhaseDefinition(
        name="terminology",
        description="Business terminology discovery",
        dependencies=["enrichment"],
        outputs=["facts"],
        requires_llm=True,
        optional=True,
    ),
    PhaseDefinition(
        name="finalization",
        description="Retire unseen records and mark the ontology ready",
        dependencies=["enrichment"],
        outputs=["retired", "flagged_stale"],
    ),
]


def get_phase_definition(name: str) -> PhaseDefinition | None:
    """Get phase definition by name."""
    for phase in PIPELINE_DAG:
        if phase.name == name:
            return phase
    return None


def get_all_dependencies(phase_name: str) -> set[str]:
    """Get all transitive dependencies for a step."""
    phase = get_phase_definition(phase_name)
    if not phase:
        return set()

    deps = set(phase.dependencies)
    for dep in phase.dependencies:
        deps.update(get_all_dependencies(dep))
    return deps

