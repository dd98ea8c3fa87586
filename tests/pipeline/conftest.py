"""Pipeline test fixtures."""

import pytest

from schemasense.core.retry import RetryPolicy
from schemasense.pipeline.base import PIPELINE_DAG, PhaseContext, PhaseResult
from schemasense.pipeline.orchestrator import Pipeline, PipelineConfig
from schemasense.pipeline.phases.base import BasePhase
from schemasense.pipeline.progress import ProgressReporter
from schemasense.storage.models import Ontology


class MockPhase(BasePhase):
    """A mock step driven by a script of outcomes.

    Each call pops the next item: exceptions are raised, callables are
    called with the context, results are returned. An empty script
    succeeds.
    """

    def __init__(self, name: str, dependencies: list[str] | None = None, script=None):
        self._name = name
        self._dependencies = dependencies or []
        self.script = list(script or [])
        self.skip_reason: str | None = None
        self.run_count = 0
        self.seen_outputs: list[dict] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return f"Mock step: {self._name}"

    @property
    def dependencies(self) -> list[str]:
        return self._dependencies

    @property
    def outputs(self) -> list[str]:
        return ["done"]

    def _run(self, ctx: PhaseContext) -> PhaseResult:
        self.run_count += 1
        self.seen_outputs.append(dict(ctx.previous_outputs))
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, BaseException):
                raise item
            if callable(item):
                return item(ctx)
            return item
        if self._name == "finalization":
            ctx.session.get(Ontology, ctx.ontology_id).status = "ready"
        return PhaseResult.success(outputs={"done": self._name}, records_processed=10)

    def should_skip(self, ctx: PhaseContext) -> str | None:
        return self.skip_reason


@pytest.fixture
def mock_phases():
    """One mock per step of the DAG, keyed by step name."""
    return {d.name: MockPhase(d.name, d.dependencies) for d in PIPELINE_DAG}


@pytest.fixture
def fast_retry():
    return RetryPolicy(max_attempts=3, initial_delay=0.0, jitter=0.0, sleep=lambda _: None)


@pytest.fixture
def reporter():
    return ProgressReporter()


@pytest.fixture
def pipeline(mock_phases, fast_retry, reporter):
    return Pipeline(
        phases=dict(mock_phases),
        config=PipelineConfig(retry=fast_retry),
        reporter=reporter,
    )
