"""Base phase implementation.

Provides common functionality for all pipeline steps.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from schemasense.core.errors import (
    ConfigurationError,
    RetryExhaustedError,
    RunCancelledError,
    is_retryable,
)
from schemasense.core.logging import get_logger
from schemasense.pipeline.base import PhaseContext, PhaseResult

logger = get_logger(__name__)


class BasePhase(ABC):
    """Base class for pipeline steps.

    Subclasses must implement:
    - name property
    - description property
    - dependencies property
    - outputs property
    - _run method

    and may override ``required_collaborators`` and ``should_skip``.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this step."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description."""
        ...

    @property
    @abstractmethod
    def dependencies(self) -> list[str]:
        """List of step names that must complete before this step."""
        ...

    @property
    @abstractmethod
    def outputs(self) -> list[str]:
        """List of output keys this step produces."""
        ...

    @property
    def required_collaborators(self) -> list[str]:
        """Collaborator attributes that must be present on the context."""
        return []

    def validate(self, ctx: PhaseContext) -> None:
        """Check required identifiers and collaborators.

        Raises:
            ConfigurationError: If anything required is missing
        """
        for attr in ("project_id", "ontology_id", "run_id"):
            if not getattr(ctx, attr):
                raise ConfigurationError(f"Step '{self.name}' requires {attr}")
        for attr in self.required_collaborators:
            if getattr(ctx.collaborators, attr, None) is None:
                raise ConfigurationError(f"Step '{self.name}' requires collaborator {attr}")

    def run(self, ctx: PhaseContext) -> PhaseResult:
        """Execute the step.

        Configuration errors and other non-retryable errors become a failed
        result. Retryable errors and cancellation propagate so the
        orchestrator's retry policy can act on them.
        """
        try:
            self.validate(ctx)
        except ConfigurationError as e:
            logger.error("step_misconfigured", step=self.name, error=str(e))
            return PhaseResult.failed(f"Configuration error: {e}")

        try:
            return self._run(ctx)
        except (RunCancelledError, RetryExhaustedError):
            raise
        except Exception as e:
            if is_retryable(e):
                raise
            logger.error("step_error", step=self.name, error=str(e), error_type=type(e).__name__)
            return PhaseResult.failed(str(e))

    @abstractmethod
    def _run(self, ctx: PhaseContext) -> PhaseResult:
        """Execute the step logic.

        Subclasses implement this method.
        """
        ...

    def should_skip(self, ctx: PhaseContext) -> str | None:
        """Check if this step should be skipped.

        Default implementation: never skip.

        Returns:
            None if the step should run, or a reason string if it should be skipped.
        """
        return None
