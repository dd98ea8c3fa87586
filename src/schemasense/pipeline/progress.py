"""Step progress reporting.

Progress is monotonically non-decreasing per step. Events go to in-process
listeners as they happen and are kept in a live registry that
``get_run_status`` reads while a step is still running; the final value is
persisted on the step checkpoint when the step ends.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from schemasense.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    run_id: str
    step: str
    current: int
    total: int
    percentage: float
    message: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


ProgressListener = Callable[[ProgressEvent], None]


class StepProgress:
    """Progress of one step of one run."""

    def __init__(
        self,
        run_id: str,
        step: str,
        listeners: list[ProgressListener] | None = None,
    ) -> None:
        self.run_id = run_id
        self.step = step
        self.listeners = listeners or []
        self.current = 0
        self.total = 0
        self.percentage = 0.0
        self.message: str | None = None
        self._lock = threading.Lock()

    def update(self, current: int, total: int, message: str | None = None) -> ProgressEvent | None:
        """Record progress. Updates that would move backwards are ignored."""
        percentage = min(100.0, 100.0 * current / total) if total > 0 else 0.0
        with self._lock:
            if percentage < self.percentage:
                return None
            self.current, self.total = current, total
            self.percentage = round(percentage, 2)
            if message is not None:
                self.message = message
            event = ProgressEvent(
                run_id=self.run_id,
                step=self.step,
                current=current,
                total=total,
                percentage=self.percentage,
                message=self.message,
            )

        for listener in self.listeners:
            try:
                listener(event)
            except Exception as e:
                logger.warning("progress_listener_failed", step=self.step, error=str(e))
        return event

    def complete(self, message: str | None = None) -> None:
        total = max(self.total, 1)
        self.update(total, total, message)


class ProgressReporter:
    """Live progress registry for the steps of running runs."""

    def __init__(self, listeners: list[ProgressListener] | None = None) -> None:
        self.listeners = list(listeners or [])
        self._live: dict[tuple[str, str], StepProgress] = {}
        self._lock = threading.Lock()

    def add_listener(self, listener: ProgressListener) -> None:
        self.listeners.append(listener)

    def start_step(self, run_id: str, step: str) -> StepProgress:
        progress = StepProgress(run_id, step, self.listeners)
        with self._lock:
            self._live[(run_id, step)] = progress
        return progress

    def end_step(self, run_id: str, step: str) -> None:
        with self._lock:
            self._live.pop((run_id, step), None)

    def live(self, run_id: str, step: str) -> StepProgress | None:
        with self._lock:
            return self._live.get((run_id, step))


_reporter = ProgressReporter()


def get_progress_reporter() -> ProgressReporter:
    """Process-wide progress registry."""
    return _reporter
