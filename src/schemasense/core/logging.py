"""Structured logging infrastructure.

Usage:
    from schemasense.core.logging import get_logger, configure_logging

    # Configure at startup
    configure_logging(log_level="INFO", log_format="console")

    # Get logger in any module
    logger = get_logger(__name__)

    # Log with structured context
    logger.info("step_started", step="profiling", ontology_id="abc123")

    # Scoped context propagation
    with log_context(run_id="run-123", step="classification"):
        logger.info("classifying_table", table="orders", columns=12)
"""

from __future__ import annotations

import logging
import sys
import threading
from collections.abc import MutableMapping
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, cast

import structlog
from structlog.typing import FilteringBoundLogger

# Context variables for correlation
_run_context: ContextVar[dict[str, Any] | None] = ContextVar("run_context", default=None)


@dataclass
class PhaseMetrics:
    """Metrics collected while a single step executes.

    Worker threads of the step share this instance, so counters are
    updated under a lock.
    """

    phase_name: str
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None

    tables_processed: int = 0
    columns_processed: int = 0
    llm_calls: int = 0
    llm_input_tokens: int = 0
    llm_output_tokens: int = 0
    db_queries: int = 0
    db_writes: int = 0
    retries: int = 0

    # Sub-operation timings (seconds)
    timings: dict[str, float] = field(default_factory=dict)

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def duration_seconds(self) -> float:
        """Get duration in seconds."""
        if self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return (datetime.now(UTC) - self.start_time).total_seconds()

    def add(self, counter: str, amount: int = 1) -> None:
        """Increment a named counter."""
        with self._lock:
            setattr(self, counter, getattr(self, counter) + amount)

    def record_timing(self, operation: str, seconds: float) -> None:
        """Record timing for a sub-operation."""
        with self._lock:
            self.timings[operation] = self.timings.get(operation, 0.0) + seconds

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "phase_name": self.phase_name,
            "duration_seconds": self.duration_seconds,
            "tables_processed": self.tables_processed,
            "columns_processed": self.columns_processed,
            "llm_calls": self.llm_calls,
            "llm_input_tokens": self.llm_input_tokens,
            "llm_output_tokens": self.llm_output_tokens,
            "db_queries": self.db_queries,
            "db_writes": self.db_writes,
            "retries": self.retries,
            "timings": dict(self.timings),
        }


@dataclass
class PipelineMetrics:
    """Aggregate metrics for an extraction run."""

    run_id: str
    ontology_id: str
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    phases: list[PhaseMetrics] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        """Get total duration in seconds."""
        if self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return (datetime.now(UTC) - self.start_time).total_seconds()

    def add_phase(self, metrics: PhaseMetrics) -> None:
        """Add phase metrics."""
        self.phases.append(metrics)

    def totals(self) -> dict[str, int]:
        """Sum the counters of every finished step."""
        return {
            "llm_calls": sum(p.llm_calls for p in self.phases),
            "llm_input_tokens": sum(p.llm_input_tokens for p in self.phases),
            "llm_output_tokens": sum(p.llm_output_tokens for p in self.phases),
            "tables_processed": sum(p.tables_processed for p in self.phases),
            "columns_processed": sum(p.columns_processed for p in self.phases),
            "retries": sum(p.retries for p in self.phases),
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "run_id": self.run_id,
            "ontology_id": self.ontology_id,
            "duration_seconds": self.duration_seconds,
            "phase_count": len(self.phases),
            **self.totals(),
            "phases": [p.to_dict() for p in self.phases],
        }


# Metrics storage (per-run)
_current_metrics: ContextVar[PipelineMetrics | None] = ContextVar("current_metrics", default=None)
_current_phase_metrics: ContextVar[PhaseMetrics | None] = ContextVar(
    "current_phase_metrics", default=None
)


def start_pipeline_metrics(run_id: str, ontology_id: str) -> PipelineMetrics:
    """Start collecting metrics for an extraction run."""
    metrics = PipelineMetrics(run_id=run_id, ontology_id=ontology_id)
    _current_metrics.set(metrics)
    return metrics


def get_pipeline_metrics() -> PipelineMetrics | None:
    """Get current pipeline metrics."""
    return _current_metrics.get()


def start_phase_metrics(phase_name: str) -> PhaseMetrics:
    """Start collecting metrics for a step."""
    metrics = PhaseMetrics(phase_name=phase_name)
    _current_phase_metrics.set(metrics)
    return metrics


def get_phase_metrics() -> PhaseMetrics | None:
    """Get current phase metrics."""
    return _current_phase_metrics.get()


def end_phase_metrics() -> PhaseMetrics | None:
    """End current phase metrics and add to pipeline metrics."""
    phase_metrics = _current_phase_metrics.get()
    if phase_metrics:
        phase_metrics.end_time = datetime.now(UTC)
        pipeline_metrics = _current_metrics.get()
        if pipeline_metrics:
            pipeline_metrics.add_phase(phase_metrics)
        _current_phase_metrics.set(None)
    return phase_metrics


def end_pipeline_metrics() -> PipelineMetrics | None:
    """End pipeline metrics collection."""
    metrics = _current_metrics.get()
    if metrics:
        metrics.end_time = datetime.now(UTC)
        _current_metrics.set(None)
    return metrics


def _add_run_context(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Processor to add run context to log events."""
    context = _run_context.get()
    if context:
        for key, value in context.items():
            event_dict.setdefault(key, value)
    return event_dict


def _add_metrics_context(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Processor to add current metrics context."""
    phase_metrics = _current_phase_metrics.get()
    if phase_metrics:
        event_dict["_step"] = phase_metrics.phase_name
    pipeline_metrics = _current_metrics.get()
    if pipeline_metrics:
        event_dict["_run_id"] = pipeline_metrics.run_id
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "console",
    show_timestamps: bool = True,
    color: bool = True,
) -> None:
    """Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Output format ("console" for development, "json" for production)
        show_timestamps: Whether to show timestamps in console mode
        color: Whether to use colors in console mode
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_run_context,
        _add_metrics_context,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if show_timestamps:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso", utc=True))

    if log_format == "json":
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(
                colors=color,
                exception_formatter=structlog.dev.plain_traceback,
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, log_level.upper())),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Also configure stdlib logging for libraries (sqlalchemy, anthropic)
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )


def get_logger(name: str | None = None) -> FilteringBoundLogger:
    """Get a structured logger.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Bound structlog logger
    """
    return cast(FilteringBoundLogger, structlog.get_logger(name))


class LogContext:
    """Context manager for adding context to logs within a scope."""

    def __init__(self, **context: Any):
        self.context = context
        self.token: Any = None

    def __enter__(self) -> LogContext:
        current = _run_context.get() or {}
        self.token = _run_context.set({**current, **self.context})
        return self

    def __exit__(self, *args: Any) -> None:
        if self.token:
            _run_context.reset(self.token)


def log_context(**context: Any) -> LogContext:
    """Create a context manager for scoped logging context.

    Usage:
        with log_context(run_id="abc", step="profiling"):
            logger.info("processing")  # Will include run_id and step
    """
    return LogContext(**context)


# Convenience functions for metrics tracking
def increment_llm_call(input_tokens: int = 0, output_tokens: int = 0) -> None:
    """Increment LLM call counter in current phase metrics."""
    metrics = _current_phase_metrics.get()
    if metrics:
        metrics.add("llm_calls")
        metrics.add("llm_input_tokens", input_tokens)
        metrics.add("llm_output_tokens", output_tokens)


def increment_db_query() -> None:
    """Increment datasource query counter in current phase metrics."""
    metrics = _current_phase_metrics.get()
    if metrics:
        metrics.add("db_queries")


def increment_db_write(count: int = 1) -> None:
    """Increment metadata write counter in current phase metrics."""
    metrics = _current_phase_metrics.get()
    if metrics:
        metrics.add("db_writes", count)


def record_retry() -> None:
    """Count one scheduled retry in current phase metrics."""
    metrics = _current_phase_metrics.get()
    if metrics:
        metrics.add("retries")


def record_tables_processed(count: int) -> None:
    """Record tables processed in current phase metrics."""
    metrics = _current_phase_metrics.get()
    if metrics:
        metrics.add("tables_processed", count)


def record_columns_processed(count: int) -> None:
    """Record columns processed in current phase metrics."""
    metrics = _current_phase_metrics.get()
    if metrics:
        metrics.add("columns_processed", count)


def record_operation_timing(operation: str, seconds: float) -> None:
    """Record timing for a sub-operation in current phase metrics."""
    metrics = _current_phase_metrics.get()
    if metrics:
        metrics.record_timing(operation, seconds)


# Initialize with default configuration
configure_logging()
