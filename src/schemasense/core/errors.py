"""Error taxonomy.

Configuration errors are fatal and never retried. Transient errors are
retried by the retry policy and escalate to ``RetryExhaustedError``.
Expected, per-item failures inside analysis code travel as ``Result``
values instead of exceptions.
"""

from __future__ import annotations

import re


class SchemaSenseError(Exception):
    """Base class for all schemasense errors."""


class ConfigurationError(SchemaSenseError):
    """A required identifier, setting or collaborator is missing or invalid."""

    retryable = False


class FatalError(SchemaSenseError):
    """A non-retryable failure (validation, invalid state transition)."""

    retryable = False


class TransientError(SchemaSenseError):
    """A failure expected to succeed when retried (network, rate limit, 5xx)."""

    retryable = True

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class DataSourceError(SchemaSenseError):
    """The schema/data source rejected or failed a query."""


class NotFoundError(SchemaSenseError):
    """A requested record does not exist (or is outside the caller's project)."""

    retryable = False


class RunAlreadyActiveError(SchemaSenseError):
    """Another extraction run is already active for the ontology."""

    retryable = False

    def __init__(self, ontology_id: str, run_id: str):
        super().__init__(f"Extraction run {run_id} is already active for ontology {ontology_id}")
        self.ontology_id = ontology_id
        self.run_id = run_id


class RunCancelledError(SchemaSenseError):
    """Cooperative cancellation was requested."""

    retryable = False


class RetryExhaustedError(SchemaSenseError):
    """Retries ran out, or the same error type repeated too often."""

    retryable = False

    def __init__(self, message: str, error_type: str, attempts: int, last_error: BaseException):
        super().__init__(message)
        self.error_type = error_type
        self.attempts = attempts
        self.last_error = last_error


_HTTP_STATUS_RE = re.compile(r"\b(429|500|502|503|504)\b")

# (substring, error type) pairs checked in order against the lowercased message
_RETRYABLE_PATTERNS: list[tuple[str, str]] = [
    ("connection refused", "connection"),
    ("connection reset", "connection"),
    ("connection error", "connection"),
    ("too many connections", "connection"),
    ("broken pipe", "broken_pipe"),
    ("timed out", "timeout"),
    ("timeout", "timeout"),
    ("temporary failure", "connection"),
    ("deadlock", "deadlock"),
    ("rate limit", "rate_limit"),
    ("too many requests", "rate_limit"),
    ("service unavailable", "503"),
    ("resource exhausted", "oom"),
    ("out of memory", "oom"),
    ("cuda error", "gpu"),
    ("gpu error", "gpu"),
]


def classify_error(error: BaseException) -> str:
    """Return the error type used for same-type escalation.

    HTTP status codes take precedence, then known message patterns.
    """
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return str(status)

    message = str(error).lower()
    match = _HTTP_STATUS_RE.search(message)
    if match:
        return match.group(1)
    for needle, error_type in _RETRYABLE_PATTERNS:
        if needle in message:
            return error_type
    return "unknown"


def is_retryable(error: BaseException) -> bool:
    """Decide whether an error is worth retrying.

    An explicit ``retryable`` attribute wins. Otherwise the message is
    matched against known transient failure patterns.
    """
    explicit = getattr(error, "retryable", None)
    if isinstance(explicit, bool):
        return explicit

    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status == 429 or status >= 500

    return classify_error(error) != "unknown"
