"""Core infrastructure: configuration, logging, errors, retry and connections."""

from schemasense.core.config import Settings, get_settings
from schemasense.core.errors import (
    ConfigurationError,
    DataSourceError,
    FatalError,
    NotFoundError,
    RetryExhaustedError,
    RunAlreadyActiveError,
    RunCancelledError,
    SchemaSenseError,
    TransientError,
)
from schemasense.core.retry import RetryPolicy

__all__ = [
    "Settings",
    "get_settings",
    "RetryPolicy",
    "SchemaSenseError",
    "ConfigurationError",
    "DataSourceError",
    "FatalError",
    "NotFoundError",
    "RetryExhaustedError",
    "RunAlreadyActiveError",
    "RunCancelledError",
    "TransientError",
]
