"""Provenance precedence: manual > agent_tool > inferred.

Every write site in the merge engine goes through ``can_write``.
"""

from __future__ import annotations

from schemasense.core.models.base import Provenance


def outranks(a: Provenance, b: Provenance) -> bool:
    """Whether ``a`` has strictly higher precedence than ``b``."""
    return a > b


def can_write(existing: Provenance, incoming: Provenance) -> bool:
    """Whether a write from ``incoming`` may change a record owned by ``existing``."""
    return not outranks(existing, incoming)


def can_delete(existing: Provenance, incoming: Provenance) -> bool:
    """Inference may only delete inferred records; curated ones are flagged stale."""
    return can_write(existing, incoming)


def promote(existing: Provenance, incoming: Provenance) -> Provenance:
    """Provenance after an accepted write. Never moves down."""
    return incoming if outranks(incoming, existing) else existing
