"""Metadata storage: declarative base, recorded schema and tenant scoping."""

from schemasense.storage import tenancy as _tenancy  # noqa: F401  (registers listeners)
from schemasense.storage.base import (
    Base,
    ProvenanceTracked,
    TenantScoped,
    init_database,
    reset_database,
)
from schemasense.storage.models import Column, Ontology, Project, Table

__all__ = [
    "Base",
    "ProvenanceTracked",
    "TenantScoped",
    "init_database",
    "reset_database",
    "Project",
    "Ontology",
    "Table",
    "Column",
]
