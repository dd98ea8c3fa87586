"""SQLAlchemy base configuration and schema initialization.

Engine and session management is handled by core.connections.ConnectionManager.
This module provides:
- Base: SQLAlchemy declarative base for all models
- TenantScoped: mixin for rows owned by a project
- ProvenanceTracked: mixin for merge-managed metadata records
- init_database: Schema creation
- reset_database: Schema reset (drop and recreate)
"""

from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, MetaData, String
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Naming convention for constraints
# This ensures consistent constraint names across PostgreSQL and SQLite
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata_obj = MetaData(naming_convention=convention)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    metadata = metadata_obj


class TenantScoped:
    """Mixin for rows owned by a single project.

    Sessions bound to a project only see and only write rows carrying
    that project's id (see storage.tenancy).
    """

    project_id: Mapped[str] = mapped_column(String, nullable=False, index=True)


class ProvenanceTracked:
    """Mixin for metadata records written under provenance precedence.

    ``source`` only moves toward higher precedence (see ontology.merge).
    """

    source: Mapped[str] = mapped_column(String, nullable=False, default="inferred")
    last_edit_source: Mapped[str] = mapped_column(String, nullable=False, default="inferred")
    is_stale: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_seen_run_id: Mapped[str | None] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=lambda: datetime.now(UTC)
    )


def _import_all_models() -> None:
    """Import all model modules to register them with Base metadata."""
    from schemasense.analysis.features import db_models as _features_models  # noqa: F401
    from schemasense.analysis.relationships import (
        db_models as _relationships_models,  # noqa: F401
    )
    from schemasense.ontology import db_models as _ontology_models  # noqa: F401
    from schemasense.pipeline import db_models as _pipeline_models  # noqa: F401
    from schemasense.storage import models as _storage_models  # noqa: F401


def init_database(engine: Engine) -> None:
    """
    Initialize database schema.

    Creates all tables defined in SQLAlchemy models.
    Safe to call multiple times - only creates missing tables.

    Args:
        engine: SQLAlchemy engine
    """
    _import_all_models()

    with engine.begin() as conn:
        Base.metadata.create_all(conn)


def reset_database(engine: Engine) -> None:
    """
    Drop and recreate all tables.

    WARNING: This destroys all data. Use only in development/testing.

    Args:
        engine: SQLAlchemy engine
    """
    _import_all_models()

    with engine.begin() as conn:
        Base.metadata.drop_all(conn)
        Base.metadata.create_all(conn)
