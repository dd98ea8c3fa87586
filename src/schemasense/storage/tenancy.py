"""Tenant isolation enforced at the ORM layer.

A session whose ``info["project_id"]`` is set only reads rows of that
project and refuses to flush rows belonging to another one. Sessions
without a project id (schema setup, maintenance) are unrestricted.
"""

from __future__ import annotations

from itertools import chain
from typing import Any

from sqlalchemy import event
from sqlalchemy.orm import ORMExecuteState, Session, with_loader_criteria

from schemasense.storage.base import TenantScoped

PROJECT_KEY = "project_id"


def bind_project(session: Session, project_id: str) -> Session:
    """Scope a session to a project."""
    session.info[PROJECT_KEY] = project_id
    return session


def current_project(session: Session) -> str | None:
    """Project a session is scoped to, if any."""
    return session.info.get(PROJECT_KEY)


@event.listens_for(Session, "do_orm_execute")
def _add_tenant_criteria(execute_state: ORMExecuteState) -> None:
    project_id = execute_state.session.info.get(PROJECT_KEY)
    if project_id is None:
        return

    is_read = (
        execute_state.is_select
        and not execute_state.is_column_load
        and not execute_state.is_relationship_load
    )
    if is_read or execute_state.is_update or execute_state.is_delete:
        execute_state.statement = execute_state.statement.options(
            with_loader_criteria(
                TenantScoped,
                lambda cls: cls.project_id == project_id,
                include_aliases=True,
            )
        )


@event.listens_for(Session, "before_flush")
def _guard_tenant_writes(session: Session, flush_context: Any, instances: Any) -> None:
    project_id = session.info.get(PROJECT_KEY)
    if project_id is None:
        return

    for obj in session.new:
        if isinstance(obj, TenantScoped) and obj.project_id is None:
            obj.project_id = project_id

    for obj in chain(session.new, session.dirty, session.deleted):
        if isinstance(obj, TenantScoped) and obj.project_id != project_id:
            raise PermissionError(
                f"{type(obj).__name__} belongs to project {obj.project_id}, "
                f"session is scoped to {project_id}"
            )
