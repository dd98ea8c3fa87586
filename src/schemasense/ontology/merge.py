"""Provenance Merge Engine.

Keyed upserts under strict precedence (manual > agent_tool > inferred):

- an upsert whose source is outranked by the stored record's source is a
  no-op on the record's fields (it only records that the run saw the key)
- otherwise the record is updated in place, never duplicated, and its
  source is promoted
- inference never deletes agent_tool/manual records; it flags them stale
"""

from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from schemasense.core.logging import get_logger, increment_db_write
from schemasense.core.models.base import Provenance
from schemasense.ontology.provenance import can_delete, can_write, promote
from schemasense.storage.base import ProvenanceTracked, TenantScoped
from schemasense.storage.tenancy import current_project

logger = get_logger(__name__)


class MergeAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"


@dataclass
class MergeOutcome[R]:
    """What an upsert did, and the record it acted on."""

    action: MergeAction
    record: R

    @property
    def written(self) -> bool:
        return self.action in (MergeAction.CREATED, MergeAction.UPDATED)


@dataclass
class RetireOutcome:
    deleted: int = 0
    flagged_stale: int = 0


class MergeEngine:
    """Applies findings to merge-managed records within one session.

    Args:
        session: SQLAlchemy session (normally bound to a project)
        project_id: Owner for new rows when the session is not project-bound
    """

    def __init__(self, session: Session, project_id: str | None = None) -> None:
        self.session = session
        self.project_id = project_id or current_project(session)

    def get[M: ProvenanceTracked](self, model: type[M], key: dict[str, Any]) -> M | None:
        stmt = select(model).filter_by(**key)
        return self.session.execute(stmt).scalar_one_or_none()

    def upsert[M: ProvenanceTracked](
        self,
        model: type[M],
        key: dict[str, Any],
        values: dict[str, Any],
        source: Provenance,
        run_id: str | None = None,
    ) -> MergeOutcome[M]:
        """Create or update the record identified by ``key``.

        Args:
            model: Merge-managed model class
            key: Stable identity columns (e.g. ontology_id + table + column)
            values: Fields to write
            source: Provenance of this write
            run_id: Extraction run performing the write, if any
        """
        existing = self.get(model, key)

        if existing is None:
            fields: dict[str, Any] = {**key, **values}
            if issubclass(model, TenantScoped) and "project_id" not in fields:
                if self.project_id is not None:
                    fields["project_id"] = self.project_id
            record = model(
                **fields,
                source=source.value,
                last_edit_source=source.value,
                last_seen_run_id=run_id,
                is_stale=False,
            )
            self.session.add(record)
            self.session.flush()
            increment_db_write()
            return MergeOutcome(MergeAction.CREATED, record)

        current = Provenance(existing.source)
        if run_id is not None:
            existing.last_seen_run_id = run_id
        existing.is_stale = False

        if not can_write(current, source):
            logger.debug(
                "merge_skipped",
                model=model.__name__,
                key=key,
                existing_source=current.value,
                incoming_source=source.value,
            )
            return MergeOutcome(MergeAction.SKIPPED, existing)

        changed = False
        for field_name, value in values.items():
            if getattr(existing, field_name) != value:
                setattr(existing, field_name, value)
                changed = True

        promoted = promote(current, source)
        if promoted != current:
            existing.source = promoted.value
            changed = True

        if not changed:
            return MergeOutcome(MergeAction.UNCHANGED, existing)

        existing.last_edit_source = source.value
        existing.updated_at = datetime.now(UTC)
        self.session.flush()
        increment_db_write()
        return MergeOutcome(MergeAction.UPDATED, existing)

    def delete(self, record: ProvenanceTracked, source: Provenance) -> bool:
        """Delete ``record`` if ``source`` may; otherwise flag it stale.

        Returns:
            True when the record was deleted
        """
        if can_delete(Provenance(record.source), source):
            self.session.delete(record)
            increment_db_write()
            return True
        record.is_stale = True
        return False

    def delete_where[M: ProvenanceTracked](
        self, model: type[M], source: Provenance, *criteria: Any
    ) -> RetireOutcome:
        """Apply ``delete`` to every record matching ``criteria``."""
        outcome = RetireOutcome()
        for record in self.session.execute(select(model).where(*criteria)).scalars().all():
            if self.delete(record, source):
                outcome.deleted += 1
            else:
                outcome.flagged_stale += 1
        self.session.flush()
        return outcome

    def retire_unseen[M: ProvenanceTracked](
        self, model: type[M], ontology_id: str, run_ids: Collection[str]
    ) -> RetireOutcome:
        """Retire records of an ontology that none of ``run_ids`` saw.

        A resumed run passes its own id plus the ids of the runs whose
        steps it reused. Inferred records are deleted; higher-precedence
        ones are flagged stale.
        """
        seen_by = list(run_ids)
        outcome = self.delete_where(
            model,
            Provenance.INFERRED,
            model.ontology_id == ontology_id,  # type: ignore[attr-defined]
            model.last_seen_run_id.not_in(seen_by) | model.last_seen_run_id.is_(None),
        )
        if outcome.deleted or outcome.flagged_stale:
            logger.info(
                "records_retired",
                model=model.__name__,
                ontology_id=ontology_id,
                deleted=outcome.deleted,
                flagged_stale=outcome.flagged_stale,
            )
        return outcome
