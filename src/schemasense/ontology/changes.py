"""Pending change detection and review.

``refresh_schema`` diffs the recorded schema against a fresh observation,
applies the observation to the recorded schema and records one
PendingChange per delta. Drops are reflected immediately and recorded as
``auto_applied``; additions and type changes wait for review. Rejecting an
added table or column deselects it: its derived metadata is deleted and
later runs neither analyse it nor report it again.

``DataChangeDetector`` proposes what the data itself reveals once an
ontology has been built: new values of a known enum and newly verified
references.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from schemasense.analysis.features.db_models import ColumnFeatureRecord
from schemasense.analysis.features.models import ColumnFeatures, EnumFeatures
from schemasense.analysis.relationships.db_models import Relationship
from schemasense.analysis.relationships.models import VerifiedRelationship
from schemasense.core.errors import FatalError, NotFoundError
from schemasense.core.logging import get_logger
from schemasense.core.models import Result
from schemasense.core.models.base import Provenance
from schemasense.datasource import ObservedSchema, SchemaColumn, SchemaTable
from schemasense.ontology.db_models import (
    ClarificationQuestion,
    ColumnAnnotation,
    Entity,
    PendingChange,
)
from schemasense.ontology.entities import to_entity_name
from schemasense.ontology.merge import MergeEngine
from schemasense.storage.models import Column, Ontology, Table

logger = get_logger(__name__)

CHANGE_SOURCE = "schema_refresh"
DATA_CHANGE_SOURCE = "data_scan"


class ChangeStatus:
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    AUTO_APPLIED = "auto_applied"


@dataclass
class RefreshResult:
    """Outcome of one schema refresh."""

    first_refresh: bool = False
    changes: list[PendingChange] = field(default_factory=list)
    tables_recorded: int = 0

    @property
    def pending(self) -> list[PendingChange]:
        return [c for c in self.changes if c.status == ChangeStatus.PENDING]

    @property
    def auto_applied(self) -> list[PendingChange]:
        return [c for c in self.changes if c.status == ChangeStatus.AUTO_APPLIED]


def _record_column(table: Table, column: SchemaColumn) -> Column:
    recorded = Column(
        column_name=column.name,
        data_type=column.data_type,
        ordinal=column.ordinal,
        is_primary_key=column.is_primary_key,
        is_nullable=column.is_nullable,
        project_id=table.project_id,
    )
    table.columns.append(recorded)
    return recorded


def _record_table(ontology: Ontology, observed: SchemaTable) -> Table:
    table = Table(
        ontology_id=ontology.ontology_id,
        schema_name=observed.schema_name,
        table_name=observed.table_name,
        row_count=observed.row_count,
        project_id=ontology.project_id,
    )
    for column in observed.columns:
        _record_column(table, column)
    return table


def load_recorded_tables(
    session: Session, ontology_id: str, selected_only: bool = False
) -> dict[str, Table]:
    stmt = select(Table).where(Table.ontology_id == ontology_id)
    if selected_only:
        stmt = stmt.where(Table.is_selected.is_(True))
    return {t.qualified_name: t for t in session.execute(stmt).scalars().all()}


def load_observed_schema(session: Session, ontology_id: str) -> ObservedSchema:
    """The selected part of an ontology's recorded schema, in the datasource's own shape."""
    recorded = load_recorded_tables(session, ontology_id, selected_only=True)
    tables = sorted(recorded.values(), key=lambda t: t.qualified_name)
    return ObservedSchema(
        tables=[
            SchemaTable(
                schema_name=table.schema_name,
                table_name=table.table_name,
                row_count=table.row_count,
                columns=[
                    SchemaColumn(
                        name=column.column_name,
                        data_type=column.data_type,
                        ordinal=column.ordinal,
                        is_primary_key=column.is_primary_key,
                        is_nullable=column.is_nullable,
                    )
                    for column in table.columns
                    if column.is_selected
                ],
            )
            for table in tables
        ]
    )


def forget_column(
    session: Session, merge: MergeEngine, ontology_id: str, table_name: str, column: Column
) -> None:
    """Delete derived metadata of a column; curated records go stale."""
    session.execute(
        delete(ColumnFeatureRecord).where(ColumnFeatureRecord.column_id == column.column_id)
    )
    session.execute(
        delete(ClarificationQuestion).where(
            ClarificationQuestion.ontology_id == ontology_id,
            ClarificationQuestion.table_name == table_name,
            ClarificationQuestion.column_name == column.column_name,
        )
    )
    merge.delete_where(
        ColumnAnnotation,
        Provenance.INFERRED,
        ColumnAnnotation.ontology_id == ontology_id,
        ColumnAnnotation.table_name == table_name,
        ColumnAnnotation.column_name == column.column_name,
    )
    merge.delete_where(
        Relationship,
        Provenance.INFERRED,
        Relationship.ontology_id == ontology_id,
        (
            (Relationship.source_table == table_name)
            & (Relationship.source_column == column.column_name)
        )
        | (
            (Relationship.target_table == table_name)
            & (Relationship.target_column == column.column_name)
        ),
    )


def forget_table(session: Session, merge: MergeEngine, ontology_id: str, table: Table) -> None:
    """Delete derived metadata of a table and all of its columns."""
    for column in table.columns:
        forget_column(session, merge, ontology_id, table.qualified_name, column)
    merge.delete_where(
        Entity,
        Provenance.INFERRED,
        Entity.ontology_id == ontology_id,
        Entity.primary_table == table.qualified_name,
    )


class SchemaRefresher:
    """Applies an observed schema to an ontology's recorded schema."""

    def __init__(self, session: Session, ontology: Ontology) -> None:
        self.session = session
        self.ontology = ontology
        self.merge = MergeEngine(session, project_id=ontology.project_id)

    def _change(self, **fields: Any) -> PendingChange:
        change = PendingChange(
            ontology_id=self.ontology.ontology_id,
            project_id=self.ontology.project_id,
            change_source=CHANGE_SOURCE,
            **fields,
        )
        self.session.add(change)
        return change

    def _forget_column(self, table_name: str, column: Column) -> None:
        forget_column(self.session, self.merge, self.ontology.ontology_id, table_name, column)

    def _forget_table(self, table: Table) -> None:
        forget_table(self.session, self.merge, self.ontology.ontology_id, table)
        self.session.delete(table)

    def refresh(self, observed: ObservedSchema) -> RefreshResult:
        recorded = load_recorded_tables(self.session, self.ontology.ontology_id)
        result = RefreshResult()

        if not recorded:
            for observed_table in observed.tables:
                self.session.add(_record_table(self.ontology, observed_table))
            self.session.flush()
            result.first_refresh = True
            result.tables_recorded = len(observed.tables)
            logger.info(
                "schema_recorded",
                ontology_id=self.ontology.ontology_id,
                tables=len(observed.tables),
            )
            return result

        observed_names = {t.qualified_name for t in observed.tables}

        for name, table in recorded.items():
            if name in observed_names:
                continue
            result.changes.append(
                self._change(
                    change_type="dropped_table",
                    table_name=name,
                    old_value={"columns": [c.column_name for c in table.columns]},
                    suggested_action="review_entity",
                    status=ChangeStatus.AUTO_APPLIED,
                )
            )
            self._forget_table(table)

        for observed_table in observed.tables:
            name = observed_table.qualified_name
            table = recorded.get(name)
            if table is None:
                self.session.add(_record_table(self.ontology, observed_table))
                result.changes.append(
                    self._change(
                        change_type="new_table",
                        table_name=name,
                        new_value={"columns": [c.name for c in observed_table.columns]},
                        suggested_action="create_entity",
                        suggested_payload={
                            "name": to_entity_name(name),
                            "primary_table": name,
                        },
                        status=ChangeStatus.PENDING,
                    )
                )
                continue
            table.row_count = observed_table.row_count
            if not table.is_selected:
                continue
            result.changes.extend(self._diff_columns(table, observed_table))

        self.session.flush()
        result.tables_recorded = len(observed.tables)
        logger.info(
            "schema_refreshed",
            ontology_id=self.ontology.ontology_id,
            changes=len(result.changes),
            pending=len(result.pending),
            auto_applied=len(result.auto_applied),
        )
        return result

    def _diff_columns(self, table: Table, observed: SchemaTable) -> list[PendingChange]:
        changes: list[PendingChange] = []
        name = table.qualified_name
        recorded = {c.column_name: c for c in table.columns}
        observed_columns = {c.name: c for c in observed.columns}

        for column_name, column in recorded.items():
            if column_name in observed_columns:
                continue
            changes.append(
                self._change(
                    change_type="dropped_column",
                    table_name=name,
                    column_name=column_name,
                    old_value={"type": column.data_type},
                    suggested_action="review_column",
                    status=ChangeStatus.AUTO_APPLIED,
                )
            )
            self._forget_column(name, column)
            table.columns.remove(column)

        for column_name, observed_column in observed_columns.items():
            column = recorded.get(column_name)
            if column is None:
                _record_column(table, observed_column)
                changes.append(
                    self._change(
                        change_type="new_column",
                        table_name=name,
                        column_name=column_name,
                        new_value={"type": observed_column.data_type},
                        suggested_action="create_column_metadata",
                        status=ChangeStatus.PENDING,
                    )
                )
                continue

            if column.data_type != observed_column.data_type:
                changes.append(
                    self._change(
                        change_type="modified_column",
                        table_name=name,
                        column_name=column_name,
                        old_value={"type": column.data_type},
                        new_value={"type": observed_column.data_type},
                        suggested_action="update_column_metadata",
                        status=ChangeStatus.PENDING,
                    )
                )
                column.data_type = observed_column.data_type
            column.ordinal = observed_column.ordinal
            column.is_primary_key = observed_column.is_primary_key
            column.is_nullable = observed_column.is_nullable
        return changes


def refresh_schema(session: Session, ontology: Ontology, observed: ObservedSchema) -> RefreshResult:
    """Diff and apply ``observed`` to the recorded schema of ``ontology``.

    The first refresh of an ontology records the schema and produces no changes.
    """
    return SchemaRefresher(session, ontology).refresh(observed)


def _enum_values(feature: ColumnFeatures | None) -> list[str]:
    if feature is None or not isinstance(feature.features, EnumFeatures):
        return []
    return [v.value for v in feature.features.values]


def relationship_key(payload: dict[str, Any]) -> tuple[str, str, str, str]:
    return (
        payload.get("source_table", ""),
        payload.get("source_column", ""),
        payload.get("target_table", ""),
        payload.get("target_column", ""),
    )


class DataChangeDetector:
    """Records the pending changes the data reveals between builds.

    New values in a known enum and newly verified references are proposed
    for review with ``data_scan`` as their source. Nothing is proposed
    before an ontology has been built once, and a proposal already waiting
    for review is not repeated.
    """

    def __init__(self, session: Session, ontology: Ontology) -> None:
        self.session = session
        self.ontology = ontology

    @property
    def has_baseline(self) -> bool:
        return self.ontology.last_built_at is not None

    def _existing(self, change_type: str, table_name: str, column_name: str) -> list[PendingChange]:
        stmt = select(PendingChange).where(
            PendingChange.ontology_id == self.ontology.ontology_id,
            PendingChange.change_type == change_type,
            PendingChange.table_name == table_name,
            PendingChange.column_name == column_name,
        )
        return list(self.session.execute(stmt).scalars().all())

    def _change(self, **fields: Any) -> PendingChange:
        change = PendingChange(
            ontology_id=self.ontology.ontology_id,
            project_id=self.ontology.project_id,
            change_source=DATA_CHANGE_SOURCE,
            status=ChangeStatus.PENDING,
            **fields,
        )
        self.session.add(change)
        return change

    def enum_values(
        self,
        table_name: str,
        previous: dict[str, ColumnFeatures],
        current: dict[str, ColumnFeatures],
    ) -> list[PendingChange]:
        """Propose values that appeared in a column already known to be an enum."""
        if not self.has_baseline:
            return []
        changes: list[PendingChange] = []
        for column_name in sorted(current):
            known = _enum_values(previous.get(column_name))
            observed = _enum_values(current[column_name])
            if not known or not observed:
                continue
            added = [v for v in observed if v not in set(known)]
            if not added:
                continue
            if any(
                c.status == ChangeStatus.PENDING
                and set((c.new_value or {}).get("new_values", [])) >= set(added)
                for c in self._existing("new_enum_value", table_name, column_name)
            ):
                continue

            merged = known + added
            changes.append(
                self._change(
                    change_type="new_enum_value",
                    table_name=table_name,
                    column_name=column_name,
                    old_value={"enum_values": known},
                    new_value={"new_values": added, "all_values": observed},
                    suggested_action="update_enum_values",
                    suggested_payload={"enum_values": merged},
                )
            )
            logger.info(
                "new_enum_values_detected", table=table_name, column=column_name, values=added
            )
        return changes

    def rejected_relationships(self) -> set[tuple[str, str, str, str]]:
        """Relationship keys a reviewer has turned down."""
        stmt = select(PendingChange).where(
            PendingChange.ontology_id == self.ontology.ontology_id,
            PendingChange.change_type == "new_fk_pattern",
            PendingChange.status == ChangeStatus.REJECTED,
        )
        return {
            relationship_key(c.suggested_payload or {})
            for c in self.session.execute(stmt).scalars().all()
        }

    def relationship(self, relationship: VerifiedRelationship) -> PendingChange | None:
        """Propose a reference discovered after the first build."""
        if not self.has_baseline:
            return None
        for existing in self._existing(
            "new_fk_pattern", relationship.source_table, relationship.source_column
        ):
            if relationship_key(existing.suggested_payload or {}) == relationship.key:
                return None

        target = f"{relationship.target_table}.{relationship.target_column}"
        logger.info(
            "new_reference_detected",
            table=relationship.source_table,
            column=relationship.source_column,
            target=target,
            match_rate=relationship.match_rate,
        )
        return self._change(
            change_type="new_fk_pattern",
            table_name=relationship.source_table,
            column_name=relationship.source_column,
            new_value={"references": target, "match_rate": relationship.match_rate},
            suggested_action="create_relationship",
            suggested_payload={
                "source_table": relationship.source_table,
                "source_column": relationship.source_column,
                "target_table": relationship.target_table,
                "target_column": relationship.target_column,
                "cardinality": relationship.cardinality.value,
                "match_rate": relationship.match_rate,
                "confidence": relationship.confidence,
            },
        )


class PendingChangeService:
    """Review API over pending changes.

    Approving applies the suggested action through the merge engine with
    manual provenance. Rejecting a new table or column deselects it, and
    rejecting a proposed reference withdraws the inferred relationship.
    Approving or rejecting an auto-applied change succeeds without side
    effects.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def list(
        self, ontology_id: str, status: str | None = None, limit: int = 0
    ) -> list[PendingChange]:
        stmt = select(PendingChange).where(PendingChange.ontology_id == ontology_id)
        if status is not None:
            stmt = stmt.where(PendingChange.status == status)
        stmt = stmt.order_by(PendingChange.detected_at, PendingChange.change_id)
        if limit > 0:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars().all())

    def get(self, change_id: str) -> PendingChange:
        change = self.session.get(PendingChange, change_id)
        if change is None:
            raise NotFoundError(f"Pending change {change_id} not found")
        return change

    def _reviewable(self, change: PendingChange, action: str) -> bool:
        if change.status == ChangeStatus.AUTO_APPLIED:
            return False
        if change.status != ChangeStatus.PENDING:
            raise FatalError(f"Cannot {action} change {change.change_id}: already {change.status}")
        return True

    def approve(self, change_id: str, reviewed_by: str | None = None) -> Result[PendingChange]:
        change = self.get(change_id)
        if not self._reviewable(change, "approve"):
            return Result.ok(change)

        self._apply(change)
        change.status = ChangeStatus.APPROVED
        change.reviewed_by = reviewed_by
        change.reviewed_at = datetime.now(UTC)
        self.session.flush()
        logger.info(
            "change_approved",
            change_id=change.change_id,
            change_type=change.change_type,
            action=change.suggested_action,
        )
        return Result.ok(change)

    def reject(
        self, change_id: str, reason: str | None = None, reviewed_by: str | None = None
    ) -> Result[PendingChange]:
        change = self.get(change_id)
        if not self._reviewable(change, "reject"):
            return Result.ok(change)

        self._withdraw(change)
        change.status = ChangeStatus.REJECTED
        change.review_reason = reason
        change.reviewed_by = reviewed_by
        change.reviewed_at = datetime.now(UTC)
        self.session.flush()
        logger.info("change_rejected", change_id=change.change_id, reason=reason)
        return Result.ok(change)

    def reject_all(
        self, ontology_id: str, reason: str | None = None, reviewed_by: str | None = None
    ) -> int:
        changes = self.list(ontology_id, status=ChangeStatus.PENDING)
        for change in changes:
            self.reject(change.change_id, reason=reason, reviewed_by=reviewed_by)
        return len(changes)

    def _withdraw(self, change: PendingChange) -> None:
        """Exclude a rejected addition from every later run."""
        if change.change_type == "new_fk_pattern":
            self._withdraw_relationship(change)
            return
        if change.change_type not in ("new_table", "new_column"):
            return
        recorded = load_recorded_tables(self.session, change.ontology_id)
        table = recorded.get(change.table_name or "")
        if table is None:
            return
        merge = MergeEngine(self.session, project_id=change.project_id)
        if change.change_type == "new_table":
            table.is_selected = False
            forget_table(self.session, merge, change.ontology_id, table)
        else:
            column = next((c for c in table.columns if c.column_name == change.column_name), None)
            if column is None:
                return
            column.is_selected = False
            forget_column(self.session, merge, change.ontology_id, table.qualified_name, column)
        logger.info(
            "change_deselected",
            change_id=change.change_id,
            table=change.table_name,
            column=change.column_name,
        )

    def _withdraw_relationship(self, change: PendingChange) -> None:
        source_table, source_column, target_table, target_column = relationship_key(
            change.suggested_payload or {}
        )
        merge = MergeEngine(self.session, project_id=change.project_id)
        merge.delete_where(
            Relationship,
            Provenance.INFERRED,
            Relationship.ontology_id == change.ontology_id,
            Relationship.source_table == source_table,
            Relationship.source_column == source_column,
            Relationship.target_table == target_table,
            Relationship.target_column == target_column,
        )

    def _apply(self, change: PendingChange) -> None:
        merge = MergeEngine(self.session, project_id=change.project_id)
        action = change.suggested_action

        if action == "create_entity":
            payload = change.suggested_payload or {}
            merge.upsert(
                Entity,
                {
                    "ontology_id": change.ontology_id,
                    "primary_table": payload.get("primary_table", change.table_name),
                },
                {"name": payload.get("name") or to_entity_name(change.table_name)},
                Provenance.MANUAL,
            )
        elif action in ("create_column_metadata", "update_column_metadata"):
            new_type = (change.new_value or {}).get("type")
            merge.upsert(
                ColumnAnnotation,
                {
                    "ontology_id": change.ontology_id,
                    "table_name": change.table_name,
                    "column_name": change.column_name,
                },
                {"data_type": new_type},
                Provenance.MANUAL,
            )
        elif action == "update_enum_values":
            merge.upsert(
                ColumnAnnotation,
                {
                    "ontology_id": change.ontology_id,
                    "table_name": change.table_name,
                    "column_name": change.column_name,
                },
                {"enum_values": (change.suggested_payload or {}).get("enum_values")},
                Provenance.MANUAL,
            )
        elif action == "create_relationship":
            payload = change.suggested_payload or {}
            source_table, source_column, target_table, target_column = relationship_key(payload)
            merge.upsert(
                Relationship,
                {
                    "ontology_id": change.ontology_id,
                    "source_table": source_table,
                    "source_column": source_column,
                    "target_table": target_table,
                    "target_column": target_column,
                },
                {
                    "cardinality": payload.get("cardinality"),
                    "match_rate": payload.get("match_rate"),
                    "confidence": payload.get("confidence", 0.0),
                },
                Provenance.MANUAL,
            )
        else:
            raise FatalError(f"Unknown suggested action: {action}")
