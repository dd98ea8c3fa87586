"""Persistence of profiles and column features in the metadata store.

Profiles live on the recorded ``Column`` rows; classifier output lives in
``ColumnFeatureRecord`` (one per column, replaced in place).
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from schemasense.analysis.features.db_models import ColumnFeatureRecord
from schemasense.analysis.features.models import (
    ColumnFeatures,
    ColumnProfile,
    FeatureBagHolder,
    IdentifierFeatures,
)
from schemasense.core.logging import increment_db_write
from schemasense.core.models import Result
from schemasense.core.models.base import ClassificationPath, ColumnRole, SemanticType
from schemasense.storage.models import Column, Table


def save_profile(table: Table, column: Column, profile: ColumnProfile) -> None:
    """Copy a profile onto the recorded column (and row count onto its table)."""
    table.row_count = profile.row_count
    column.null_count = profile.null_count
    column.distinct_count = profile.distinct_count
    column.min_length = profile.min_length
    column.max_length = profile.max_length
    column.min_value = profile.min_value
    column.max_value = profile.max_value
    column.sample_values = list(profile.sample_values)
    column.profiled_at = datetime.now(UTC)


def profile_from_record(table: Table, column: Column) -> Result[ColumnProfile]:
    if column.profiled_at is None or table.row_count is None:
        return Result.fail(f"{table.qualified_name}.{column.column_name} has no profile")
    return Result.ok(
        ColumnProfile(
            table_name=table.qualified_name,
            column_name=column.column_name,
            data_type=column.data_type,
            is_primary_key=column.is_primary_key,
            row_count=table.row_count,
            null_count=column.null_count or 0,
            distinct_count=column.distinct_count or 0,
            min_length=column.min_length,
            max_length=column.max_length,
            min_value=column.min_value,
            max_value=column.max_value,
            sample_values=[str(v) for v in column.sample_values or []],
        )
    )


def load_profiles(
    session: Session, ontology_id: str
) -> dict[str, dict[str, Result[ColumnProfile]]]:
    """Stored profiles of selected columns keyed by qualified table name, then column name."""
    stmt = select(Table).where(Table.ontology_id == ontology_id, Table.is_selected.is_(True))
    profiles: dict[str, dict[str, Result[ColumnProfile]]] = {}
    for table in session.execute(stmt).scalars().all():
        profiles[table.qualified_name] = {
            column.column_name: profile_from_record(table, column)
            for column in table.columns
            if column.is_selected
        }
    return profiles


def _to_features(record: ColumnFeatureRecord, table: Table, column: Column) -> ColumnFeatures:
    bag = FeatureBagHolder.model_validate({"bag": record.features}).bag
    try:
        path = ClassificationPath(record.classification_path)
    except ValueError:
        path = ClassificationPath.UNKNOWN
    try:
        role = ColumnRole(record.role)
    except ValueError:
        role = ColumnRole.UNKNOWN
    return ColumnFeatures(
        table_name=table.qualified_name,
        column_name=column.column_name,
        classification_path=path,
        semantic_type=SemanticType.parse(record.semantic_type),
        role=role,
        description=record.description,
        confidence=record.confidence,
        reasoning=record.reasoning,
        classified_by=record.classified_by,
        features=bag,
        needs_review=record.needs_review,
        needs_fk_resolution=record.needs_fk_resolution,
        needs_cross_column_check=record.needs_cross_column_check,
        error=record.error,
    )


def save_table_features(
    session: Session,
    ontology_id: str,
    table: Table,
    features: dict[str, ColumnFeatures],
    run_id: str | None = None,
) -> int:
    """Replace the feature records of ``table``'s columns.

    Returns:
        Number of records written
    """
    column_ids = [c.column_id for c in table.columns]
    existing = {
        r.column_id: r
        for r in session.execute(
            select(ColumnFeatureRecord).where(ColumnFeatureRecord.column_id.in_(column_ids))
        )
        .scalars()
        .all()
    }

    written = 0
    for column in table.columns:
        feature = features.get(column.column_name)
        if feature is None:
            continue
        values = {
            "classification_path": feature.classification_path.value,
            "semantic_type": feature.semantic_type.value,
            "role": feature.role.value,
            "confidence": feature.confidence,
            "description": feature.description,
            "reasoning": feature.reasoning,
            "classified_by": feature.classified_by,
            "features": feature.features.model_dump(mode="json") if feature.features else None,
            "needs_review": feature.needs_review,
            "needs_fk_resolution": feature.needs_fk_resolution,
            "needs_cross_column_check": feature.needs_cross_column_check,
            "error": feature.error,
            "run_id": run_id,
            "classified_at": datetime.now(UTC),
        }
        record = existing.get(column.column_id)
        if record is None:
            record = ColumnFeatureRecord(
                column_id=column.column_id,
                ontology_id=ontology_id,
                project_id=table.project_id,
                **values,
            )
            session.add(record)
        else:
            for name, value in values.items():
                setattr(record, name, value)
        written += 1

    session.flush()
    increment_db_write(written)
    return written


def load_feature_records(
    session: Session, ontology_id: str
) -> dict[tuple[str, str], tuple[ColumnFeatureRecord, Table, Column]]:
    """Feature records of selected columns keyed by (qualified table name, column name)."""
    stmt = (
        select(ColumnFeatureRecord, Column, Table)
        .join(Column, ColumnFeatureRecord.column_id == Column.column_id)
        .join(Table, Column.table_id == Table.table_id)
        .where(
            ColumnFeatureRecord.ontology_id == ontology_id,
            Table.is_selected.is_(True),
            Column.is_selected.is_(True),
        )
    )
    return {
        (table.qualified_name, column.column_name): (record, table, column)
        for record, column, table in session.execute(stmt).all()
    }


def load_features(session: Session, ontology_id: str) -> dict[str, dict[str, ColumnFeatures]]:
    """Stored classifier output keyed by qualified table name, then column name."""
    features: dict[str, dict[str, ColumnFeatures]] = {}
    for (table_name, column_name), (record, table, column) in load_feature_records(
        session, ontology_id
    ).items():
        features.setdefault(table_name, {})[column_name] = _to_features(record, table, column)
    return features


def promote_foreign_key(
    record: ColumnFeatureRecord,
    target_table: str,
    target_column: str,
    confidence: float,
) -> None:
    """Mark a column as a data-verified reference to ``target_table.target_column``."""
    bag = FeatureBagHolder.model_validate({"bag": record.features}).bag
    if not isinstance(bag, IdentifierFeatures):
        bag = IdentifierFeatures(identifier_type="reference")
    bag.fk_target_table = target_table
    bag.fk_target_column = target_column
    bag.fk_confidence = round(confidence, 4)

    record.role = ColumnRole.FOREIGN_KEY.value
    record.features = bag.model_dump(mode="json")
    record.needs_fk_resolution = False
