import logging
from datetime import datetime
from typing import Any

from sqlalchemy import text as sa_text
from sqlalchemy.orm import Session

from .database import delete_row, insert_row, row_exists, transaction, update_row
from .errors import LeadAlreadyConverted, NotFound, ValidationError
from .models import CANONICAL_TABLES
from .normalizer import CONVERTED, RecordNormalizer, coerce_int

logger = logging.getLogger(__name__)


TABLE_LABELS = {
    "students": "Student",
    "payments": "Payment",
    "expenses": "Expense",
    "leads": "Lead",
    "attendance": "Attendance record",
}

ORDERING = {
    "students": (("last_name", "ASC"), ("first_name", "ASC"), ("id", "ASC")),
    "payments": (("date", "DESC"), ("id", "DESC")),
    "expenses": (("date", "DESC"), ("id", "DESC")),
    "leads": (("id", "DESC"),),
    "attendance": (("date", "DESC"), ("id", "DESC")),
}

STUDENT_FILTERS = {
    "active": "(status IS NULL OR status = '' OR LOWER(status) = 'active')",
    "archived": "LOWER(status) = 'archived'",
    "all": None,
}

# Tables in foreign-key order for imports.
IMPORT_ORDER = ("students", "leads", "payments", "expenses", "attendance")


def _rows(result) -> list[dict[str, Any]]:
    return [dict(row) for row in result.mappings()]


def _order_by(snapshot, table: str) -> str:
    parts = []
    for column, direction in ORDERING[table]:
        resolved = snapshot.resolve(table, column)
        if resolved:
            parts.append(f"{resolved} {direction}")
    return f" ORDER BY {', '.join(parts)}" if parts else ""


def _check_student_reference(db: Session, normalizer: RecordNormalizer, table: str, values: dict[str, Any]) -> None:
    if table not in ("payments", "attendance"):
        return
    column = normalizer.snapshot.resolve(table, "student_id")
    student_id = values.get(column) if column else None
    if student_id is not None and not row_exists(db, "students", student_id):
        raise NotFound("Student", student_id)


def _check_converted_lead(db: Session, normalizer: RecordNormalizer, table: str, record_id: int, values: dict[str, Any]) -> None:
    # A converted lead's status is final.
    column = normalizer.snapshot.resolve(table, "status") if table == "leads" else None
    if column is None or column not in values:
        return
    stored = db.execute(sa_text(f"SELECT {column} FROM leads WHERE id = :id"), {"id": record_id}).scalar()
    if stored is not None and str(stored).strip().lower() == CONVERTED:
        raise LeadAlreadyConverted(record_id)


def get_record(db: Session, table: str, record_id: int) -> dict[str, Any]:
    row = db.execute(sa_text(f"SELECT * FROM {table} WHERE id = :id"), {"id": record_id}).mappings().first()
    if row is None:
        raise NotFound(TABLE_LABELS[table], record_id)
    return dict(row)


def list_records(db: Session, snapshot, table: str, filters: dict[str, Any] | None = None) -> list[dict[str, Any]]:
    clauses = []
    params: dict[str, Any] = {}
    for field, value in (filters or {}).items():
        if value is None:
            continue
        column = snapshot.resolve(table, field)
        if column is None:
            continue
        clauses.append(f"{column} = :{field}")
        params[field] = value
    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
    return _rows(db.execute(sa_text(f"SELECT * FROM {table}{where}{_order_by(snapshot, table)}"), params))


def list_students(db: Session, snapshot, status: str = "active") -> list[dict[str, Any]]:
    status = (status or "active").lower()
    if status not in STUDENT_FILTERS:
        raise ValidationError("status must be one of active, archived, all")
    clause = STUDENT_FILTERS[status]
    where = f" WHERE {clause}" if clause else ""
    return _rows(db.execute(sa_text(f"SELECT * FROM students{where}{_order_by(snapshot, 'students')}")))


def create_record(db: Session, normalizer: RecordNormalizer, table: str, payload: dict[str, Any]) -> int:
    values = normalizer.for_insert(table, payload)
    label = TABLE_LABELS[table]
    with transaction(db, f"creating {label.lower()}"):
        _check_student_reference(db, normalizer, table, values)
        record_id = insert_row(db, table, values)
    logger.info(f"{label} {record_id} created")
    return record_id


def update_record(
    db: Session,
    normalizer: RecordNormalizer,
    table: str,
    record_id: int,
    payload: dict[str, Any],
) -> int:
    values = normalizer.for_update(table, payload)
    if not values:
        raise ValidationError("No updatable fields supplied")
    label = TABLE_LABELS[table]
    with transaction(db, f"updating {label.lower()} {record_id}"):
        _check_student_reference(db, normalizer, table, values)
        _check_converted_lead(db, normalizer, table, record_id, values)
        changed = update_row(db, table, record_id, values)
        if not changed:
            raise NotFound(label, record_id)
    return changed


def delete_record(db: Session, table: str, record_id: int) -> None:
    label = TABLE_LABELS[table]
    with transaction(db, f"deleting {label.lower()} {record_id}"):
        if not delete_row(db, table, record_id):
            raise NotFound(label, record_id)
    logger.info(f"{label} {record_id} deleted")


def set_student_status(db: Session, normalizer: RecordNormalizer, student_id: int, status: str) -> None:
    update_record(db, normalizer, "students", student_id, {"status": status})
    logger.info(f"Student {student_id} marked {status}")


def export_tables(db: Session) -> dict[str, Any]:
    dump: dict[str, Any] = {"schema": "v1", "exported_at": datetime.now().isoformat(timespec="seconds")}
    for table in CANONICAL_TABLES:
        dump[table] = _rows(db.execute(sa_text(f"SELECT * FROM {table} ORDER BY id")))
    return dump


def _count(db: Session, table: str) -> int:
    return db.execute(sa_text(f"SELECT COUNT(*) FROM {table}")).scalar_one()


def _sync_sequence(db: Session, table: str) -> None:
    # Explicit ids leave Postgres serial sequences behind.
    if db.get_bind().dialect.name != "postgresql":
        return
    db.execute(
        sa_text(
            f"SELECT setval(pg_get_serial_sequence('{table}', 'id'), "
            f"COALESCE((SELECT MAX(id) FROM {table}), 1))"
        )
    )


def import_tables(db: Session, normalizer: RecordNormalizer, payload: dict[str, Any]) -> dict[str, Any]:
    """Load an export dump; tables that already hold rows are left alone."""
    if not isinstance(payload, dict):
        raise ValidationError("Import payload must be a JSON object")
    batches = {}
    for table in IMPORT_ORDER:
        rows = payload.get(table) or []
        if not isinstance(rows, list):
            raise ValidationError(f"{table} must be a list")
        batches[table] = [normalizer.for_insert(table, row, preserve_id=True) for row in rows]

    imported: dict[str, int] = {}
    skipped: list[str] = []
    with transaction(db, "importing data"):
        for table, rows in batches.items():
            if not rows:
                continue
            if _count(db, table):
                skipped.append(table)
                continue
            for values in rows:
                insert_row(db, table, values)
            _sync_sequence(db, table)
            imported[table] = len(rows)
    logger.info(f"Import finished: {imported}, skipped non-empty tables: {skipped}")
    return {"imported": imported, "skipped": skipped}


def upsert_records(db: Session, normalizer: RecordNormalizer, table: str, rows: list[dict[str, Any]]) -> tuple[int, int]:
    inserted = updated = 0
    with transaction(db, f"upserting {table}"):
        for row in rows:
            record_id = coerce_int(row.get("id"), "id")
            if record_id is not None and row_exists(db, table, record_id):
                values = normalizer.for_update(table, row)
                if values:
                    update_row(db, table, record_id, values)
                updated += 1
            else:
                insert_row(db, table, normalizer.for_insert(table, row, preserve_id=True))
                inserted += 1
        _sync_sequence(db, table)
    return inserted, updated

