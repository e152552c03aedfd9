"""Idempotent schema upgrades for databases of every historical shape.

``SchemaMigrator.run()`` is safe to call on every start:

1. canonical tables that do not exist yet are created from the models;
2. each ``ColumnMigration`` adds its column when missing and runs the
   column's backfills in the same transaction;
3. repairs fill values that are still empty;
4. one-shot data migrations run once and are recorded in
   ``schema_migrations``.

A failing step is logged and reported; the remaining steps still run.
Nothing is ever dropped or renamed.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from sqlalchemy import inspect
from sqlalchemy import text as sa_text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from . import models
from .database import Base, insert_row
from .errors import SchemaError, ValidationError
from .normalizer import RecordNormalizer, add_renewal_offset, split_full_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Backfill:
    sql: str
    requires: tuple[str, ...] = ()


@dataclass(frozen=True)
class ColumnMigration:
    table: str
    column: str
    ddl: str
    backfills: tuple[Backfill, ...] = ()

    @property
    def target(self) -> str:
        return f"{self.table}.{self.column}"


@dataclass(frozen=True)
class Repair:
    name: str
    table: str
    requires: tuple[str, ...]
    sql: str | None = None
    func: Callable[[Connection], int] | None = None


def _archived_when(flag: str, values: str) -> Backfill:
    return Backfill(
        f"UPDATE students SET status = 'archived' "
        f"WHERE status IS NULL AND LOWER(CAST({flag} AS TEXT)) IN {values}",
        requires=(flag,),
    )


_NOW = "CURRENT_TIMESTAMP"

COLUMN_MIGRATIONS: tuple[ColumnMigration, ...] = (
    ColumnMigration("students", "first_name", "TEXT"),
    ColumnMigration("students", "last_name", "TEXT"),
    ColumnMigration("students", "phone", "TEXT"),
    ColumnMigration("students", "email", "TEXT"),
    ColumnMigration("students", "address", "TEXT"),
    ColumnMigration("students", "age", "INTEGER"),
    ColumnMigration("students", "program", "TEXT"),
    ColumnMigration(
        "students",
        "join_date",
        "TEXT",
        (Backfill("UPDATE students SET join_date = start_date", requires=("start_date",)),),
    ),
    ColumnMigration("students", "renewal_date", "TEXT"),
    ColumnMigration(
        "students",
        "status",
        "TEXT",
        (
            _archived_when("is_legacy", "('1', 'true')"),
            _archived_when("legacy", "('1', 'true')"),
            _archived_when("active", "('0', 'false')"),
            _archived_when("is_active", "('0', 'false')"),
            Backfill("UPDATE students SET status = 'active' WHERE status IS NULL"),
        ),
    ),
    ColumnMigration(
        "students",
        "photo",
        "TEXT",
        (Backfill("UPDATE students SET photo = picture_path", requires=("picture_path",)),),
    ),
    ColumnMigration("students", "notes", "TEXT"),
    ColumnMigration(
        "students",
        "parents_name",
        "TEXT",
        (Backfill("UPDATE students SET parents_name = parent_name", requires=("parent_name",)),),
    ),
    ColumnMigration("students", "referral_source", "TEXT"),
    ColumnMigration(
        "students",
        "created_at",
        "TEXT",
        (Backfill(f"UPDATE students SET created_at = {_NOW}"),),
    ),
    ColumnMigration("payments", "student_id", "INTEGER REFERENCES students(id) ON DELETE SET NULL"),
    ColumnMigration("payments", "amount", "REAL DEFAULT 0"),
    ColumnMigration("payments", "date", "TEXT"),
    ColumnMigration("payments", "method", "TEXT"),
    ColumnMigration("payments", "taxable", "INTEGER DEFAULT 0"),
    ColumnMigration(
        "payments",
        "note",
        "TEXT",
        (Backfill("UPDATE payments SET note = notes", requires=("notes",)),),
    ),
    ColumnMigration("payments", "receipt_no", "TEXT"),
    ColumnMigration(
        "payments",
        "created_at",
        "TEXT",
        (Backfill(f"UPDATE payments SET created_at = {_NOW}"),),
    ),
    ColumnMigration("expenses", "vendor", "TEXT"),
    ColumnMigration("expenses", "amount", "REAL DEFAULT 0"),
    ColumnMigration("expenses", "date", "TEXT"),
    ColumnMigration("expenses", "taxable", "INTEGER DEFAULT 0"),
    ColumnMigration("expenses", "category", "TEXT"),
    ColumnMigration(
        "expenses",
        "note",
        "TEXT",
        (Backfill("UPDATE expenses SET note = notes", requires=("notes",)),),
    ),
    ColumnMigration(
        "expenses",
        "created_at",
        "TEXT",
        (Backfill(f"UPDATE expenses SET created_at = {_NOW}"),),
    ),
    ColumnMigration("leads", "name", "TEXT"),
    ColumnMigration("leads", "phone", "TEXT"),
    ColumnMigration("leads", "email", "TEXT"),
    ColumnMigration(
        "leads",
        "interested_program",
        "TEXT",
        (Backfill("UPDATE leads SET interested_program = program", requires=("program",)),),
    ),
    ColumnMigration("leads", "source", "TEXT"),
    ColumnMigration(
        "leads",
        "follow_up_date",
        "TEXT",
        (Backfill("UPDATE leads SET follow_up_date = followup_date", requires=("followup_date",)),),
    ),
    ColumnMigration(
        "leads",
        "status",
        "TEXT",
        (Backfill("UPDATE leads SET status = 'new'"),),
    ),
    ColumnMigration("leads", "notes", "TEXT"),
    ColumnMigration(
        "leads",
        "created_at",
        "TEXT",
        (Backfill(f"UPDATE leads SET created_at = {_NOW}"),),
    ),
    ColumnMigration("leads", "converted_at", "TEXT"),
    ColumnMigration("leads", "converted_student_id", "INTEGER"),
    ColumnMigration("attendance", "student_id", "INTEGER"),
    ColumnMigration("attendance", "date", "TEXT"),
    ColumnMigration("attendance", "present", "INTEGER DEFAULT 0"),
)


def _split_legacy_names(conn: Connection) -> int:
    rows = conn.execute(
        sa_text(
            "SELECT id, name FROM students "
            "WHERE (first_name IS NULL OR first_name = '') "
            "AND name IS NOT NULL AND TRIM(name) <> ''"
        )
    ).all()
    for student_id, full_name in rows:
        first, last = split_full_name(full_name)
        conn.execute(
            sa_text("UPDATE students SET first_name = :first, last_name = :last WHERE id = :id"),
            {"first": first, "last": last, "id": student_id},
        )
    return len(rows)


def _fill_renewal_dates(conn: Connection) -> int:
    rows = conn.execute(
        sa_text(
            "SELECT id, join_date FROM students "
            "WHERE (renewal_date IS NULL OR renewal_date = '') "
            "AND join_date IS NOT NULL AND join_date <> ''"
        )
    ).all()
    filled = 0
    for student_id, join_date in rows:
        try:
            renewal = add_renewal_offset(str(join_date)[:10])
        except ValueError:
            logger.warning(f"Skipping renewal date for student {student_id}: bad join_date {join_date!r}")
            continue
        conn.execute(
            sa_text("UPDATE students SET renewal_date = :renewal WHERE id = :id"),
            {"renewal": renewal, "id": student_id},
        )
        filled += 1
    return filled


REPAIRS: tuple[Repair, ...] = (
    Repair(
        "students_join_from_start",
        "students",
        ("join_date", "start_date"),
        sql=(
            "UPDATE students SET join_date = start_date "
            "WHERE (join_date IS NULL OR join_date = '') "
            "AND start_date IS NOT NULL AND start_date <> ''"
        ),
    ),
    Repair(
        "students_status_synonyms",
        "students",
        ("status",),
        sql=(
            "UPDATE students SET status = 'archived' "
            "WHERE LOWER(TRIM(status)) IN ('archive', 'inactive', 'old', 'legacy') "
            "OR (LOWER(TRIM(status)) = 'archived' AND status <> 'archived')"
        ),
    ),
    Repair(
        "students_status_default",
        "students",
        ("status",),
        sql=(
            "UPDATE students SET status = 'active' "
            "WHERE status IS NULL OR TRIM(status) = '' "
            "OR (LOWER(TRIM(status)) = 'active' AND status <> 'active')"
        ),
    ),
    Repair("students_split_name", "students", ("name", "first_name", "last_name"), func=_split_legacy_names),
    Repair("students_renewal_date", "students", ("join_date", "renewal_date"), func=_fill_renewal_dates),
    Repair(
        "leads_status_default",
        "leads",
        ("status",),
        sql="UPDATE leads SET status = 'new' WHERE status IS NULL OR TRIM(status) = ''",
    ),
)


class SchemaSnapshot:
    """Live column names per table, looked up case-insensitively."""

    def __init__(self, tables: dict[str, list[str]]):
        self._columns = {name.lower(): tuple(columns) for name, columns in tables.items()}
        self._lookup = {
            name: {column.lower(): column for column in columns}
            for name, columns in self._columns.items()
        }

    @classmethod
    def capture(cls, bind) -> "SchemaSnapshot":
        inspector = inspect(bind)
        return cls(
            {
                name: [column["name"] for column in inspector.get_columns(name)]
                for name in inspector.get_table_names()
            }
        )

    def tables(self) -> list[str]:
        return sorted(self._columns)

    def has_table(self, table: str) -> bool:
        return table.lower() in self._columns

    def columns(self, table: str) -> tuple[str, ...]:
        return self._columns.get(table.lower(), ())

    def has_column(self, table: str, column: str) -> bool:
        return self.resolve(table, column) is not None

    def resolve(self, table: str, column: str) -> str | None:
        return self._lookup.get(table.lower(), {}).get(column.lower())

    def as_dict(self) -> dict[str, list[str]]:
        return {name: list(columns) for name, columns in sorted(self._columns.items())}


@dataclass
class MigrationReport:
    created_tables: list[str] = field(default_factory=list)
    added_columns: list[str] = field(default_factory=list)
    existing_columns: list[str] = field(default_factory=list)
    repairs: dict[str, int] = field(default_factory=dict)
    data_migrations: list[str] = field(default_factory=list)
    failures: list[tuple[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def as_dict(self) -> dict:
        return {
            "created_tables": self.created_tables,
            "added_columns": self.added_columns,
            "existing_columns": len(self.existing_columns),
            "repairs": self.repairs,
            "data_migrations": self.data_migrations,
            "failures": [{"target": target, "error": error} for target, error in self.failures],
        }


def _lower_columns(conn: Connection, table: str) -> set[str] | None:
    inspector = inspect(conn)
    if not inspector.has_table(table):
        return None
    return {column["name"].lower() for column in inspector.get_columns(table)}


def missing_canonical_columns(snapshot: SchemaSnapshot) -> list[str]:
    missing = []
    for table_name in models.CANONICAL_TABLES:
        for column in Base.metadata.tables[table_name].columns:
            if not snapshot.has_column(table_name, column.name):
                missing.append(f"{table_name}.{column.name}")
    return missing


class SchemaMigrator:
    def __init__(
        self,
        engine: Engine,
        migrations: tuple[ColumnMigration, ...] = COLUMN_MIGRATIONS,
        repairs: tuple[Repair, ...] = REPAIRS,
    ):
        self.engine = engine
        self.migrations = migrations
        self.repairs = repairs

    def run(self) -> MigrationReport:
        report = MigrationReport()
        self._create_tables(report)
        for migration in self.migrations:
            self._apply(migration, report)
        self._repair(report)
        self._fold_old_students(report)
        if report.added_columns:
            logger.info(f"Auto-migrate: added {len(report.added_columns)} column(s)")
        if report.failures:
            logger.warning(f"Auto-migrate finished with {len(report.failures)} failure(s)")
        return report

    def snapshot(self) -> SchemaSnapshot:
        return SchemaSnapshot.capture(self.engine)

    def _create_tables(self, report: MigrationReport) -> None:
        for table in Base.metadata.sorted_tables:
            try:
                with self.engine.begin() as conn:
                    if inspect(conn).has_table(table.name):
                        continue
                    table.create(bind=conn)
                report.created_tables.append(table.name)
                logger.info(f"Auto-migrate: table {table.name} created")
            except SQLAlchemyError as exc:
                self._fail(report, table.name, SchemaError(f"Could not create table {table.name}: {exc}"))

    def _apply(self, migration: ColumnMigration, report: MigrationReport) -> None:
        target = migration.target
        try:
            with self.engine.begin() as conn:
                columns = _lower_columns(conn, migration.table)
                if columns is None:
                    raise SchemaError(f"Could not add {target}: table {migration.table} does not exist")
                if migration.column.lower() in columns:
                    report.existing_columns.append(target)
                    return
                conn.execute(sa_text(f"ALTER TABLE {migration.table} ADD COLUMN {migration.column} {migration.ddl}"))
                columns.add(migration.column.lower())
                for backfill in migration.backfills:
                    if all(required.lower() in columns for required in backfill.requires):
                        conn.execute(sa_text(backfill.sql))
            report.added_columns.append(target)
            logger.info(f"Auto-migrate: {target} added")
        except SchemaError as exc:
            self._fail(report, target, exc)
        except SQLAlchemyError as exc:
            self._fail(report, target, SchemaError(f"Could not add {target}: {exc}"))

    def _repair(self, report: MigrationReport) -> None:
        for repair in self.repairs:
            try:
                with self.engine.begin() as conn:
                    columns = _lower_columns(conn, repair.table)
                    if columns is None or not all(name in columns for name in repair.requires):
                        continue
                    if repair.sql:
                        changed = conn.execute(sa_text(repair.sql)).rowcount
                    else:
                        changed = repair.func(conn)
                if changed and changed > 0:
                    report.repairs[repair.name] = changed
                    logger.info(f"Repair {repair.name}: {changed} row(s) updated")
            except SQLAlchemyError as exc:
                self._fail(report, repair.name, SchemaError(f"Repair {repair.name} failed: {exc}"))

    def _fold_old_students(self, report: MigrationReport) -> None:
        name = "fold_old_students"
        try:
            with self.engine.begin() as conn:
                inspector = inspect(conn)
                tables = {table.lower(): table for table in inspector.get_table_names()}
                if "old_students" not in tables or _already_applied(conn, name):
                    return
                normalizer = RecordNormalizer(SchemaSnapshot.capture(conn))
                rows = conn.execute(sa_text(f"SELECT * FROM {tables['old_students']}")).mappings().all()
                moved = 0
                for row in rows:
                    record = {key: value for key, value in row.items() if key.lower() != "id"}
                    record["status"] = "archived"
                    try:
                        values = normalizer.for_insert("students", record)
                    except ValidationError as exc:
                        logger.warning(f"Skipping old_students row {row.get('id')}: {exc}")
                        continue
                    insert_row(conn, "students", values)
                    moved += 1
                _record_applied(conn, name)
            report.data_migrations.append(name)
            logger.info(f"Data migration {name}: {moved} archived student(s) copied")
        except SQLAlchemyError as exc:
            self._fail(report, name, SchemaError(f"Data migration {name} failed: {exc}"))

    @staticmethod
    def _fail(report: MigrationReport, target: str, error: SchemaError) -> None:
        logger.error(f"Auto-migrate error on {target}: {error}")
        report.failures.append((target, str(error)))


def _already_applied(conn: Connection, name: str) -> bool:
    row = conn.execute(
        sa_text("SELECT name FROM schema_migrations WHERE name = :name"), {"name": name}
    ).first()
    return row is not None


def _record_applied(conn: Connection, name: str) -> None:
    conn.execute(
        sa_text("INSERT INTO schema_migrations (name, applied_at) VALUES (:name, :applied_at)"),
        {"name": name, "applied_at": datetime.now().isoformat(timespec="seconds")},
    )
