from sqlalchemy import text as sa_text

from dojo_module.migrations import (
    COLUMN_MIGRATIONS,
    Backfill,
    ColumnMigration,
    SchemaMigrator,
    SchemaSnapshot,
    missing_canonical_columns,
)


def _student(engine, first_name):
    with engine.connect() as conn:
        return conn.execute(
            sa_text("SELECT * FROM students WHERE first_name = :first"), {"first": first_name}
        ).mappings().one()


def test_fresh_database_gets_canonical_schema(engine):
    report = SchemaMigrator(engine).run()

    assert report.ok
    assert {"students", "payments", "expenses", "leads", "attendance", "schema_migrations"} <= set(report.created_tables)
    assert report.added_columns == []
    assert missing_canonical_columns(SchemaSnapshot.capture(engine)) == []


def test_running_twice_matches_running_once(legacy_engine):
    migrator = SchemaMigrator(legacy_engine)
    first = migrator.run()
    after_first = migrator.snapshot().as_dict()

    second = migrator.run()

    assert first.ok and second.ok
    assert migrator.snapshot().as_dict() == after_first
    assert second.created_tables == []
    assert second.added_columns == []
    assert second.repairs == {}
    assert second.data_migrations == []
    with legacy_engine.connect() as conn:
        assert conn.execute(sa_text("SELECT COUNT(*) FROM students")).scalar_one() == 3


def test_column_detection_ignores_case(legacy_engine):
    migrator = SchemaMigrator(legacy_engine)
    report = migrator.run()

    assert "students.phone" in report.existing_columns
    assert "students.phone" not in report.added_columns
    assert migrator.snapshot().resolve("students", "PHONE") == "Phone"


def test_legacy_columns_are_backfilled(legacy_engine):
    SchemaMigrator(legacy_engine).run()

    jane = _student(legacy_engine, "Jane")
    assert jane["last_name"] == "Doe"
    assert jane["join_date"] == "2023-12-20"
    assert jane["renewal_date"] == "2024-01-17"
    assert jane["status"] == "active"
    assert jane["photo"] == "/uploads/jane.jpg"
    assert jane["parents_name"] == "Mary Doe"
    assert jane["created_at"]

    old_timer = _student(legacy_engine, "Old")
    assert old_timer["last_name"] == "Timer"
    assert old_timer["status"] == "archived"

    with legacy_engine.connect() as conn:
        payment = conn.execute(sa_text("SELECT note, taxable FROM payments")).mappings().one()
        lead = conn.execute(sa_text("SELECT follow_up_date, status FROM leads")).mappings().one()
    assert payment["note"] == "January"
    assert payment["taxable"] == 0
    assert lead["follow_up_date"] == "2024-02-01"
    assert lead["status"] == "new"


def test_old_students_are_folded_in_once_and_kept(legacy_engine):
    report = SchemaMigrator(legacy_engine).run()
    assert "fold_old_students" in report.data_migrations

    ancient = _student(legacy_engine, "Ancient")
    assert ancient["last_name"] == "One"
    assert ancient["status"] == "archived"
    assert ancient["is_legacy"] == 1
    assert ancient["name"] == "Ancient One"
    assert ancient["join_date"] == "2015-06-01"
    assert ancient["renewal_date"] == "2015-06-29"

    SchemaMigrator(legacy_engine).run()
    with legacy_engine.connect() as conn:
        copies = conn.execute(sa_text("SELECT COUNT(*) FROM students WHERE first_name = 'Ancient'")).scalar_one()
        kept = conn.execute(sa_text("SELECT COUNT(*) FROM old_students")).scalar_one()
    assert copies == 1
    assert kept == 1


def test_failed_column_does_not_stop_the_others(engine):
    migrations = COLUMN_MIGRATIONS + (
        ColumnMigration("students", "badge_id", "INTEGER PRIMARY KEY"),
        ColumnMigration(
            "students",
            "nickname",
            "TEXT",
            (Backfill("UPDATE students SET nickname = no_such_function(id)"),),
        ),
        ColumnMigration("ghosts", "name", "TEXT"),
        ColumnMigration("students", "belt", "TEXT"),
    )

    report = SchemaMigrator(engine, migrations=migrations).run()

    assert {target for target, _ in report.failures} == {"students.badge_id", "students.nickname", "ghosts.name"}
    assert "students.belt" in report.added_columns
    snapshot = SchemaSnapshot.capture(engine)
    assert snapshot.has_column("students", "belt")
    assert not snapshot.has_column("students", "badge_id")
    # the column add is rolled back together with its failed backfill
    assert not snapshot.has_column("students", "nickname")


def test_backfill_skipped_when_source_column_is_absent(engine):
    with engine.begin() as conn:
        conn.execute(sa_text("CREATE TABLE expenses (id INTEGER PRIMARY KEY, vendor TEXT, amount REAL)"))
        conn.execute(sa_text("INSERT INTO expenses (vendor, amount) VALUES ('Mat Supply Co', 250)"))

    report = SchemaMigrator(engine).run()

    assert report.ok
    assert "expenses.note" in report.added_columns
    with engine.connect() as conn:
        row = conn.execute(sa_text("SELECT note, amount FROM expenses")).mappings().one()
    assert row["note"] is None
    assert row["amount"] == 250


def test_snapshot_lookup():
    snapshot = SchemaSnapshot({"Students": ["id", "First_Name"]})

    assert snapshot.has_table("students")
    assert snapshot.resolve("students", "first_name") == "First_Name"
    assert snapshot.has_column("STUDENTS", "ID")
    assert not snapshot.has_column("students", "last_name")
    assert snapshot.columns("leads") == ()
