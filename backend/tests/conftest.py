from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text as sa_text

from backend import create_app
from dojo_module import init_dojo_module
from dojo_module.config import Settings
from dojo_module.database import Base, build_engine
from dojo_module.migrations import SchemaSnapshot
from dojo_module.models import CANONICAL_TABLES
from dojo_module.normalizer import RecordNormalizer

FIXED_TODAY = date(2024, 3, 10)

LEGACY_SCHEMA = [
    """CREATE TABLE students (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        Phone TEXT,
        start_date TEXT,
        is_legacy INTEGER DEFAULT 0,
        picture_path TEXT,
        parent_name TEXT
    )""",
    """INSERT INTO students (name, Phone, start_date, is_legacy, picture_path, parent_name)
       VALUES ('Jane Doe', '555 1212', '2023-12-20', 0, '/uploads/jane.jpg', 'Mary Doe')""",
    """INSERT INTO students (name, Phone, start_date, is_legacy)
       VALUES ('Old Timer', NULL, '2020-01-01', 1)""",
    """CREATE TABLE payments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        student_id INTEGER,
        amount REAL,
        date TEXT,
        notes TEXT
    )""",
    "INSERT INTO payments (student_id, amount, date, notes) VALUES (1, 120.0, '2024-01-05', 'January')",
    "CREATE TABLE leads (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT, phone TEXT, followup_date TEXT)",
    "INSERT INTO leads (name, phone, followup_date) VALUES ('Sam Lee', '555 3434', '2024-02-01')",
    "CREATE TABLE old_students (id INTEGER PRIMARY KEY, name TEXT, phone TEXT, start_date TEXT)",
    "INSERT INTO old_students (id, name, phone, start_date) VALUES (7, 'Ancient One', '555 9999', '2015-06-01')",
]


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'dojo.db'}",
        uploads_dir=str(tmp_path / "uploads"),
        admin_token="test-admin-token",
    )


@pytest.fixture
def engine(settings):
    engine = build_engine(settings)
    yield engine
    engine.dispose()


@pytest.fixture
def legacy_engine(engine):
    with engine.begin() as conn:
        for statement in LEGACY_SCHEMA:
            conn.execute(sa_text(statement))
    return engine


@pytest.fixture
def context(settings):
    ctx = init_dojo_module(settings)
    yield ctx
    ctx.engine.dispose()


@pytest.fixture
def db(context):
    session = context.session_factory()
    yield session
    session.close()


@pytest.fixture
def normalizer(context):
    return RecordNormalizer(context.snapshot, today=lambda: FIXED_TODAY)


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as test_client:
        yield test_client


def canonical_snapshot(**extra_columns) -> SchemaSnapshot:
    tables = {
        name: [column.name for column in Base.metadata.tables[name].columns]
        for name in CANONICAL_TABLES
    }
    for table, columns in extra_columns.items():
        tables[table] = tables[table] + list(columns)
    return SchemaSnapshot(tables)
