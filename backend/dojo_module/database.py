import logging
import os
from contextlib import contextmanager
from typing import Any

from fastapi import Request
from sqlalchemy import column as sa_column
from sqlalchemy import create_engine, event, insert, select, update
from sqlalchemy import delete as sa_delete
from sqlalchemy import table as sa_table
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import Settings
from .errors import StorageError

logger = logging.getLogger(__name__)

Base = declarative_base()


def normalize_database_url(url: str) -> str:
    # Hosted Postgres providers still hand out the old scheme.
    if url.startswith("postgres://"):
        return "postgresql://" + url[len("postgres://"):]
    return url


def _enable_sqlite_transactions(engine: Engine) -> None:
    # pysqlite commits implicitly before DDL; take over BEGIN so ALTER TABLE
    # and its backfill share one transaction.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(settings: Settings) -> Engine:
    url = normalize_database_url(settings.database_url)
    if url.startswith("sqlite"):
        db_path = make_url(url).database
        if db_path and db_path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
        engine = create_engine(
            url,
            future=True,
            connect_args={"check_same_thread": False, "timeout": settings.db_timeout_seconds},
        )
        _enable_sqlite_transactions(engine)
        return engine

    timeout_ms = settings.db_timeout_seconds * 1000
    return create_engine(
        url,
        future=True,
        pool_pre_ping=True,
        connect_args={"options": f"-c statement_timeout={timeout_ms}"},
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def get_context(request: Request):
    return request.app.state.dojo


def get_db_session(request: Request):
    db = request.app.state.dojo.session_factory()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session, action: str):
    """Commit what runs inside the block, or roll all of it back."""
    try:
        yield db
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"Storage error while {action}: {exc}")
        raise StorageError(f"Storage error while {action}") from exc
    except Exception:
        db.rollback()
        raise


def _table(name: str, columns) -> Any:
    names = dict.fromkeys([*columns, "id"])
    return sa_table(name, *[sa_column(col) for col in names])


def insert_row(db, table_name: str, values: dict[str, Any]) -> int:
    tbl = _table(table_name, values)
    stmt = insert(tbl).values(**values).returning(tbl.c.id)
    return db.execute(stmt).scalar_one()


def update_row(db, table_name: str, record_id: int, values: dict[str, Any]) -> int:
    tbl = _table(table_name, values)
    stmt = update(tbl).where(tbl.c.id == record_id).values(**values)
    return db.execute(stmt).rowcount


def delete_row(db, table_name: str, record_id: int) -> int:
    tbl = _table(table_name, ())
    return db.execute(sa_delete(tbl).where(tbl.c.id == record_id)).rowcount


def row_exists(db, table_name: str, record_id: int) -> bool:
    tbl = _table(table_name, ())
    return db.execute(select(tbl.c.id).where(tbl.c.id == record_id)).first() is not None
