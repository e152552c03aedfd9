import os
import sys

import pandas as pd
from sqlalchemy import text as sa_text

sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from dojo_module.config import Settings, settings
from dojo_module.database import build_engine
from dojo_module.migrations import SchemaSnapshot, missing_canonical_columns


def inspect_db(database_url=None):
    target = Settings(database_url=database_url) if database_url else settings
    engine = build_engine(target)
    try:
        snapshot = SchemaSnapshot.capture(engine)
        with engine.connect() as conn:
            for table in snapshot.tables():
                count = conn.execute(sa_text(f"SELECT COUNT(*) FROM {table}")).scalar_one()
                print(f"--- {table} ({count} rows) ---")
                print("  " + ", ".join(snapshot.columns(table)))

            missing = missing_canonical_columns(snapshot)
            print("\n--- MISSING CANONICAL COLUMNS ---")
            print("  " + (", ".join(missing) if missing else "none"))

            if snapshot.has_table("students"):
                print("\n--- LATEST STUDENTS ---")
                df = pd.read_sql_query(sa_text("SELECT * FROM students ORDER BY id DESC LIMIT 10"), conn)
                print(df.to_string(index=False) if not df.empty else "  no students")
    finally:
        engine.dispose()


if __name__ == "__main__":
    inspect_db(sys.argv[1] if len(sys.argv) > 1 else None)
