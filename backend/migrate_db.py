import os
import sys

# Add the current directory to sys.path so we can import dojo_module
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from dojo_module.config import Settings, settings
from dojo_module.database import build_engine
from dojo_module.migrations import SchemaMigrator, missing_canonical_columns


def run_migrations(database_url=None):
    target = Settings(database_url=database_url) if database_url else settings
    print(f"Migrating {target.database_url}")
    engine = build_engine(target)
    try:
        migrator = SchemaMigrator(engine)
        report = migrator.run()
        for table in report.created_tables:
            print(f"  created table {table}")
        for column in report.added_columns:
            print(f"  added column {column}")
        for name, rows in report.repairs.items():
            print(f"  repair {name}: {rows} row(s)")
        for name in report.data_migrations:
            print(f"  data migration {name} applied")
        for target_name, error in report.failures:
            print(f"  FAILED {target_name}: {error}")

        missing = missing_canonical_columns(migrator.snapshot())
        if missing:
            print(f"Still missing: {', '.join(missing)}")
        print("Migration finished." if report.ok else "Migration finished with errors.")
        return report
    finally:
        engine.dispose()


if __name__ == "__main__":
    report = run_migrations(sys.argv[1] if len(sys.argv) > 1 else None)
    sys.exit(0 if report.ok else 1)
