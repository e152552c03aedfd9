"""Upsert students, payments and leads from JSON dumps.

Usage:
    python import_json.py --students students.json --payments payments.json --leads leads.json
"""
import argparse
import json
import os
import sys

sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from dojo_module import init_dojo_module
from dojo_module.config import Settings, settings
from dojo_module.errors import DojoError
from dojo_module.services import upsert_records


def read_json(path):
    if not path:
        return None
    if not os.path.exists(path):
        print(f"Missing file: {path}")
        return None
    with open(path, encoding="utf-8") as handle:
        try:
            data = json.load(handle)
        except json.JSONDecodeError as e:
            print(f"Bad JSON in {path}: {e}")
            return None
    # Dumps from the API are either a bare list or {"rows": [...]}.
    if isinstance(data, dict):
        data = data.get("rows") or data.get("data") or []
    return data


def import_files(files, database_url=None):
    target = Settings(database_url=database_url) if database_url else settings
    ctx = init_dojo_module(target)
    db = ctx.session_factory()
    totals = {}
    try:
        # Students first so payments can reference them.
        for table in ("students", "leads", "payments"):
            rows = read_json(files.get(table))
            if not rows:
                continue
            try:
                inserted, updated = upsert_records(db, ctx.normalizer, table, rows)
            except DojoError as e:
                print(f"{table}: import failed: {e}")
                continue
            totals[table] = (inserted, updated)
            print(f"{table}: {inserted} inserted, {updated} updated")
    finally:
        db.close()
        ctx.engine.dispose()
    return totals


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Upsert JSON dumps into the dojo database.")
    parser.add_argument("--db", default=None, help="SQLAlchemy database URL (default: DATABASE_URL / DOJO_DB)")
    parser.add_argument("--students", help="Students JSON file")
    parser.add_argument("--payments", help="Payments JSON file")
    parser.add_argument("--leads", help="Leads JSON file")
    args = parser.parse_args()
    import_files(
        {"students": args.students, "payments": args.payments, "leads": args.leads},
        database_url=args.db,
    )
