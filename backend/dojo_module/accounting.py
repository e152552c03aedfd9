import logging
from typing import Any

import pandas as pd
from sqlalchemy import text as sa_text
from sqlalchemy.orm import Session

from .errors import ValidationError
from .normalizer import coerce_date

logger = logging.getLogger(__name__)

TAXABLE_TEST = "LOWER(CAST(taxable AS TEXT)) IN ('1', 'true')"


def date_range(date_from: str | None, date_to: str | None) -> tuple[str | None, str | None]:
    start = coerce_date(date_from, "from")
    end = coerce_date(date_to, "to")
    if start and end and start > end:
        raise ValidationError("from must not be after to")
    return start, end


def _date_filter(start: str | None, end: str | None) -> tuple[str, dict[str, str]]:
    clauses = []
    params = {}
    if start:
        clauses.append("date >= :start")
        params["start"] = start
    if end:
        clauses.append("date <= :end")
        params["end"] = end
    return (f" WHERE {' AND '.join(clauses)}" if clauses else ""), params


def _split_totals(db: Session, table: str, where: str, params: dict[str, str]) -> dict[str, float]:
    row = db.execute(
        sa_text(
            f"SELECT "
            f"COALESCE(SUM(CASE WHEN {TAXABLE_TEST} THEN amount ELSE 0 END), 0) AS taxable, "
            f"COALESCE(SUM(CASE WHEN {TAXABLE_TEST} THEN 0 ELSE amount END), 0) AS non_taxable "
            f"FROM {table}{where}"
        ),
        params,
    ).mappings().one()
    taxable = round(float(row["taxable"] or 0), 2)
    non_taxable = round(float(row["non_taxable"] or 0), 2)
    return {"taxable": taxable, "non_taxable": non_taxable, "total": round(taxable + non_taxable, 2)}


def accounting_summary(db: Session, *, date_from: str | None = None, date_to: str | None = None) -> dict[str, Any]:
    """Income from payments and spend from expenses, split by the taxable flag."""
    start, end = date_range(date_from, date_to)
    where, params = _date_filter(start, end)
    income = _split_totals(db, "payments", where, params)
    expenses = _split_totals(db, "expenses", where, params)
    return {
        "date_from": start,
        "date_to": end,
        "income": income,
        "expenses": expenses,
        "net": round(income["total"] - expenses["total"], 2),
    }


def _by_month(frame: pd.DataFrame) -> pd.Series:
    frame = frame.dropna(subset=["date"])
    if frame.empty:
        return pd.Series(dtype=float)
    months = frame["date"].astype(str).str.slice(0, 7)
    amounts = pd.to_numeric(frame["amount"], errors="coerce").fillna(0.0)
    return amounts.groupby(months).sum()


def monthly_totals(db: Session, *, date_from: str | None = None, date_to: str | None = None) -> list[dict[str, Any]]:
    start, end = date_range(date_from, date_to)
    where, params = _date_filter(start, end)
    connection = db.connection()
    income = pd.read_sql_query(sa_text(f"SELECT date, amount FROM payments{where}"), connection, params=params)
    spent = pd.read_sql_query(sa_text(f"SELECT date, amount FROM expenses{where}"), connection, params=params)

    frame = pd.concat({"income": _by_month(income), "expenses": _by_month(spent)}, axis=1).fillna(0.0)
    if frame.empty:
        return []
    frame = frame.sort_index()
    frame["net"] = frame["income"] - frame["expenses"]
    logger.info(f"Monthly totals computed for {len(frame)} month(s)")
    return [
        {
            "month": str(month),
            "income": round(float(row["income"]), 2),
            "expenses": round(float(row["expenses"]), 2),
            "net": round(float(row["net"]), 2),
        }
        for month, row in frame.iterrows()
    ]
