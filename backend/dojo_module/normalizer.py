"""Defaulting and coercion of loosely-typed client records.

Clients of every vintage post records with different field names and value
types. ``RecordNormalizer`` turns such a record into values for the columns a
table really has, given the ``SchemaSnapshot`` captured at startup. It never
touches the database.
"""
import re
from collections.abc import Callable, Mapping
from datetime import date, datetime, timedelta
from typing import Any

from .errors import ValidationError


RENEWAL_OFFSET_DAYS = 28

TRUE_STRINGS = {"1", "true"}
STUDENT_STATUSES = ("active", "archived")
ARCHIVED_SYNONYMS = {"archived", "archive", "inactive", "old", "legacy"}
LEAD_STATUSES = ("new", "open", "contacted", "lost")
CONVERTED = "converted"

# Legacy lifecycle flags: a true value in the first group means archived,
# a true value in the second means active.
ARCHIVE_FLAGS = ("is_legacy", "legacy")
ACTIVE_FLAGS = ("active", "is_active")

# alias -> canonical field
ALIASES = {
    "students": {
        "start_date": "join_date",
        "picture_path": "photo",
        "parent_name": "parents_name",
    },
    "payments": {"notes": "note"},
    "expenses": {"notes": "note"},
    "leads": {"followup_date": "follow_up_date", "program": "interested_program"},
    "attendance": {},
}

DATE_FIELDS = {
    "students": ("join_date", "renewal_date"),
    "payments": ("date",),
    "expenses": ("date",),
    "leads": ("follow_up_date",),
    "attendance": ("date",),
}

FLAG_FIELDS = {
    "payments": ("taxable",),
    "expenses": ("taxable",),
    "attendance": ("present",),
}

# Columns only the conversion service writes.
PROTECTED_FIELDS = {
    "leads": ("converted_at", "converted_student_id"),
}

_WHITESPACE = re.compile(r"\s+")
_ISO_DATE = re.compile(r"\d{4}-\d{2}-\d{2}")


def coerce_flag(value: Any) -> int:
    if value is True:
        return 1
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return 1 if value == 1 else 0
    if isinstance(value, str):
        return 1 if value.strip().lower() in TRUE_STRINGS else 0
    return 0


def split_full_name(value: str) -> tuple[str, str]:
    parts = _WHITESPACE.split(value.strip(), maxsplit=1)
    first = parts[0]
    last = parts[1] if len(parts) > 1 else ""
    return first, last


def coerce_date(value: Any, field: str) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        head, tail = text[:10], text[10:]
        try:
            if not _ISO_DATE.fullmatch(head) or (tail and tail[0] not in "T "):
                raise ValueError(text)
            if tail:
                # The time part must parse too; only the date is kept.
                datetime.fromisoformat(f"{head}T{tail[1:]}".replace("Z", "+00:00"))
            return date.fromisoformat(head).isoformat()
        except ValueError as exc:
            raise ValidationError(f"Invalid date for {field}: {value!r}") from exc
    raise ValidationError(f"Invalid date for {field}: {value!r}")


def add_renewal_offset(join_date: str) -> str:
    return (date.fromisoformat(join_date) + timedelta(days=RENEWAL_OFFSET_DAYS)).isoformat()


def coerce_int(value: Any, field: str) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a whole number")
    if isinstance(value, int):
        return value
    try:
        number = float(str(value).strip())
    except ValueError as exc:
        raise ValidationError(f"{field} must be a whole number") from exc
    if not number.is_integer():
        raise ValidationError(f"{field} must be a whole number")
    return int(number)


def coerce_amount(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    if isinstance(value, bool):
        raise ValidationError("amount must be a number")
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).replace(",", "").replace("$", "").strip())
    except ValueError as exc:
        raise ValidationError(f"amount must be a number, got {value!r}") from exc


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class RecordNormalizer:
    def __init__(
        self,
        snapshot,
        today: Callable[[], date] | None = None,
        now: Callable[[], datetime] | None = None,
    ):
        self.snapshot = snapshot
        self._today = today or date.today
        self._now = now or datetime.now

    def today(self) -> date:
        return self._today()

    def timestamp(self) -> str:
        return self._now().isoformat(timespec="seconds")

    def for_insert(self, table: str, raw: Mapping[str, Any], *, preserve_id: bool = False) -> dict[str, Any]:
        """Normalize a new record.

        ``preserve_id`` is for records restored from an export: the id and the
        conversion bookkeeping of leads are kept as stored.
        """
        return self._normalize(table, raw, creating=True, preserve_id=preserve_id)

    def for_update(self, table: str, raw: Mapping[str, Any]) -> dict[str, Any]:
        return self._normalize(table, raw, creating=False, preserve_id=False)

    def _normalize(self, table: str, raw: Mapping[str, Any], *, creating: bool, preserve_id: bool) -> dict[str, Any]:
        if table not in ALIASES:
            raise ValidationError(f"Unknown table: {table}")
        if not isinstance(raw, Mapping):
            raise ValidationError("Record must be a JSON object")

        record = self._clean(table, raw)
        if not preserve_id:
            record.pop("id", None)
            for field in PROTECTED_FIELDS.get(table, ()):
                record.pop(field, None)
        elif "id" in record:
            record["id"] = coerce_int(record["id"], "id")

        mirrors: dict[str, Any] = {}
        if table == "students":
            mirrors = self._student_fields(record, creating)
        elif table == "leads":
            self._lead_fields(record, creating, restoring=preserve_id)
        elif table in ("payments", "expenses"):
            self._money_fields(table, record, creating)
        elif table == "attendance":
            self._attendance_fields(record, creating)

        for field in DATE_FIELDS[table]:
            if field in record:
                record[field] = coerce_date(record[field], field)
        for field in FLAG_FIELDS.get(table, ()):
            if field in record:
                record[field] = coerce_flag(record[field])
            elif creating:
                record[field] = 0
        if creating and not record.get("created_at"):
            record["created_at"] = self.timestamp()

        for alias, canonical in ALIASES[table].items():
            if canonical in record:
                mirrors.setdefault(alias, record[canonical])

        return self._restrict(table, record, mirrors)

    def _clean(self, table: str, raw: Mapping[str, Any]) -> dict[str, Any]:
        record: dict[str, Any] = {}
        for key, value in raw.items():
            if not isinstance(key, str):
                continue
            if isinstance(value, (dict, list)):
                raise ValidationError(f"{key} must be a plain value")
            if isinstance(value, str):
                value = value.strip() or None
            record[key.strip().lower()] = value

        for alias, canonical in ALIASES[table].items():
            if alias in record:
                value = record.pop(alias)
                if _is_blank(record.get(canonical)) and (canonical not in record or value is not None):
                    record[canonical] = value
        return record

    def _student_fields(self, record: dict[str, Any], creating: bool) -> dict[str, Any]:
        mirrors: dict[str, Any] = {}

        name_given = "name" in record
        full_name = record.pop("name", None)
        if full_name and not (record.get("first_name") or record.get("last_name")):
            record["first_name"], record["last_name"] = split_full_name(full_name)
        if creating:
            if not record.get("first_name"):
                raise ValidationError("Student name is required")
            record.setdefault("last_name", "")
        elif ("first_name" in record or name_given) and not record.get("first_name"):
            raise ValidationError("Student name cannot be empty")
        if "first_name" in record and "last_name" in record:
            mirrors["name"] = " ".join(
                part for part in (record["first_name"], record["last_name"]) if part
            )

        if "age" in record:
            record["age"] = coerce_int(record["age"], "age")

        if creating:
            join_date = coerce_date(record.get("join_date"), "join_date") or self.today().isoformat()
            record["join_date"] = join_date
            renewal_date = coerce_date(record.get("renewal_date"), "renewal_date")
            record["renewal_date"] = renewal_date or add_renewal_offset(join_date)

        status = self._student_status(record)
        record.pop("status", None)
        for flag in ARCHIVE_FLAGS + ACTIVE_FLAGS:
            record.pop(flag, None)
        if status is None and creating:
            status = "active"
        if status is not None:
            record["status"] = status
            for flag in ARCHIVE_FLAGS:
                mirrors[flag] = 1 if status == "archived" else 0
            for flag in ACTIVE_FLAGS:
                mirrors[flag] = 1 if status == "active" else 0
        return mirrors

    def _student_status(self, record: dict[str, Any]) -> str | None:
        status = record.get("status")
        if status is not None:
            text = str(status).strip().lower()
            if text == "active":
                return "active"
            if text in ARCHIVED_SYNONYMS:
                return "archived"
            raise ValidationError(f"Invalid student status: {status!r}")
        for flag in ARCHIVE_FLAGS:
            if flag in record:
                return "archived" if coerce_flag(record[flag]) else "active"
        for flag in ACTIVE_FLAGS:
            if flag in record:
                return "active" if coerce_flag(record[flag]) else "archived"
        return None

    def _lead_fields(self, record: dict[str, Any], creating: bool, restoring: bool = False) -> None:
        if creating and not record.get("name"):
            raise ValidationError("Lead name is required")
        if "name" in record and record["name"] is None:
            raise ValidationError("Lead name cannot be empty")

        status = record.get("status")
        if status is not None:
            status = str(status).strip().lower()
            if status == CONVERTED and not restoring:
                raise ValidationError("Leads are marked converted only by converting them")
            if status not in LEAD_STATUSES and status != CONVERTED:
                raise ValidationError(f"Invalid lead status: {record['status']!r}")
            record["status"] = status
        elif creating:
            record["status"] = "new"
        else:
            record.pop("status", None)

    def _money_fields(self, table: str, record: dict[str, Any], creating: bool) -> None:
        if "amount" in record or creating:
            record["amount"] = coerce_amount(record.get("amount"))
        if creating and not record.get("date"):
            record["date"] = self.today().isoformat()
        if table == "payments" and "student_id" in record:
            record["student_id"] = coerce_int(record["student_id"], "student_id")

    def _attendance_fields(self, record: dict[str, Any], creating: bool) -> None:
        if "student_id" in record or creating:
            student_id = coerce_int(record.get("student_id"), "student_id")
            if student_id is None:
                raise ValidationError("student_id is required")
            record["student_id"] = student_id
        if creating and not record.get("date"):
            record["date"] = self.today().isoformat()

    def _restrict(self, table: str, record: dict[str, Any], mirrors: dict[str, Any]) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for field, value in mirrors.items():
            column = self.snapshot.resolve(table, field)
            if column:
                values[column] = value
        for field, value in record.items():
            column = self.snapshot.resolve(table, field)
            if column:
                values[column] = value
        return values
