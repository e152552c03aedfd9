import logging
import re
from dataclasses import dataclass
from typing import Any

from sqlalchemy import text as sa_text
from sqlalchemy.orm import Session

from .database import insert_row, transaction, update_row
from .errors import LeadAlreadyConverted, NotFound, SchemaError, ValidationError
from .normalizer import CONVERTED, RecordNormalizer, add_renewal_offset, coerce_date, split_full_name

logger = logging.getLogger(__name__)

HONORIFICS = ("mr", "mrs", "ms", "miss", "mx", "dr")
_HONORIFIC = re.compile(r"^(?:%s)\.?(?=\s|$)" % "|".join(HONORIFICS), re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")


def split_lead_name(name: str | None) -> tuple[str, str]:
    """Split a lead's free-form name into first and last name.

    A leading honorific ("Mr.", "dr", ...) is dropped first, so
    "Mr. John Q. Public" becomes ("John", "Q. Public").
    """
    cleaned = _HONORIFIC.sub("", (name or "").strip(), count=1).strip()
    if not cleaned:
        raise ValidationError("Lead has no usable name")
    return split_full_name(cleaned)


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _lowered(row) -> dict[str, Any]:
    return {key.lower(): value for key, value in row.items()}


@dataclass(frozen=True)
class ConversionResult:
    lead_id: int
    student_id: int
    created: bool
    matched_by: str | None = None
    filled_fields: tuple[str, ...] = ()


class LeadConversionService:
    def __init__(self, normalizer: RecordNormalizer):
        self.normalizer = normalizer
        self.snapshot = normalizer.snapshot

    def convert(self, db: Session, lead_id: int) -> ConversionResult:
        with transaction(db, f"converting lead {lead_id}"):
            lead = self._claim(db, lead_id)
            first_name, last_name = split_lead_name(lead.get("name"))
            student, matched_by = self._find_match(db, lead)
            if student is None:
                student_id = self._create_student(db, lead, first_name, last_name)
                result = ConversionResult(lead_id=lead_id, student_id=student_id, created=True)
            else:
                filled = self._merge_into(db, student, lead, first_name, last_name)
                result = ConversionResult(
                    lead_id=lead_id,
                    student_id=student["id"],
                    created=False,
                    matched_by=matched_by,
                    filled_fields=filled,
                )
            self._link(db, lead_id, result.student_id)

        if result.created:
            logger.info(f"Lead {lead_id} converted into new student {result.student_id}")
        else:
            logger.info(f"Lead {lead_id} merged into student {result.student_id} (matched by {matched_by})")
        return result

    def _column(self, table: str, column: str) -> str:
        resolved = self.snapshot.resolve(table, column)
        if resolved is None:
            raise SchemaError(f"{table}.{column} is missing; run the schema migration")
        return resolved

    def _claim(self, db: Session, lead_id: int) -> dict[str, Any]:
        # The claiming UPDATE is the first statement so a second conversion of
        # the same lead waits on the write lock and then matches no row.
        status = self._column("leads", "status")
        assignments = [f"{status} = :converted"]
        params: dict[str, Any] = {"converted": CONVERTED, "id": lead_id}
        converted_at = self.snapshot.resolve("leads", "converted_at")
        if converted_at:
            assignments.append(f"{converted_at} = :converted_at")
            params["converted_at"] = self.normalizer.timestamp()
        guards = [f"({status} IS NULL OR {status} <> :converted)"]
        linked = self.snapshot.resolve("leads", "converted_student_id")
        if linked:
            guards.append(f"{linked} IS NULL")
        claimed = db.execute(
            sa_text(f"UPDATE leads SET {', '.join(assignments)} WHERE id = :id AND {' AND '.join(guards)}"),
            params,
        ).rowcount
        row = db.execute(sa_text("SELECT * FROM leads WHERE id = :id"), {"id": lead_id}).mappings().first()
        if row is None:
            raise NotFound("Lead", lead_id)
        if not claimed:
            raise LeadAlreadyConverted(lead_id)
        return _lowered(row)

    def _find_match(self, db: Session, lead: dict[str, Any]) -> tuple[dict[str, Any] | None, str | None]:
        email = (lead.get("email") or "").strip().lower()
        email_column = self.snapshot.resolve("students", "email")
        if email and email_column:
            row = db.execute(
                sa_text(f"SELECT * FROM students WHERE LOWER(TRIM({email_column})) = :email ORDER BY id LIMIT 1"),
                {"email": email},
            ).mappings().first()
            if row is not None:
                return _lowered(row), "email"

        phone = _WHITESPACE.sub("", lead.get("phone") or "")
        phone_column = self.snapshot.resolve("students", "phone")
        if phone and phone_column:
            rows = db.execute(
                sa_text(f"SELECT * FROM students WHERE {phone_column} IS NOT NULL ORDER BY id")
            ).mappings()
            for row in rows:
                candidate = _lowered(row)
                if _WHITESPACE.sub("", str(candidate["phone"])) == phone:
                    return candidate, "phone"
        return None, None

    def _create_student(self, db: Session, lead: dict[str, Any], first_name: str, last_name: str) -> int:
        today = self.normalizer.today()
        record = {
            "first_name": first_name,
            "last_name": last_name,
            "phone": lead.get("phone"),
            "email": lead.get("email"),
            "program": lead.get("interested_program"),
            "join_date": today,
            "renewal_date": add_renewal_offset(today.isoformat()),
            "status": "active",
            "notes": f"Converted from lead #{lead['id']}",
        }
        return insert_row(db, "students", self.normalizer.for_insert("students", record))

    def _merge_into(
        self,
        db: Session,
        student: dict[str, Any],
        lead: dict[str, Any],
        first_name: str,
        last_name: str,
    ) -> tuple[str, ...]:
        candidates = {
            "first_name": first_name,
            "last_name": last_name,
            "phone": lead.get("phone"),
            "email": lead.get("email"),
            "program": lead.get("interested_program"),
        }
        updates = {
            field: value
            for field, value in candidates.items()
            if not _is_empty(value) and field in student and _is_empty(student[field])
        }

        join_date = student.get("join_date")
        if _is_empty(join_date):
            join_date = self.normalizer.today().isoformat()
            updates["join_date"] = join_date
        if _is_empty(student.get("renewal_date")):
            try:
                base = coerce_date(join_date, "join_date")
            except ValidationError:
                base = self.normalizer.today().isoformat()
            updates["renewal_date"] = add_renewal_offset(base)
        filled = tuple(updates)

        audit = f"Converted from lead #{lead['id']}"
        notes = student.get("notes")
        updates["notes"] = f"{notes.rstrip()}\n{audit}" if not _is_empty(notes) else audit
        updates["status"] = "active"

        update_row(db, "students", student["id"], self.normalizer.for_update("students", updates))
        return filled

    def _link(self, db: Session, lead_id: int, student_id: int) -> None:
        column = self.snapshot.resolve("leads", "converted_student_id")
        if column:
            update_row(db, "leads", lead_id, {column: student_id})
