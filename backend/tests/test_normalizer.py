from datetime import date, datetime

import pytest

from conftest import FIXED_TODAY, canonical_snapshot
from dojo_module.errors import ValidationError
from dojo_module.migrations import SchemaSnapshot
from dojo_module.normalizer import RecordNormalizer, coerce_flag, split_full_name


def make_normalizer(**extra_columns):
    return RecordNormalizer(
        canonical_snapshot(**extra_columns),
        today=lambda: FIXED_TODAY,
        now=lambda: datetime(2024, 3, 10, 9, 30),
    )


def test_renewal_date_is_28_days_after_join_date():
    record = make_normalizer().for_insert("students", {"name": "Ann Lee", "join_date": "2024-01-15"})

    assert record["join_date"] == "2024-01-15"
    assert record["renewal_date"] == "2024-02-12"


def test_renewal_date_crosses_year_boundary():
    record = make_normalizer().for_insert("students", {"name": "Ann Lee", "join_date": "2023-12-20"})

    assert record["renewal_date"] == "2024-01-17"


def test_missing_dates_default_to_today():
    record = make_normalizer().for_insert("students", {"first_name": "Ann", "last_name": "Lee"})

    assert record["join_date"] == "2024-03-10"
    assert record["renewal_date"] == "2024-04-07"
    assert record["created_at"] == "2024-03-10T09:30:00"


def test_explicit_renewal_date_is_kept():
    record = make_normalizer().for_insert(
        "students", {"name": "Ann Lee", "join_date": "2024-01-15", "renewal_date": "2024-06-01"}
    )

    assert record["renewal_date"] == "2024-06-01"


def test_start_date_is_an_alias_and_mirrored_when_the_column_exists():
    record = make_normalizer(students=["start_date"]).for_insert(
        "students", {"name": "Ann Lee", "start_date": "2024-01-15T18:00:00"}
    )

    assert record["join_date"] == "2024-01-15"
    assert record["start_date"] == "2024-01-15"
    assert record["renewal_date"] == "2024-02-12"


def test_update_does_not_recompute_renewal_date():
    record = make_normalizer().for_update("students", {"join_date": "2024-05-01"})

    assert record == {"join_date": "2024-05-01"}


@pytest.mark.parametrize(
    "value", ["15/01/2024", "2024-01-15 garbage", "2024-01-15T25:00", "20240115", "2024-1-5"]
)
def test_invalid_date_is_rejected(value):
    with pytest.raises(ValidationError):
        make_normalizer().for_insert("students", {"name": "Ann Lee", "join_date": value})


@pytest.mark.parametrize("value", ["2024-01-15", "2024-01-15 08:30", "2024-01-15T08:30:00Z", " 2024-01-15 "])
def test_iso_dates_with_time_keep_the_date(value):
    record = make_normalizer().for_update("students", {"join_date": value})

    assert record == {"join_date": "2024-01-15"}


@pytest.mark.parametrize(
    "payload",
    [{"first_name": "", "last_name": ""}, {"first_name": "   "}, {"name": ""}, {"name": None}],
)
def test_update_cannot_blank_a_student_name(payload):
    with pytest.raises(ValidationError):
        make_normalizer().for_update("students", payload)


def test_update_may_change_only_the_last_name():
    assert make_normalizer().for_update("students", {"last_name": "Park"}) == {"last_name": "Park"}


@pytest.mark.parametrize(
    "full_name, first, last",
    [
        ("Mary Ann Smith", "Mary", "Ann Smith"),
        ("  Cher  ", "Cher", ""),
        ("Bruce\t  Lee", "Bruce", "Lee"),
    ],
)
def test_name_is_split_on_first_whitespace_run(full_name, first, last):
    record = make_normalizer().for_insert("students", {"name": full_name})

    assert (record["first_name"], record["last_name"]) == (first, last)
    assert "name" not in record


def test_split_names_are_kept_and_legacy_name_is_synthesized():
    record = make_normalizer(students=["name"]).for_insert(
        "students", {"first_name": "Mary", "last_name": "Ann Smith", "name": "ignored"}
    )

    assert record["first_name"] == "Mary"
    assert record["name"] == "Mary Ann Smith"


def test_student_without_a_name_is_rejected():
    with pytest.raises(ValidationError):
        make_normalizer().for_insert("students", {"phone": "555 1212"})


def test_split_full_name_helper():
    assert split_full_name("John Q. Public") == ("John", "Q. Public")


@pytest.mark.parametrize("value", ["1", 1, True, "true", "TRUE", " true "])
def test_truthy_flags(value):
    record = make_normalizer().for_insert("payments", {"amount": 10, "taxable": value})

    assert record["taxable"] == 1
    assert coerce_flag(value) == 1


@pytest.mark.parametrize("value", ["0", 0, False, None, "", "yes", 2, "false"])
def test_falsy_flags(value):
    record = make_normalizer().for_insert("payments", {"amount": 10, "taxable": value})

    assert record["taxable"] == 0


def test_absent_flag_is_false():
    record = make_normalizer().for_insert("attendance", {"student_id": 4})

    assert record["present"] == 0
    assert record["date"] == "2024-03-10"


def test_amount_defaults_and_coercion():
    normalizer = make_normalizer()

    assert normalizer.for_insert("payments", {})["amount"] == 0
    assert normalizer.for_insert("expenses", {"amount": ""})["amount"] == 0
    assert normalizer.for_insert("payments", {"amount": "12.50"})["amount"] == 12.5
    assert normalizer.for_insert("payments", {"amount": "$1,200"})["amount"] == 1200.0
    assert "amount" not in normalizer.for_update("payments", {"method": "cash"})
    with pytest.raises(ValidationError):
        normalizer.for_insert("payments", {"amount": "lots"})


def test_payment_and_expense_dates_default_to_today():
    normalizer = make_normalizer()

    assert normalizer.for_insert("payments", {"amount": 5})["date"] == "2024-03-10"
    assert normalizer.for_insert("expenses", {"amount": 5, "date": "2024-02-01"})["date"] == "2024-02-01"


def test_age_coercion():
    normalizer = make_normalizer()

    assert normalizer.for_insert("students", {"name": "A B", "age": ""})["age"] is None
    assert normalizer.for_insert("students", {"name": "A B", "age": None})["age"] is None
    assert normalizer.for_insert("students", {"name": "A B", "age": "12"})["age"] == 12
    with pytest.raises(ValidationError):
        normalizer.for_insert("students", {"name": "A B", "age": "twelve"})


def test_payment_student_id_empty_string_is_null():
    record = make_normalizer().for_insert("payments", {"amount": 5, "student_id": ""})

    assert record["student_id"] is None


def test_attendance_requires_student():
    with pytest.raises(ValidationError):
        make_normalizer().for_insert("attendance", {"present": 1})


def test_output_is_restricted_to_existing_columns():
    snapshot = SchemaSnapshot({"students": ["id", "first_name", "last_name", "Phone", "join_date"]})
    normalizer = RecordNormalizer(snapshot, today=lambda: date(2024, 1, 1))

    record = normalizer.for_insert(
        "students",
        {"id": 99, "name": "Ann Lee", "phone": " 555 1212 ", "address": "1 Main St", "favourite_color": "red"},
    )

    assert record == {"first_name": "Ann", "last_name": "Lee", "Phone": "555 1212", "join_date": "2024-01-01"}


def test_preserve_id_keeps_the_id():
    record = make_normalizer().for_insert("leads", {"id": "41", "name": "Sam"}, preserve_id=True)

    assert record["id"] == 41


def test_text_is_stripped_and_blank_becomes_null():
    record = make_normalizer().for_update("students", {"email": "  ann@example.com ", "notes": "   "})

    assert record == {"email": "ann@example.com", "notes": None}


def test_legacy_flags_fold_into_status_and_are_mirrored():
    normalizer = make_normalizer(students=["is_legacy", "active"])

    archived = normalizer.for_update("students", {"is_legacy": "true"})
    restored = normalizer.for_update("students", {"active": 1})

    assert archived == {"status": "archived", "is_legacy": 1, "active": 0}
    assert restored == {"status": "active", "is_legacy": 0, "active": 1}


def test_student_status_values():
    normalizer = make_normalizer()

    assert normalizer.for_insert("students", {"name": "A B"})["status"] == "active"
    assert normalizer.for_update("students", {"status": "Inactive"})["status"] == "archived"
    with pytest.raises(ValidationError):
        normalizer.for_update("students", {"status": "frozen"})


def test_lead_defaults_and_aliases():
    record = make_normalizer().for_insert(
        "leads", {"name": "Sam Lee", "followup_date": "2024-04-01", "program": "Adults BJJ"}
    )

    assert record["status"] == "new"
    assert record["follow_up_date"] == "2024-04-01"
    assert record["interested_program"] == "Adults BJJ"


def test_clients_cannot_mark_leads_converted():
    normalizer = make_normalizer()

    with pytest.raises(ValidationError):
        normalizer.for_update("leads", {"status": "converted"})
    assert "converted_student_id" not in normalizer.for_update("leads", {"converted_student_id": 3, "notes": "x"})


def test_lead_without_name_is_rejected():
    with pytest.raises(ValidationError):
        make_normalizer().for_insert("leads", {"phone": "555"})


def test_non_object_record_is_rejected():
    with pytest.raises(ValidationError):
        make_normalizer().for_insert("students", ["Ann", "Lee"])
