from dojo_module.services import get_record, list_students, upsert_records


def test_upsert_inserts_new_ids_and_updates_existing(db, normalizer):
    rows = [
        {"id": 5, "name": "Ann Lee", "join_date": "2024-01-15"},
        {"name": "Bob Adams"},
    ]

    assert upsert_records(db, normalizer, "students", rows) == (2, 0)
    assert get_record(db, "students", 5)["renewal_date"] == "2024-02-12"

    assert upsert_records(db, normalizer, "students", [{"id": 5, "phone": "555 1212"}]) == (0, 1)
    student = get_record(db, "students", 5)
    assert student["phone"] == "555 1212"
    assert student["first_name"] == "Ann"
    assert len(list_students(db, normalizer.snapshot, "all")) == 2
