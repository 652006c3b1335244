from datetime import datetime, timezone

import pytest

from app.domain.imports.canonical_schemas import ImportSource
from app.domain.imports.staging import build_staging_records
from app.domain.uploads.staging_records import (
    bulk_insert_staging_records,
    count_staging_records,
    delete_staging_records_for_upload,
    get_staging_records,
)
from app.domain.uploads.uploaded_files import (
    InvalidStatusTransitionError,
    delete_upload_record,
    get_upload_record_by_id,
    get_upload_records,
    insert_upload_record,
    update_upload_status,
)


def _insert(upload_id="u1", org_id="org-1"):
    return insert_upload_record(
        upload_id=upload_id,
        org_id=org_id,
        source="patients",
        file_path=f"{org_id}/uploads/1700000000000_patients.csv",
        original_filename="patients.csv",
        file_size=120,
        mime_type="text/csv",
        uploaded_by="user-7",
    )


def test_new_records_start_processing():
    record = _insert()

    assert record["status"] == "processing"
    assert record["processed_at"] is None
    assert record["created_at"].endswith("+00:00")


def test_status_moves_forward_only():
    _insert()
    processed = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    assert update_upload_status("u1", "ready_for_review", notes="Staged 3 rows for review.", processed_at=processed)
    assert update_upload_status("u1", "committed", committed_by="reviewer-1")

    with pytest.raises(InvalidStatusTransitionError):
        update_upload_status("u1", "processing")

    record = get_upload_record_by_id("u1")
    assert record["status"] == "committed"
    assert record["committed_by"] == "reviewer-1"
    assert record["notes"] == "Staged 3 rows for review."
    assert record["processed_at"].startswith("2024-05-01T12:00:00")


def test_error_is_terminal():
    _insert()
    update_upload_status("u1", "error", notes="blob upload failed")

    with pytest.raises(InvalidStatusTransitionError):
        update_upload_status("u1", "ready_for_review")


def test_unlinked_is_not_a_stored_status():
    _insert()

    with pytest.raises(ValueError):
        update_upload_status("u1", "unlinked")


def test_update_and_delete_missing_record():
    assert update_upload_status("missing", "error") is False
    assert delete_upload_record("missing") is False


def test_records_are_scoped_by_organization():
    _insert("u1", "org-1")
    _insert("u2", "org-2")

    assert [record["id"] for record in get_upload_records("org-1")] == ["u1"]
    assert get_upload_record_by_id("u2", org_id="org-1") is None
    assert get_upload_record_by_id("u2", org_id="org-2")["id"] == "u2"


def test_staging_rows_round_trip_through_the_database():
    _insert()
    rows = [
        {"Patient Name": "Ann Lee", "Phone": 5551212, "DOB": "02/03/1950"},
        {"Phone": "555-0000"},
    ]
    records = build_staging_records(ImportSource.PATIENTS, "u1", "org-1", rows)

    assert bulk_insert_staging_records(records) == 2

    stored = get_staging_records("u1")
    assert stored[0]["full_name"] == "Ann Lee"
    # Core columns are text
    assert stored[0]["phone"] == "5551212"
    assert stored[0]["raw_data"]["Phone"] == 5551212
    assert stored[0]["metadata"] == {"date_of_birth": "1950-02-03"}
    assert stored[1]["status"] == "error"
    assert stored[1]["validation_errors"] == {"missing": ["full_name"]}
    assert count_staging_records("u1", status="error") == 1
    assert [row["row_index"] for row in get_staging_records("u1", status="error")] == [1]

    assert delete_staging_records_for_upload("u1") == 2
    assert count_staging_records("u1") == 0
