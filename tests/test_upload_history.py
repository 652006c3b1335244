from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from app.core.config import settings
from app.domain.uploads.history import (
    PersistedUploadEntry,
    StorageOnlyEntry,
    UploadDeletionError,
    UploadNotFoundError,
    delete_upload,
    fetch_upload_history,
    invalidate_upload_history,
    original_filename_from_blob,
    paginate_history,
    reconcile_upload_history,
)
from app.domain.uploads.session import UploadSession
from app.domain.uploads.staging_records import count_staging_records
from app.domain.uploads.uploaded_files import get_upload_record_by_id, insert_upload_record
from tests.utils.workbooks import DRIVERS_ROWS, build_xlsx

ORG_ID = "org-1"


def _record(upload_id, file_name, created_at):
    return {
        "id": upload_id,
        "org_id": ORG_ID,
        "source": "drivers",
        "file_path": f"{ORG_ID}/uploads/{file_name}",
        "original_filename": file_name.split("_", 1)[1],
        "file_size": 10,
        "status": "ready_for_review",
        "created_at": created_at,
    }


def _blob(name, last_modified):
    return {
        "file_path": f"{ORG_ID}/uploads/{name}",
        "name": name,
        "size": 10,
        "last_modified": last_modified,
    }


def _stage(file_name="drivers.xlsx"):
    session = UploadSession(org_id=ORG_ID)
    session.select_file(file_name, build_xlsx({"Drivers": DRIVERS_ROWS}))
    return session.confirm()


def test_unlinked_blob_appears_exactly_once():
    records = [_record("u1", "100_a.xlsx", "2024-01-02T00:00:00+00:00")]
    blobs = [
        _blob("100_a.xlsx", datetime(2024, 1, 2, tzinfo=timezone.utc)),
        _blob("200_orphan_file.csv", datetime(2024, 1, 3, tzinfo=timezone.utc)),
        _blob("200_orphan_file.csv", datetime(2024, 1, 3, tzinfo=timezone.utc)),
    ]

    entries = reconcile_upload_history(records, blobs)

    orphans = [entry for entry in entries if isinstance(entry, StorageOnlyEntry)]
    assert len(orphans) == 1
    orphan = orphans[0]
    assert orphan.status == "unlinked"
    assert orphan.id == "storage-200_orphan_file.csv"
    assert orphan.original_filename == "orphan_file.csv"
    assert orphan.notes == "Discovered in storage but unlinked to database."
    # Newest first: the orphan was modified after the record was created
    assert entries[0] is orphan
    assert entries[1].exists_in_storage is True


def test_record_without_blob_is_flagged_missing():
    records = [_record("u1", "100_a.xlsx", "2024-01-02T00:00:00+00:00")]

    entries = reconcile_upload_history(records, [])

    assert len(entries) == 1
    assert isinstance(entries[0], PersistedUploadEntry)
    assert entries[0].exists_in_storage is False


def test_unknown_storage_state_when_listing_is_unavailable():
    records = [_record("u1", "100_a.xlsx", "2024-01-02T00:00:00+00:00")]

    entries = reconcile_upload_history(records, None)

    assert [entry.exists_in_storage for entry in entries] == [None]


def test_entries_sorted_newest_first_with_naive_timestamps_as_utc():
    records = [
        _record("old", "100_old.xlsx", "2024-01-01T00:00:00"),
        _record("new", "300_new.xlsx", "2024-03-01T00:00:00+00:00"),
    ]
    blobs = [_blob("200_mid.csv", datetime(2024, 2, 1))]

    entries = reconcile_upload_history(records, blobs)

    assert [entry.id for entry in entries] == ["new", "storage-200_mid.csv", "old"]


def test_original_filename_from_blob():
    assert original_filename_from_blob("1700000000000_roster_q1.xlsx") == "roster_q1.xlsx"
    assert original_filename_from_blob("noprefix.csv") == "noprefix.csv"


def test_pagination_clamps_to_last_page():
    entries = reconcile_upload_history(
        [_record(f"u{i}", f"{i}_f.xlsx", f"2024-01-{i + 1:02d}T00:00:00+00:00") for i in range(9)],
        None,
    )

    first = paginate_history(entries, page=1, page_size=4)
    last = paginate_history(entries, page=99, page_size=4)

    assert first.total_pages == 3
    assert [entry.id for entry in first.entries] == ["u8", "u7", "u6", "u5"]
    assert last.page == 3
    assert [entry.id for entry in last.entries] == ["u0"]
    assert paginate_history([], page=5).total_pages == 1


def test_fetch_history_reconciles_database_and_storage(fake_s3):
    staged = _stage()
    fake_s3.add_object(f"{ORG_ID}/uploads/1600000000000_lost.xlsx")
    fake_s3.add_object("org-2/uploads/1600000000000_other_tenant.xlsx")

    history = fetch_upload_history(ORG_ID, refresh=True)

    kinds = {entry.id: entry.kind for entry in history.entries}
    assert kinds == {staged.upload_id: "persisted", "storage-1600000000000_lost.xlsx": "storage_only"}
    assert history.storage_warning is None


def test_fetch_history_uses_cache_until_invalidated(fake_s3):
    fetch_upload_history(ORG_ID)
    fake_s3.add_object(f"{ORG_ID}/uploads/1600000000000_late.xlsx")

    assert fetch_upload_history(ORG_ID).entries == []

    invalidate_upload_history(ORG_ID)
    assert len(fetch_upload_history(ORG_ID).entries) == 1


def test_storage_listing_failure_degrades_to_unknown(fake_s3):
    staged = _stage()
    fake_s3.fail("list_objects_v2")

    history = fetch_upload_history(ORG_ID, refresh=True)

    assert [entry.id for entry in history.entries] == [staged.upload_id]
    assert history.entries[0].exists_in_storage is None
    assert "Storage listing unavailable" in history.storage_warning


def test_delete_removes_record_staging_rows_and_blob(fake_s3):
    staged = _stage()

    outcome = delete_upload(ORG_ID, staged.upload_id)

    assert outcome["deleted_record"] and outcome["deleted_blob"]
    assert get_upload_record_by_id(staged.upload_id) is None
    assert count_staging_records(staged.upload_id) == 0
    assert fake_s3.objects == {}
    assert fetch_upload_history(ORG_ID).entries == []


def test_delete_keeps_record_when_blob_delete_fails(fake_s3):
    staged = _stage()
    fake_s3.fail("delete_object")

    with pytest.raises(UploadDeletionError):
        delete_upload(ORG_ID, staged.upload_id)

    assert get_upload_record_by_id(staged.upload_id) is not None
    assert count_staging_records(staged.upload_id) == 2
    assert staged.file_path in fake_s3.objects


def test_delete_detects_surviving_blob(fake_s3):
    staged = _stage()
    fake_s3.ignore_deletes = True

    with pytest.raises(UploadDeletionError, match="still present"):
        delete_upload(ORG_ID, staged.upload_id)


def test_delete_unlinked_blob(fake_s3):
    fake_s3.add_object(f"{ORG_ID}/uploads/1600000000000_lost.xlsx")

    outcome = delete_upload(ORG_ID, "storage-1600000000000_lost.xlsx")

    assert outcome == {
        "id": "storage-1600000000000_lost.xlsx",
        "file_path": f"{ORG_ID}/uploads/1600000000000_lost.xlsx",
        "deleted_record": False,
        "deleted_blob": True,
    }
    assert fake_s3.objects == {}


def test_delete_rejects_paths_outside_the_tenant_folder(fake_s3):
    with pytest.raises(ValueError):
        delete_upload(ORG_ID, "storage-x.csv", file_path="org-2/uploads/x.csv")


def test_delete_unknown_or_foreign_upload(fake_s3):
    insert_upload_record("u-foreign", "org-2", "drivers", "org-2/uploads/1_a.xlsx", "a.xlsx", 10)

    with pytest.raises(UploadNotFoundError):
        delete_upload(ORG_ID, "missing")
    with pytest.raises(UploadNotFoundError):
        delete_upload(ORG_ID, "u-foreign")


def test_delete_failure_still_invalidates_cache(fake_s3):
    staged = _stage()
    fetch_upload_history(ORG_ID)

    with patch("app.domain.uploads.history.storage.delete_file", return_value=False):
        with pytest.raises(UploadDeletionError):
            delete_upload(ORG_ID, staged.upload_id)

    fake_s3.add_object(f"{ORG_ID}/uploads/1600000000000_new.xlsx")
    assert len(fetch_upload_history(ORG_ID).entries) == 2


def test_blob_of_record_outside_the_fetched_window_is_not_unlinked(fake_s3):
    total = settings.upload_history_record_limit + 1
    for i in range(total):
        file_path = f"{ORG_ID}/uploads/17000000000{i:02d}_f{i}.xlsx"
        insert_upload_record(f"u{i}", ORG_ID, "drivers", file_path, f"f{i}.xlsx", 10)
        fake_s3.add_object(file_path)

    history = fetch_upload_history(ORG_ID, refresh=True)

    assert len(history.entries) == settings.upload_history_record_limit
    assert [entry for entry in history.entries if entry.kind == "storage_only"] == []
    assert all(entry.exists_in_storage for entry in history.entries)


def test_referenced_paths_suppress_storage_only_entries():
    blobs = [
        _blob("100_old.xlsx", datetime(2024, 1, 1, tzinfo=timezone.utc)),
        _blob("200_orphan.csv", datetime(2024, 1, 2, tzinfo=timezone.utc)),
    ]

    entries = reconcile_upload_history([], blobs, {f"{ORG_ID}/uploads/100_old.xlsx"})

    assert [entry.id for entry in entries] == ["storage-200_orphan.csv"]


def test_history_lists_storage_beyond_one_page_of_keys(fake_s3):
    for i in range(1001):
        fake_s3.add_object(f"{ORG_ID}/uploads/1600000{i:06d}_old.xlsx")
    staged = _stage()

    history = fetch_upload_history(ORG_ID, refresh=True)

    assert fake_s3.list_pages_served >= 2
    persisted = [entry for entry in history.entries if entry.id == staged.upload_id]
    assert persisted[0].exists_in_storage is True
    assert len(history.entries) == settings.upload_history_storage_limit


def test_delete_rejects_a_path_that_is_not_the_records_blob(fake_s3):
    staged = _stage()
    other_path = f"{ORG_ID}/uploads/1700000000001_other.xlsx"
    fake_s3.add_object(other_path)

    with pytest.raises(ValueError):
        delete_upload(ORG_ID, staged.upload_id, file_path=other_path)

    assert get_upload_record_by_id(staged.upload_id) is not None
    assert count_staging_records(staged.upload_id) == 2
    assert staged.file_path in fake_s3.objects
    assert other_path in fake_s3.objects


def test_delete_accepts_the_records_own_path(fake_s3):
    staged = _stage()

    outcome = delete_upload(ORG_ID, staged.upload_id, file_path=staged.file_path)

    assert outcome["deleted_record"] and outcome["deleted_blob"]
    assert fake_s3.objects == {}
