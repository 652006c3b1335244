"""
Upload history: one browsable list reconciled from the org_uploads table and
the tenant's blob folder.

Entries are a tagged union. ``PersistedUploadEntry`` wraps a database record
and says whether its blob was found; ``StorageOnlyEntry`` wraps a blob that no
record points to ("unlinked"), so operators can find and clean orphans.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union
import logging
import math
import threading
import time

from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.models import OrgUpload
from app.db.session import get_engine
from app.domain.uploads.staging_records import delete_staging_records_for_upload
from app.domain.uploads.uploaded_files import (
    ensure_upload_tables,
    get_referenced_file_paths,
    get_upload_record_by_id,
    get_upload_records,
)
from app.integrations import storage

logger = logging.getLogger(__name__)

STORAGE_ENTRY_PREFIX = "storage-"
UNLINKED_STATUS = "unlinked"
UNLINKED_NOTES = "Discovered in storage but unlinked to database."

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class UploadNotFoundError(LookupError):
    """No upload with this id exists for the organization."""


class UploadDeletionError(Exception):
    """The metadata row or the blob of an upload survived a delete."""

    def __init__(self, entry_id: str, message: str):
        self.entry_id = entry_id
        super().__init__(f"Delete of {entry_id} incomplete: {message}")


def _as_datetime(value: Any) -> datetime:
    if value is None:
        return _EPOCH
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return _EPOCH
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _basename(file_path: Optional[str]) -> Optional[str]:
    if not file_path:
        return None
    return file_path.rsplit("/", 1)[-1]


def original_filename_from_blob(blob_name: str) -> str:
    """Strip the ``{timestamp}_`` prefix the stage workflow puts on object names."""
    _, sep, rest = blob_name.partition("_")
    return rest if sep and rest else blob_name


@dataclass(frozen=True)
class PersistedUploadEntry:
    record: Dict[str, Any]
    # None when the storage listing failed and presence is unknown
    exists_in_storage: Optional[bool]
    kind: str = "persisted"

    @property
    def id(self) -> str:
        return self.record["id"]

    @property
    def created_at(self) -> datetime:
        return _as_datetime(self.record.get("created_at"))

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, **self.record, "exists_in_storage": self.exists_in_storage}


@dataclass(frozen=True)
class StorageOnlyEntry:
    blob: Dict[str, Any]
    kind: str = "storage_only"
    status: str = UNLINKED_STATUS
    notes: str = UNLINKED_NOTES

    @property
    def id(self) -> str:
        return f"{STORAGE_ENTRY_PREFIX}{self.blob['name']}"

    @property
    def original_filename(self) -> str:
        return original_filename_from_blob(self.blob["name"])

    @property
    def created_at(self) -> datetime:
        return _as_datetime(self.blob.get("last_modified"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "id": self.id,
            "source": None,
            "file_path": self.blob["file_path"],
            "original_filename": self.original_filename,
            "file_size": self.blob.get("size") or 0,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.blob.get("last_modified") else None,
            "processed_at": None,
            "notes": self.notes,
            "exists_in_storage": True,
        }


HistoryEntry = Union[PersistedUploadEntry, StorageOnlyEntry]


@dataclass
class UploadHistory:
    entries: List[HistoryEntry] = field(default_factory=list)
    storage_warning: Optional[str] = None


@dataclass
class HistoryPage:
    entries: List[HistoryEntry]
    page: int
    page_size: int
    total_entries: int
    total_pages: int
    storage_warning: Optional[str] = None


def reconcile_upload_history(
    records: Sequence[Dict[str, Any]],
    blobs: Optional[Sequence[Dict[str, Any]]],
    referenced_paths: Optional[Set[str]] = None,
) -> List[HistoryEntry]:
    """
    Merge upload records and a blob listing into one list, newest first.

    Records and blobs are linked when the last path segment of the record's
    ``file_path`` equals the blob name. ``referenced_paths`` holds blob paths
    owned by records outside ``records`` (older than the listed window); those
    blobs are neither shown nor reported as unlinked. ``blobs=None`` means the
    listing is unavailable: every record gets ``exists_in_storage=None`` and
    no storage-only entries are produced.
    """
    if blobs is None:
        entries: List[HistoryEntry] = [PersistedUploadEntry(dict(record), None) for record in records]
    else:
        blob_names = {blob["name"] for blob in blobs}
        linked_names = {_basename(record.get("file_path")) for record in records}
        referenced_paths = referenced_paths or set()

        entries = [
            PersistedUploadEntry(dict(record), _basename(record.get("file_path")) in blob_names)
            for record in records
        ]
        seen = set()
        for blob in blobs:
            name = blob["name"]
            if name in linked_names or name in seen or blob["file_path"] in referenced_paths:
                continue
            seen.add(name)
            entries.append(StorageOnlyEntry(dict(blob)))

    # Stable sort keeps input order for identical timestamps
    return sorted(entries, key=lambda entry: entry.created_at, reverse=True)


def paginate_history(
    entries: Sequence[HistoryEntry],
    page: int = 1,
    page_size: Optional[int] = None,
    storage_warning: Optional[str] = None,
) -> HistoryPage:
    """Slice one page out of the merged list; out-of-range pages are clamped."""
    page_size = page_size or settings.upload_history_page_size
    total = len(entries)
    total_pages = max(1, math.ceil(total / page_size))
    page = min(max(1, page), total_pages)
    start = (page - 1) * page_size
    return HistoryPage(
        entries=list(entries[start:start + page_size]),
        page=page,
        page_size=page_size,
        total_entries=total,
        total_pages=total_pages,
        storage_warning=storage_warning,
    )


# Per-organization cache: org_id -> (monotonic timestamp, history)
_history_cache: Dict[str, Tuple[float, UploadHistory]] = {}
_history_cache_lock = threading.Lock()


def invalidate_upload_history(org_id: Optional[str] = None) -> None:
    """Drop cached history for one organization, or for all when ``org_id`` is None."""
    with _history_cache_lock:
        if org_id is None:
            _history_cache.clear()
        else:
            _history_cache.pop(org_id, None)


def _list_recent_blobs(org_id: str) -> List[Dict[str, Any]]:
    # Keys sort oldest first, so the whole folder is listed before cutting
    blobs = storage.list_files(f"{org_id}/uploads")
    blobs.sort(key=lambda blob: _as_datetime(blob.get("last_modified")), reverse=True)
    return blobs[:settings.upload_history_storage_limit]


def _referenced_outside(org_id: str, records: Sequence[Dict[str, Any]], blobs: Sequence[Dict[str, Any]]) -> Set[str]:
    """Paths of listed blobs that belong to records older than the fetched window."""
    linked_names = {_basename(record.get("file_path")) for record in records}
    candidates = [blob["file_path"] for blob in blobs if blob["name"] not in linked_names]
    return get_referenced_file_paths(org_id, candidates)


def fetch_upload_history(org_id: str, refresh: bool = False) -> UploadHistory:
    """
    Load the reconciled history for an organization.

    Results are cached for ``upload_history_cache_ttl_seconds``; ``refresh``
    bypasses the cache. A failed storage listing degrades to unknown
    presence plus a warning instead of failing the whole request.
    """
    now = time.monotonic()
    if not refresh:
        with _history_cache_lock:
            cached = _history_cache.get(org_id)
        if cached and now - cached[0] < settings.upload_history_cache_ttl_seconds:
            return cached[1]

    records = get_upload_records(org_id, limit=settings.upload_history_record_limit)

    storage_warning = None
    referenced: Set[str] = set()
    try:
        blobs: Optional[List[Dict[str, Any]]] = _list_recent_blobs(org_id)
    except (storage.StorageError, ValueError) as e:
        logger.warning("Storage listing failed for org %s: %s", org_id, e)
        blobs = None
        storage_warning = f"Storage listing unavailable: {e}"
    else:
        referenced = _referenced_outside(org_id, records, blobs)

    history = UploadHistory(
        entries=reconcile_upload_history(records, blobs, referenced),
        storage_warning=storage_warning,
    )
    with _history_cache_lock:
        _history_cache[org_id] = (now, history)
    return history


def _resolve_storage_path(org_id: str, entry_id: str, file_path: Optional[str]) -> str:
    folder = f"{org_id}/uploads/"
    if file_path is None:
        file_path = f"{folder}{entry_id[len(STORAGE_ENTRY_PREFIX):]}"
    if not file_path.startswith(folder):
        raise ValueError(f"File path {file_path} is outside the organization's upload folder")
    return file_path


def _verify_blob_gone(entry_id: str, file_path: str) -> None:
    try:
        still_there = storage.file_exists(file_path)
    except storage.StorageError as e:
        raise UploadDeletionError(entry_id, f"could not verify blob removal: {e}")
    if still_there:
        raise UploadDeletionError(entry_id, f"blob {file_path} still present")


def delete_upload(org_id: str, entry_id: str, file_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Delete an upload's metadata row, its staging rows and its blob.

    The database deletes share one transaction which only commits after the
    blob is gone, so a storage failure leaves the record in place. Storage-only
    entries (``storage-<name>``) only have a blob to remove. Both sides are
    checked afterwards.

    Raises:
        UploadNotFoundError: unknown persisted upload
        UploadDeletionError: the blob or the record survived
        ValueError: ``file_path`` outside the organization's folder, or not the
            path of the persisted upload being deleted
    """
    try:
        if entry_id.startswith(STORAGE_ENTRY_PREFIX):
            path = _resolve_storage_path(org_id, entry_id, file_path)
            if not storage.delete_file(path):
                raise UploadDeletionError(entry_id, f"could not delete blob {path}")
            _verify_blob_gone(entry_id, path)
            logger.info("Deleted unlinked blob %s", path)
            return {"id": entry_id, "file_path": path, "deleted_record": False, "deleted_blob": True}

        ensure_upload_tables()
        with Session(get_engine()) as db:
            upload = db.get(OrgUpload, entry_id)
            if upload is None or upload.org_id != org_id:
                raise UploadNotFoundError(f"Upload {entry_id} not found")

            path = upload.file_path
            if file_path is not None and file_path != path:
                raise ValueError(f"File path {file_path} does not belong to upload {entry_id}")
            if path:
                path = _resolve_storage_path(org_id, entry_id, path)

            staged = delete_staging_records_for_upload(entry_id, db=db)
            db.delete(upload)
            db.flush()

            if path and not storage.delete_file(path):
                db.rollback()
                raise UploadDeletionError(entry_id, f"could not delete blob {path}; record kept")
            db.commit()

        if get_upload_record_by_id(entry_id) is not None:
            raise UploadDeletionError(entry_id, "metadata row still present")
        if path:
            _verify_blob_gone(entry_id, path)

        logger.info("Deleted upload %s (%d staging rows, blob %s)", entry_id, staged, path)
        return {"id": entry_id, "file_path": path, "deleted_record": True, "deleted_blob": bool(path)}
    finally:
        invalidate_upload_history(org_id)
