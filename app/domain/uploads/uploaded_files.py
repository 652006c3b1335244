"""
Database operations for the org_uploads audit table.
"""
from datetime import datetime, timezone
from enum import Enum
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError, ProgrammingError
from sqlalchemy.orm import Session
from typing import Any, List, Dict, Iterable, Optional, Set, Callable, TypeVar
import logging
import threading

from app.db.session import Base, get_engine
from app.db.models import OrgUpload

logger = logging.getLogger(__name__)

_table_initialized = False
_table_init_lock = threading.Lock()
_T = TypeVar("_T")


class UploadStatus(str, Enum):
    PROCESSING = "processing"
    READY_FOR_REVIEW = "ready_for_review"
    COMMITTED = "committed"
    ERROR = "error"


# Stored status only moves forward.
ALLOWED_STATUS_TRANSITIONS = {
    UploadStatus.PROCESSING: {UploadStatus.READY_FOR_REVIEW, UploadStatus.ERROR},
    UploadStatus.READY_FOR_REVIEW: {UploadStatus.COMMITTED},
    UploadStatus.COMMITTED: set(),
    UploadStatus.ERROR: set(),
}


class InvalidStatusTransitionError(ValueError):
    """Raised when an upload status update would move backwards."""

    def __init__(self, upload_id: str, current: str, requested: str):
        self.upload_id = upload_id
        self.current = current
        self.requested = requested
        super().__init__(f"Upload {upload_id} cannot move from '{current}' to '{requested}'")


def create_upload_tables():
    """Create org_uploads and staging_records if they don't exist."""
    global _table_initialized
    Base.metadata.create_all(get_engine())
    _table_initialized = True
    logger.info("org_uploads and staging_records tables ready")


def ensure_upload_tables():
    """Create the upload tables on-demand if they are missing."""
    if _table_initialized:
        return

    with _table_init_lock:
        if _table_initialized:
            return
        create_upload_tables()


def _reset_table_flag():
    """Mark the upload tables as unavailable so they can be recreated."""
    global _table_initialized
    with _table_init_lock:
        _table_initialized = False


def _is_missing_table_error(error: Exception) -> bool:
    """Return True if the error indicates an upload table is missing."""
    origin = getattr(error, "orig", None)
    if getattr(origin, "pgcode", None) == "42P01":
        return True
    return "no such table" in str(origin or error).lower()


def _run_with_table_retry(operation: Callable[[], _T]) -> _T:
    """Execute a database operation and recreate the upload tables if they vanished."""
    try:
        return operation()
    except (ProgrammingError, OperationalError) as error:
        if not _is_missing_table_error(error):
            raise
        logger.warning("Upload tables missing; recreating and retrying")
        _reset_table_flag()
        ensure_upload_tables()
        return operation()


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def upload_to_dict(upload: OrgUpload) -> Dict[str, Any]:
    return {
        "id": upload.id,
        "org_id": upload.org_id,
        "source": upload.source,
        "file_path": upload.file_path,
        "original_filename": upload.original_filename,
        "file_size": upload.file_size,
        "mime_type": upload.mime_type,
        "status": upload.status,
        "created_at": _isoformat(upload.created_at),
        "processed_at": _isoformat(upload.processed_at),
        "notes": upload.notes,
        "uploaded_by": upload.uploaded_by,
        "committed_by": upload.committed_by,
    }


def insert_upload_record(
    upload_id: str,
    org_id: str,
    source: str,
    file_path: str,
    original_filename: str,
    file_size: int,
    mime_type: Optional[str] = None,
    uploaded_by: Optional[str] = None,
) -> Dict[str, Any]:
    """Insert a new upload record in the "processing" state."""
    ensure_upload_tables()

    def _insert() -> Dict[str, Any]:
        with Session(get_engine()) as db:
            upload = OrgUpload(
                id=upload_id,
                org_id=org_id,
                source=source,
                file_path=file_path,
                original_filename=original_filename,
                file_size=file_size,
                mime_type=mime_type,
                uploaded_by=uploaded_by,
                status=UploadStatus.PROCESSING.value,
            )
            db.add(upload)
            db.commit()
            db.refresh(upload)
            return upload_to_dict(upload)

    return _run_with_table_retry(_insert)


def get_upload_records(
    org_id: str,
    status: Optional[str] = None,
    limit: int = 100,
    offset: int = 0
) -> List[Dict[str, Any]]:
    """Get an organization's upload records, most recent first."""
    ensure_upload_tables()

    query = select(OrgUpload).where(OrgUpload.org_id == org_id)
    if status:
        query = query.where(OrgUpload.status == status)
    query = query.order_by(OrgUpload.created_at.desc()).limit(limit).offset(offset)

    def _fetch() -> List[Dict[str, Any]]:
        with Session(get_engine()) as db:
            return [upload_to_dict(upload) for upload in db.scalars(query)]

    return _run_with_table_retry(_fetch)


def get_referenced_file_paths(org_id: str, file_paths: Iterable[str]) -> Set[str]:
    """Return the subset of ``file_paths`` that some upload record of the organization points to."""
    file_paths = list(set(file_paths))
    if not file_paths:
        return set()
    ensure_upload_tables()

    query = select(OrgUpload.file_path).where(
        OrgUpload.org_id == org_id,
        OrgUpload.file_path.in_(file_paths),
    )

    def _fetch() -> Set[str]:
        with Session(get_engine()) as db:
            return set(db.scalars(query))

    return _run_with_table_retry(_fetch)


def get_upload_record_by_id(upload_id: str, org_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Get a specific upload record by ID, optionally scoped to an organization."""
    ensure_upload_tables()

    query = select(OrgUpload).where(OrgUpload.id == upload_id)
    if org_id is not None:
        query = query.where(OrgUpload.org_id == org_id)

    def _fetch() -> Optional[Dict[str, Any]]:
        with Session(get_engine()) as db:
            upload = db.scalars(query).first()
            return upload_to_dict(upload) if upload else None

    return _run_with_table_retry(_fetch)


def update_upload_status(
    upload_id: str,
    status: str,
    notes: Optional[str] = None,
    processed_at: Optional[datetime] = None,
    committed_by: Optional[str] = None,
) -> bool:
    """
    Move an upload to a new status.

    Returns False when the record does not exist.

    Raises:
        InvalidStatusTransitionError: when the move is not forward
    """
    ensure_upload_tables()
    requested = UploadStatus(status)

    def _update() -> bool:
        with Session(get_engine()) as db:
            upload = db.get(OrgUpload, upload_id)
            if upload is None:
                return False
            current = UploadStatus(upload.status)
            if requested != current and requested not in ALLOWED_STATUS_TRANSITIONS[current]:
                raise InvalidStatusTransitionError(upload_id, current.value, requested.value)

            upload.status = requested.value
            if notes is not None:
                upload.notes = notes
            if processed_at is not None:
                upload.processed_at = processed_at
            if committed_by is not None:
                upload.committed_by = committed_by
            db.commit()
            return True

    return _run_with_table_retry(_update)


def delete_upload_record(upload_id: str) -> bool:
    """Delete an upload record."""
    ensure_upload_tables()

    def _delete() -> bool:
        with Session(get_engine()) as db:
            upload = db.get(OrgUpload, upload_id)
            if upload is None:
                return False
            db.delete(upload)
            db.commit()
            return True

    return _run_with_table_retry(_delete)

