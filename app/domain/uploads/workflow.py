"""
Stage workflow: persist an uploaded sheet for review.

The workflow touches two independent stores (object storage and the
database), so it runs as a saga. All staging records are built before the
first side effect; every completed step then registers a compensating action,
and on failure the compensations run in reverse order so no orphaned blob and
no upload stuck at "processing" survive a failed attempt.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging
import re
import time
import uuid

from app.core.logging_config import upload_log_context
from app.domain.imports.canonical_schemas import ImportSource
from app.domain.imports.processors.spreadsheet_processor import ParsedSheet
from app.domain.imports.staging import StagingSummary, build_staging_records, summarize_staging
from app.domain.uploads.history import invalidate_upload_history
from app.domain.uploads.staging_records import bulk_insert_staging_records, delete_staging_records_for_upload
from app.domain.uploads.uploaded_files import UploadStatus, insert_upload_record, update_upload_status
from app.integrations import storage

logger = logging.getLogger(__name__)

PHASE_BLOB_UPLOAD = "blob_upload"
PHASE_RECORD_INSERT = "record_insert"
PHASE_STAGING_INSERT = "staging_insert"
PHASE_STATUS_UPDATE = "status_update"

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9.-]")

Compensation = Tuple[str, Callable[[Exception], None]]


class PersistenceError(Exception):
    """A stage attempt failed; completed steps have been compensated where possible."""

    def __init__(self, phase: str, cause: Exception, compensation_failures: Optional[List[str]] = None):
        self.phase = phase
        self.cause = cause
        self.compensation_failures = compensation_failures or []
        message = f"Failed to stage upload during {phase}: {cause}"
        if self.compensation_failures:
            message += f" (cleanup incomplete: {'; '.join(self.compensation_failures)})"
        super().__init__(message)


@dataclass
class StageResult:
    upload_id: str
    file_path: str
    summary: StagingSummary
    notes: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "upload_id": self.upload_id,
            "file_path": self.file_path,
            "total_rows": self.summary.total_rows,
            "pending_rows": self.summary.pending_rows,
            "error_rows": self.summary.error_rows,
            "notes": self.notes,
        }


def sanitize_filename(file_name: str) -> str:
    """Replace every character outside ``[A-Za-z0-9.-]`` with an underscore."""
    return _UNSAFE_FILENAME_CHARS.sub("_", file_name)


def upload_folder(org_id: str) -> str:
    return f"{org_id}/uploads"


def build_blob_name(file_name: str, timestamp_ms: Optional[int] = None) -> str:
    """``{unix_ms}_{sanitized name}``, the object name under the tenant's upload folder."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{timestamp_ms}_{sanitize_filename(file_name)}"


def build_stage_notes(summary: StagingSummary) -> str:
    notes = f"Staged {summary.total_rows} rows for review."
    if summary.error_rows:
        notes += f" {summary.error_rows} rows are missing a name."
    return notes


def _run_compensations(compensations: List[Compensation], error: Exception) -> List[str]:
    failures = []
    for description, action in reversed(compensations):
        try:
            action(error)
            logger.info("Compensation succeeded: %s", description)
        except Exception as comp_error:
            logger.error("Compensation failed: %s: %s", description, comp_error)
            failures.append(f"{description}: {comp_error}")
    return failures


def run_stage_workflow(
    org_id: str,
    file_name: str,
    file_content: bytes,
    sheet: ParsedSheet,
    source: ImportSource,
    uploaded_by: Optional[str] = None,
    content_type: Optional[str] = None,
) -> StageResult:
    """
    Upload the file, record it, and stage every row of ``sheet``.

    Steps: blob upload, upload record insert ("processing"), staging bulk
    insert, status update ("ready_for_review").

    Raises:
        PersistenceError: when any step fails, after compensating the completed ones
    """
    source = ImportSource(source)
    upload_id = str(uuid.uuid4())
    records = build_staging_records(source, upload_id, org_id, sheet.rows)
    summary = summarize_staging(records)
    blob_name = build_blob_name(file_name)

    with upload_log_context(org_id=org_id, upload_id=upload_id):
        compensations: List[Compensation] = []
        phase = PHASE_BLOB_UPLOAD
        file_path = None

        logger.info(
            "Staging %s (sheet '%s', %d rows) as %s",
            file_name, sheet.name, summary.total_rows, source.value,
        )

        try:
            blob = storage.upload_file(file_content, blob_name, upload_folder(org_id), content_type=content_type)
            file_path = blob["file_path"]

            def _delete_blob(_error: Exception) -> None:
                if not storage.delete_file(file_path):
                    raise storage.StorageDeleteError(f"Could not delete {file_path}")

            compensations.append((f"delete blob {file_path}", _delete_blob))

            phase = PHASE_RECORD_INSERT
            insert_upload_record(
                upload_id=upload_id,
                org_id=org_id,
                source=source.value,
                file_path=file_path,
                original_filename=file_name,
                file_size=len(file_content),
                mime_type=content_type,
                uploaded_by=uploaded_by,
            )

            def _mark_failed(error: Exception) -> None:
                update_upload_status(
                    upload_id,
                    UploadStatus.ERROR.value,
                    notes=f"Staging failed during {phase}: {error}",
                )

            compensations.append((f"mark upload {upload_id} as error", _mark_failed))

            phase = PHASE_STAGING_INSERT
            bulk_insert_staging_records(records)
            compensations.append(
                (f"delete staging rows of {upload_id}", lambda _error: delete_staging_records_for_upload(upload_id))
            )

            phase = PHASE_STATUS_UPDATE
            notes = build_stage_notes(summary)
            updated = update_upload_status(
                upload_id,
                UploadStatus.READY_FOR_REVIEW.value,
                notes=notes,
                processed_at=datetime.now(timezone.utc),
            )
            if not updated:
                raise LookupError(f"Upload record {upload_id} disappeared before it was marked ready")
        except Exception as e:
            logger.error("Stage workflow failed for %s during %s: %s", file_name, phase, e)
            failures = _run_compensations(compensations, e)
            raise PersistenceError(phase, e, failures) from e
        finally:
            invalidate_upload_history(org_id)

        logger.info("Upload %s ready for review: %s", upload_id, notes)
        return StageResult(upload_id=upload_id, file_path=file_path, summary=summary, notes=notes)
