"""
Persistence for staged spreadsheet rows awaiting review.
"""
from sqlalchemy import select, delete, func
from sqlalchemy.orm import Session
from typing import Any, Dict, List, Optional, Sequence
import logging

from app.db.session import get_engine
from app.db.models import StagingRecordRow
from app.domain.imports.staging import StagingRecord
from app.domain.uploads.uploaded_files import ensure_upload_tables, _run_with_table_retry, _isoformat
from app.utils.serialization import _make_json_safe

logger = logging.getLogger(__name__)


def _text_or_none(value: Any) -> Optional[str]:
    # Core columns are text; spreadsheets often hand us ints for phone numbers
    if value is None:
        return None
    return str(value)


def staging_row_to_dict(row: StagingRecordRow) -> Dict[str, Any]:
    return {
        "id": row.id,
        "upload_id": row.upload_id,
        "org_id": row.org_id,
        "record_type": row.record_type,
        "row_index": row.row_index,
        "raw_data": row.raw_data,
        "full_name": row.full_name,
        "email": row.email,
        "phone": row.phone,
        "metadata": row.record_metadata or {},
        "status": row.status,
        "validation_errors": row.validation_errors,
        "created_at": _isoformat(row.created_at),
    }


def bulk_insert_staging_records(records: Sequence[StagingRecord]) -> int:
    """
    Insert all staging records in a single transaction.

    Either every row is written or none is.

    Returns:
        Number of rows inserted
    """
    if not records:
        return 0
    ensure_upload_tables()

    payload = [
        {
            "upload_id": record.upload_id,
            "org_id": record.org_id,
            "record_type": record.record_type,
            "row_index": record.row_index,
            "raw_data": _make_json_safe(record.raw_data),
            "full_name": _text_or_none(record.full_name),
            "email": _text_or_none(record.email),
            "phone": _text_or_none(record.phone),
            "record_metadata": _make_json_safe(record.metadata),
            "status": record.status,
            "validation_errors": record.validation_errors,
        }
        for record in records
    ]

    def _insert() -> int:
        with Session(get_engine()) as db:
            db.add_all([StagingRecordRow(**values) for values in payload])
            db.commit()
        return len(payload)

    inserted = _run_with_table_retry(_insert)
    logger.info("Inserted %d staging records for upload %s", inserted, records[0].upload_id)
    return inserted


def delete_staging_records_for_upload(upload_id: str, db: Optional[Session] = None) -> int:
    """
    Delete every staging row of an upload.

    When ``db`` is given the delete joins the caller's transaction and is not
    committed here.
    """
    statement = delete(StagingRecordRow).where(StagingRecordRow.upload_id == upload_id)
    if db is not None:
        return db.execute(statement).rowcount or 0

    ensure_upload_tables()

    def _delete() -> int:
        with Session(get_engine()) as session:
            deleted = session.execute(statement).rowcount or 0
            session.commit()
            return deleted

    return _run_with_table_retry(_delete)


def get_staging_records(
    upload_id: str,
    org_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Dict[str, Any]]:
    """Get staged rows of an upload ordered by their position in the sheet."""
    ensure_upload_tables()

    query = select(StagingRecordRow).where(StagingRecordRow.upload_id == upload_id)
    if org_id is not None:
        query = query.where(StagingRecordRow.org_id == org_id)
    if status:
        query = query.where(StagingRecordRow.status == status)
    query = query.order_by(StagingRecordRow.row_index).limit(limit).offset(offset)

    def _fetch() -> List[Dict[str, Any]]:
        with Session(get_engine()) as db:
            return [staging_row_to_dict(row) for row in db.scalars(query)]

    return _run_with_table_retry(_fetch)


def count_staging_records(upload_id: str, status: Optional[str] = None) -> int:
    ensure_upload_tables()

    query = select(func.count()).select_from(StagingRecordRow).where(StagingRecordRow.upload_id == upload_id)
    if status:
        query = query.where(StagingRecordRow.status == status)

    def _count() -> int:
        with Session(get_engine()) as db:
            return db.scalar(query) or 0

    return _run_with_table_retry(_count)
