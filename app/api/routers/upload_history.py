"""
Upload history endpoints: the reconciled list of uploads and their deletion.
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
import logging

from app.api.dependencies import get_org_id
from app.api.schemas.shared import DeleteUploadResponse, UploadHistoryResponse
from app.core.logging_config import upload_log_context
from app.domain.uploads.history import (
    UploadDeletionError,
    UploadNotFoundError,
    delete_upload,
    fetch_upload_history,
    paginate_history,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/upload-history", tags=["upload-history"])


@router.get("", response_model=UploadHistoryResponse)
def list_upload_history(
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1, le=100),
    refresh: bool = False,
    org_id: str = Depends(get_org_id),
):
    """
    Recent uploads merged with what is actually in storage.

    Parameters:
    - page: 1-based page; pages past the end return the last page
    - page_size: entries per page (default from settings)
    - refresh: bypass the short-lived history cache
    """
    history = fetch_upload_history(org_id, refresh=refresh)
    result = paginate_history(history.entries, page=page, page_size=page_size,
                              storage_warning=history.storage_warning)
    return UploadHistoryResponse(
        entries=[entry.to_dict() for entry in result.entries],
        page=result.page,
        page_size=result.page_size,
        total_entries=result.total_entries,
        total_pages=result.total_pages,
        storage_warning=result.storage_warning,
    )


@router.delete("/{entry_id}", response_model=DeleteUploadResponse)
def delete_upload_history_entry(
    entry_id: str,
    file_path: Optional[str] = None,
    org_id: str = Depends(get_org_id),
):
    """
    Delete an upload: its blob, its metadata row and its staging rows.

    Unlinked entries (``storage-...``) only have a blob. Returns 502 when
    either side could not be removed.
    """
    try:
        with upload_log_context(org_id=org_id, upload_id=entry_id):
            outcome = delete_upload(org_id, entry_id, file_path=file_path)
    except UploadNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UploadDeletionError as e:
        logger.error("Delete failed for %s: %s", entry_id, e)
        raise HTTPException(status_code=502, detail=str(e))

    return DeleteUploadResponse(
        message=f"Upload {entry_id} deleted",
        **outcome,
    )
