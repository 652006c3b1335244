"""
Upload session endpoints: pick a file, preview its sheets, and stage one for review.

Each endpoint is one user-triggered transition of the session state machine.
"""
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from typing import Optional
import logging

from app.api.dependencies import (
    discard_session,
    get_org_id,
    get_session_or_404,
    get_user_id,
    register_session,
)
from app.api.schemas.shared import (
    StageUploadResponse,
    UpdateUploadSessionRequest,
    UploadSessionResponse,
)
from app.domain.imports.errors import FileTooLargeError, ParseError
from app.domain.uploads.session import InvalidTransitionError, UnknownSheetError, UploadSession
from app.domain.uploads.workflow import PersistenceError
from app.utils.locks import OperationInProgressError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/upload-sessions", tags=["upload-sessions"])


def _raise_http_error(exc: Exception) -> None:
    """Translate domain errors into HTTP responses."""
    if isinstance(exc, FileTooLargeError):
        raise HTTPException(status_code=413, detail=exc.message)
    if isinstance(exc, ParseError):
        raise HTTPException(status_code=400, detail=exc.message)
    if isinstance(exc, (InvalidTransitionError, OperationInProgressError)):
        raise HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, UnknownSheetError):
        raise HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, PersistenceError):
        raise HTTPException(status_code=502, detail=str(exc))
    raise exc


def _session_response(session: UploadSession) -> UploadSessionResponse:
    return UploadSessionResponse(**session.to_dict())


@router.post("", response_model=UploadSessionResponse, status_code=201)
def create_upload_session(
    org_id: str = Depends(get_org_id),
    user_id: Optional[str] = Depends(get_user_id),
):
    """Start a new upload session in the select step."""
    session = register_session(UploadSession(org_id=org_id, user_id=user_id))
    logger.info("Created upload session %s for org %s", session.id, org_id)
    return _session_response(session)


@router.get("/{session_id}", response_model=UploadSessionResponse)
def get_upload_session(session_id: str, org_id: str = Depends(get_org_id)):
    return _session_response(get_session_or_404(session_id, org_id))


@router.delete("/{session_id}", status_code=204)
def delete_upload_session(session_id: str, org_id: str = Depends(get_org_id)):
    """Discard a session and any file it holds."""
    get_session_or_404(session_id, org_id)
    discard_session(session_id)


@router.post("/{session_id}/file", response_model=UploadSessionResponse)
async def select_session_file(
    session_id: str,
    file: UploadFile = File(...),
    org_id: str = Depends(get_org_id),
):
    """
    Parse an uploaded spreadsheet and move the session to preview.

    Returns 400 for unreadable or empty files, 413 for files over the size
    limit; the session stays in select with its error set either way.
    """
    session = get_session_or_404(session_id, org_id)
    content = await file.read()
    try:
        await run_in_threadpool(session.select_file, file.filename or "", content, file.content_type)
    except (ParseError, InvalidTransitionError, OperationInProgressError) as e:
        _raise_http_error(e)
    return _session_response(session)


@router.patch("/{session_id}", response_model=UploadSessionResponse)
def update_upload_session(
    session_id: str,
    request: UpdateUploadSessionRequest,
    org_id: str = Depends(get_org_id),
):
    """Change the import source and/or selected sheet while previewing."""
    session = get_session_or_404(session_id, org_id)
    try:
        if request.import_source is not None:
            session.set_import_source(request.import_source)
        if request.selected_sheet is not None:
            session.select_sheet(request.selected_sheet)
    except (InvalidTransitionError, OperationInProgressError, UnknownSheetError) as e:
        _raise_http_error(e)
    return _session_response(session)


@router.post("/{session_id}/cancel", response_model=UploadSessionResponse)
def cancel_upload_session(session_id: str, org_id: str = Depends(get_org_id)):
    session = get_session_or_404(session_id, org_id)
    try:
        session.cancel()
    except (InvalidTransitionError, OperationInProgressError) as e:
        _raise_http_error(e)
    return _session_response(session)


@router.post("/{session_id}/clear-error", response_model=UploadSessionResponse)
def clear_upload_session_error(session_id: str, org_id: str = Depends(get_org_id)):
    session = get_session_or_404(session_id, org_id)
    try:
        session.clear_error()
    except OperationInProgressError as e:
        _raise_http_error(e)
    return _session_response(session)


@router.post("/{session_id}/confirm", response_model=StageUploadResponse)
def confirm_upload_session(session_id: str, org_id: str = Depends(get_org_id)):
    """
    Stage the selected sheet for review.

    On success the session has served its purpose and is discarded; the
    returned ``upload_id`` is the handoff to the review screen.
    """
    session = get_session_or_404(session_id, org_id)
    try:
        result = session.confirm()
    except (InvalidTransitionError, OperationInProgressError, PersistenceError) as e:
        _raise_http_error(e)
    discard_session(session_id)
    return StageUploadResponse(**result.to_dict())
