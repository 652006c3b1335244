"""
Shared dependencies and state for the API.

Upload sessions live in an in-process registry (in production, pin a user
to one worker or move this to Redis). Tenant context comes from request
headers set by the authenticating gateway.
"""
from typing import Dict, Optional
import threading

from fastapi import Header, HTTPException

from app.domain.uploads.session import UploadSession

# Global upload session storage: session id -> session
upload_sessions: Dict[str, UploadSession] = {}
_sessions_lock = threading.Lock()


def get_org_id(x_org_id: Optional[str] = Header(None)) -> str:
    """Organization that scopes every read and write of the request."""
    if not x_org_id or not x_org_id.strip():
        raise HTTPException(status_code=400, detail="X-Org-Id header is required")
    return x_org_id.strip()


def get_user_id(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    if x_user_id and x_user_id.strip():
        return x_user_id.strip()
    return None


def register_session(session: UploadSession) -> UploadSession:
    with _sessions_lock:
        upload_sessions[session.id] = session
    return session


def get_session_or_404(session_id: str, org_id: str) -> UploadSession:
    """Look up a session owned by ``org_id``; other tenants' sessions look missing."""
    with _sessions_lock:
        session = upload_sessions.get(session_id)
    if session is None or session.org_id != org_id:
        raise HTTPException(status_code=404, detail=f"Upload session {session_id} not found")
    return session


def discard_session(session_id: str) -> Optional[UploadSession]:
    with _sessions_lock:
        return upload_sessions.pop(session_id, None)
