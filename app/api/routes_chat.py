"""
Chat API routes.

These endpoints handle the assistant conversation:
- Sending a chat message (with optional file attachments)
- Reading back a session's history
"""

import logging
import secrets
import uuid
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse

from app.api.dependencies import get_conversation_router, get_session_store
from app.assistant.router import ConversationRouter
from app.assistant.schemas import Attachment
from app.config import settings
from app.logging.audit import audit
from app.logging.config import session_id_var
from app.sessions.store import SessionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/query", tags=["chat"])

SESSION_COOKIE_NAME = "crm_chat_session"


def _safe_filename(name: str) -> str:
    cleaned = "".join(c if c.isalnum() or c in "._-" else "_" for c in Path(name).name)
    return cleaned or "upload"


async def save_uploads(files: list[UploadFile]) -> list[Attachment]:
    """Store uploaded files under the upload dir; return their attachment records."""
    if not files:
        return []

    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)

    attachments = []
    for upload in files:
        filename = upload.filename or "upload"
        dest = upload_dir / f"{uuid.uuid4().hex}-{_safe_filename(filename)}"
        dest.write_bytes(await upload.read())
        attachments.append(
            Attachment(
                filename=filename,
                path=str(dest),
                mimetype=upload.content_type or "application/octet-stream",
            )
        )
    return attachments


@router.post("/chat")
async def chat(
    request: Request,
    message: str = Form(..., min_length=1, max_length=2000),
    session_id: Optional[str] = Form(default=None, alias="sessionId"),
    files: Optional[list[UploadFile]] = File(default=None),
    conversation: ConversationRouter = Depends(get_conversation_router),
):
    """
    Handle one chat turn.

    Multipart form fields:
    - message: the user's text ("show me cold leads from July", "yes", ...)
    - sessionId: optional; falls back to the session cookie, then a new key
    - files: up to settings.max_upload_files attachments for an email draft

    Returns the ChatReply JSON: {success, message?, data?, draft?, error?}
    """
    files = files or []
    if len(files) > settings.max_upload_files:
        raise HTTPException(
            status_code=400,
            detail=f"At most {settings.max_upload_files} files per message",
        )

    cookie_session = request.cookies.get(SESSION_COOKIE_NAME)
    key = session_id or cookie_session or secrets.token_urlsafe(16)
    session_id_var.set(key[:12])

    try:
        attachments = await save_uploads(files)
        reply = await conversation.handle(key, message, attachments)
    except Exception as e:
        logger.error(
            "chat.endpoint_failed",
            extra={"action": "chat.endpoint_failed", "error": str(e)},
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "message": "Failed to process query",
                "error": str(e) if settings.app_env == "development" else "Internal server error",
            },
        )

    audit.info(
        "chat.turn",
        success=reply.success,
        status_code=reply.status_code,
        attachment_count=len(attachments),
    )

    response = JSONResponse(status_code=reply.status_code, content=reply.to_json())
    if key != cookie_session:
        response.set_cookie(SESSION_COOKIE_NAME, key, httponly=True, samesite="lax")
    return response


@router.get("/chat-history")
async def chat_history(
    session_id: Optional[str] = Query(default=None, alias="sessionId"),
    sessions: SessionStore = Depends(get_session_store),
):
    """Return the stored history for a session, oldest first."""
    if not session_id:
        raise HTTPException(status_code=400, detail="sessionId query parameter is required")

    try:
        session = await sessions.get(session_id)
    except Exception as e:
        logger.error(
            "chat_history.endpoint_failed",
            extra={"action": "chat_history.endpoint_failed", "error": str(e)},
            exc_info=True,
        )
        raise HTTPException(status_code=500, detail="Failed to fetch chat history")

    history = session.history if session else []
    return {
        "success": True,
        "data": {
            "result": [m.model_dump(mode="json") for m in history],
            "pendingEmail": bool(session and session.has_pending_email),
        },
    }
