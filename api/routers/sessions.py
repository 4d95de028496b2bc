"""REST endpoints over persisted recording sessions."""

from dataclasses import asdict
from typing import Literal, Optional
from uuid import uuid4

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from schemas.recording import SessionStatus
from schemas.sessions import (
    CreateSessionRequest,
    DeleteSessionResponse,
    SessionDetailOut,
    SessionDetailResponse,
    SessionOut,
    SessionPage,
    SessionPageResponse,
    SessionResponse,
    SummaryOut,
    TranscriptOut,
    UpdateSessionRequest,
)
from services.exporters import export_filename, render_json_export, render_text_export
from services.session_registry import SessionRegistry
from services.session_store import SessionDetail, SessionRecord, SessionRecordNotFound, SessionStore

LOGGER = structlog.get_logger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])

MAX_PAGE_SIZE = 100


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_registry(request: Request) -> Optional[SessionRegistry]:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    return dispatcher.registry if dispatcher is not None else None


def _session_out(record: SessionRecord) -> SessionOut:
    return SessionOut(**asdict(record))


def _detail_out(detail: SessionDetail) -> SessionDetailOut:
    return SessionDetailOut(
        **asdict(detail.session),
        transcript=TranscriptOut(**asdict(detail.transcript)) if detail.transcript else None,
        summary=SummaryOut(**asdict(detail.summary)) if detail.summary else None,
    )


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")


def _reject_if_live(registry: Optional[SessionRegistry], session_id: str) -> None:
    if registry is not None and session_id in registry:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Session is still being recorded",
        )


@router.get("", response_model=SessionPageResponse)
async def list_sessions(
    user_id: str = Query(..., alias="userId", min_length=1),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, alias="pageSize", ge=1, le=MAX_PAGE_SIZE),
    store: SessionStore = Depends(get_session_store),
):
    items, total = await store.list_sessions(user_id, page=page, page_size=page_size)
    return SessionPageResponse(
        data=SessionPage(
            items=[_detail_out(item) for item in items],
            total=total,
            page=page,
            page_size=page_size,
            has_more=page * page_size < total,
        )
    )


@router.post("", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    payload: CreateSessionRequest,
    store: SessionStore = Depends(get_session_store),
):
    """Create an IDLE session record, for clients that prepare sessions before streaming."""
    record = await store.create_session(
        session_id=uuid4().hex,
        user_id=payload.user_id,
        audio_source=payload.audio_source,
        status=SessionStatus.IDLE,
        title=payload.title,
    )
    LOGGER.info("session_record_created", session_id=record.id, user_id=record.user_id)
    return SessionResponse(data=_session_out(record))


@router.get("/{session_id}", response_model=SessionDetailResponse)
async def get_session(session_id: str, store: SessionStore = Depends(get_session_store)):
    detail = await store.get_session_detail(session_id)
    if detail is None:
        raise _not_found()
    return SessionDetailResponse(data=_detail_out(detail))


@router.patch("/{session_id}", response_model=SessionResponse)
async def update_session(
    session_id: str,
    payload: UpdateSessionRequest,
    store: SessionStore = Depends(get_session_store),
    registry: Optional[SessionRegistry] = Depends(get_registry),
):
    if payload.status is not None:
        _reject_if_live(registry, session_id)
    try:
        record = await store.update_session(session_id, status=payload.status, title=payload.title)
    except SessionRecordNotFound:
        raise _not_found()
    return SessionResponse(data=_session_out(record))


@router.delete("/{session_id}", response_model=DeleteSessionResponse)
async def delete_session(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
    registry: Optional[SessionRegistry] = Depends(get_registry),
):
    _reject_if_live(registry, session_id)
    if not await store.delete_session(session_id):
        raise _not_found()
    LOGGER.info("session_record_deleted", session_id=session_id)
    return DeleteSessionResponse(message="Session deleted successfully")


@router.get("/{session_id}/download")
async def download_session(
    session_id: str,
    export_format: Literal["txt", "json"] = Query("txt", alias="format"),
    store: SessionStore = Depends(get_session_store),
):
    detail = await store.get_session_detail(session_id)
    if detail is None:
        raise _not_found()

    if export_format == "json":
        body, media_type = render_json_export(detail), "application/json"
    else:
        body, media_type = render_text_export(detail), "text/plain; charset=utf-8"
    return Response(
        content=body,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{export_filename(detail, export_format)}"'},
    )
