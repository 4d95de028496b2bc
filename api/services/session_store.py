"""
Persistence of recording sessions, transcripts and summaries.

Two backends share one interface: PostgreSQL through the asyncpg pool for
deployments, and an in-process store for development and tests.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import asyncpg
import structlog

from schemas.recording import AudioSource, SessionStatus
from services.db_client import close_db_pool, get_db_connection
from services.gemini_client import SummaryResult

LOGGER = structlog.get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS recording_sessions (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT,
    status TEXT NOT NULL DEFAULT 'IDLE',
    audio_source TEXT,
    duration INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS recording_sessions_user_created_idx
    ON recording_sessions (user_id, created_at DESC);
CREATE TABLE IF NOT EXISTS session_transcripts (
    session_id TEXT PRIMARY KEY REFERENCES recording_sessions (id) ON DELETE CASCADE,
    content TEXT NOT NULL,
    chunks JSONB NOT NULL DEFAULT '[]'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE TABLE IF NOT EXISTS session_summaries (
    session_id TEXT PRIMARY KEY REFERENCES recording_sessions (id) ON DELETE CASCADE,
    content TEXT NOT NULL,
    key_points JSONB NOT NULL DEFAULT '[]'::jsonb,
    action_items JSONB NOT NULL DEFAULT '[]'::jsonb,
    decisions JSONB NOT NULL DEFAULT '[]'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


def default_title(now: Optional[datetime] = None) -> str:
    moment = now or datetime.now()
    return f"Recording {moment.strftime('%Y-%m-%d %H:%M:%S')}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionRecordNotFound(Exception):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session record {session_id} not found")
        self.session_id = session_id


@dataclass
class SessionRecord:
    id: str
    user_id: str
    title: Optional[str]
    status: SessionStatus
    audio_source: Optional[AudioSource]
    duration: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


@dataclass
class TranscriptRecord:
    session_id: str
    content: str
    chunks: List[Dict[str, Any]] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class SummaryRecord:
    session_id: str
    content: str
    key_points: List[str] = field(default_factory=list)
    action_items: List[str] = field(default_factory=list)
    decisions: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class SessionDetail:
    session: SessionRecord
    transcript: Optional[TranscriptRecord] = None
    summary: Optional[SummaryRecord] = None


class SessionStore(ABC):
    """CRUD over persisted sessions keyed by session identifier."""

    async def startup(self) -> None:
        return None

    async def shutdown(self) -> None:
        return None

    @abstractmethod
    async def create_session(
        self,
        *,
        session_id: str,
        user_id: str,
        audio_source: Optional[AudioSource],
        status: SessionStatus,
        title: Optional[str] = None,
    ) -> SessionRecord: ...

    @abstractmethod
    async def update_session(
        self,
        session_id: str,
        *,
        status: Optional[SessionStatus] = None,
        duration: Optional[int] = None,
        title: Optional[str] = None,
    ) -> SessionRecord: ...

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[SessionRecord]: ...

    @abstractmethod
    async def get_session_detail(self, session_id: str) -> Optional[SessionDetail]: ...

    @abstractmethod
    async def list_sessions(
        self, user_id: str, *, page: int = 1, page_size: int = 20
    ) -> Tuple[List[SessionDetail], int]: ...

    @abstractmethod
    async def delete_session(self, session_id: str) -> bool: ...

    @abstractmethod
    async def save_transcript(
        self, session_id: str, content: str, chunks: Sequence[Dict[str, Any]]
    ) -> TranscriptRecord: ...

    @abstractmethod
    async def save_summary(self, session_id: str, summary: SummaryResult) -> SummaryRecord: ...


class InMemorySessionStore(SessionStore):
    def __init__(self) -> None:
        self._sessions: Dict[str, SessionRecord] = {}
        self._transcripts: Dict[str, TranscriptRecord] = {}
        self._summaries: Dict[str, SummaryRecord] = {}

    async def create_session(
        self,
        *,
        session_id: str,
        user_id: str,
        audio_source: Optional[AudioSource],
        status: SessionStatus,
        title: Optional[str] = None,
    ) -> SessionRecord:
        if session_id in self._sessions:
            raise ValueError(f"Session record {session_id} already exists")
        record = SessionRecord(
            id=session_id,
            user_id=user_id,
            title=title or default_title(),
            status=status,
            audio_source=audio_source,
        )
        self._sessions[session_id] = record
        return replace(record)

    async def update_session(
        self,
        session_id: str,
        *,
        status: Optional[SessionStatus] = None,
        duration: Optional[int] = None,
        title: Optional[str] = None,
    ) -> SessionRecord:
        record = self._sessions.get(session_id)
        if record is None:
            raise SessionRecordNotFound(session_id)
        if status is not None:
            record.status = status
        if duration is not None:
            record.duration = int(duration)
        if title is not None:
            record.title = title
        record.updated_at = _utcnow()
        return replace(record)

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        record = self._sessions.get(session_id)
        return replace(record) if record else None

    async def get_session_detail(self, session_id: str) -> Optional[SessionDetail]:
        record = self._sessions.get(session_id)
        if record is None:
            return None
        return SessionDetail(
            session=replace(record),
            transcript=self._transcripts.get(session_id),
            summary=self._summaries.get(session_id),
        )

    async def list_sessions(
        self, user_id: str, *, page: int = 1, page_size: int = 20
    ) -> Tuple[List[SessionDetail], int]:
        owned = sorted(
            (record for record in self._sessions.values() if record.user_id == user_id),
            key=lambda record: record.created_at,
            reverse=True,
        )
        offset = (page - 1) * page_size
        items = [
            SessionDetail(
                session=replace(record),
                transcript=self._transcripts.get(record.id),
                summary=self._summaries.get(record.id),
            )
            for record in owned[offset : offset + page_size]
        ]
        return items, len(owned)

    async def delete_session(self, session_id: str) -> bool:
        self._transcripts.pop(session_id, None)
        self._summaries.pop(session_id, None)
        return self._sessions.pop(session_id, None) is not None

    async def save_transcript(
        self, session_id: str, content: str, chunks: Sequence[Dict[str, Any]]
    ) -> TranscriptRecord:
        if session_id not in self._sessions:
            raise SessionRecordNotFound(session_id)
        record = TranscriptRecord(session_id=session_id, content=content, chunks=[dict(c) for c in chunks])
        self._transcripts[session_id] = record
        return record

    async def save_summary(self, session_id: str, summary: SummaryResult) -> SummaryRecord:
        if session_id not in self._sessions:
            raise SessionRecordNotFound(session_id)
        record = SummaryRecord(
            session_id=session_id,
            content=summary.content,
            key_points=list(summary.key_points),
            action_items=list(summary.action_items),
            decisions=list(summary.decisions),
        )
        self._summaries[session_id] = record
        return record


def _json_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, str):
        value = json.loads(value)
    return list(value) if isinstance(value, list) else []


def _session_from_row(row) -> SessionRecord:
    audio_source = row["audio_source"]
    return SessionRecord(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        status=SessionStatus(row["status"]),
        audio_source=AudioSource(audio_source) if audio_source else None,
        duration=row["duration"] or 0,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _transcript_from_row(row) -> TranscriptRecord:
    return TranscriptRecord(
        session_id=row["session_id"],
        content=row["content"],
        chunks=_json_list(row["chunks"]),
        created_at=row["created_at"],
    )


def _summary_from_row(row) -> SummaryRecord:
    return SummaryRecord(
        session_id=row["session_id"],
        content=row["content"],
        key_points=_json_list(row["key_points"]),
        action_items=_json_list(row["action_items"]),
        decisions=_json_list(row["decisions"]),
        created_at=row["created_at"],
    )


class PostgresSessionStore(SessionStore):
    async def startup(self) -> None:
        async with get_db_connection() as conn:
            await conn.execute(SCHEMA_SQL)
        LOGGER.info("session_store_schema_ready")

    async def shutdown(self) -> None:
        await close_db_pool()

    async def create_session(
        self,
        *,
        session_id: str,
        user_id: str,
        audio_source: Optional[AudioSource],
        status: SessionStatus,
        title: Optional[str] = None,
    ) -> SessionRecord:
        async with get_db_connection() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO recording_sessions (id, user_id, title, status, audio_source)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING *
                """,
                session_id,
                user_id,
                title or default_title(),
                status.value,
                audio_source.value if audio_source else None,
            )
        return _session_from_row(row)

    async def update_session(
        self,
        session_id: str,
        *,
        status: Optional[SessionStatus] = None,
        duration: Optional[int] = None,
        title: Optional[str] = None,
    ) -> SessionRecord:
        async with get_db_connection() as conn:
            row = await conn.fetchrow(
                """
                UPDATE recording_sessions
                SET status = COALESCE($2::text, status),
                    duration = COALESCE($3::integer, duration),
                    title = COALESCE($4::text, title),
                    updated_at = NOW()
                WHERE id = $1
                RETURNING *
                """,
                session_id,
                status.value if status else None,
                int(duration) if duration is not None else None,
                title,
            )
        if row is None:
            raise SessionRecordNotFound(session_id)
        return _session_from_row(row)

    async def get_session(self, session_id: str) -> Optional[SessionRecord]:
        async with get_db_connection() as conn:
            row = await conn.fetchrow("SELECT * FROM recording_sessions WHERE id = $1", session_id)
        return _session_from_row(row) if row else None

    async def get_session_detail(self, session_id: str) -> Optional[SessionDetail]:
        async with get_db_connection() as conn:
            row = await conn.fetchrow("SELECT * FROM recording_sessions WHERE id = $1", session_id)
            if row is None:
                return None
            transcript = await conn.fetchrow(
                "SELECT * FROM session_transcripts WHERE session_id = $1", session_id
            )
            summary = await conn.fetchrow(
                "SELECT * FROM session_summaries WHERE session_id = $1", session_id
            )
        return SessionDetail(
            session=_session_from_row(row),
            transcript=_transcript_from_row(transcript) if transcript else None,
            summary=_summary_from_row(summary) if summary else None,
        )

    async def list_sessions(
        self, user_id: str, *, page: int = 1, page_size: int = 20
    ) -> Tuple[List[SessionDetail], int]:
        offset = (page - 1) * page_size
        async with get_db_connection() as conn:
            rows = await conn.fetch(
                """
                SELECT s.*,
                       t.content AS transcript_content,
                       t.created_at AS transcript_created_at,
                       m.content AS summary_content,
                       m.created_at AS summary_created_at
                FROM recording_sessions s
                LEFT JOIN session_transcripts t ON t.session_id = s.id
                LEFT JOIN session_summaries m ON m.session_id = s.id
                WHERE s.user_id = $1
                ORDER BY s.created_at DESC
                OFFSET $2 LIMIT $3
                """,
                user_id,
                offset,
                page_size,
            )
            total = await conn.fetchval(
                "SELECT COUNT(*) FROM recording_sessions WHERE user_id = $1", user_id
            )

        items = []
        for row in rows:
            transcript = None
            if row["transcript_content"] is not None:
                transcript = TranscriptRecord(
                    session_id=row["id"],
                    content=row["transcript_content"],
                    created_at=row["transcript_created_at"],
                )
            summary = None
            if row["summary_content"] is not None:
                summary = SummaryRecord(
                    session_id=row["id"],
                    content=row["summary_content"],
                    created_at=row["summary_created_at"],
                )
            items.append(SessionDetail(session=_session_from_row(row), transcript=transcript, summary=summary))
        return items, int(total or 0)

    async def delete_session(self, session_id: str) -> bool:
        async with get_db_connection() as conn:
            result = await conn.execute("DELETE FROM recording_sessions WHERE id = $1", session_id)
        return result.split()[-1] == "1"

    async def save_transcript(
        self, session_id: str, content: str, chunks: Sequence[Dict[str, Any]]
    ) -> TranscriptRecord:
        async with get_db_connection() as conn:
            try:
                row = await conn.fetchrow(
                    """
                    INSERT INTO session_transcripts (session_id, content, chunks)
                    VALUES ($1, $2, $3::jsonb)
                    ON CONFLICT (session_id) DO UPDATE
                    SET content = EXCLUDED.content, chunks = EXCLUDED.chunks
                    RETURNING *
                    """,
                    session_id,
                    content,
                    json.dumps(list(chunks)),
                )
            except asyncpg.ForeignKeyViolationError as exc:
                raise SessionRecordNotFound(session_id) from exc
        return _transcript_from_row(row)

    async def save_summary(self, session_id: str, summary: SummaryResult) -> SummaryRecord:
        async with get_db_connection() as conn:
            try:
                row = await conn.fetchrow(
                    """
                    INSERT INTO session_summaries (session_id, content, key_points, action_items, decisions)
                    VALUES ($1, $2, $3::jsonb, $4::jsonb, $5::jsonb)
                    ON CONFLICT (session_id) DO UPDATE
                    SET content = EXCLUDED.content,
                        key_points = EXCLUDED.key_points,
                        action_items = EXCLUDED.action_items,
                        decisions = EXCLUDED.decisions
                    RETURNING *
                    """,
                    session_id,
                    summary.content,
                    json.dumps(summary.key_points),
                    json.dumps(summary.action_items),
                    json.dumps(summary.decisions),
                )
            except asyncpg.ForeignKeyViolationError as exc:
                raise SessionRecordNotFound(session_id) from exc
        return _summary_from_row(row)


def build_session_store(backend: str) -> SessionStore:
    normalized = (backend or "postgres").strip().lower()
    if normalized == "memory":
        return InMemorySessionStore()
    if normalized == "postgres":
        return PostgresSessionStore()
    raise ValueError(f"Unsupported session store backend: {backend}")
