"""
Session Registry

Holds the in-memory state of every active recording session: its lifecycle
status, audio buffer and transcript accumulator. The registry is owned by the
event dispatcher; nothing else mutates it.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Optional, Set
import logging

from schemas.recording import AudioSource, SessionStatus
from services.audio_buffer import DEFAULT_MAX_BUFFER_BYTES, BoundedAudioBuffer
from services.transcript_accumulator import TranscriptAccumulator

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
    SessionStatus.IDLE: frozenset({SessionStatus.RECORDING, SessionStatus.PROCESSING, SessionStatus.ERROR}),
    SessionStatus.RECORDING: frozenset({SessionStatus.PAUSED, SessionStatus.PROCESSING, SessionStatus.ERROR}),
    SessionStatus.PAUSED: frozenset({SessionStatus.RECORDING, SessionStatus.PROCESSING, SessionStatus.ERROR}),
    SessionStatus.PROCESSING: frozenset({SessionStatus.COMPLETED, SessionStatus.ERROR}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.ERROR: frozenset(),
}


class SessionError(Exception):
    """Base error for session handling; code is sent back to the client."""

    code = "SESSION_ERROR"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class SessionNotFoundError(SessionError):
    code = "SESSION_NOT_FOUND"

    def __init__(self, session_id: str) -> None:
        super().__init__("Session not found")
        self.session_id = session_id


class SessionAlreadyExistsError(SessionError):
    code = "SESSION_EXISTS"


class InvalidTransitionError(SessionError):
    code = "INVALID_STATE"

    def __init__(self, current: SessionStatus, requested: SessionStatus) -> None:
        super().__init__(f"Cannot move session from {current.value} to {requested.value}")
        self.current = current
        self.requested = requested


@dataclass
class LiveSession:
    """
    In-memory state of one active session.

    Attributes:
        session_id: Opaque server-generated identifier
        user_id: Owner of the session
        audio_source: Capture source reported by the client
        status: Current lifecycle status
        created_at: Creation time (UTC)
        duration_sec: Running duration derived from the latest chunk timestamp
        buffer: Raw audio fragments, bounded
        transcript: Transcribed fragments, append-only
    """
    session_id: str
    user_id: str
    audio_source: AudioSource
    status: SessionStatus = SessionStatus.IDLE
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_sec: int = 0
    buffer: BoundedAudioBuffer = field(default_factory=BoundedAudioBuffer)
    transcript: TranscriptAccumulator = field(default_factory=TranscriptAccumulator)

    def can_transition(self, new_status: SessionStatus) -> bool:
        return new_status in ALLOWED_TRANSITIONS[self.status]

    def transition(self, new_status: SessionStatus) -> SessionStatus:
        """Move to new_status, returning the previous one; the state is untouched on failure."""
        if not self.can_transition(new_status):
            raise InvalidTransitionError(self.status, new_status)
        previous = self.status
        self.status = new_status
        if new_status.is_terminal or new_status == SessionStatus.PROCESSING:
            self.transcript.seal()
        logger.info(f"Session {self.session_id}: {previous.value} -> {new_status.value}")
        return previous

    def update_duration(self, timestamp_ms: float) -> int:
        self.duration_sec = max(self.duration_sec, int(timestamp_ms // 1000))
        return self.duration_sec

    def teardown(self) -> None:
        self.buffer.clear()


class SessionRegistry:
    """
    Maps session identifiers to their live state.

    A removed identifier is retired and can never be registered again.
    """

    def __init__(self, buffer_max_bytes: int = DEFAULT_MAX_BUFFER_BYTES) -> None:
        self._sessions: Dict[str, LiveSession] = {}
        self._retired: Set[str] = set()
        self._buffer_max_bytes = buffer_max_bytes

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def create(
        self,
        session_id: str,
        user_id: str,
        audio_source: AudioSource,
        status: SessionStatus = SessionStatus.RECORDING,
        created_at: Optional[datetime] = None,
    ) -> LiveSession:
        if session_id in self._sessions or session_id in self._retired:
            raise SessionAlreadyExistsError(f"Session {session_id} already registered")

        session = LiveSession(
            session_id=session_id,
            user_id=user_id,
            audio_source=audio_source,
            buffer=BoundedAudioBuffer(self._buffer_max_bytes, session_id=session_id),
        )
        if created_at is not None:
            session.created_at = created_at
        if status != SessionStatus.IDLE:
            session.transition(status)
        self._sessions[session_id] = session
        logger.info(f"Session {session_id} registered ({audio_source.value}, user {user_id})")
        return session

    def get(self, session_id: str) -> Optional[LiveSession]:
        return self._sessions.get(session_id)

    def require(self, session_id: str) -> LiveSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def remove(self, session_id: str) -> Optional[LiveSession]:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return None
        session.teardown()
        self._retired.add(session_id)
        logger.info(f"Session {session_id} removed ({session.status.value})")
        return session

    def is_retired(self, session_id: str) -> bool:
        return session_id in self._retired

    def session_ids(self) -> Set[str]:
        return set(self._sessions.keys())

    def get_stats(self) -> dict:
        """Return counts of active sessions by status"""
        counts = {status.value.lower(): 0 for status in SessionStatus}
        for session in self._sessions.values():
            counts[session.status.value.lower()] += 1
        counts["total_sessions"] = len(self._sessions)
        counts["retired"] = len(self._retired)
        return counts
