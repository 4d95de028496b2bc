import base64
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SessionStatus(str, Enum):
    IDLE = "IDLE"
    RECORDING = "RECORDING"
    PAUSED = "PAUSED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.ERROR)


class AudioSource(str, Enum):
    MICROPHONE = "microphone"
    TAB = "tab"


class InboundEvent(str, Enum):
    START_RECORDING = "start-recording"
    AUDIO_CHUNK = "audio-chunk"
    PAUSE_RECORDING = "pause-recording"
    RESUME_RECORDING = "resume-recording"
    STOP_RECORDING = "stop-recording"
    JOIN_SESSION = "join-session"


class OutboundEvent(str, Enum):
    SESSION_CREATED = "session-created"
    TRANSCRIPTION_UPDATE = "transcription-update"
    STATUS_UPDATE = "status-update"
    PROCESSING_COMPLETE = "processing-complete"
    ERROR = "error"


class _EventPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class StartRecordingPayload(_EventPayload):
    user_id: str = Field(alias="userId", min_length=1)
    audio_source: AudioSource = Field(alias="audioSource")


class SessionPayload(_EventPayload):
    session_id: str = Field(alias="sessionId", min_length=1)


class AudioChunkPayload(SessionPayload):
    chunk: bytes
    timestamp: float = Field(ge=0)

    @field_validator("chunk", mode="before")
    @classmethod
    def _decode_chunk(cls, value):
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value)
        if isinstance(value, str):
            try:
                return base64.b64decode(value, validate=True)
            except ValueError as exc:
                raise ValueError(f"Invalid base64 audio chunk: {exc}") from exc
        raise ValueError("chunk must be base64 encoded audio")


class StopRecordingPayload(SessionPayload):
    client_transcript: Optional[str] = Field(default=None, alias="clientTranscript")
    duration: Optional[float] = Field(default=None, ge=0)
