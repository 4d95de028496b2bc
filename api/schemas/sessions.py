"""Schemas for the persisted session REST endpoints."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from schemas.recording import AudioSource, SessionStatus


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateSessionRequest(_CamelModel):
    user_id: str = Field(..., min_length=1)
    title: Optional[str] = Field(default=None, max_length=255)
    audio_source: Optional[AudioSource] = None


class UpdateSessionRequest(_CamelModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    status: Optional[SessionStatus] = None


class TranscriptOut(_CamelModel):
    content: str
    chunks: List[Dict[str, Any]] = Field(default_factory=list)
    created_at: datetime


class SummaryOut(_CamelModel):
    content: str
    key_points: List[str] = Field(default_factory=list)
    action_items: List[str] = Field(default_factory=list)
    decisions: List[str] = Field(default_factory=list)
    created_at: datetime


class SessionOut(_CamelModel):
    id: str
    user_id: str
    title: Optional[str] = None
    status: SessionStatus
    audio_source: Optional[AudioSource] = None
    duration: int = 0
    created_at: datetime
    updated_at: datetime


class SessionDetailOut(SessionOut):
    transcript: Optional[TranscriptOut] = None
    summary: Optional[SummaryOut] = None


class SessionPage(_CamelModel):
    items: List[SessionDetailOut]
    total: int
    page: int
    page_size: int
    has_more: bool


class SessionResponse(_CamelModel):
    success: bool = True
    data: SessionOut


class SessionDetailResponse(_CamelModel):
    success: bool = True
    data: SessionDetailOut


class SessionPageResponse(_CamelModel):
    success: bool = True
    data: SessionPage


class DeleteSessionResponse(_CamelModel):
    success: bool = True
    message: str
