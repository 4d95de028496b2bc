import asyncio
from typing import Any, Dict, List, Optional

import pytest

from services.broadcast import BroadcastChannel, Connection
from services.dispatcher import DispatcherConfig, EventDispatcher
from services.gemini_client import SummaryResult, TranscriptionResult
from services.session_registry import SessionRegistry
from services.session_store import InMemorySessionStore
from services.transcript_accumulator import TranscriptChunk


class FakeConnection(Connection):
    def __init__(self, connection_id: Optional[str] = None, fail: bool = False) -> None:
        super().__init__(connection_id)
        self.fail = fail
        self.messages: List[Dict[str, Any]] = []

    async def send_json(self, message: Dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.messages.append(message)

    def events(self, name: Optional[str] = None) -> List[Dict[str, Any]]:
        return [message for message in self.messages if name is None or message["event"] == name]

    def statuses(self) -> List[str]:
        return [message["status"] for message in self.events("status-update")]


class FakeTranscriber:
    def __init__(self, delays: Optional[List[float]] = None, text: str = "chunk at {timestamp}") -> None:
        self.delays = list(delays or [])
        self.text = text
        self.calls: List[tuple] = []

    async def __call__(self, audio: bytes, timestamp_ms: int, context: Optional[str] = None) -> TranscriptionResult:
        self.calls.append((audio, timestamp_ms, context))
        if self.delays:
            await asyncio.sleep(self.delays.pop(0))
        return TranscriptionResult(chunk=TranscriptChunk(timestamp=timestamp_ms, text=self.text.format(timestamp=timestamp_ms)))


class FakeSummarizer:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.calls: List[str] = []

    async def __call__(self, transcript: str) -> SummaryResult:
        self.calls.append(transcript)
        if self.error is not None:
            raise self.error
        return SummaryResult(
            content="Team agreed on the release date.",
            key_points=["Release moves to Friday"],
            action_items=["Ana updates the changelog"],
            decisions=["Ship on Friday"],
        )


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def summarizer():
    return FakeSummarizer()


@pytest.fixture
def make_dispatcher(store, transcriber, summarizer):
    def factory(**overrides):
        options = {
            "transcriber": transcriber,
            "summarizer": summarizer,
            "config": DispatcherConfig(),
        }
        options.update(overrides)
        backing_store = options.pop("store", store)
        registry = options.pop("registry", SessionRegistry(buffer_max_bytes=1024))
        return EventDispatcher(registry, BroadcastChannel(), backing_store, **options)

    return factory


async def start_session(dispatcher: EventDispatcher, connection: FakeConnection, user_id: str = "user-1") -> str:
    await dispatcher.dispatch(connection, "start-recording", {"userId": user_id, "audioSource": "microphone"})
    created = connection.events("session-created")
    assert created, connection.messages
    return created[-1]["sessionId"]
