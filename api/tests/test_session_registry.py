import pytest

from schemas.recording import AudioSource, SessionStatus
from services.session_registry import (
    InvalidTransitionError,
    SessionAlreadyExistsError,
    SessionNotFoundError,
    SessionRegistry,
)
from services.transcript_accumulator import TranscriptChunk


def test_create_registers_recording_session():
    registry = SessionRegistry(buffer_max_bytes=128)

    session = registry.create("s1", "user-1", AudioSource.TAB)

    assert "s1" in registry
    assert session.status == SessionStatus.RECORDING
    assert session.buffer.max_bytes == 128
    assert registry.get_stats()["recording"] == 1


def test_duplicate_and_retired_ids_cannot_register():
    registry = SessionRegistry()
    registry.create("s1", "user-1", AudioSource.MICROPHONE)

    with pytest.raises(SessionAlreadyExistsError):
        registry.create("s1", "user-2", AudioSource.MICROPHONE)

    registry.remove("s1")
    assert registry.is_retired("s1")
    with pytest.raises(SessionAlreadyExistsError):
        registry.create("s1", "user-1", AudioSource.MICROPHONE)


def test_require_unknown_session():
    with pytest.raises(SessionNotFoundError) as excinfo:
        SessionRegistry().require("missing")
    assert excinfo.value.code == "SESSION_NOT_FOUND"


def test_lifecycle_transitions():
    session = SessionRegistry().create("s1", "user-1", AudioSource.MICROPHONE)

    assert session.transition(SessionStatus.PAUSED) == SessionStatus.RECORDING
    session.transition(SessionStatus.RECORDING)
    session.transition(SessionStatus.PROCESSING)
    assert session.transcript.sealed
    session.transition(SessionStatus.COMPLETED)

    with pytest.raises(InvalidTransitionError) as excinfo:
        session.transition(SessionStatus.ERROR)
    assert excinfo.value.code == "INVALID_STATE"
    assert session.status == SessionStatus.COMPLETED


def test_invalid_transition_leaves_state_unchanged():
    session = SessionRegistry().create("s1", "user-1", AudioSource.MICROPHONE)

    with pytest.raises(InvalidTransitionError):
        session.transition(SessionStatus.COMPLETED)

    assert session.status == SessionStatus.RECORDING
    session.transcript.append(TranscriptChunk(timestamp=0, text="still open"))


def test_duration_never_decreases():
    session = SessionRegistry().create("s1", "user-1", AudioSource.MICROPHONE)

    assert session.update_duration(4500) == 4
    assert session.update_duration(1200) == 4
    assert session.update_duration(61000) == 61


def test_remove_tears_down_buffer():
    registry = SessionRegistry()
    session = registry.create("s1", "user-1", AudioSource.MICROPHONE)
    session.buffer.add_fragment(b"audio")

    removed = registry.remove("s1")

    assert removed is session
    assert session.buffer.size_bytes == 0
    assert "s1" not in registry
    assert registry.remove("s1") is None
