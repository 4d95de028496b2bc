import json
from datetime import datetime, timezone

from schemas.recording import AudioSource, SessionStatus
from services.exporters import format_duration, render_json_export, render_text_export
from services.session_store import SessionDetail, SessionRecord, SummaryRecord, TranscriptRecord

CREATED = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)


def _detail(with_transcript=True, with_summary=True) -> SessionDetail:
    session = SessionRecord(
        id="abc123",
        user_id="user-1",
        title="Weekly sync",
        status=SessionStatus.COMPLETED,
        audio_source=AudioSource.MICROPHONE,
        duration=125,
        created_at=CREATED,
        updated_at=CREATED,
    )
    transcript = TranscriptRecord(session_id="abc123", content="Speaker 1: hi") if with_transcript else None
    summary = (
        SummaryRecord(
            session_id="abc123",
            content="Short.",
            key_points=["a", "b"],
            action_items=["c"],
            decisions=["d"],
        )
        if with_summary
        else None
    )
    return SessionDetail(session=session, transcript=transcript, summary=summary)


def test_format_duration():
    assert format_duration(0) == "0m 0s"
    assert format_duration(125) == "2m 5s"


def test_text_export_with_summary():
    assert render_text_export(_detail()) == (
        "Session: Weekly sync\n"
        "Date: 2024-05-01 09:30:00\n"
        "Duration: 2m 5s\n"
        "\n"
        "=== TRANSCRIPT ===\n"
        "\n"
        "Speaker 1: hi\n"
        "\n"
        "=== SUMMARY ===\n"
        "\n"
        "Short.\n"
        "\n"
        "Key Points:\n1. a\n2. b\n"
        "\nAction Items:\n1. c\n"
        "\nDecisions:\n1. d\n"
    )


def test_text_export_without_transcript_or_summary():
    text = render_text_export(_detail(with_transcript=False, with_summary=False))

    assert text.endswith("=== TRANSCRIPT ===\n\nNo transcript available")
    assert "=== SUMMARY ===" not in text


def test_json_export_shape():
    exported = render_json_export(_detail(with_summary=False))

    assert exported.startswith('{\n  "session"')
    assert json.loads(exported) == {
        "session": {
            "id": "abc123",
            "title": "Weekly sync",
            "duration": 125,
            "createdAt": "2024-05-01T09:30:00+00:00",
        },
        "transcript": "Speaker 1: hi",
        "summary": None,
    }
