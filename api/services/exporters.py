"""Download renderings of a persisted session."""

import json
from typing import Any, Dict, List

from services.session_store import SessionDetail
from services.transcript_accumulator import NO_TRANSCRIPT_TEXT

EXPORT_FORMATS = ("txt", "json")


def format_duration(seconds: int) -> str:
    seconds = max(int(seconds or 0), 0)
    return f"{seconds // 60}m {seconds % 60}s"


def _numbered(items: List[str]) -> str:
    return "\n".join(f"{index}. {item}" for index, item in enumerate(items, start=1))


def render_text_export(detail: SessionDetail) -> str:
    session = detail.session
    lines = [
        f"Session: {session.title or session.id}",
        f"Date: {session.created_at.strftime('%Y-%m-%d %H:%M:%S')}",
        f"Duration: {format_duration(session.duration)}",
        "",
        "=== TRANSCRIPT ===",
        "",
        detail.transcript.content if detail.transcript else NO_TRANSCRIPT_TEXT,
    ]
    text = "\n".join(lines)

    summary = detail.summary
    if summary is None:
        return text

    text += f"\n\n=== SUMMARY ===\n\n{summary.content}\n\n"
    if summary.key_points:
        text += f"Key Points:\n{_numbered(summary.key_points)}\n"
    if summary.action_items:
        text += f"\nAction Items:\n{_numbered(summary.action_items)}\n"
    if summary.decisions:
        text += f"\nDecisions:\n{_numbered(summary.decisions)}\n"
    return text


def build_json_export(detail: SessionDetail) -> Dict[str, Any]:
    session = detail.session
    summary = detail.summary
    return {
        "session": {
            "id": session.id,
            "title": session.title,
            "duration": session.duration,
            "createdAt": session.created_at.isoformat(),
        },
        "transcript": detail.transcript.content if detail.transcript else None,
        "summary": (
            {
                "content": summary.content,
                "keyPoints": list(summary.key_points),
                "actionItems": list(summary.action_items),
                "decisions": list(summary.decisions),
            }
            if summary
            else None
        ),
    }


def render_json_export(detail: SessionDetail) -> str:
    return json.dumps(build_json_export(detail), indent=2, ensure_ascii=False)


def export_filename(detail: SessionDetail, export_format: str) -> str:
    return f"session-{detail.session.id}.{export_format}"
