"""Gemini API integration for chunk transcription and meeting summaries."""

import base64
import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog
from httpx import AsyncClient
from prometheus_client import Counter

from config import Settings, get_settings
from services.http_client import get_http_client, request_with_retry
from services.transcript_accumulator import TranscriptChunk

LOGGER = structlog.get_logger(__name__)

MOCK_TRANSCRIPTION_MARKER = "Mock transcription"
NO_SUMMARY_TEXT = "No summary available"

_SPEAKER_PATTERN = re.compile(r"^(Speaker \d+):")
_JSON_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")

TRANSCRIPTION_RESULTS = Counter(
    "gemini_transcription_results_total",
    "Chunk transcription outcomes",
    ["outcome"],
)
SUMMARY_RESULTS = Counter(
    "gemini_summary_results_total",
    "Meeting summary outcomes",
    ["outcome"],
)


class GeminiError(Exception):
    """Raised when the Gemini API answers with something unusable."""


class SummarizationError(GeminiError):
    pass


@dataclass(frozen=True)
class TranscriptionResult:
    """Outcome of transcribing one chunk; degraded results still carry a placeholder chunk."""

    chunk: TranscriptChunk
    ok: bool = True
    error: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return not self.ok


@dataclass
class SummaryResult:
    content: str
    key_points: List[str] = field(default_factory=list)
    action_items: List[str] = field(default_factory=list)
    decisions: List[str] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "keyPoints": list(self.key_points),
            "actionItems": list(self.action_items),
            "decisions": list(self.decisions),
        }


def build_transcription_prompt(context: Optional[str] = None) -> str:
    if context:
        return (
            f'Continue transcribing the audio. Previous context: "{context[-200:]}". '
            "Maintain speaker consistency and differentiate speakers as Speaker 1, Speaker 2, etc. "
            "Provide only the transcription text."
        )
    return (
        "Transcribe the following audio chunk. If multiple speakers are detected, "
        "differentiate them as Speaker 1, Speaker 2, etc. Provide only the transcription "
        "text without any additional formatting or explanations."
    )


def build_summary_prompt(transcript: str) -> str:
    return f"""Analyze the following meeting transcript and provide a comprehensive summary in the following JSON format:

{{
  "content": "A brief 2-3 sentence overview of the meeting",
  "keyPoints": ["Key point 1", "Key point 2", ...],
  "actionItems": ["Action item 1", "Action item 2", ...],
  "decisions": ["Decision 1", "Decision 2", ...]
}}

Meeting Transcript:
{transcript}

Provide ONLY the JSON response, no additional text."""


def extract_speaker(text: str) -> Optional[str]:
    match = _SPEAKER_PATTERN.match(text or "")
    return match.group(1) if match else None


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None]


def parse_summary_response(text: str) -> SummaryResult:
    match = _JSON_OBJECT_PATTERN.search(text or "")
    if not match:
        raise SummarizationError("Failed to parse summary response")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise SummarizationError(f"Summary response is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise SummarizationError("Summary response is not a JSON object")
    return SummaryResult(
        content=str(data.get("content") or NO_SUMMARY_TEXT),
        key_points=_string_list(data.get("keyPoints")),
        action_items=_string_list(data.get("actionItems")),
        decisions=_string_list(data.get("decisions")),
    )


def _extract_text(response: Dict[str, Any]) -> str:
    candidates = response.get("candidates") or []
    if not candidates:
        feedback = response.get("promptFeedback") or {}
        raise GeminiError(f"Gemini returned no candidates (blockReason={feedback.get('blockReason')})")
    content = candidates[0].get("content") or {}
    parts = content.get("parts") or []
    return "".join(part.get("text", "") for part in parts if isinstance(part, dict))


async def _generate_content(
    model: str,
    parts: List[Dict[str, Any]],
    *,
    settings: Settings,
    client: Optional[AsyncClient] = None,
    generation_config: Optional[Dict[str, Any]] = None,
) -> str:
    body: Dict[str, Any] = {"contents": [{"role": "user", "parts": parts}]}
    if generation_config:
        body["generationConfig"] = generation_config
    base_url = str(settings.gemini_api_base).rstrip("/")
    response = await request_with_retry(
        "POST",
        f"{base_url}/models/{model}:generateContent",
        client=client or await get_http_client(),
        json=body,
        headers={"x-goog-api-key": settings.gemini_api_key},
        timeout=settings.gemini_timeout,
        retry_attempts=settings.gemini_retry_attempts,
    )
    return _extract_text(response.json())


async def transcribe_audio_chunk(
    audio: bytes,
    timestamp_ms: int,
    context: Optional[str] = None,
    *,
    settings: Optional[Settings] = None,
    client: Optional[AsyncClient] = None,
) -> TranscriptionResult:
    """
    Transcribe one audio chunk.

    Never raises: a missing API key yields the mock placeholder and any API
    failure yields an error placeholder, both tagged as degraded.
    """
    settings = settings or get_settings()
    if not settings.gemini_api_key:
        LOGGER.warning("gemini_api_key_missing", purpose="transcription")
        TRANSCRIPTION_RESULTS.labels(outcome="mock").inc()
        return TranscriptionResult(
            chunk=TranscriptChunk(
                timestamp=timestamp_ms,
                text=(
                    f"[{MOCK_TRANSCRIPTION_MARKER} at {timestamp_ms // 1000}s - "
                    "Add GEMINI_API_KEY to .env for real transcription]"
                ),
            ),
            ok=False,
            error="GEMINI_API_KEY not configured",
        )

    LOGGER.debug("gemini_transcription_started", audio_bytes=len(audio), timestamp_ms=timestamp_ms)
    try:
        text = await _generate_content(
            settings.gemini_transcription_model,
            [
                {
                    "inline_data": {
                        "mime_type": settings.gemini_audio_mime_type,
                        "data": base64.b64encode(audio).decode("ascii"),
                    }
                },
                {"text": build_transcription_prompt(context)},
            ],
            settings=settings,
            client=client,
        )
    except Exception as exc:  # noqa: BLE001
        LOGGER.warning("gemini_transcription_failed", timestamp_ms=timestamp_ms, error=str(exc))
        TRANSCRIPTION_RESULTS.labels(outcome="error").inc()
        return TranscriptionResult(
            chunk=TranscriptChunk(
                timestamp=timestamp_ms,
                text=f"[Transcription error: {exc or 'Unknown error'}]",
            ),
            ok=False,
            error=str(exc),
        )

    text = text.strip()
    TRANSCRIPTION_RESULTS.labels(outcome="ok").inc()
    LOGGER.debug("gemini_transcription_completed", timestamp_ms=timestamp_ms, preview=text[:50])
    return TranscriptionResult(
        chunk=TranscriptChunk(timestamp=timestamp_ms, text=text, speaker=extract_speaker(text)),
    )


async def generate_meeting_summary(
    transcript: str,
    *,
    settings: Optional[Settings] = None,
    client: Optional[AsyncClient] = None,
) -> SummaryResult:
    settings = settings or get_settings()
    if not settings.gemini_api_key:
        LOGGER.warning("gemini_api_key_missing", purpose="summary")
        SUMMARY_RESULTS.labels(outcome="mock").inc()
        return SummaryResult(
            content="Mock summary - Add GEMINI_API_KEY to .env for real AI summaries",
            key_points=["Mock key point 1", "Mock key point 2"],
            action_items=["Mock action item 1"],
            decisions=["Mock decision 1"],
        )

    try:
        text = await _generate_content(
            settings.gemini_summary_model,
            [{"text": build_summary_prompt(transcript)}],
            settings=settings,
            client=client,
            generation_config={"temperature": 0.2, "responseMimeType": "application/json"},
        )
        summary = parse_summary_response(text)
    except SummarizationError:
        SUMMARY_RESULTS.labels(outcome="error").inc()
        raise
    except Exception as exc:  # noqa: BLE001
        SUMMARY_RESULTS.labels(outcome="error").inc()
        raise SummarizationError("Failed to generate meeting summary") from exc

    SUMMARY_RESULTS.labels(outcome="ok").inc()
    return summary
