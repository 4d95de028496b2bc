import json

import httpx
import pytest

from config import get_settings
from services.gemini_client import (
    MOCK_TRANSCRIPTION_MARKER,
    NO_SUMMARY_TEXT,
    SummarizationError,
    build_transcription_prompt,
    extract_speaker,
    generate_meeting_summary,
    parse_summary_response,
    transcribe_audio_chunk,
)


def _settings(**overrides):
    values = {
        "gemini_api_key": "test-key",
        "gemini_retry_attempts": 2,
        "gemini_transcription_model": "gemini-1.5-flash",
        "gemini_summary_model": "gemini-1.5-pro",
        "gemini_audio_mime_type": "audio/webm",
    }
    values.update(overrides)
    return get_settings().model_copy(update=values)


def _gemini_reply(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_extract_speaker():
    assert extract_speaker("Speaker 2: we ship friday") == "Speaker 2"
    assert extract_speaker("we ship friday, Speaker 2: said") is None
    assert extract_speaker("") is None


def test_transcription_prompt_uses_recent_context():
    prompt = build_transcription_prompt("x" * 500)
    assert '"' + "x" * 200 + '"' in prompt
    assert "Continue transcribing" in prompt
    assert "Transcribe the following audio chunk" in build_transcription_prompt(None)


def test_parse_summary_response_fills_defaults():
    summary = parse_summary_response('```json\n{"keyPoints": ["a", null, "b"]}\n```')

    assert summary.content == NO_SUMMARY_TEXT
    assert summary.key_points == ["a", "b"]
    assert summary.action_items == []
    assert summary.decisions == []


def test_parse_summary_response_without_json_fails():
    with pytest.raises(SummarizationError):
        parse_summary_response("I could not summarize this meeting.")


@pytest.mark.asyncio
async def test_transcription_without_api_key_returns_mock_placeholder():
    result = await transcribe_audio_chunk(b"audio", 12500, settings=_settings(gemini_api_key=""))

    assert result.degraded
    assert MOCK_TRANSCRIPTION_MARKER in result.chunk.text
    assert "at 12s" in result.chunk.text
    assert result.chunk.timestamp == 12500


@pytest.mark.asyncio
async def test_transcription_sends_inline_audio_and_parses_speaker():
    captured = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json=_gemini_reply("Speaker 1: good morning everyone\n"))

    async with _client(handler) as client:
        result = await transcribe_audio_chunk(
            b"\x00\x01", 3000, "earlier words", settings=_settings(), client=client
        )

    assert result.ok
    assert result.chunk.text == "Speaker 1: good morning everyone"
    assert result.chunk.speaker == "Speaker 1"

    request = captured[0]
    assert request.url.path.endswith("/models/gemini-1.5-flash:generateContent")
    assert request.headers["x-goog-api-key"] == "test-key"
    body = json.loads(request.content)
    parts = body["contents"][0]["parts"]
    assert parts[0]["inline_data"] == {"mime_type": "audio/webm", "data": "AAE="}
    assert "earlier words" in parts[1]["text"]


@pytest.mark.asyncio
async def test_transcription_client_error_becomes_degraded_result():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(400, json={"error": {"message": "bad audio"}})

    async with _client(handler) as client:
        result = await transcribe_audio_chunk(b"audio", 0, settings=_settings(), client=client)

    assert result.degraded
    assert result.chunk.text.startswith("[Transcription error:")
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_transcription_retries_server_errors():
    responses = [httpx.Response(503), httpx.Response(200, json=_gemini_reply("recovered"))]

    def handler(request: httpx.Request) -> httpx.Response:
        return responses.pop(0)

    async with _client(handler) as client:
        result = await transcribe_audio_chunk(b"audio", 0, settings=_settings(), client=client)

    assert result.ok
    assert result.chunk.text == "recovered"
    assert responses == []


@pytest.mark.asyncio
async def test_summary_without_api_key_is_mocked():
    summary = await generate_meeting_summary("anything", settings=_settings(gemini_api_key=""))

    assert summary.content.startswith("Mock summary")
    assert summary.key_points


@pytest.mark.asyncio
async def test_summary_parses_model_json():
    reply = {
        "content": "Short sync about the launch.",
        "keyPoints": ["Launch is on track"],
        "actionItems": ["Send the announcement"],
        "decisions": ["Launch Monday"],
    }

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/models/gemini-1.5-pro:generateContent")
        return httpx.Response(200, json=_gemini_reply(json.dumps(reply)))

    async with _client(handler) as client:
        summary = await generate_meeting_summary("transcript", settings=_settings(), client=client)

    assert summary.to_payload() == reply


@pytest.mark.asyncio
async def test_summary_failure_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_gemini_reply("no json here"))

    async with _client(handler) as client:
        with pytest.raises(SummarizationError):
            await generate_meeting_summary("transcript", settings=_settings(), client=client)
