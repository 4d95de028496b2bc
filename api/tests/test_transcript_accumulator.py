import pytest

from services.transcript_accumulator import TranscriptAccumulator, TranscriptChunk


def test_flatten_prefixes_speakers_and_joins_lines():
    transcript = TranscriptAccumulator()
    transcript.append(TranscriptChunk(timestamp=0, text="hello", speaker="Speaker 1"))
    transcript.append(TranscriptChunk(timestamp=1000, text="no speaker"))

    assert transcript.flatten() == "Speaker 1: hello\nno speaker"
    assert len(transcript) == 2


def test_tail_returns_last_characters():
    transcript = TranscriptAccumulator()
    transcript.append(TranscriptChunk(timestamp=0, text="a" * 150))
    transcript.append(TranscriptChunk(timestamp=1000, text="b" * 150))

    tail = transcript.tail(200)

    assert len(tail) == 200
    assert tail.endswith("b" * 150)
    assert TranscriptAccumulator().tail() == ""


def test_sealed_accumulator_rejects_appends():
    transcript = TranscriptAccumulator()
    transcript.append(TranscriptChunk(timestamp=0, text="kept"))
    transcript.seal()

    with pytest.raises(RuntimeError):
        transcript.append(TranscriptChunk(timestamp=1, text="late"))
    assert transcript.flatten() == "kept"


@pytest.mark.parametrize(
    "texts, client, expected",
    [
        ([], "from browser", "from browser"),
        (["[Mock transcription at 0s]"], "from browser", "from browser"),
        (["real words"], "from browser", "real words"),
        (["[Mock transcription at 0s]"], None, "[Mock transcription at 0s]"),
        ([], None, ""),
    ],
)
def test_resolve_final_text(texts, client, expected):
    transcript = TranscriptAccumulator()
    for index, text in enumerate(texts):
        transcript.append(TranscriptChunk(timestamp=index, text=text))

    assert transcript.resolve_final_text(client, "Mock transcription") == expected


def test_chunk_payload_omits_missing_speaker():
    assert TranscriptChunk(timestamp=5, text="hi").to_payload() == {"timestamp": 5, "text": "hi"}
    chunk = TranscriptChunk(timestamp=5, text="hi", speaker="Speaker 2")
    assert TranscriptChunk.from_record(chunk.to_record()) == chunk
