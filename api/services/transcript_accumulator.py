from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Tuple

NO_TRANSCRIPT_TEXT = "No transcript available"


@dataclass(frozen=True)
class TranscriptChunk:
    """One transcribed fragment; timestamp is milliseconds since session start."""

    timestamp: int
    text: str
    speaker: Optional[str] = None

    def render(self) -> str:
        if self.speaker:
            return f"{self.speaker}: {self.text}"
        return self.text

    def to_payload(self) -> Dict[str, Any]:
        payload = {"timestamp": self.timestamp, "text": self.text}
        if self.speaker:
            payload["speaker"] = self.speaker
        return payload

    def to_record(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "TranscriptChunk":
        return cls(
            timestamp=int(record.get("timestamp") or 0),
            text=str(record.get("text") or ""),
            speaker=record.get("speaker") or None,
        )


class TranscriptAccumulator:
    """Append-only list of transcript chunks for one session, kept in arrival order."""

    def __init__(self) -> None:
        self._chunks: List[TranscriptChunk] = []
        self._sealed = False

    def __len__(self) -> int:
        return len(self._chunks)

    @property
    def chunks(self) -> Tuple[TranscriptChunk, ...]:
        return tuple(self._chunks)

    @property
    def sealed(self) -> bool:
        return self._sealed

    def append(self, chunk: TranscriptChunk) -> None:
        if self._sealed:
            raise RuntimeError("Transcript accumulator is sealed")
        self._chunks.append(chunk)

    def seal(self) -> None:
        self._sealed = True

    def flatten(self) -> str:
        return "\n".join(chunk.render() for chunk in self._chunks)

    def tail(self, chars: int = 200) -> str:
        if chars <= 0:
            return ""
        return self.flatten()[-chars:]

    def resolve_final_text(self, client_transcript: Optional[str], placeholder_marker: str) -> str:
        """
        Pick the text that gets persisted at stop time.

        The browser's own speech recognition wins when the server-side path
        produced nothing usable: an empty transcript, or one still carrying
        the mock transcription placeholder.
        """
        flattened = self.flatten()
        if client_transcript and (not flattened or placeholder_marker in flattened):
            return client_transcript
        return flattened
