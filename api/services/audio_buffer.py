"""
Bounded per-session audio buffer.

Keeps the raw audio fragments of one recording in arrival order under a hard
byte ceiling. When a new fragment would push the total over the ceiling the
oldest half of the buffered fragments is evicted before the append, so the
most recent audio always survives. The transcript is the durable artifact,
raw audio is not.
"""

from typing import Iterable, List

import structlog
from prometheus_client import Counter

LOGGER = structlog.get_logger(__name__)

DEFAULT_MAX_BUFFER_BYTES = 10 * 1024 * 1024

AUDIO_BUFFER_EVICTIONS = Counter(
    "audio_buffer_evictions_total",
    "Number of eviction passes triggered by the audio buffer ceiling",
)
AUDIO_BUFFER_EVICTED_BYTES = Counter(
    "audio_buffer_evicted_bytes_total",
    "Bytes discarded by audio buffer eviction",
)


def is_valid_audio_chunk(chunk: object) -> bool:
    return isinstance(chunk, (bytes, bytearray, memoryview)) and len(chunk) > 0


def merge_fragments(fragments: Iterable[bytes]) -> bytes:
    """Concatenate fragments into one contiguous payload, preserving order."""
    merged = bytearray()
    for fragment in fragments:
        merged.extend(fragment)
    return bytes(merged)


class BoundedAudioBuffer:
    """
    Ordered store of audio fragments with an eviction policy.

    Single writer: the dispatcher feeds a session's buffer from that session's
    queue only, so no locking happens here.
    """

    def __init__(self, max_bytes: int = DEFAULT_MAX_BUFFER_BYTES, session_id: str | None = None) -> None:
        if max_bytes <= 0:
            raise ValueError("max_bytes must be positive")
        self.max_bytes = max_bytes
        self.session_id = session_id
        self._fragments: List[bytes] = []
        self._size_bytes = 0
        self._eviction_count = 0

    @property
    def size_bytes(self) -> int:
        return self._size_bytes

    @property
    def fragment_count(self) -> int:
        return len(self._fragments)

    @property
    def eviction_count(self) -> int:
        return self._eviction_count

    def add_fragment(self, data: bytes) -> bool:
        """
        Append a fragment, evicting old audio first if the ceiling would be exceeded.

        Returns:
            Always True; overflow is answered with eviction, never rejection.
        """
        fragment = bytes(data)
        if len(fragment) > self.max_bytes:
            LOGGER.warning(
                "audio_fragment_truncated",
                session_id=self.session_id,
                fragment_bytes=len(fragment),
                max_bytes=self.max_bytes,
            )
            fragment = fragment[-self.max_bytes :]

        while self._fragments and self._size_bytes + len(fragment) > self.max_bytes:
            self._evict_oldest_half()

        self._fragments.append(fragment)
        self._size_bytes += len(fragment)
        return True

    def drain_all(self) -> List[bytes]:
        fragments = list(self._fragments)
        self.clear()
        return fragments

    def clear(self) -> None:
        self._fragments = []
        self._size_bytes = 0

    def _evict_oldest_half(self) -> None:
        # A single buffered fragment still has to go when it blocks the append.
        count = max(len(self._fragments) // 2, 1)
        removed = self._fragments[:count]
        del self._fragments[:count]
        removed_bytes = sum(len(fragment) for fragment in removed)
        self._size_bytes -= removed_bytes
        self._eviction_count += 1
        AUDIO_BUFFER_EVICTIONS.inc()
        AUDIO_BUFFER_EVICTED_BYTES.inc(removed_bytes)
        LOGGER.warning(
            "audio_buffer_overflow_evicted",
            session_id=self.session_id,
            evicted_fragments=count,
            evicted_bytes=removed_bytes,
            remaining_fragments=len(self._fragments),
            remaining_bytes=self._size_bytes,
        )
