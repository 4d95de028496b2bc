import pytest

from services.audio_buffer import BoundedAudioBuffer, is_valid_audio_chunk, merge_fragments


def test_fragments_keep_arrival_order_under_ceiling():
    buffer = BoundedAudioBuffer(max_bytes=100)

    for fragment in (b"aa", b"bb", b"cc"):
        assert buffer.add_fragment(fragment) is True

    assert buffer.size_bytes == 6
    assert buffer.fragment_count == 3
    assert merge_fragments(buffer.drain_all()) == b"aabbcc"
    assert buffer.size_bytes == 0


def test_overflow_evicts_oldest_half_before_append():
    buffer = BoundedAudioBuffer(max_bytes=10)
    for fragment in (b"11", b"22", b"33", b"44", b"55"):
        buffer.add_fragment(fragment)

    buffer.add_fragment(b"66")

    # five fragments, two oldest evicted
    assert buffer.eviction_count == 1
    assert buffer.drain_all() == [b"33", b"44", b"55", b"66"]


def test_ceiling_holds_for_any_sequence():
    buffer = BoundedAudioBuffer(max_bytes=64)
    sizes = [1, 63, 7, 30, 30, 30, 64, 2, 40, 5]

    for index, size in enumerate(sizes):
        buffer.add_fragment(bytes([index]) * size)
        assert buffer.size_bytes <= 64

    assert buffer.drain_all()[-1] == bytes([9]) * 5


def test_single_blocking_fragment_is_evicted():
    buffer = BoundedAudioBuffer(max_bytes=10)
    buffer.add_fragment(b"x" * 8)

    buffer.add_fragment(b"y" * 5)

    assert buffer.drain_all() == [b"y" * 5]


def test_fragment_larger_than_ceiling_keeps_its_tail():
    buffer = BoundedAudioBuffer(max_bytes=4)
    buffer.add_fragment(b"ab")

    buffer.add_fragment(b"0123456789")

    assert buffer.drain_all() == [b"6789"]


def test_chunk_validation():
    assert is_valid_audio_chunk(b"\x00")
    assert not is_valid_audio_chunk(b"")
    assert not is_valid_audio_chunk("not bytes")
    assert not is_valid_audio_chunk(None)


def test_ceiling_must_be_positive():
    with pytest.raises(ValueError):
        BoundedAudioBuffer(max_bytes=0)
