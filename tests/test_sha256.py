from __future__ import annotations

import hashlib
import random
import struct

import numpy as np
import pytest

from lowhash import alphabet, sha256

ZERO_TAIL = sha256.PAD_BYTE


def _hashlib_words(m_a: int, m_b: int, m_c: int):
    return struct.unpack(">8I", hashlib.sha256(sha256.message_bytes(m_a, m_b, m_c)).digest())


def test_layout_constants() -> None:
    assert len(sha256.PREFIX) == 44
    assert len(sha256.PREFIX_WORDS) == 11
    assert sha256.MESSAGE_BYTES == 55
    assert sha256.LENGTH_WORDS == (0, 440)
    assert len(sha256.message_words(1, 2, ZERO_TAIL)) == 16
    assert len(sha256.message_bytes(1, 2, ZERO_TAIL)) == 55


def test_block_is_standard_padding_of_the_message() -> None:
    m_a, m_b, m_c = alphabet.encode_word(7), alphabet.encode_word(9), sha256.tail_word(1, 2, 3)
    block = struct.pack(">16I", *sha256.message_words(m_a, m_b, m_c))
    message = sha256.message_bytes(m_a, m_b, m_c)

    assert block == message + b"\x80" + b"\x00" * 6 + struct.pack(">H", 440)


def test_engines_agree_with_hashlib_on_zero_input() -> None:
    expected = _hashlib_words(0, 0, ZERO_TAIL)

    assert sha256.compress_reference(0, 0, ZERO_TAIL) == expected
    assert sha256.compress(0, 0, ZERO_TAIL) == expected


def test_engines_agree_on_random_nonces() -> None:
    rng = random.Random(1234)
    for _ in range(32):
        m_a = rng.getrandbits(32)
        m_b = rng.getrandbits(32)
        m_c = (rng.getrandbits(24) << 8) | sha256.PAD_BYTE
        expected = _hashlib_words(m_a, m_b, m_c)
        assert sha256.compress_reference(m_a, m_b, m_c) == expected
        assert sha256.compress(m_a, m_b, m_c) == expected


def test_compress_many_matches_reference_per_tail() -> None:
    m_a, m_b = alphabet.encode_word(42), alphabet.encode_word(17)
    tails = np.array([sha256.tail_word(i, (i * 7) % 62, (i * 13) % 62) for i in range(62)], dtype=np.uint32)

    words = sha256.compress_many(m_a, m_b, tails)

    assert words.shape == (8, 62)
    assert words.dtype == np.uint32
    for i, tail in enumerate(tails):
        assert tuple(int(x) for x in words[:, i]) == sha256.compress_reference(m_a, m_b, int(tail))


def test_compress_is_deterministic() -> None:
    args = (alphabet.encode_word(5), alphabet.encode_word(6), sha256.tail_word(7, 8, 9))
    assert sha256.compress(*args) == sha256.compress(*args)
    assert sha256.compress_reference(*args) == sha256.compress_reference(*args)


def test_tail_word_layout() -> None:
    assert sha256.tail_word(0, 0, 0) == 0x41414180
    assert sha256.tail_word(61, 61, 61) == 0x39393980
    assert sha256.tail_word(26, 52, 0) & 0xFF == 0x80


@pytest.mark.parametrize("m_c", [0, 0x41414100, 0x414141FF])
def test_reference_rejects_missing_terminator(m_c: int) -> None:
    with pytest.raises(ValueError, match="padding terminator"):
        sha256.compress_reference(0, 0, m_c)


def test_compress_block_rejects_wrong_length() -> None:
    with pytest.raises(ValueError, match="64 bytes"):
        sha256.compress_block(b"\x00" * 63)


def test_compress_block_matches_hashlib_for_empty_message() -> None:
    block = b"\x80" + b"\x00" * 63
    expected = struct.unpack(">8I", hashlib.sha256(b"").digest())
    assert sha256.compress_block(block) == expected


def test_prefix_midstate() -> None:
    assert sha256.PREFIX_ROUNDS == 11
    assert sha256.PREFIX_MIDSTATE == sha256.midstate(sha256.PREFIX_WORDS, 11)
    assert sha256.midstate(sha256.PREFIX_WORDS, 0) == sha256.INITIAL_STATE
    with pytest.raises(ValueError):
        sha256.midstate(sha256.PREFIX_WORDS, 12)
