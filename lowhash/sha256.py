# sha256.py  •  one-block SHA-256 over the fixed 55-byte search message
#
# Block layout (16 big-endian words):
#   w0..w10   44-byte prefix
#   w11       tag        (wave id code)
#   w12       lane code  (lane id code)
#   w13       tail       3 free symbols + 0x80 padding terminator
#   w14, w15  message length in bits (440)

from __future__ import annotations

import struct
from typing import Sequence, Tuple

import numpy as np

from . import alphabet
from .digest import Digest

# ---------- constants ----------
ROUND_CONSTANTS: Tuple[int, ...] = (
    0x428A2F98, 0x71374491, 0xB5C0FBCF, 0xE9B5DBA5, 0x3956C25B, 0x59F111F1, 0x923F82A4, 0xAB1C5ED5,
    0xD807AA98, 0x12835B01, 0x243185BE, 0x550C7DC3, 0x72BE5D74, 0x80DEB1FE, 0x9BDC06A7, 0xC19BF174,
    0xE49B69C1, 0xEFBE4786, 0x0FC19DC6, 0x240CA1CC, 0x2DE92C6F, 0x4A7484AA, 0x5CB0A9DC, 0x76F988DA,
    0x983E5152, 0xA831C66D, 0xB00327C8, 0xBF597FC7, 0xC6E00BF3, 0xD5A79147, 0x06CA6351, 0x14292967,
    0x27B70A85, 0x2E1B2138, 0x4D2C6DFC, 0x53380D13, 0x650A7354, 0x766A0ABB, 0x81C2C92E, 0x92722C85,
    0xA2BFE8A1, 0xA81A664B, 0xC24B8B70, 0xC76C51A3, 0xD192E819, 0xD6990624, 0xF40E3585, 0x106AA070,
    0x19A4C116, 0x1E376C08, 0x2748774C, 0x34B0BCB5, 0x391C0CB3, 0x4ED8AA4A, 0x5B9CCA4F, 0x682E6FF3,
    0x748F82EE, 0x78A5636F, 0x84C87814, 0x8CC70208, 0x90BEFFFA, 0xA4506CEB, 0xBEF9A3F7, 0xC67178F2,
)

INITIAL_STATE: Tuple[int, ...] = (
    0x6A09E667, 0xBB67AE85, 0x3C6EF372, 0xA54FF53A,
    0x510E527F, 0x9B05688C, 0x1F83D9AB, 0x5BE0CD19,
)

PREFIX = b"lowhash:sha256-minimum-search:namespace:v01:"
assert len(PREFIX) == 44, "prefix must fill exactly 11 words"

PREFIX_WORDS: Tuple[int, ...] = struct.unpack(">11I", PREFIX)
PAD_BYTE = 0x80
MESSAGE_BYTES = len(PREFIX) + 4 + 4 + 3              # 55
LENGTH_WORDS: Tuple[int, int] = (0, MESSAGE_BYTES * 8)
BLOCK_BYTES = 64

_MASK = 0xFFFFFFFF


# ---------- message layout ----------
def tail_word(i: int, j: int, k: int) -> int:
    """Tail word for symbol indices (outer, middle, inner)."""
    s = alphabet.SYMBOLS
    return (ord(s[i]) << 24) | (ord(s[j]) << 16) | (ord(s[k]) << 8) | PAD_BYTE


def check_tail(m_c: int) -> None:
    if m_c & 0xFF != PAD_BYTE or not 0 <= m_c <= _MASK:
        raise ValueError(f"tail word {m_c:#010x} lacks the 0x80 padding terminator")


def message_words(m_a: int, m_b: int, m_c: int) -> Tuple[int, ...]:
    return PREFIX_WORDS + (m_a, m_b, m_c) + LENGTH_WORDS


def message_bytes(m_a: int, m_b: int, m_c: int) -> bytes:
    """The 55 message bytes that the block pads."""
    return PREFIX + struct.pack(">II", m_a, m_b) + struct.pack(">I", m_c)[:3]


# ---------- reference engine ----------
def _rotr(x, n):
    return ((x >> n) | (x << (32 - n))) & _MASK


def _sigma0(x):
    return _rotr(x, 7) ^ _rotr(x, 18) ^ (x >> 3)


def _sigma1(x):
    return _rotr(x, 17) ^ _rotr(x, 19) ^ (x >> 10)


def _Sigma0(x):
    return _rotr(x, 2) ^ _rotr(x, 13) ^ _rotr(x, 22)


def _Sigma1(x):
    return _rotr(x, 6) ^ _rotr(x, 11) ^ _rotr(x, 25)


def _round(state: Sequence[int], k: int, w: int) -> Tuple[int, ...]:
    a, b, c, d, e, f, g, h = state
    t1 = (h + _Sigma1(e) + ((e & f) ^ (~e & g)) + k + w) & _MASK
    t2 = (_Sigma0(a) + ((a & b) ^ (a & c) ^ (b & c))) & _MASK
    return ((t1 + t2) & _MASK, a, b, c, (d + t1) & _MASK, e, f, g)


def compress_block(block: bytes) -> Digest:
    """Single SHA-256 compression of one 64-byte block from the initial state."""
    if len(block) != BLOCK_BYTES:
        raise ValueError(f"block must be exactly {BLOCK_BYTES} bytes, got {len(block)}")

    w = list(struct.unpack(">16I", block)) + [0] * 48
    for i in range(16, 64):
        w[i] = (_sigma1(w[i - 2]) + w[i - 7] + _sigma0(w[i - 15]) + w[i - 16]) & _MASK

    state: Tuple[int, ...] = INITIAL_STATE
    for i in range(64):
        state = _round(state, ROUND_CONSTANTS[i], w[i])

    return tuple((s + v) & _MASK for s, v in zip(INITIAL_STATE, state))


def compress_reference(m_a: int, m_b: int, m_c: int) -> Digest:
    """Reference digest of the search message; used to verify reported hits."""
    check_tail(m_c)
    return compress_block(struct.pack(">16I", *message_words(m_a, m_b, m_c)))


def midstate(words: Sequence[int], rounds: int) -> Tuple[int, ...]:
    """Working state after the first *rounds* rounds over leading *words*."""
    if rounds > len(words) or rounds > 16:
        raise ValueError("midstate needs one known word per round, at most 16")
    state: Tuple[int, ...] = INITIAL_STATE
    for i in range(rounds):
        state = _round(state, ROUND_CONSTANTS[i], words[i])
    return state


PREFIX_ROUNDS = len(PREFIX_WORDS)
PREFIX_MIDSTATE: Tuple[int, ...] = midstate(PREFIX_WORDS, PREFIX_ROUNDS)


# ---------- throughput engine (numpy) ----------
_K = np.array(ROUND_CONSTANTS, dtype=np.uint32)
_IV = np.array(INITIAL_STATE, dtype=np.uint32)
_SHIFTS = {n: np.uint32(n) for n in range(33)}


def _vrotr(x: np.ndarray, n: int) -> np.ndarray:
    return (x >> _SHIFTS[n]) | (x << _SHIFTS[32 - n])


def _vsigma0(x):
    return _vrotr(x, 7) ^ _vrotr(x, 18) ^ (x >> _SHIFTS[3])


def _vsigma1(x):
    return _vrotr(x, 17) ^ _vrotr(x, 19) ^ (x >> _SHIFTS[10])


def _vSigma0(x):
    return _vrotr(x, 2) ^ _vrotr(x, 13) ^ _vrotr(x, 22)


def _vSigma1(x):
    return _vrotr(x, 6) ^ _vrotr(x, 11) ^ _vrotr(x, 25)


def compress_many(m_a: int, m_b: int, m_c) -> np.ndarray:
    """Digests for one (tag, lane code) pair and an array of tail words.

    Returns a ``(8, n)`` uint32 array. Rounds over the constant prefix are
    taken from :data:`PREFIX_MIDSTATE`; the message schedule lives in a
    rolling 16-word buffer, since each new word only reads the previous 16.
    """
    tails = np.atleast_1d(np.asarray(m_c, dtype=np.uint32))
    n = tails.shape[0]

    w = [np.full(n, v, dtype=np.uint32) for v in message_words(m_a, m_b, 0)]
    w[13] = tails.copy()
    a, b, c, d, e, f, g, h = (np.full(n, v, dtype=np.uint32) for v in PREFIX_MIDSTATE)

    for t in range(PREFIX_ROUNDS, 64):
        if t >= 16:
            w[t & 15] = (
                w[t & 15]
                + _vsigma0(w[(t - 15) & 15])
                + w[(t - 7) & 15]
                + _vsigma1(w[(t - 2) & 15])
            )
        t1 = h + _vSigma1(e) + ((e & f) ^ (~e & g)) + _K[t] + w[t & 15]
        t2 = _vSigma0(a) + ((a & b) ^ (a & c) ^ (b & c))
        h, g, f, e, d, c, b, a = g, f, e, d + t1, c, b, a, t1 + t2

    return np.stack([a, b, c, d, e, f, g, h]) + _IV[:, None]


def compress(m_a: int, m_b: int, m_c: int) -> Digest:
    return tuple(int(x) for x in compress_many(m_a, m_b, m_c)[:, 0])
