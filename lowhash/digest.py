"""Ordering of SHA-256 digests held as 8 big-endian 32-bit words."""

from __future__ import annotations

from typing import Tuple

import numpy as np

Digest = Tuple[int, int, int, int, int, int, int, int]

DIGEST_WORDS = 8
_WORST: Digest = (0xFFFFFFFF,) * DIGEST_WORDS


def less_than(a: Digest, b: Digest) -> bool:
    # word 0 is most significant; first differing word decides
    for x, y in zip(a, b):
        if x != y:
            return x < y
    return False


def worst_digest() -> Digest:
    return _WORST


def to_hex(d: Digest) -> str:
    return " ".join(f"{w:08x}" for w in d)


def to_int(d: Digest) -> int:
    """The digest as a 256-bit integer, for diagnostics and tests."""
    x = 0
    for w in d:
        x = (x << 32) | w
    return x


def argmin(words: np.ndarray) -> int:
    """Index of the smallest digest in an ``(8, n)`` word array.

    Narrows the candidate set one word at a time, so ties on the leading
    words cost one extra pass each. The lowest index wins a full tie.
    """
    idx = np.arange(words.shape[1])
    for row in words:
        col = row[idx]
        idx = idx[col == col.min()]
        if idx.size == 1:
            break
    return int(idx[0])
