"""62-symbol printable codes for wave and lane ids."""

from __future__ import annotations

import string

SYMBOLS = string.ascii_uppercase + string.ascii_lowercase + string.digits
BASE = len(SYMBOLS)                 # 62
CODE_LEN = 4
CODE_SPACE = BASE ** CODE_LEN       # 14_776_336

_INDEX = {ch: i for i, ch in enumerate(SYMBOLS)}


def encode(x: int) -> str:
    """Render *x* as a 4-symbol code, most significant digit first."""
    if not 0 <= x < CODE_SPACE:
        raise ValueError(f"id {x} outside code space [0, {CODE_SPACE})")
    out = []
    for _ in range(CODE_LEN):
        x, r = divmod(x, BASE)
        out.append(SYMBOLS[r])
    return "".join(reversed(out))


def decode(code: str) -> int:
    if len(code) != CODE_LEN:
        raise ValueError(f"code must be {CODE_LEN} symbols, got {code!r}")
    x = 0
    for ch in code:
        try:
            x = x * BASE + _INDEX[ch]
        except KeyError:
            raise ValueError(f"symbol {ch!r} not in alphabet") from None
    return x


def encode_word(x: int) -> int:
    """Code of *x* as a big-endian 32-bit word of its ASCII bytes."""
    return int.from_bytes(encode(x).encode("ascii"), "big")


def decode_word(word: int) -> int:
    """Inverse of encode_word; used by tests and when inspecting slot rows by hand."""
    if not 0 <= word <= 0xFFFFFFFF:
        raise ValueError(f"word {word:#x} is not a 32-bit value")
    return decode(word.to_bytes(CODE_LEN, "big").decode("ascii", errors="replace"))
