# kernel.py  •  OpenCL source for one search wave
#
# One work item is one lane. A lane sweeps all 62**3 tails for its
# (wave, lane) pair, keeps a private best, then the work group reduces to a
# single slot written by local id 0.

from __future__ import annotations

from typing import List, Tuple

from . import alphabet, sha256

KERNEL_TMPL = r"""
#define ROTR(x, n)    rotate((uint)(x), (uint)(32 - (n)))
#define S0(x)         (ROTR(x, 2) ^ ROTR(x, 13) ^ ROTR(x, 22))
#define S1(x)         (ROTR(x, 6) ^ ROTR(x, 11) ^ ROTR(x, 25))
#define s0(x)         (ROTR(x, 7) ^ ROTR(x, 18) ^ ((x) >> 3))
#define s1(x)         (ROTR(x, 17) ^ ROTR(x, 19) ^ ((x) >> 10))
#define CH(e, f, g)   bitselect((g), (f), (e))
#define MAJ(a, b, c)  (((a) & (b)) | ((c) & ((a) | (b))))

#define BASE        <<BASE>>u
#define PAD_BYTE    0x80u
#define BIT_LENGTH  <<BIT_LENGTH>>u
#define FIRST_ROUND <<PREFIX_ROUNDS>>
#define SLOT_WORDS  <<SLOT_WORDS>>
#define LANE_WORDS  (SLOT_WORDS - 1)

__constant uint K[64]        = { <<ROUND_CONSTANTS>> };
__constant uint IV[8]        = { <<INITIAL_STATE>> };
__constant uint PREFIX_W[11] = { <<PREFIX_WORDS>> };
__constant uint MID[8]       = { <<PREFIX_MIDSTATE>> };
__constant uchar SYMBOLS[<<BASE>>] = { <<SYMBOLS>> };

uint encode_word(uint x)
{
    uint word = 0u;
    for (uint i = 0u; i < 4u; ++i) {
        word |= (uint)SYMBOLS[x % BASE] << (8u * i);
        x /= BASE;
    }
    return word;
}

void compress(const uint m_a, const uint m_b, const uint m_c, uint *out)
{
    uint w[16];
    for (int i = 0; i < FIRST_ROUND; ++i) w[i] = PREFIX_W[i];
    w[11] = m_a;
    w[12] = m_b;
    w[13] = m_c;
    w[14] = 0u;
    w[15] = BIT_LENGTH;

    uint a = MID[0], b = MID[1], c = MID[2], d = MID[3];
    uint e = MID[4], f = MID[5], g = MID[6], h = MID[7];

    #pragma unroll
    for (int t = FIRST_ROUND; t < 64; ++t) {
        if (t >= 16)
            w[t & 15] += s0(w[(t - 15) & 15]) + w[(t - 7) & 15] + s1(w[(t - 2) & 15]);
        const uint t1 = h + S1(e) + CH(e, f, g) + K[t] + w[t & 15];
        const uint t2 = S0(a) + MAJ(a, b, c);
        h = g; g = f; f = e; e = d + t1;
        d = c; c = b; b = a; a = t1 + t2;
    }

    out[0] = a + IV[0]; out[1] = b + IV[1]; out[2] = c + IV[2]; out[3] = d + IV[3];
    out[4] = e + IV[4]; out[5] = f + IV[5]; out[6] = g + IV[6]; out[7] = h + IV[7];
}

int digest_less(const uint *a, const uint *b)
{
    for (int i = 0; i < 8; ++i)
        if (a[i] != b[i]) return a[i] < b[i];
    return 0;
}

int digest_less_local(__local const uint *a, __local const uint *b)
{
    for (int i = 0; i < 8; ++i)
        if (a[i] != b[i]) return a[i] < b[i];
    return 0;
}

__kernel void search_wave(const uint wave_id,
                          const uint slot,
                          __global uint *group_best)
{
    __local uint scratch[LANES_PER_GROUP * LANE_WORDS];

    const uint lid  = get_local_id(0);
    const uint lane = get_global_id(0);
    const uint m_a  = encode_word(wave_id);
    const uint m_b  = encode_word(lane);

    uint h[8], best[8];
    uint best_tail = <<FIRST_TAIL>>u;
    for (int q = 0; q < 8; ++q) best[q] = 0xFFFFFFFFu;

    // private sweep: no shared state until the barrier below
    for (uint i = 0u; i < BASE; ++i) {
        for (uint j = 0u; j < BASE; ++j) {
            for (uint k = 0u; k < BASE; ++k) {
                const uint m_c = ((uint)SYMBOLS[i] << 24) | ((uint)SYMBOLS[j] << 16)
                               | ((uint)SYMBOLS[k] << 8) | PAD_BYTE;
                compress(m_a, m_b, m_c, h);
                if (digest_less(h, best)) {
                    for (int q = 0; q < 8; ++q) best[q] = h[q];
                    best_tail = m_c;
                }
            }
        }
    }

    __local uint *mine = scratch + lid * LANE_WORDS;
    mine[0] = lane;
    mine[1] = best_tail;
    for (int q = 0; q < 8; ++q) mine[2 + q] = best[q];
    barrier(CLK_LOCAL_MEM_FENCE);

    // pairwise tree; ties keep the lower lane
    for (uint s = 1u; s < LANES_PER_GROUP; s <<= 1) {
        if ((lid % (2u * s)) == 0u && lid + s < LANES_PER_GROUP) {
            __local uint *other = scratch + (lid + s) * LANE_WORDS;
            if (digest_less_local(other + 2, mine + 2))
                for (int q = 0; q < LANE_WORDS; ++q) mine[q] = other[q];
        }
        barrier(CLK_LOCAL_MEM_FENCE);
    }

    if (lid == 0u) {
        __global uint *out = group_best
            + ((size_t)slot * get_num_groups(0) + get_group_id(0)) * SLOT_WORDS;
        out[0] = wave_id;
        for (int q = 0; q < LANE_WORDS; ++q) out[1 + q] = scratch[q];
    }
}
"""

SLOT_WORDS = 11     # wave, lane, tail, d0..d7


def _words(values) -> str:
    return ", ".join(f"0x{v:08x}u" for v in values)


def render_kernel(lanes_per_group: int) -> Tuple[str, List[str]]:
    """Fill the constant tables into the template; returns (source, build options)."""
    src = KERNEL_TMPL

    def repl(tag: str, value: str):
        nonlocal src
        src = src.replace(tag, value)

    repl("<<BASE>>", str(alphabet.BASE))
    repl("<<BIT_LENGTH>>", str(sha256.LENGTH_WORDS[1]))
    repl("<<PREFIX_ROUNDS>>", str(sha256.PREFIX_ROUNDS))
    repl("<<SLOT_WORDS>>", str(SLOT_WORDS))
    repl("<<ROUND_CONSTANTS>>", _words(sha256.ROUND_CONSTANTS))
    repl("<<INITIAL_STATE>>", _words(sha256.INITIAL_STATE))
    repl("<<PREFIX_WORDS>>", _words(sha256.PREFIX_WORDS))
    repl("<<PREFIX_MIDSTATE>>", _words(sha256.PREFIX_MIDSTATE))
    repl("<<SYMBOLS>>", ", ".join(str(ord(ch)) for ch in alphabet.SYMBOLS))
    repl("<<FIRST_TAIL>>", f"0x{sha256.tail_word(0, 0, 0):08x}")

    return src, ["-D", f"LANES_PER_GROUP={lanes_per_group}u"]
