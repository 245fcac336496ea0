"""
Poseidon permutation hash over the BN254 scalar field.

Width t = n_inputs + 1, S-box x^5, 8 full rounds and a width-dependent
number of partial rounds. Round constants and the Cauchy MDS matrix come
from the Grain LFSR parameter procedure of the Poseidon reference
implementation (field=1, sbox=0, n=254). Parameters are generated once per
width and cached for the life of the process.

The state layout follows the circom convention: state = [0, *inputs],
output = state[0] after the final mix.
"""
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Iterator, List, Sequence, Tuple

from services.crypto_core.field import FIELD_MODULUS

FULL_ROUNDS: int = 8
# Partial rounds indexed by width t (t = 2 .. 17).
PARTIAL_ROUNDS: Tuple[int, ...] = (56, 57, 56, 60, 60, 63, 64, 63, 60, 66, 60, 65, 70, 60, 64, 68)
FIELD_SIZE_BITS: int = 254
MAX_INPUTS: int = len(PARTIAL_ROUNDS)


@dataclass(frozen=True)
class PoseidonParams:
    t: int
    full_rounds: int
    partial_rounds: int
    round_constants: Tuple[int, ...]
    mds: Tuple[Tuple[int, ...], ...]


def _grain_bits(t: int, full_rounds: int, partial_rounds: int) -> Iterator[int]:
    """Self-shrinking Grain LFSR seeded with the parameter description."""
    init = (
        format(1, "02b")                    # prime field
        + format(0, "04b")                  # x^alpha S-box
        + format(FIELD_SIZE_BITS, "012b")
        + format(t, "012b")
        + format(full_rounds, "010b")
        + format(partial_rounds, "010b")
        + "1" * 30
    )
    state = 0
    for k, ch in enumerate(init):
        if ch == "1":
            state |= 1 << k

    def step() -> int:
        nonlocal state
        bit = ((state >> 62) ^ (state >> 51) ^ (state >> 38) ^ (state >> 23) ^ (state >> 13) ^ state) & 1
        state = (state >> 1) | (bit << 79)
        return bit

    for _ in range(160):
        step()

    while True:
        sel = step()
        while sel == 0:
            step()
            sel = step()
        yield step()


def _grain_int(bits: Iterator[int], n: int) -> int:
    out = 0
    for _ in range(n):
        out = (out << 1) | next(bits)
    return out


@lru_cache(maxsize=None)
def get_params(t: int) -> PoseidonParams:
    if t < 2 or t - 2 >= len(PARTIAL_ROUNDS):
        raise ValueError(f"Unsupported Poseidon width t={t}")
    p = FIELD_MODULUS
    partial_rounds = PARTIAL_ROUNDS[t - 2]
    bits = _grain_bits(t, FULL_ROUNDS, partial_rounds)

    constants: List[int] = []
    for _ in range((FULL_ROUNDS + partial_rounds) * t):
        value = _grain_int(bits, FIELD_SIZE_BITS)
        while value >= p:
            value = _grain_int(bits, FIELD_SIZE_BITS)
        constants.append(value)

    while True:
        draws = [_grain_int(bits, FIELD_SIZE_BITS) % p for _ in range(2 * t)]
        while len(set(draws)) != len(draws):
            draws = [_grain_int(bits, FIELD_SIZE_BITS) % p for _ in range(2 * t)]
        xs, ys = draws[:t], draws[t:]
        if any((x + y) % p == 0 for x in xs for y in ys):
            continue
        mds = tuple(tuple(pow(x + y, -1, p) for y in ys) for x in xs)
        break

    return PoseidonParams(
        t=t,
        full_rounds=FULL_ROUNDS,
        partial_rounds=partial_rounds,
        round_constants=tuple(constants),
        mds=mds,
    )


def _sbox(x: int) -> int:
    p = FIELD_MODULUS
    x2 = x * x % p
    return x2 * x2 % p * x % p


def permute(state: Sequence[int], params: PoseidonParams) -> List[int]:
    p = FIELD_MODULUS
    t = params.t
    if len(state) != t:
        raise ValueError(f"State width {len(state)} != t={t}")
    s = [v % p for v in state]
    half = params.full_rounds // 2
    rounds = params.full_rounds + params.partial_rounds
    rc = params.round_constants
    mds = params.mds
    for r in range(rounds):
        base = r * t
        s = [(s[i] + rc[base + i]) % p for i in range(t)]
        if r < half or r >= half + params.partial_rounds:
            s = [_sbox(v) for v in s]
        else:
            s[0] = _sbox(s[0])
        s = [sum(row[j] * s[j] for j in range(t)) % p for row in mds]
    return s


def poseidon_hash(inputs: Sequence[int]) -> int:
    """Hash 1..16 field elements to one field element."""
    if not inputs:
        raise ValueError("Poseidon needs at least one input")
    if len(inputs) > MAX_INPUTS:
        raise ValueError(f"Poseidon supports at most {MAX_INPUTS} inputs")
    params = get_params(len(inputs) + 1)
    return permute([0, *[int(v) % FIELD_MODULUS for v in inputs]], params)[0]
