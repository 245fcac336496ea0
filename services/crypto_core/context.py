# services/crypto_core/context.py
# One explicit object carrying the hash and curve used by every core
# operation. Callers may inject their own (tests do); otherwise a single
# process-wide default is built on first use.
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from services.crypto_core.babyjub import BabyJubjub
from services.crypto_core.poseidon import poseidon_hash

HashFn = Callable[[Sequence[int]], int]


@dataclass(frozen=True)
class CryptoContext:
    poseidon: HashFn = poseidon_hash
    curve: BabyJubjub = field(default_factory=BabyJubjub)

    def hash(self, *inputs: int) -> int:
        return self.poseidon(list(inputs))


_default: Optional[CryptoContext] = None
_lock = threading.Lock()


def default_context() -> CryptoContext:
    global _default
    if _default is None:
        with _lock:
            if _default is None:
                _default = CryptoContext()
    return _default


def resolve(ctx: Optional[CryptoContext]) -> CryptoContext:
    return ctx if ctx is not None else default_context()
