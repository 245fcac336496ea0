"""
Baby Jubjub: the twisted Edwards curve a*x^2 + y^2 = 1 + d*x^2*y^2 embedded
in the BN254 scalar field.

Points are exchanged as affine (x, y) tuples. Scalar multiplication runs in
extended coordinates (X:Y:Z:T) with the unified HWCD addition law, which is
complete on this curve (a square, d non-square), so the only inversion per
multiplication is the final affine conversion.
"""
from __future__ import annotations

from typing import Tuple

from services.crypto_core.field import FIELD_MODULUS

Point = Tuple[int, int]
_Extended = Tuple[int, int, int, int]

A: int = 168700
D: int = 168696
SUBGROUP_ORDER: int = 2736030358979909402780800718157159386076813972158567259200215660948447373041
COFACTOR: int = 8
BASE8: Point = (
    5299619240641551281634865583518297030282874472190772894086521144482721001553,
    16950150798460657717958625567821834550301663161624707787222815936182638968203,
)
IDENTITY: Point = (0, 1)


class BabyJubjub:
    """Curve operations bound to one parameter set."""

    def __init__(self, p: int = FIELD_MODULUS, a: int = A, d: int = D,
                 base: Point = BASE8, order: int = SUBGROUP_ORDER):
        self.p = p
        self.a = a
        self.d = d
        self.base = base
        self.order = order

    # ---------- affine helpers ----------
    def is_on_curve(self, point: Point) -> bool:
        p = self.p
        x, y = point[0] % p, point[1] % p
        x2, y2 = x * x % p, y * y % p
        return (self.a * x2 + y2) % p == (1 + self.d * x2 * y2) % p

    def add(self, p1: Point, p2: Point) -> Point:
        return self._to_affine(self._add(self._from_affine(p1), self._from_affine(p2)))

    def negate(self, point: Point) -> Point:
        return ((-point[0]) % self.p, point[1] % self.p)

    def mul(self, point: Point, scalar: int) -> Point:
        if scalar < 0:
            return self.mul(self.negate(point), -scalar)
        acc: _Extended = (0, 1, 1, 0)
        base = self._from_affine(point)
        for bit in bin(scalar)[2:] if scalar else "":
            acc = self._add(acc, acc)
            if bit == "1":
                acc = self._add(acc, base)
        return self._to_affine(acc)

    def mul_base(self, scalar: int) -> Point:
        return self.mul(self.base, scalar)

    def reduce_scalar(self, value: int) -> int:
        """Reduce into the subgroup; 0 is replaced by 1 so keys are never the identity."""
        r = value % self.order
        return r if r != 0 else 1

    # ---------- extended coordinates ----------
    def _from_affine(self, point: Point) -> _Extended:
        p = self.p
        x, y = point[0] % p, point[1] % p
        return (x, y, 1, x * y % p)

    def _to_affine(self, point: _Extended) -> Point:
        p = self.p
        X, Y, Z, _ = point
        inv = pow(Z, -1, p)
        return (X * inv % p, Y * inv % p)

    def _add(self, p1: _Extended, p2: _Extended) -> _Extended:
        p = self.p
        X1, Y1, Z1, T1 = p1
        X2, Y2, Z2, T2 = p2
        a_ = X1 * X2 % p
        b_ = Y1 * Y2 % p
        c_ = self.d * T1 % p * T2 % p
        d_ = Z1 * Z2 % p
        e_ = ((X1 + Y1) * (X2 + Y2) - a_ - b_) % p
        f_ = (d_ - c_) % p
        g_ = (d_ + c_) % p
        h_ = (b_ - self.a * a_) % p
        return (e_ * f_ % p, g_ * h_ % p, f_ * g_ % p, e_ * h_ % p)
