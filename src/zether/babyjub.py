"""
Zether - BabyJubJub Curve Arithmetic

Twisted Edwards curve embedded in the BN254 scalar field, as used by
circomlib circuits:

    a*x^2 + y^2 = 1 + d*x^2*y^2   (mod p)

All key and ciphertext arithmetic in this package goes through a single
immutable CurveContext. The context is built lazily on first use by
get_curve() and shared afterwards; callers may also thread an explicit
context through every function that accepts one.
"""

import threading
from dataclasses import dataclass
from typing import Any

# =============================================================================
# Curve Parameters (circomlib)
# =============================================================================

FIELD_MODULUS = 21888242871839275222246405745257275088548364400416034343698204186575808495617
CURVE_A = 168700
CURVE_D = 168696

# Prime order of the subgroup generated by BASE8 (full curve order is 8x this)
SUBGROUP_ORDER = 2736030358979909402780800718157159386076813972158567259200215660948447373041

BASE8_X = 5299619240641551281634865583518297030282874472190772894086521144482721001553
BASE8_Y = 16950150798460657717958625567821834550301663161624707787222815936182638968203


@dataclass(frozen=True)
class Point:
    """An affine point on BabyJubJub. The neutral element is (0, 1)."""

    x: int
    y: int

    def to_strings(self) -> list[str]:
        """Encode as a pair of decimal field-element strings."""
        return [str(self.x), str(self.y)]

    def to_tuple(self) -> tuple[int, int]:
        return (self.x, self.y)

    def to_dict(self) -> dict[str, str]:
        return {"x": str(self.x), "y": str(self.y)}

    @classmethod
    def from_strings(cls, coords: Any) -> "Point":
        """
        Decode a point from [x, y] (decimal or 0x-hex strings, or ints) or {"x", "y"}.

        Raises:
            ValueError: If the coordinates cannot be parsed
        """
        if isinstance(coords, Point):
            return coords
        if isinstance(coords, dict):
            coords = (coords["x"], coords["y"])
        if len(coords) != 2:
            raise ValueError(f"Expected two coordinates, got {len(coords)}")
        return cls(_parse_field_element(coords[0]), _parse_field_element(coords[1]))

    @property
    def is_identity(self) -> bool:
        return self.x == 0 and self.y == 1


IDENTITY = Point(0, 1)


def _parse_field_element(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("Boolean is not a field element")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        return int(text, 16) if text.lower().startswith("0x") else int(text)
    raise ValueError(f"Unsupported coordinate type: {type(value).__name__}")


# =============================================================================
# Curve Context
# =============================================================================


@dataclass(frozen=True)
class CurveContext:
    """
    Immutable curve parameters plus the group law.

    Scalars are plain Python ints; no floating point is ever involved.
    """

    p: int = FIELD_MODULUS
    a: int = CURVE_A
    d: int = CURVE_D
    order: int = SUBGROUP_ORDER
    base: Point = Point(BASE8_X, BASE8_Y)

    @property
    def identity(self) -> Point:
        return IDENTITY

    def is_on_curve(self, point: Point) -> bool:
        """Check the curve equation for a point."""
        p = self.p
        if not (0 <= point.x < p and 0 <= point.y < p):
            return False
        x2 = point.x * point.x % p
        y2 = point.y * point.y % p
        return (self.a * x2 + y2) % p == (1 + self.d * x2 * y2) % p

    def in_subgroup(self, point: Point) -> bool:
        """Check that a point lies in the prime-order subgroup generated by the base."""
        return self.is_on_curve(point) and self.mul(point, self.order).is_identity

    def add(self, p1: Point, p2: Point) -> Point:
        """
        Add two points with the (complete) twisted Edwards addition law.

        x3 = (x1*y2 + y1*x2) / (1 + d*x1*x2*y1*y2)
        y3 = (y1*y2 - a*x1*x2) / (1 - d*x1*x2*y1*y2)
        """
        p = self.p
        x1, y1 = p1.x, p1.y
        x2, y2 = p2.x, p2.y

        x1x2 = x1 * x2 % p
        y1y2 = y1 * y2 % p
        dxy = self.d * x1x2 % p * y1y2 % p

        x_num = (x1 * y2 + y1 * x2) % p
        y_num = (y1y2 - self.a * x1x2) % p
        x3 = x_num * pow((1 + dxy) % p, -1, p) % p
        y3 = y_num * pow((1 - dxy) % p, -1, p) % p
        return Point(x3, y3)

    def neg(self, point: Point) -> Point:
        return Point((-point.x) % self.p, point.y)

    def sub(self, p1: Point, p2: Point) -> Point:
        return self.add(p1, self.neg(p2))

    def double(self, point: Point) -> Point:
        return self.add(point, point)

    def mul(self, point: Point, scalar: int) -> Point:
        """
        Scalar multiplication by double-and-add.

        Negative scalars multiply the negated point. The scalar is not reduced,
        so the result is correct for points outside the prime subgroup too.
        """
        if scalar < 0:
            return self.mul(self.neg(point), -scalar)

        result = IDENTITY
        addend = point
        while scalar:
            if scalar & 1:
                result = self.add(result, addend)
            addend = self.double(addend)
            scalar >>= 1
        return result

    def mul_base(self, scalar: int) -> Point:
        """Multiply the base point (Base8) by a scalar."""
        return self.mul(self.base, scalar)


# =============================================================================
# Initialize-once accessor
# =============================================================================

_curve: CurveContext | None = None
_curve_lock = threading.Lock()


def get_curve() -> CurveContext:
    """
    Get the shared BabyJubJub context, building it on first call.

    The context is immutable, so sharing it across threads and accounts is safe.
    """
    global _curve
    if _curve is None:
        with _curve_lock:
            if _curve is None:
                curve = CurveContext()
                if not curve.is_on_curve(curve.base):
                    raise RuntimeError("BabyJubJub base point failed the curve equation")
                _curve = curve
    return _curve
