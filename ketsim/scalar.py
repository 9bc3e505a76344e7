# scalar.py

"""
Complex scalar used for every amplitude and matrix entry.

Scalars are immutable: arithmetic returns new values. Sparse amplitude
vectors store None for amplitudes that are exactly zero; the helpers
times_sparse and plus_sparse treat None as algebraic zero without creating
a Scalar for it.
"""

import math
import re

from ketsim.errors import ParseError
from ketsim.precision import DEFAULT_PRECISION, Precision, format_number

_NUMBER = r"(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?"
_REAL_RE = re.compile(rf"^[+-]?{_NUMBER}$")
_IMAG_RE = re.compile(rf"^(?P<sign>[+-]?)(?P<im>{_NUMBER})?i$")
_BOTH_RE = re.compile(
    rf"^(?P<re>[+-]?{_NUMBER})(?P<sign>[+-])(?P<im>{_NUMBER})?i$"
)


class Scalar:
    __slots__ = ("re", "im")

    def __init__(self, re: float = 0.0, im: float = 0.0):
        object.__setattr__(self, "re", float(re))
        object.__setattr__(self, "im", float(im))

    def __setattr__(self, name, value):
        raise AttributeError("Scalar is immutable")

    @classmethod
    def from_complex(cls, value) -> "Scalar":
        value = complex(value)
        return cls(value.real, value.imag)

    def to_complex(self) -> complex:
        return complex(self.re, self.im)

    # ------------------------------------------------------------------
    # Polar representation
    # ------------------------------------------------------------------

    def magnitude_squared(self) -> float:
        return self.re * self.re + self.im * self.im

    def magnitude(self) -> float:
        """
        |z| computed by scaling with the larger component so that the
        intermediate square cannot overflow.
        """
        abs_re = abs(self.re)
        abs_im = abs(self.im)
        if abs_re == 0 and abs_im == 0:
            return 0.0
        if abs_re >= abs_im:
            ratio = self.im / self.re
            return abs_re * math.sqrt(1 + ratio * ratio)
        ratio = self.re / self.im
        return abs_im * math.sqrt(1 + ratio * ratio)

    def angle(self) -> float:
        return math.atan2(self.im, self.re)

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def plus(self, rhs: "Scalar") -> "Scalar":
        return Scalar(self.re + rhs.re, self.im + rhs.im)

    def minus(self, rhs: "Scalar") -> "Scalar":
        return Scalar(self.re - rhs.re, self.im - rhs.im)

    def times(self, rhs) -> "Scalar":
        if isinstance(rhs, Scalar):
            return Scalar(self.re * rhs.re - self.im * rhs.im,
                          self.re * rhs.im + self.im * rhs.re)
        return Scalar(self.re * rhs, self.im * rhs)

    def divided(self, rhs: "Scalar") -> "Scalar":
        """
        Smith's division. Dividing by an exact zero is the caller's
        responsibility and yields inf/nan components.
        """
        c, d = rhs.re, rhs.im
        if c == 0 and d == 0:
            return Scalar(float("nan"), float("nan"))
        if abs(c) >= abs(d):
            ratio = d / c
            denom = c + d * ratio
            return Scalar((self.re + self.im * ratio) / denom,
                          (self.im - self.re * ratio) / denom)
        ratio = c / d
        denom = c * ratio + d
        return Scalar((self.re * ratio + self.im) / denom,
                      (self.im * ratio - self.re) / denom)

    def conjugate(self) -> "Scalar":
        return Scalar(self.re, -self.im if self.im != 0 else 0.0)

    def negative(self) -> "Scalar":
        return Scalar(-self.re if self.re != 0 else 0.0,
                      -self.im if self.im != 0 else 0.0)

    __add__ = plus
    __sub__ = minus

    def __mul__(self, rhs):
        if isinstance(rhs, (Scalar, int, float)):
            return self.times(rhs)
        return NotImplemented

    def __rmul__(self, lhs):
        if isinstance(lhs, (int, float)):
            return self.times(lhs)
        return NotImplemented

    def __truediv__(self, rhs):
        if isinstance(rhs, (int, float)):
            rhs = Scalar(rhs)
        if isinstance(rhs, Scalar):
            return self.divided(rhs)
        return NotImplemented

    def __neg__(self):
        return self.negative()

    # ------------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------------

    def equals(self, other: "Scalar", precision: Precision = DEFAULT_PRECISION) -> bool:
        eps = precision.eps
        return abs(self.re - other.re) < eps and abs(self.im - other.im) < eps

    def is_zero(self, precision: Precision = DEFAULT_PRECISION) -> bool:
        eps = precision.eps
        return abs(self.re) < eps and abs(self.im) < eps

    def is_exact_zero(self) -> bool:
        return self.re == 0 and self.im == 0

    def __eq__(self, other):
        if isinstance(other, (int, float, complex)):
            other = Scalar.from_complex(other)
        if not isinstance(other, Scalar):
            return NotImplemented
        return self.equals(other)

    __hash__ = None

    # ------------------------------------------------------------------
    # String conversion
    # ------------------------------------------------------------------

    def to_string(self, precision: Precision = DEFAULT_PRECISION) -> str:
        re_c = precision.clamp(self.re)
        im_c = precision.clamp(self.im)
        fmt = lambda x: format_number(x, precision.digits)
        if not precision.simple:
            sign = "+" if im_c >= 0 else ""
            return f"{fmt(re_c)}{sign}{fmt(im_c)}i"
        if re_c == 0 and im_c == 0:
            return "0"
        if im_c == 0:
            return fmt(re_c)
        if re_c == 0:
            if im_c == 1:
                return "i"
            if im_c == -1:
                return "-i"
            return f"{fmt(im_c)}i"
        sign = "+" if im_c >= 0 else ""
        return f"{fmt(re_c)}{sign}{fmt(im_c)}i"

    def to_parseable_string(self) -> str:
        """
        Machine-precision literal that parse_complex reads back exactly.
        """
        re_v, im_v = self.re, self.im
        if re_v == 0 and im_v == 0:
            return "0"
        if im_v == 0:
            return repr(re_v)
        if re_v == 0:
            if im_v == 1:
                return "i"
            if im_v == -1:
                return "-i"
            return f"{im_v!r}i"
        sign = "+" if im_v >= 0 else ""
        return f"{re_v!r}{sign}{im_v!r}i"

    def __str__(self):
        return self.to_string()

    def __repr__(self):
        return f"Scalar({self.re!r}, {self.im!r})"


ZERO = Scalar(0.0, 0.0)
ONE = Scalar(1.0, 0.0)


def times_sparse(factor: Scalar, amplitude):
    """
    factor * amplitude where amplitude may be None (exact zero).
    """
    if amplitude is None or factor is None:
        return None
    return factor.times(amplitude)


def plus_sparse(lhs, rhs):
    """
    lhs + rhs where either side may be None (exact zero).
    """
    if lhs is None:
        return rhs
    if rhs is None:
        return lhs
    return lhs.plus(rhs)


def parse_complex(text: str) -> Scalar:
    """
    Parse a complex literal: a+bi, a-bi, bi, -bi, i, -i or a bare real.

    Requires:
         text (str) without surrounding whitespace significance.
    Ensures:
         Returns the Scalar or raises ParseError.
    """
    source = text
    text = text.strip()
    offset = source.find(text) if text else 0
    if not text:
        raise ParseError("complex number expected", source, 0)
    try:
        if _REAL_RE.match(text):
            return Scalar(float(text), 0.0)
        m = _IMAG_RE.match(text)
        if m:
            im = float(m.group("im")) if m.group("im") else 1.0
            return Scalar(0.0, -im if m.group("sign") == "-" else im)
        m = _BOTH_RE.match(text)
        if m:
            im = float(m.group("im")) if m.group("im") else 1.0
            return Scalar(float(m.group("re")), -im if m.group("sign") == "-" else im)
    except ValueError as exc:
        raise ParseError(f"{text} is not a complex number", source, offset) from exc
    position = offset
    for position_in, ch in enumerate(text):
        if ch not in "0123456789.+-eEi":
            position = offset + position_in
            break
    raise ParseError(f"{text} is not a complex number", source, position)
