"""
amplitudes.py

Sparse amplitude vectors and the bra/ket register state built on them.
An entry of None is an exact zero; reads through get() always return a
Scalar, writes through set_raw() may store None.
"""

import math
import re

import numpy as np

from ketsim.errors import DimensionMismatchError, ParseError
from ketsim.precision import DEFAULT_PRECISION, Precision
from ketsim.scalar import ONE, ZERO, Scalar, parse_complex


class AmplitudeVector:
    """
    Dense list of optional Scalars. transposed=False is a row vector (the
    default [a b c] literal), transposed=True a column vector.
    """

    def __init__(self, dimension: int, transposed: bool = False):
        if dimension < 0:
            raise ValueError("dimension must not be negative")
        self.dimension = dimension
        self.transposed = transposed
        self.data = [None] * dimension

    @classmethod
    def from_values(cls, values, transposed: bool = False):
        vec = cls(len(values), transposed)
        for i, value in enumerate(values):
            vec.set_raw(i, _as_entry(value))
        return vec

    def clone(self):
        """
        Copy with entries that are exactly zero dropped to None.
        """
        new = AmplitudeVector(self.dimension, self.transposed)
        new.data = [None if (c is None or c.is_exact_zero()) else c for c in self.data]
        return new

    def get(self, index: int) -> Scalar:
        if not 0 <= index < self.dimension:
            raise IndexError(f"Amplitude index {index} out of range")
        value = self.data[index]
        return ZERO if value is None else value

    def set_raw(self, index: int, value):
        if not 0 <= index < self.dimension:
            raise IndexError(f"Amplitude index {index} out of range")
        self.data[index] = value

    def transpose(self):
        self.transposed = not self.transposed

    def conjugate(self):
        self.data = [None if c is None else c.conjugate() for c in self.data]

    def negative(self):
        self.data = [None if c is None else c.negative() for c in self.data]

    def norm_squared(self) -> float:
        return sum(c.magnitude_squared() for c in self.data if c is not None)

    def norm(self) -> float:
        return math.sqrt(self.norm_squared())

    def inner(self, other: "AmplitudeVector") -> Scalar:
        """
        Hermitian inner product <self|other>: the entries of self are
        conjugated, absent entries on either side contribute nothing.
        """
        if self.dimension != other.dimension:
            raise DimensionMismatchError(
                f"inner product of dimension {self.dimension} and {other.dimension}"
            )
        re_acc, im_acc = 0.0, 0.0
        for a, b in zip(self.data, other.data):
            if a is None or b is None:
                continue
            re_acc += a.re * b.re + a.im * b.im
            im_acc += a.re * b.im - a.im * b.re
        return Scalar(re_acc, im_acc)

    def equals(self, other, precision: Precision = DEFAULT_PRECISION) -> bool:
        if not isinstance(other, AmplitudeVector):
            return False
        if self.dimension != other.dimension or self.transposed != other.transposed:
            return False
        return all(self.get(i).equals(other.get(i), precision)
                   for i in range(self.dimension))

    def __eq__(self, other):
        if not isinstance(other, AmplitudeVector):
            return NotImplemented
        return self.equals(other)

    __hash__ = None

    def __len__(self):
        return self.dimension

    def to_numpy(self) -> np.ndarray:
        out = np.zeros(self.dimension, dtype=complex)
        for i, c in enumerate(self.data):
            if c is not None:
                out[i] = complex(c.re, c.im)
        return out

    def to_string(self, precision: Precision = DEFAULT_PRECISION) -> str:
        sep = "\n" if self.transposed else "\t"
        return "[" + sep.join(self.get(i).to_string(precision)
                              for i in range(self.dimension)) + "]"

    def to_parseable_string(self) -> str:
        body = " ".join(self.get(i).to_parseable_string() for i in range(self.dimension))
        return f"[{body}]" + ("'" if self.transposed else "")

    def __str__(self):
        return self.to_string()

    def __repr__(self):
        return f"AmplitudeVector({self.to_parseable_string()})"


class RegisterState(AmplitudeVector):
    """
    State of an n-qubit register in the computational basis, dimension 2**n.
    A ket is a column vector; a bra is its row-vector dual. Transposing flips
    both the orientation and bra/ket-ness.
    """

    def __init__(self, n: int, bra: bool = False):
        if n < 0:
            raise ValueError("number of qubits must not be negative")
        super().__init__(1 << n, transposed=not bra)
        self.n = n

    @property
    def bra(self) -> bool:
        return not self.transposed

    def is_bra(self) -> bool:
        return self.bra

    @classmethod
    def basis(cls, state: int, n: int, bra: bool = False) -> "RegisterState":
        """
        Basis state |state> (or <state|): one amplitude 1, all others absent.
        """
        reg = cls(n, bra)
        if not 0 <= state < reg.dimension:
            raise IndexError(f"Basis state {state} out of range for {n} qubits")
        reg.data[state] = ONE
        return reg

    @classmethod
    def from_vector(cls, vec: AmplitudeVector) -> "RegisterState":
        """
        A vector of power-of-two length becomes a ket if it is a column
        vector and a bra otherwise.
        """
        dim = vec.dimension
        if dim < 1 or dim & (dim - 1):
            raise DimensionMismatchError(f"invalid vector dimension {dim}")
        reg = cls(dim.bit_length() - 1, bra=not vec.transposed)
        reg.data = list(vec.data)
        return reg

    @classmethod
    def from_numpy(cls, array, bra: bool = False) -> "RegisterState":
        array = np.asarray(array, dtype=complex).ravel()
        dim = array.shape[0]
        if dim < 1 or dim & (dim - 1):
            raise DimensionMismatchError(f"invalid vector dimension {dim}")
        reg = cls(dim.bit_length() - 1, bra)
        for i, amp in enumerate(array):
            if amp != 0:
                reg.data[i] = Scalar(amp.real, amp.imag)
        return reg

    def clone(self) -> "RegisterState":
        new = RegisterState(self.n, self.bra)
        new.data = [None if (c is None or c.is_exact_zero()) else c for c in self.data]
        return new

    def dagger(self) -> "RegisterState":
        """Conjugate transpose: a ket becomes the matching bra and vice versa."""
        new = self.clone()
        new.transpose()
        new.conjugate()
        return new

    def normalize(self):
        norm = self.norm()
        if norm == 0:
            return
        scale = 1.0 / norm
        self.data = [None if c is None else c.times(scale) for c in self.data]

    def snapshot(self) -> tuple:
        return tuple(self.data)

    def equals(self, other, precision: Precision = DEFAULT_PRECISION) -> bool:
        if not isinstance(other, RegisterState) or other.n != self.n:
            return False
        return super().equals(other, precision)

    @staticmethod
    def basis_string(index: int, n: int, bra: bool) -> str:
        bits = format(index, f"0{n}b") if n else ""
        return f"<{bits}|" if bra else f"|{bits}>"

    def to_string(self, precision: Precision = DEFAULT_PRECISION, limit: int = None) -> str:
        """
        Expansion into weighted basis states. When limit is given the
        output stops once it has grown to at least limit characters.
        """
        parts = []
        length = 0
        for i, factor in enumerate(self.data):
            if limit is not None and length >= limit:
                break
            if factor is None:
                continue
            re_c = precision.clamp(factor.re)
            im_c = precision.clamp(factor.im)
            ket = self.basis_string(i, self.n, self.bra)
            if im_c == 0 and re_c != 0:
                term = (" + " if re_c > 0 else " ") + f"{factor.to_string(precision)}*{ket}"
            elif re_c == 0 and im_c != 0:
                term = (" + " if im_c > 0 else " ") + f"{factor.to_string(precision)}*{ket}"
            elif re_c != 0 and im_c != 0:
                term = f" + ({factor.to_string(precision)})*{ket}"
            else:
                continue
            parts.append(term)
            length += len(term)
        text = "".join(parts)
        return text if text else "0"

    def to_parseable_string(self) -> str:
        """
        Literal accepted by parse_state: a single basis ket when the state
        is a basis state, otherwise a weighted sum at machine precision.
        """
        present = [(i, c) for i, c in enumerate(self.data) if c is not None]
        if len(present) == 1 and present[0][1].re == 1 and present[0][1].im == 0:
            return self.basis_string(present[0][0], self.n, self.bra)
        if not present:
            return f"(0)*{self.basis_string(0, self.n, self.bra)}"
        return " + ".join(f"({c.to_parseable_string()})*{self.basis_string(i, self.n, self.bra)}"
                          for i, c in present)

    def __str__(self):
        return self.to_string()

    def __repr__(self):
        return f"RegisterState({self.to_parseable_string()})"


def _as_entry(value):
    if value is None:
        return None
    if not isinstance(value, Scalar):
        value = Scalar.from_complex(value)
    return None if value.is_exact_zero() else value


# ----------------------------------------------------------------------
# Literal parsing
# ----------------------------------------------------------------------

_BASIS_RE = re.compile(r"(\|[^|<>]*>|<[^|<>]*\|)")


def parse_vector(text: str) -> AmplitudeVector:
    """
    Parse [a b c] (row vector) or [a b c]' (column vector).
    """
    source = text
    text = text.strip()
    transposed = text.endswith("'")
    if transposed:
        text = text[:-1].rstrip()
    if len(text) < 2 or text[0] != "[" or text[-1] != "]":
        raise ParseError("proper brackets expected", source, 0)
    if "," in text:
        raise ParseError("vector literal must not contain ','", source, source.find(","))
    body = text[1:-1]
    start = source.find("[") + 1
    values = []
    for m in re.finditer(r"\S+", body):
        try:
            values.append(parse_complex(m.group(0)))
        except ParseError as exc:
            raise ParseError(exc.message, source, start + m.start()) from exc
    return AmplitudeVector.from_values(values, transposed)


def _parse_basis(token: str, source: str, position: int):
    """Returns (index, n, bra) for |bits>, <bits|, |+>, |->, <+|, <-|."""
    bra = token.startswith("<")
    bits = token[1:-1].strip()
    if bits in ("+", "-"):
        return (0 if bits == "+" else 1), 1, bra
    if not bits or any(ch not in "01" for ch in bits):
        brackets = "<|" if bra else "|>"
        raise ParseError(f"binary number in between {brackets} expected", source, position)
    return int(bits, 2), len(bits), bra


def parse_state(text: str) -> RegisterState:
    """
    Parse a register state literal.

    Accepts a single basis state (|0101>, <11|, |+>, <-|) or a weighted
    sum of basis states such as (0.5)*|00> + (0.5i)*|11> - 0.5*|01>.
    All terms must agree on the number of qubits and on bra/ket.
    """
    source = text
    text = text.strip()
    if not text:
        raise ParseError("register state expected", source, 0)
    pos = source.find(text)
    end = pos + len(text)
    state = None
    while pos < end:
        while pos < end and source[pos].isspace():
            pos += 1
        sign = 1.0
        if state is not None:
            if source[pos] not in "+-":
                raise ParseError("'+' or '-' expected between terms", source, pos)
            sign = -1.0 if source[pos] == "-" else 1.0
            pos += 1
        elif source[pos] == "-" and source[pos + 1:pos + 2] in ("(", "|", "<"):
            sign = -1.0
            pos += 1
        while pos < end and source[pos].isspace():
            pos += 1
        if pos >= end:
            raise ParseError("term expected", source, pos)
        coefficient = ONE
        if source[pos] == "(":
            close = source.find(")", pos)
            if close == -1:
                raise ParseError("')' expected", source, pos)
            try:
                coefficient = parse_complex(source[pos + 1:close])
            except ParseError as exc:
                raise ParseError(exc.message, source, pos + 1) from exc
            pos = close + 1
            while pos < end and source[pos].isspace():
                pos += 1
            if pos >= end or source[pos] != "*":
                raise ParseError("'*' expected", source, pos)
            pos += 1
        elif source[pos] not in "|<":
            star = source.find("*", pos)
            if star == -1:
                raise ParseError("'*' expected after coefficient", source, pos)
            try:
                coefficient = parse_complex(source[pos:star])
            except ParseError as exc:
                raise ParseError(exc.message, source, pos) from exc
            pos = star + 1
        while pos < end and source[pos].isspace():
            pos += 1
        m = _BASIS_RE.match(source, pos)
        if not m:
            raise ParseError("basis state |bits> or <bits| expected", source, pos)
        index, n, bra = _parse_basis(m.group(0), source, pos)
        if state is None:
            state = RegisterState(n, bra)
        elif state.n != n or state.bra != bra:
            raise ParseError("terms disagree on qubit count or bra/ket", source, pos)
        coefficient = coefficient.times(sign)
        value = coefficient if state.data[index] is None else state.data[index].plus(coefficient)
        state.data[index] = None if value.is_exact_zero() else value
        pos = m.end()
    return state
