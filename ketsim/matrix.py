# matrix.py

"""
Dense complex matrices with lazy transpose/conjugate views, the matrix
registry that gate literals resolve names against, and the standard 2x2
operators (Pauli, Hadamard, rotations, operational noise).
"""

import math
import re

import numpy as np

from ketsim.errors import DimensionMismatchError, ParseError
from ketsim.precision import DEFAULT_PRECISION, Precision
from ketsim.scalar import ONE, ZERO, Scalar, parse_complex


class DenseMatrix:
    """
    n rows x m columns of Scalars. transpose() and conjugate() only toggle
    flags; every access through get_element/set_element resolves them, so
    the stored rows are never copied. negative() is the exception and
    rewrites all entries.
    """

    def __init__(self, n: int, m: int = None):
        if m is None:
            m = n
        if n < 0 or m < 0:
            raise ValueError("matrix dimensions must not be negative")
        self._n = n
        self._m = m
        self.data = [[ZERO] * m for _ in range(n)]
        self.transposed = False
        self.conjugated = False

    @classmethod
    def identity(cls, n: int) -> "DenseMatrix":
        mat = cls(n, n)
        for i in range(n):
            mat.data[i][i] = ONE
        return mat

    @classmethod
    def from_rows(cls, rows) -> "DenseMatrix":
        rows = [list(r) for r in rows]
        if not rows:
            return cls(0, 0)
        width = len(rows[0])
        if any(len(r) != width for r in rows):
            raise DimensionMismatchError("matrix rows have different dimensions")
        mat = cls(len(rows), width)
        for i, row in enumerate(rows):
            mat.data[i] = [v if isinstance(v, Scalar) else Scalar.from_complex(v) for v in row]
        return mat

    @classmethod
    def from_numpy(cls, array) -> "DenseMatrix":
        array = np.asarray(array, dtype=complex)
        if array.ndim != 2:
            raise DimensionMismatchError("2-D array expected")
        return cls.from_rows(array.tolist())

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def n(self) -> int:
        """Number of rows after the transpose flag is applied."""
        return self._m if self.transposed else self._n

    def m(self) -> int:
        """Number of columns after the transpose flag is applied."""
        return self._n if self.transposed else self._m

    def transpose(self):
        self.transposed = not self.transposed

    def conjugate(self):
        self.conjugated = not self.conjugated

    def view(self) -> "DenseMatrix":
        """
        New matrix object sharing this matrix's storage, with its own
        copy of the view flags.
        """
        other = DenseMatrix.__new__(DenseMatrix)
        other._n = self._n
        other._m = self._m
        other.data = self.data
        other.transposed = self.transposed
        other.conjugated = self.conjugated
        return other

    def copy(self) -> "DenseMatrix":
        """Physical copy with the view flags materialised."""
        return DenseMatrix.from_rows(
            [[self.get_element(i, j) for j in range(self.m())] for i in range(self.n())]
        )

    def get_element(self, row: int, col: int) -> Scalar:
        if self.transposed:
            row, col = col, row
        value = self.data[row][col]
        return value.conjugate() if self.conjugated else value

    def set_element(self, row: int, col: int, value):
        if not isinstance(value, Scalar):
            value = Scalar.from_complex(value)
        if self.transposed:
            row, col = col, row
        self.data[row][col] = value.conjugate() if self.conjugated else value

    def negative(self):
        for i in range(self.n()):
            for j in range(self.m()):
                self.set_element(i, j, self.get_element(i, j).negative())

    # ------------------------------------------------------------------
    # Algebra
    # ------------------------------------------------------------------

    def matmul(self, other: "DenseMatrix") -> "DenseMatrix":
        if self.m() != other.n():
            raise DimensionMismatchError(
                f"cannot multiply {self.n()}x{self.m()} by {other.n()}x{other.m()}"
            )
        rows = []
        for i in range(self.n()):
            row = []
            for j in range(other.m()):
                re_acc, im_acc = 0.0, 0.0
                for k in range(self.m()):
                    a = self.get_element(i, k)
                    b = other.get_element(k, j)
                    re_acc += a.re * b.re - a.im * b.im
                    im_acc += a.re * b.im + a.im * b.re
                row.append(Scalar(re_acc, im_acc))
            rows.append(row)
        return DenseMatrix.from_rows(rows)

    __matmul__ = matmul

    def norm(self) -> float:
        """Largest entry magnitude."""
        best = 0.0
        for i in range(self.n()):
            for j in range(self.m()):
                best = max(best, self.get_element(i, j).magnitude())
        return best

    def is_unitary(self, precision: Precision = DEFAULT_PRECISION) -> bool:
        if self.n() != self.m():
            return False
        adjoint = self.view()
        adjoint.transpose()
        adjoint.conjugate()
        product = adjoint.matmul(self)
        return product.equals(DenseMatrix.identity(self.n()), precision.with_internal_digits(
            max(1, precision.internal_digits - 2)))

    def equals(self, other, precision: Precision = DEFAULT_PRECISION) -> bool:
        if not isinstance(other, DenseMatrix):
            return False
        if self.n() != other.n() or self.m() != other.m():
            return False
        return all(self.get_element(i, j).equals(other.get_element(i, j), precision)
                   for i in range(self.n()) for j in range(self.m()))

    def __eq__(self, other):
        if not isinstance(other, DenseMatrix):
            return NotImplemented
        return self.equals(other)

    __hash__ = None

    def to_numpy(self) -> np.ndarray:
        return np.array([[self.get_element(i, j).to_complex() for j in range(self.m())]
                         for i in range(self.n())], dtype=complex).reshape(self.n(), self.m())

    # ------------------------------------------------------------------
    # String conversion
    # ------------------------------------------------------------------

    def to_string(self, precision: Precision = DEFAULT_PRECISION) -> str:
        lines = ["\t".join(self.get_element(i, j).to_string(precision) for j in range(self.m()))
                 for i in range(self.n())]
        return "\n".join(lines)

    def to_parseable_string(self) -> str:
        rows = [" ".join(self.get_element(i, j).to_parseable_string() for j in range(self.m()))
                for i in range(self.n())]
        return "[" + ", ".join(rows) + "]"

    def __str__(self):
        return self.to_string()

    def __repr__(self):
        return f"DenseMatrix({self.to_parseable_string()})"


def parse_matrix(text: str) -> DenseMatrix:
    """
    Parse [a b c, d e f, g h i]: rows separated by commas, entries by
    whitespace. Every row must have the same number of entries.
    """
    source = text
    text = text.strip()
    start = source.find(text) if text else 0
    if len(text) < 2 or text[0] != "[" or text[-1] != "]":
        raise ParseError("proper brackets expected", source, start)
    rows = []
    pos = start + 1
    for chunk in text[1:-1].split(","):
        row = []
        for m in re.finditer(r"\S+", chunk):
            try:
                row.append(parse_complex(m.group(0)))
            except ParseError as exc:
                raise ParseError(exc.message, source, pos + m.start()) from exc
        if not row:
            raise ParseError("empty matrix row", source, pos)
        if rows and len(row) != len(rows[0]):
            raise ParseError("matrix rows have different dimensions", source, pos)
        rows.append(row)
        pos += len(chunk) + 1
    return DenseMatrix.from_rows(rows)


# ----------------------------------------------------------------------
# Standard operators
# ----------------------------------------------------------------------

def rx(theta: float) -> DenseMatrix:
    c, s = math.cos(theta / 2), math.sin(theta / 2)
    return DenseMatrix.from_rows([[c, 1j * s], [1j * s, c]])


def ry(theta: float) -> DenseMatrix:
    c, s = math.cos(theta / 2), math.sin(theta / 2)
    return DenseMatrix.from_rows([[c, s], [-s, c]])


def rz(theta: float) -> DenseMatrix:
    return DenseMatrix.from_rows([[complex(math.cos(theta / 2), -math.sin(theta / 2)), 0],
                                  [0, complex(math.cos(theta / 2), math.sin(theta / 2))]])


def ph(delta: float) -> DenseMatrix:
    """Global phase exp(i*delta) on a single qubit."""
    phase = complex(math.cos(delta), math.sin(delta))
    return DenseMatrix.from_rows([[phase, 0], [0, phase]])


def noise_error(sigma: float, rng: np.random.Generator) -> DenseMatrix:
    """
    Infinitesimal 2x2 rotation modelling an operational error. Three Euler
    angles and a phase are drawn from a Gaussian of width sigma.
    """
    eps1_2 = sigma * rng.standard_normal() / 2.0
    eps2_2 = sigma * rng.standard_normal() / 2.0
    eps3_2 = sigma * rng.standard_normal() / 2.0
    eps4 = sigma * rng.standard_normal()
    cos, sin = math.cos(eps2_2), math.sin(eps2_2)
    cos_p, sin_p = math.cos(eps1_2 + eps3_2), math.sin(eps1_2 + eps3_2)
    cos_m, sin_m = math.cos(eps1_2 - eps3_2), math.sin(eps1_2 - eps3_2)
    phase_cos, phase_sin = math.cos(eps4), math.sin(eps4)
    return DenseMatrix.from_rows([
        [Scalar(phase_cos * cos_p * cos, -phase_sin * sin_p * cos),
         Scalar(cos_m * sin, -sin_m * sin)],
        [Scalar(-phase_cos * cos_m * sin, -phase_sin * sin_m * sin),
         Scalar(cos_p * cos, sin_p * cos)],
    ])


class MatrixRegistry:
    """
    Name -> matrix lookup used by gate descriptors. Gates keep only the
    name, so re-registering a name changes what existing gates apply.
    """

    PRESETS = {
        "NOT": [[0, 1], [1, 0]],
        "sigma_x": [[0, 1], [1, 0]],
        "sigma_y": [[0, -1j], [1j, 0]],
        "sigma_z": [[1, 0], [0, -1]],
        "H": (np.array([[1, 1], [1, -1]], dtype=complex) / np.sqrt(2)).tolist(),
    }

    def __init__(self, presets: bool = True):
        self._matrices = {}
        if presets:
            for name, rows in self.PRESETS.items():
                self._matrices[name] = DenseMatrix.from_rows(rows)

    def register(self, name: str, matrix: DenseMatrix):
        if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
            raise ValueError(f"Invalid matrix name '{name}'")
        self._matrices[name] = matrix

    def unregister(self, name: str):
        self._matrices.pop(name, None)

    def __contains__(self, name):
        return name in self._matrices

    def names(self):
        return sorted(self._matrices)

    def lookup(self, name: str) -> DenseMatrix:
        """
        Returns the registered matrix, or parses name as an inline matrix
        literal when it is bracketed. Raises KeyError for unknown names.
        """
        name = name.strip()
        if name.startswith("["):
            return parse_matrix(name)
        if name not in self._matrices:
            raise KeyError(f"Unknown matrix '{name}'")
        return self._matrices[name]
