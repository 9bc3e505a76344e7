# gate.py

"""
Gate descriptors: a per-qubit symbol string plus the name of the matrix
acting on the target qubits. Writing {-:1:NOT} describes a NOT on the third
of three qubits controlled by the second; {1:-:U:U} a 4x4 matrix U on the
last two of four qubits controlled by the first.

Descriptor symbols:
    -   pass-through (free bit)
    1   control
    m   target row of the acting matrix
    u   force the qubit to |0>
    d   force the qubit to |1>
    !   projective measurement of the qubit
"""

from dataclasses import dataclass

from ketsim.errors import DimensionMismatchError, GateDefinitionError, ParseError
from ketsim.matrix import DenseMatrix, MatrixRegistry

SYMBOLS = "-1mud!"


@dataclass(frozen=True)
class Embedding:
    """
    Decoded position of a gate inside an n-qubit register.

    control_offset  sum of the weights 2**(n-k-1) of all control qubits
    controls        number of control qubits (cs)
    targets         bit positions n-k-1 of the target qubits, descending
    jokers          bit positions of the free qubits, descending
    preparation     'u', 'd' or None
    measured        register index k of the '!' qubit or None
    """
    n: int
    control_offset: int
    controls: int
    targets: tuple
    jokers: tuple
    preparation: str = None
    measured: int = None

    @property
    def ms(self) -> int:
        return len(self.targets)

    @property
    def target_weights(self) -> tuple:
        return tuple(1 << pos for pos in self.targets)

    @property
    def joker_weights(self) -> tuple:
        return tuple(1 << pos for pos in self.jokers)


def decode(descr: str) -> Embedding:
    """
    Scan a descriptor string once and collect controls, targets and free
    bits. Preparation symbols count as the target of the 2x2 projector.
    """
    n = len(descr)
    control_offset = 0
    controls = 0
    targets = []
    jokers = []
    preparation = None
    measured = None
    for k, symbol in enumerate(descr):
        pos = n - k - 1
        if symbol == "1":
            control_offset += 1 << pos
            controls += 1
        elif symbol == "m":
            targets.append(pos)
        elif symbol in "ud":
            targets.append(pos)
            preparation = symbol
        elif symbol == "!":
            measured = k
        elif symbol == "-":
            jokers.append(pos)
        else:
            raise GateDefinitionError(f"Invalid gate symbol '{symbol}'")
    return Embedding(n, control_offset, controls, tuple(targets), tuple(jokers),
                     preparation, measured)


def free_steps(weights):
    """
    Yield every subset sum of weights exactly once.

    A boolean array acts as a binary counter: counter[0] belongs to the
    last (smallest) weight. Each increment flips bits with carry and
    adjusts the running step by the weight of every flipped bit.
    """
    weights = tuple(weights)
    count = len(weights)
    counter = [False] * count
    step = 0
    for _ in range(1 << count):
        yield step
        j = 0
        while j < count:
            weight = weights[count - j - 1]
            counter[j] = not counter[j]
            if counter[j]:
                step += weight
                break
            step -= weight
            j += 1


def target_offsets(weights) -> list:
    """
    Offsets of the 2**ms target combinations. Entry i has the bits of i
    mapped onto the target weights, most significant bit first, so that
    offsets[i] is the register offset of matrix row/column i.
    """
    return list(free_steps(weights))


class GateDescriptor:
    """
    A gate acting on an n-qubit register. The descriptor references its
    matrix by name through a MatrixRegistry; transpose/conjugate/negate
    are view flags resolved whenever the matrix is fetched.
    """

    def __init__(self, descr: str, matrix_name: str = "", registry: MatrixRegistry = None):
        self.descr = descr
        self.n = len(descr)
        self.matrix_name = matrix_name or ""
        self.registry = registry if registry is not None else MatrixRegistry()
        self.transposed = False
        self.conjugated = False
        self.negated = False
        self.matrix_dimension = 0
        self._validate()

    @classmethod
    def identity(cls, n: int, registry: MatrixRegistry = None) -> "GateDescriptor":
        return cls("-" * n, "", registry)

    @classmethod
    def single(cls, n: int, position: int, matrix_name: str,
               registry: MatrixRegistry = None) -> "GateDescriptor":
        """2x2 matrix matrix_name on qubit position of an n-qubit register."""
        if not 0 <= position < n:
            raise IndexError(f"Qubit index {position} out of range")
        descr = "".join("m" if i == position else "-" for i in range(n))
        return cls(descr, matrix_name, registry)

    @classmethod
    def controlled(cls, n: int, controls, targets, matrix_name: str,
                   registry: MatrixRegistry = None) -> "GateDescriptor":
        symbols = ["-"] * n
        for c in controls:
            symbols[c] = "1"
        for t in targets:
            if symbols[t] != "-":
                raise GateDefinitionError(f"Qubit {t} is both control and target")
            symbols[t] = "m"
        return cls("".join(symbols), matrix_name, registry)

    def _validate(self):
        descr = self.descr
        bad = [ch for ch in descr if ch not in SYMBOLS]
        if bad:
            raise GateDefinitionError(f"Invalid gate symbol '{bad[0]}'")
        measurements = descr.count("!")
        preparations = descr.count("u") + descr.count("d")
        controls = descr.count("1")
        targets = descr.count("m")
        if measurements and (measurements > 1 or len(descr) - descr.count("-") > 1):
            raise GateDefinitionError("a measurement gate measures exactly one qubit")
        if preparations and (preparations > 1 or controls or targets):
            raise GateDefinitionError("a preparation gate prepares exactly one qubit")
        if controls and not targets:
            raise GateDefinitionError("control without matrix")
        if targets:
            if not self.matrix_name:
                raise GateDefinitionError("target qubits without matrix")
            matrix = self._lookup()
            if matrix.n() != matrix.m():
                raise DimensionMismatchError(f"matrix '{self.matrix_name}' is not square")
            if matrix.n() != 1 << targets:
                raise DimensionMismatchError(
                    f"matrix '{self.matrix_name}' is {matrix.n()}x{matrix.m()}, "
                    f"{targets} target qubits need {1 << targets}x{1 << targets}"
                )
            self.matrix_dimension = matrix.n()

    def _lookup(self) -> DenseMatrix:
        try:
            return self.registry.lookup(self.matrix_name)
        except KeyError as exc:
            raise GateDefinitionError(f"Unknown matrix '{self.matrix_name}'") from exc

    # ------------------------------------------------------------------
    # Semantics
    # ------------------------------------------------------------------

    def embedding(self) -> Embedding:
        return decode(self.descr)

    def is_measurement(self) -> bool:
        return "!" in self.descr

    def is_preparation(self) -> bool:
        return "u" in self.descr or "d" in self.descr

    def is_unitary_step(self) -> bool:
        return not (self.is_measurement() or self.is_preparation())

    def get_matrix(self) -> DenseMatrix:
        """
        The acting matrix with this gate's view flags applied. Transpose and
        conjugate stay lazy; negation is physical and works on a copy.
        """
        if not self.matrix_name:
            return None
        matrix = self._lookup().view()
        if self.transposed:
            matrix.transpose()
        if self.conjugated:
            matrix.conjugate()
        if self.negated:
            matrix = matrix.copy()
            matrix.negative()
        return matrix

    def set_matrix_name(self, matrix_name: str) -> bool:
        """
        Point the gate at another matrix of the same dimension. Returns
        False and leaves the gate unchanged when the dimensions differ.
        """
        try:
            matrix = self.registry.lookup(matrix_name)
        except (KeyError, ParseError):
            return False
        if matrix.n() != matrix.m() or matrix.n() != self.matrix_dimension:
            return False
        self.matrix_name = matrix_name
        return True

    def transpose(self):
        self.transposed = not self.transposed

    def conjugate(self):
        self.conjugated = not self.conjugated

    def negative(self):
        self.negated = not self.negated

    def clone(self) -> "GateDescriptor":
        new = GateDescriptor(self.descr, self.matrix_name, self.registry)
        new.transposed = self.transposed
        new.conjugated = self.conjugated
        new.negated = self.negated
        return new

    def __eq__(self, other):
        if not isinstance(other, GateDescriptor):
            return NotImplemented
        return (self.descr == other.descr
                and self.matrix_name == other.matrix_name
                and self.transposed == other.transposed
                and self.conjugated == other.conjugated
                and self.negated == other.negated)

    __hash__ = None

    def to_parseable_string(self) -> str:
        tokens = [self.matrix_name if ch == "m" else ch for ch in self.descr]
        return "{" + ":".join(tokens) + "}"

    def __str__(self):
        return self.to_parseable_string()

    def __repr__(self):
        return f"GateDescriptor({self.to_parseable_string()})"


def parse_gate(text: str, registry: MatrixRegistry = None) -> GateDescriptor:
    """
    Parse {s0:s1:...:s(n-1)}. Each token is one of - 1 u d ! or a matrix
    reference (registered name or inline [..] literal); all matrix tokens
    must name the same matrix and become target qubits.
    """
    registry = registry if registry is not None else MatrixRegistry()
    source = text
    text = text.strip()
    start = source.find(text) if text else 0
    if len(text) < 2 or text[0] != "{" or text[-1] != "}":
        raise ParseError("proper brackets expected", source, start)
    body = text[1:-1]
    if not body.strip():
        raise ParseError("empty gate definition", source, start + 1)
    symbols = []
    matrix_name = ""
    pos = start + 1
    for raw in body.split(":"):
        token = raw.strip()
        token_pos = pos + (len(raw) - len(raw.lstrip()))
        pos += len(raw) + 1
        if token in ("-", "1", "u", "d", "!"):
            symbols.append(token)
            continue
        if not token:
            raise ParseError("empty gate entry", source, token_pos)
        if matrix_name and token != matrix_name:
            raise ParseError("matrix mismatch", source, token_pos)
        try:
            registry.lookup(token)
        except KeyError:
            raise ParseError(f"invalid object in gate definition: {token}", source, token_pos)
        except ParseError as exc:
            raise ParseError(exc.message, source, token_pos) from exc
        matrix_name = token
        symbols.append("m")
    try:
        return GateDescriptor("".join(symbols), matrix_name, registry)
    except (GateDefinitionError, DimensionMismatchError) as exc:
        raise ParseError(str(exc), source, start) from exc
