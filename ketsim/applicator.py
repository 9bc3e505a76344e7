# applicator.py

"""
Routes a gate descriptor to the right in-place kernel and wraps every
top-level application in STARTED/DONE computation events.

Routing order:
    '!' in the descriptor    -> partial measurement of that qubit
    'u' / 'd'                -> fixed projector [1 1, 0 0] / [0 0, 1 1]
    one target qubit         -> anti-diagonal, diagonal or general 2x2
    several target qubits    -> N x N kernel (snapshot variant by default)
"""

import enum
import logging
from dataclasses import dataclass

import numpy as np

from ketsim import kernels
from ketsim.amplitudes import RegisterState
from ketsim.errors import DimensionMismatchError, IrreversibleStepError
from ketsim.events import EventAction, EventDispatcher
from ketsim.gate import GateDescriptor
from ketsim.matrix import DenseMatrix, parse_matrix
from ketsim.measurement import partial_measurement
from ketsim.precision import DEFAULT_PRECISION, Precision

logger = logging.getLogger(__name__)

PREPARE_UP = "[1 1, 0 0]"
PREPARE_DOWN = "[0 0, 1 1]"


class Kernel(enum.Enum):
    IDENTITY = "identity"
    MEASUREMENT = "measurement"
    PREPARATION = "preparation"
    GENERAL_2X2 = "2x2"
    DIAGONAL = "diagonal"
    ANTIDIAGONAL = "antidiagonal"
    NXN = "nxn"
    NXN_SNAPSHOT = "nxn-snapshot"


@dataclass(frozen=True)
class ApplyResult:
    """
    What a gate application did. outcome and probability are set for
    measurement steps only.
    """
    kernel: Kernel
    outcome: int = None
    probability: float = None


class GateApplicator:
    """
    Applies gates to register states in place.

    nxn_strategy selects the multi-target kernel: "snapshot" reads every
    input from one copy of the amplitudes taken before the pass,
    "buffered" copies only the current group of amplitudes.
    """

    def __init__(self, precision: Precision = DEFAULT_PRECISION,
                 rng: np.random.Generator = None,
                 dispatcher: EventDispatcher = None,
                 nxn_strategy: str = "snapshot"):
        if nxn_strategy not in ("snapshot", "buffered"):
            raise ValueError(f"Unknown N x N strategy '{nxn_strategy}'")
        self.precision = precision
        self.rng = rng if rng is not None else np.random.default_rng()
        self.dispatcher = dispatcher if dispatcher is not None else EventDispatcher()
        self.nxn_strategy = nxn_strategy

    def _check(self, gate: GateDescriptor, state: RegisterState):
        if not isinstance(gate, GateDescriptor):
            raise TypeError(f"Gate descriptor expected, got {type(gate).__name__}")
        if not isinstance(state, RegisterState):
            raise TypeError(f"Register state expected, got {type(state).__name__}")
        if gate.n != state.n:
            raise DimensionMismatchError(
                f"gate acts on {gate.n} qubits, register has {state.n}"
            )

    def select_kernel(self, gate: GateDescriptor, error: DenseMatrix = None) -> Kernel:
        emb = gate.embedding()
        if emb.measured is not None:
            return Kernel.MEASUREMENT
        if emb.preparation is not None:
            return Kernel.PREPARATION
        if emb.ms == 0:
            return Kernel.IDENTITY
        if emb.ms == 1:
            if error is not None:
                return Kernel.GENERAL_2X2
            matrix = gate.get_matrix()
            p = self.precision
            if matrix.get_element(0, 0).is_zero(p) and matrix.get_element(1, 1).is_zero(p):
                return Kernel.ANTIDIAGONAL
            if matrix.get_element(0, 1).is_zero(p) and matrix.get_element(1, 0).is_zero(p):
                return Kernel.DIAGONAL
            return Kernel.GENERAL_2X2
        if self.nxn_strategy == "buffered":
            return Kernel.NXN
        return Kernel.NXN_SNAPSHOT

    def apply(self, gate: GateDescriptor, state: RegisterState,
              error: DenseMatrix = None) -> ApplyResult:
        """
        Apply gate to state in place. error is an optional 2x2 matrix that
        multiplies a single-target gate's matrix from the right to model an
        operational error.
        """
        self._check(gate, state)
        kernel = self.select_kernel(gate, error)
        self.dispatcher.fire(gate, state, EventAction.STARTED)
        try:
            result = self._run(kernel, gate, state, error)
        finally:
            self.dispatcher.fire(gate, state, EventAction.DONE)
        logger.debug("applied %s to %d qubits with %s kernel", gate, state.n, kernel.value)
        return result

    def _run(self, kernel: Kernel, gate: GateDescriptor, state: RegisterState,
             error: DenseMatrix) -> ApplyResult:
        emb = gate.embedding()
        if kernel is Kernel.MEASUREMENT:
            outcome, probability = partial_measurement(state, emb.measured, self.rng)
            return ApplyResult(kernel, outcome, probability)
        if kernel is Kernel.IDENTITY:
            return ApplyResult(kernel)
        if kernel is Kernel.PREPARATION:
            projector = parse_matrix(PREPARE_UP if emb.preparation == "u" else PREPARE_DOWN)
            kernels.apply_2x2(emb, projector, state)
            return ApplyResult(kernel)
        matrix = gate.get_matrix()
        if kernel is Kernel.GENERAL_2X2:
            if error is not None:
                matrix = matrix.matmul(error)
            kernels.apply_2x2(emb, matrix, state)
        elif kernel is Kernel.DIAGONAL:
            kernels.apply_diagonal(emb, matrix, state)
        elif kernel is Kernel.ANTIDIAGONAL:
            kernels.apply_antidiagonal(emb, matrix, state)
        elif kernel is Kernel.NXN:
            kernels.apply_nxn(emb, matrix, state)
        elif kernel is Kernel.NXN_SNAPSHOT:
            kernels.apply_nxn_snapshot(emb, matrix, state)
        else:
            raise TypeError(f"Unhandled kernel {kernel}")
        return ApplyResult(kernel)

    def apply_backward(self, gate: GateDescriptor, state: RegisterState,
                       error: DenseMatrix = None) -> ApplyResult:
        """
        Undo a unitary gate: toggle its transpose and conjugate views, apply,
        and toggle them back.
        """
        if not gate.is_unitary_step():
            raise IrreversibleStepError(f"{gate} is not reversible")
        gate.transpose()
        gate.conjugate()
        try:
            return self.apply(gate, state, error)
        finally:
            gate.conjugate()
            gate.transpose()
