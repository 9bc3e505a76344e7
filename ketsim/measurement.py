"""
measurement.py

Full and single-qubit projective measurement, and the probability / phase
distributions of an arbitrary subset of qubits (read without collapsing).
"""

import logging
import math

import numpy as np

from ketsim.amplitudes import RegisterState
from ketsim.gate import Embedding, free_steps, target_offsets
from ketsim.kernels import apply_2x2
from ketsim.matrix import DenseMatrix
from ketsim.scalar import ZERO, Scalar

logger = logging.getLogger(__name__)


class Measurement:
    """
    Full measurement in the computational basis. The probability of the
    latest outcome is kept in last_probability.
    """

    def __init__(self, rng: np.random.Generator = None):
        self.rng = rng if rng is not None else np.random.default_rng()
        self.last_probability = 0.0
        self.last_index = None

    def _sample(self, state: RegisterState) -> int:
        sample = self.rng.random()
        running = 0.0
        last_present = None
        for i, amp in enumerate(state.data):
            if amp is None:
                continue
            last_present = i
            running += amp.magnitude_squared()
            if running > sample:
                return i
        if last_present is None:
            raise ValueError("cannot measure the zero vector")
        # running sum fell short of the sample through round-off
        return last_present

    def apply(self, state: RegisterState) -> RegisterState:
        """
        Draw an outcome with the Born rule and return the collapsed basis
        state. The input state is left untouched.
        """
        index = self._sample(state)
        self.last_index = index
        self.last_probability = state.get(index).magnitude_squared()
        logger.info("measured %s with probability %.6g",
                    RegisterState.basis_string(index, state.n, state.bra),
                    self.last_probability)
        return RegisterState.basis(index, state.n, state.bra)

    def collapse(self, state: RegisterState) -> int:
        """Measure and collapse state in place. Returns the basis index."""
        collapsed = self.apply(state)
        state.data = collapsed.data
        return self.last_index

    def __str__(self):
        return "measurement"


def _single_qubit_embedding(n: int, qubit: int) -> Embedding:
    pos = n - qubit - 1
    jokers = tuple(n - k - 1 for k in range(n) if k != qubit)
    return Embedding(n, 0, 0, (pos,), jokers)


def zero_probability(state: RegisterState, qubit: int) -> float:
    """Marginal probability that qubit reads 0."""
    emb = _single_qubit_embedding(state.n, qubit)
    data = state.data
    total = 0.0
    for step in free_steps(emb.joker_weights):
        amp = data[step]
        if amp is not None:
            total += amp.magnitude_squared()
    return total


def partial_measurement(state: RegisterState, qubit: int,
                        rng: np.random.Generator = None):
    """
    Measure one qubit, collapse the state and renormalise it in a single
    pass through the 2x2 kernel.

    Requires:
         0 <= qubit < state.n
    Ensures:
         Returns (outcome, probability) with outcome 0 or 1.
    """
    if not 0 <= qubit < state.n:
        raise IndexError(f"Qubit index {qubit} out of range")
    rng = rng if rng is not None else np.random.default_rng()
    p0 = zero_probability(state, qubit)
    sample = rng.random()
    projector = DenseMatrix(2, 2)
    if p0 > sample:
        outcome, probability = 0, p0
        projector.set_element(0, 0, Scalar(1.0 / math.sqrt(p0)))
    else:
        outcome, probability = 1, 1.0 - p0
        projector.set_element(1, 1, Scalar(1.0 / math.sqrt(probability)))
    apply_2x2(_single_qubit_embedding(state.n, qubit), projector, state)
    logger.info("qubit %d measured as %d with probability %.6g", qubit, outcome, probability)
    return outcome, probability


def _pattern_weights(n: int, qubits):
    qubits = list(qubits)
    if len(set(qubits)) != len(qubits):
        raise ValueError("qubits must be distinct")
    for q in qubits:
        if not 0 <= q < n:
            raise IndexError(f"Qubit index {q} out of range")
    selected = tuple(1 << (n - q - 1) for q in qubits)
    rest = tuple(1 << (n - k - 1) for k in range(n) if k not in qubits)
    return selected, rest


def prob_distribution(state: RegisterState, qubits) -> np.ndarray:
    """
    Probability of each of the 2**k patterns of the given qubits (pattern
    index bits follow the order of qubits, first qubit most significant),
    summed over all other qubits.
    """
    selected, rest = _pattern_weights(state.n, qubits)
    data = state.data
    out = np.zeros(1 << len(selected), dtype=float)
    for i, offset in enumerate(target_offsets(selected)):
        prob = 0.0
        for step in free_steps(rest):
            amp = data[offset + step]
            if amp is not None:
                prob += amp.magnitude_squared()
        out[i] = prob
    return out


def phase_distribution(state: RegisterState, qubits) -> np.ndarray:
    """
    Sum of the amplitudes of each pattern of the given qubits; the real and
    imaginary parts are what the phase charts display.
    """
    selected, rest = _pattern_weights(state.n, qubits)
    data = state.data
    out = np.zeros(1 << len(selected), dtype=complex)
    for i, offset in enumerate(target_offsets(selected)):
        phase = ZERO
        for step in free_steps(rest):
            amp = data[offset + step]
            if amp is not None:
                phase = phase.plus(amp)
        out[i] = phase.to_complex()
    return out
