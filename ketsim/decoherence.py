"""
decoherence.py

Phenomenological amplitude damping. When a damping step happens, a single
qubit interacts with an environment qubit:

    |0>|0> -> |0>|0>
    |1>|0> -> sqrt(p)|1>|0> + sqrt(1-p)|0>|1>

with 1-p the decay probability. If the qubit decays, every amplitude with
the qubit excited moves to the matching ground pattern and the state is
renormalised.
"""

import logging
import math
from dataclasses import dataclass

import numpy as np

from ketsim.amplitudes import RegisterState
from ketsim.gate import free_steps

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecoherenceResult:
    triggered: bool
    qubit: int = -1
    decayed: bool = False


class Decoherence:
    """
    preset_qubit fixes the qubit that decoheres; -1 picks one at random for
    every damping step. last_qubit and decay_occurred describe the most
    recent step.
    """

    def __init__(self, rng: np.random.Generator = None, preset_qubit: int = -1):
        self.rng = rng if rng is not None else np.random.default_rng()
        self.preset_qubit = preset_qubit
        self.last_qubit = -1
        self.decay_occurred = False

    def decohere(self, state: RegisterState, decay: float, qubit: int) -> bool:
        """
        With probability decay the qubit relaxes to |0>. Returns True if a
        decay occurred; a qubit that is already entirely in |0> reports no
        decay and the state is left untouched.
        """
        if not 0 <= qubit < state.n:
            raise IndexError(f"Qubit index {qubit} out of range")
        self.last_qubit = -1
        self.decay_occurred = False
        if self.rng.random() >= decay:
            return False
        n = state.n
        offset = 1 << (n - qubit - 1)
        others = tuple(1 << (n - k - 1) for k in range(n) if k != qubit)
        data = state.data
        moved = False
        norm = 0.0
        for step in free_steps(others):
            amp = data[step + offset]
            if amp is None:
                continue
            data[step] = amp
            data[step + offset] = None
            norm += amp.magnitude_squared()
            moved = True
        # already in |0>
        if not moved:
            return False
        if norm > 0:
            scale = math.sqrt(1.0 / norm)
            if scale != 1.0:
                for i, amp in enumerate(data):
                    if amp is not None:
                        data[i] = amp.times(scale)
        self.last_qubit = qubit
        self.decay_occurred = True
        return True

    def apply(self, state: RegisterState, rate: float, decay: float,
              qubit: int = None) -> DecoherenceResult:
        """
        One decoherence opportunity: with probability rate a damping step
        happens on qubit (or on the preset / a random qubit).
        """
        if qubit is None:
            qubit = self.preset_qubit if self.preset_qubit != -1 else int(self.rng.integers(state.n))
        if self.rng.random() >= rate:
            self.last_qubit = -1
            self.decay_occurred = False
            return DecoherenceResult(False)
        decayed = self.decohere(state, decay, qubit)
        if decayed:
            logger.info("qubit %d decayed.", qubit)
        else:
            logger.info("qubit %d remained.", qubit)
        return DecoherenceResult(True, qubit, decayed)

    def apply_properties(self, state: RegisterState, properties) -> DecoherenceResult:
        """
        Read rate and decay from a circuit properties bag; decay defaults to
        0.5 and a missing rate means no decoherence at all.
        """
        rate = properties.get("rate")
        if rate is None:
            return DecoherenceResult(False)
        decay = properties.get("decay")
        return self.apply(state, float(rate), 0.5 if decay is None else float(decay))

    def __str__(self):
        return "decoherence"
