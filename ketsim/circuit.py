# circuit.py

"""
Circuit driver: steps a sequence of gates forward and backward over a
register state, injects operational and decoherence errors according to
the simulation mode, tracks the fidelity against an error-free reference
state and publishes a snapshot after every completed step.
"""

import enum
import logging
import threading
import time

import numpy as np

from ketsim.amplitudes import RegisterState
from ketsim.applicator import GateApplicator
from ketsim.decoherence import Decoherence
from ketsim.errors import IrreversibleStepError
from ketsim.events import EventAction, EventDispatcher
from ketsim.hilbert import HilbertSpace
from ketsim.matrix import noise_error
from ketsim.precision import DEFAULT_PRECISION, Precision

logger = logging.getLogger(__name__)


class SimulationMode(enum.IntEnum):
    IDEAL = 0
    OPERATIONAL = 1
    DECOHERENCE = 2
    BOTH = 3


class CircuitProperties:
    """
    Property bag of a circuit: mode, sigma (width of the operational
    error), rate (decoherence rate per step) and decay (decay probability).
    """

    def __init__(self, mode=SimulationMode.IDEAL, sigma: float = None,
                 rate: float = None, decay: float = None):
        self.mode = SimulationMode(mode)
        self.sigma = sigma
        self.rate = rate
        self.decay = decay

    def get(self, name, default=None):
        value = getattr(self, name, None)
        return default if value is None else value

    @property
    def operational(self) -> bool:
        return self.mode in (SimulationMode.OPERATIONAL, SimulationMode.BOTH)

    @property
    def decoherent(self) -> bool:
        return self.mode in (SimulationMode.DECOHERENCE, SimulationMode.BOTH)

    def __repr__(self):
        return (f"CircuitProperties(mode={self.mode.name}, sigma={self.sigma}, "
                f"rate={self.rate}, decay={self.decay})")


class Timing:
    """Accumulated wall-clock time over one or more timing intervals."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.steps = 0
        self.elapsed = 0.0
        self._start = None

    @property
    def timing(self) -> bool:
        return self._start is not None

    def start(self):
        self._start = time.perf_counter()

    def stop(self, steps_accomplished: int = 0):
        if self._start is not None:
            self.elapsed += time.perf_counter() - self._start
            self._start = None
        self.steps += steps_accomplished

    def steps_accomplished(self, steps: int):
        self.steps += steps

    def elapsed_seconds(self) -> float:
        if self._start is not None:
            return self.elapsed + (time.perf_counter() - self._start)
        return self.elapsed

    def avg_time_per_step_millis(self) -> float:
        if self.steps == 0:
            return 0.0
        return 1000.0 * self.elapsed_seconds() / self.steps

    def estimate(self, steps: int) -> float:
        """Seconds needed for steps more steps at the current average."""
        return steps * self.avg_time_per_step_millis() / 1000.0


def fidelity(state: RegisterState, reference: RegisterState = None) -> float:
    """
    |<reference|state>|^2, or 1 when there is no reference.
    """
    if reference is None:
        return 1.0
    return reference.inner(state).magnitude_squared()


def _info_interval(distance: int) -> int:
    interval = distance // 10
    if interval == 0:
        return 1
    if 10 < interval < 100:
        return 10
    if interval >= 100:
        return 100
    return interval


class CircuitRunner:
    """
    Runs gates over a register state.

    The runner owns two states: the real state, which receives the errors
    selected by the simulation mode, and (when fidelity is tracked and the
    mode is not IDEAL) a reference state that receives the same gates
    without errors. step is the number of gates applied so far.
    """

    REAL = "real"
    REFERENCE = "reference"

    def __init__(self, gates, initial: RegisterState,
                 properties: CircuitProperties = None,
                 rng: np.random.Generator = None,
                 precision: Precision = DEFAULT_PRECISION,
                 track_fidelity: bool = True,
                 hilbert: HilbertSpace = None,
                 dispatcher: EventDispatcher = None,
                 nxn_strategy: str = "snapshot"):
        self.gates = list(gates)
        self.initial = initial.clone()
        self.properties = properties if properties is not None else CircuitProperties()
        self.rng = rng if rng is not None else np.random.default_rng()
        self.precision = precision
        self.track_fidelity = track_fidelity
        self.hilbert = hilbert if hilbert is not None else HilbertSpace()
        self.dispatcher = dispatcher if dispatcher is not None else EventDispatcher()
        self.applicator = GateApplicator(precision, self.rng, self.dispatcher, nxn_strategy)
        self.decoherence = Decoherence(self.rng)
        self.timing = Timing()
        self._cancel = threading.Event()
        self._worker = None
        self.error = None
        self.reset()

    # ------------------------------------------------------------------
    # State handling
    # ------------------------------------------------------------------

    def reset(self):
        """Restore the initial state and clear every history."""
        self.state = self.initial.clone()
        self.reference = self.initial.clone() if self._uses_reference() else None
        self.step = 0
        self.reverse_veto_step = -1
        self.fidelities = [1.0]
        self.decayed_qubits = []
        self.decay_steps = []
        self.timing.reset()
        self.hilbert.clear()
        self._publish()

    def _uses_reference(self) -> bool:
        return self.track_fidelity and self.properties.mode != SimulationMode.IDEAL

    def _publish(self):
        self.hilbert.publish(self.REAL, self.step, self.state)
        if self.reference is not None:
            self.hilbert.publish(self.REFERENCE, self.step, self.reference)

    @property
    def step_count(self) -> int:
        return len(self.gates)

    @property
    def fidelity(self) -> float:
        return self.fidelities[-1]

    def _error_matrix(self, gate):
        if not self.properties.operational or gate.embedding().ms != 1:
            return None
        sigma = self.properties.get("sigma")
        if sigma is None:
            return None
        return noise_error(float(sigma), self.rng)

    def _after_gate(self, gate, backward: bool):
        if self.properties.decoherent:
            result = self.decoherence.apply_properties(self.state, self.properties)
            if result.decayed:
                self.decayed_qubits.append(result.qubit)
                self.decay_steps.append(self.step)
                logger.info("decoherence at step: %d", self.step)
        if self.reference is not None:
            if backward:
                self.applicator.apply_backward(gate, self.reference)
            else:
                self.applicator.apply(gate, self.reference)
        self.fidelities.append(fidelity(self.state, self.reference))

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------

    def step_forward(self) -> bool:
        """
        Apply the next gate. Returns False when the circuit is at its end.
        """
        if self.step >= self.step_count:
            return False
        gate = self.gates[self.step]
        self.applicator.apply(gate, self.state, self._error_matrix(gate))
        if not gate.is_unitary_step():
            self.reverse_veto_step = self.step
        self._after_gate(gate, backward=False)
        self.step += 1
        self._publish()
        return True

    def step_backward(self) -> bool:
        """
        Undo the previous gate. Returns False at step 0; raises
        IrreversibleStepError when a measurement or preparation lies in
        between.
        """
        if self.step == 0:
            return False
        if self.step <= self.reverse_veto_step + 1:
            raise IrreversibleStepError(f"Irreversible step at {self.step}")
        gate = self.gates[self.step - 1]
        self.applicator.apply_backward(gate, self.state, self._error_matrix(gate))
        self._after_gate(gate, backward=True)
        self.step -= 1
        self._prune_published()
        return True

    def _prune_published(self):
        self.hilbert.prune(self.step)
        self._publish()

    def run(self, to_step: int = None) -> int:
        """
        Step forward or backward until to_step (default: the end of the
        circuit) or until cancel() is called. Returns the reached step.
        """
        to_step = self.step_count if to_step is None else to_step
        if not 0 <= to_step <= self.step_count:
            raise IndexError(f"Step {to_step} out of range")
        start = self.step
        interval = _info_interval(abs(to_step - start))
        self.timing.start()
        try:
            while self.step != to_step and not self._cancel.is_set():
                if to_step > self.step:
                    self.step_forward()
                else:
                    self.step_backward()
                self.timing.steps_accomplished(1)
                self.dispatcher.fire(self, self.state, EventAction.IN_PROGRESS,
                                     abs(self.step - start), abs(to_step - start))
                if self.step % interval == 0:
                    logger.info("step %d/%d, %.3f s elapsed, %.3f ms per gate, fidelity %.6g",
                                self.step, self.step_count, self.timing.elapsed_seconds(),
                                self.timing.avg_time_per_step_millis(), self.fidelity)
        finally:
            self.timing.stop()
            self._cancel.clear()
        return self.step

    # ------------------------------------------------------------------
    # Worker thread
    # ------------------------------------------------------------------

    def start(self, to_step: int = None) -> threading.Thread:
        """Run the circuit on a worker thread."""
        if self.running:
            raise RuntimeError("calculation already running")
        self.error = None
        self._cancel.clear()
        self._worker = threading.Thread(target=self._run_worker, args=(to_step,),
                                        name="gateCalculation", daemon=True)
        self._worker.start()
        return self._worker

    def _run_worker(self, to_step):
        try:
            self.run(to_step)
        except Exception as exc:
            self.error = exc
            logger.exception("calculation stopped at step %d", self.step)

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def cancel(self):
        """Request a stop; the worker checks it between gates."""
        self._cancel.set()

    def join(self, timeout: float = None):
        if self._worker is not None:
            self._worker.join(timeout)
