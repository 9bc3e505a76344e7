"""
hilbert.py

Implements the snapshot store for register states.
Values are stored using keys as (label, step); every value is an immutable
tuple of amplitudes published under a lock, so a reader on another thread
only ever sees complete snapshots.
The view() method produces a ket-formatted listing of the store.
"""

import threading

from ketsim.amplitudes import RegisterState
from ketsim.precision import DEFAULT_PRECISION, Precision


class Snapshot:
    """Frozen copy of a register state taken after a completed step."""

    __slots__ = ("n", "bra", "amplitudes")

    def __init__(self, n: int, bra: bool, amplitudes: tuple):
        self.n = n
        self.bra = bra
        self.amplitudes = amplitudes

    @classmethod
    def of(cls, state: RegisterState) -> "Snapshot":
        return cls(state.n, state.bra, state.snapshot())

    def to_state(self) -> RegisterState:
        """Fresh mutable RegisterState with the snapshot's amplitudes."""
        state = RegisterState(self.n, self.bra)
        state.data = list(self.amplitudes)
        return state


class HilbertSpace:
    def __init__(self):
        """
        Initializes an empty store.
        """
        self._lock = threading.Lock()
        self.space = {}

    def copy(self):
        """
        Returns a shallow copy of the store. Snapshots are immutable, so
        they are shared.
        """
        new_hilbert = HilbertSpace()
        with self._lock:
            new_hilbert.space = self.space.copy()
        return new_hilbert

    def publish(self, label, step: int, state: RegisterState):
        """
        Stores a snapshot of state under key (label, step).
        """
        snapshot = Snapshot.of(state)
        with self._lock:
            self.space[(label, step)] = snapshot

    def get(self, label, step: int):
        """
        Returns the snapshot stored under (label, step), or None.
        """
        with self._lock:
            return self.space.get((label, step))

    def latest(self, label):
        """Most recent snapshot published under label, or None."""
        with self._lock:
            steps = [s for (key, s) in self.space if key == label]
            if not steps:
                return None
            return self.space[(label, max(steps))]

    def history(self, label) -> list:
        """(step, snapshot) pairs for label in step order."""
        with self._lock:
            items = [(s, v) for (key, s), v in self.space.items() if key == label]
        return sorted(items, key=lambda x: x[0])

    def prune(self, max_step: int):
        """
        Removes entries with step numbers greater than max_step.
        """
        with self._lock:
            self.space = {k: v for k, v in self.space.items() if k[1] <= max_step}

    def clear(self):
        with self._lock:
            self.space = {}

    def __len__(self):
        with self._lock:
            return len(self.space)

    def view(self, precision: Precision = DEFAULT_PRECISION) -> str:
        """
        Returns a formatted string of the store.
        Each label is shown with its step and ket-formatted state.
        """
        with self._lock:
            items = list(self.space.items())
        if not items:
            return "Hilbert Space is empty."
        lines = []
        # Sort keys by step then label
        for (label, step), snapshot in sorted(items, key=lambda x: (x[0][1], str(x[0][0]))):
            text = snapshot.to_state().to_string(precision)
            lines.append(f"Register {label} @ Step {step}: {text}")
        return "\n".join(lines)
