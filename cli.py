# cli.py

"""
Interactive CLI for the ketsim register simulator.
Every command works on one current register state; APPLY and UNDO add a
snapshot to the Hilbert space history.
"""

import logging

import numpy as np

from ketsim.amplitudes import RegisterState, parse_state
from ketsim.applicator import GateApplicator
from ketsim.decoherence import Decoherence
from ketsim.errors import KetsimError, ParseError
from ketsim.gate import parse_gate
from ketsim.hilbert import HilbertSpace
from ketsim.literals import parse_literal, to_parseable_string
from ketsim.matrix import MatrixRegistry, parse_matrix
from ketsim.measurement import Measurement, phase_distribution, prob_distribution
from ketsim.precision import DEFAULT_PRECISION, format_number

# ANSI colors
COLORS = {
    "reset": "\033[0m",
    "red":   "\033[31m",
    "green": "\033[32m",
    "yellow":"\033[33m",
    "blue":  "\033[34m",
    "magenta":"\033[35m",
    "cyan":  "\033[36m"
}

DEBUG_LEVELS = {0: logging.WARNING, 1: logging.INFO, 2: logging.DEBUG}


def color_text(text, color):
    return f"{COLORS.get(color, COLORS['reset'])}{text}{COLORS['reset']}"


def help_text():
    return f"""
{color_text('=== ketsim register CLI ===','yellow')}

{color_text('Register','cyan')}
  QUBITS <n>                 # reset to |0...0> on n qubits
  STATE <literal>            # e.g. |01>  or  (0.5)*|0> + (0.5)*|1>
  SHOW [limit]               # print the current state
  HISTORY                    # snapshots taken after each gate

{color_text('Gates','cyan')}
  MATRIX <name> <literal>    # register [a b, c d] under name
  APPLY <gate>               # e.g. APPLY {{1:NOT}}
  UNDO <gate>                # apply the conjugate transpose

{color_text('Measurement & Errors','cyan')}
  MEASURE                    # full measurement, collapses the state
  PROB <q> [...]             # probability distribution of the qubits
  PHASE <q> [...]            # summed amplitudes of the qubits
  DECOHERE <rate> <decay> [q]

{color_text('Settings','cyan')}
  DIGITS <d>   INTERNAL <d>   SEED <s>   DEBUGLEVEL <0|1|2>
  ECHO <literal>             # parse any literal and print it back
  HELP, EXIT
"""


def print_help():
    print(help_text())


class CircuitShell:
    def __init__(self, qubits: int = 2, seed=None):
        self.precision = DEFAULT_PRECISION
        self.registry = MatrixRegistry()
        self.hilbert = HilbertSpace()
        self.rng = np.random.default_rng(seed)
        self._build()
        self.state = RegisterState.basis(0, qubits)
        self.step = 0
        self.hilbert.publish("state", self.step, self.state)

    def _build(self):
        self.applicator = GateApplicator(self.precision, self.rng)
        self.measurement = Measurement(self.rng)
        self.decoherence = Decoherence(self.rng)

    def _record(self):
        self.step += 1
        self.hilbert.publish("state", self.step, self.state)

    def show(self, limit=None):
        return self.state.to_string(self.precision, limit)

    @staticmethod
    def _qubits(args):
        if not args:
            raise ValueError("at least one qubit index expected")
        return [int(a) for a in args]

    def _distribution_lines(self, qubits, values, fmt):
        width = len(qubits)
        return "\n".join(f"{format(i, f'0{width}b')}: {fmt(v)}" for i, v in enumerate(values))

    def execute(self, line: str) -> str:
        """
        Run one command line and return its output. Errors propagate as
        KetsimError / ValueError / IndexError / KeyError.
        """
        parts = line.strip().split(None, 1)
        if not parts:
            return ""
        cmd = parts[0].upper()
        rest = parts[1] if len(parts) > 1 else ""
        args = rest.split()

        if cmd == "HELP":
            return help_text()
        if cmd == "QUBITS":
            self.state = RegisterState.basis(0, int(rest))
            self.hilbert.clear()
            self.step = 0
            self.hilbert.publish("state", self.step, self.state)
            return self.show()
        if cmd == "STATE":
            self.state = parse_state(rest)
            self._record()
            return self.show()
        if cmd == "SHOW":
            return self.show(int(args[0]) if args else None)
        if cmd == "HISTORY":
            return self.hilbert.view(self.precision)
        if cmd == "MATRIX":
            name, _, literal = rest.partition(" ")
            matrix = parse_matrix(literal)
            self.registry.register(name, matrix)
            return f"{name} =\n{matrix.to_string(self.precision)}"
        if cmd in ("APPLY", "UNDO"):
            gate = parse_gate(rest, self.registry)
            if cmd == "APPLY":
                result = self.applicator.apply(gate, self.state)
            else:
                result = self.applicator.apply_backward(gate, self.state)
            self._record()
            if result.outcome is not None:
                return (f"qubit {gate.embedding().measured} -> {result.outcome} "
                        f"(p={format_number(result.probability, self.precision.digits)})\n"
                        + self.show())
            return self.show()
        if cmd == "MEASURE":
            index = self.measurement.collapse(self.state)
            self._record()
            p = format_number(self.measurement.last_probability, self.precision.digits)
            return f"{RegisterState.basis_string(index, self.state.n, self.state.bra)} (p={p})"
        if cmd == "PROB":
            qubits = self._qubits(args)
            values = prob_distribution(self.state, qubits)
            return self._distribution_lines(
                qubits, values, lambda v: format_number(v, self.precision.digits))
        if cmd == "PHASE":
            qubits = self._qubits(args)
            values = phase_distribution(self.state, qubits)
            digits = self.precision.digits
            return self._distribution_lines(
                qubits, values,
                lambda v: f"{format_number(v.real, digits)} {format_number(v.imag, digits)}i")
        if cmd == "DECOHERE":
            if len(args) < 2:
                raise ValueError("DECOHERE <rate> <decay> [qubit]")
            qubit = int(args[2]) if len(args) > 2 else None
            result = self.decoherence.apply(self.state, float(args[0]), float(args[1]), qubit)
            self._record()
            if not result.triggered:
                return "no damping step"
            verb = "decayed" if result.decayed else "remained"
            return f"qubit {result.qubit} {verb}.\n" + self.show()
        if cmd == "DIGITS":
            self.precision = self.precision.with_digits(int(rest))
            return f"display digits: {self.precision.digits}"
        if cmd == "INTERNAL":
            self.precision = self.precision.with_internal_digits(int(rest))
            self._build()
            return f"internal digits: {self.precision.internal_digits}"
        if cmd == "SEED":
            self.rng = np.random.default_rng(int(rest))
            self._build()
            return f"seed: {int(rest)}"
        if cmd == "DEBUGLEVEL":
            level = int(rest)
            if level not in DEBUG_LEVELS:
                raise ValueError("debug level must be 0, 1 or 2")
            logging.getLogger("ketsim").setLevel(DEBUG_LEVELS[level])
            return f"debug level: {level}"
        if cmd == "ECHO":
            return to_parseable_string(parse_literal(rest, self.registry))
        raise ValueError(f"Unknown command '{parts[0]}'")


def interactive_cli(qubits: int = 2, seed=None):
    shell = CircuitShell(qubits, seed)

    print(color_text("Welcome to the ketsim CLI!", "green"))
    print_help()
    print(shell.show())

    while True:
        try:
            inp = input(color_text(">> ", "yellow")).strip()
        except (EOFError, KeyboardInterrupt):
            print()
            break
        if not inp:
            continue
        if inp.split()[0].upper() == "EXIT":
            break

        try:
            print(color_text(shell.execute(inp), "green"))
        except ParseError as e:
            print(color_text(f"Parse error: {e.render()}", "red"))
        except (KetsimError, ValueError, IndexError, KeyError, TypeError) as e:
            print(color_text(f"Error: {e}", "red"))


if __name__ == "__main__":
    interactive_cli()
