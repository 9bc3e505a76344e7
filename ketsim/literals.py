# literals.py

"""
One entry point for every literal the simulator understands. The first
non-blank character picks the grammar:

    {       gate descriptor       {-:1:NOT}
    [       vector or matrix      [1 0]'  /  [0 1, 1 0]
    | or <  register state        |01>, <1|, (0.5)*|0> + (0.5)*|1>
    other   complex number        1.5-2i
"""

from ketsim.amplitudes import AmplitudeVector, RegisterState, parse_state, parse_vector
from ketsim.errors import ParseError
from ketsim.gate import GateDescriptor, parse_gate
from ketsim.matrix import DenseMatrix, MatrixRegistry, parse_matrix
from ketsim.scalar import Scalar, parse_complex

OPERAND_TYPES = (Scalar, RegisterState, AmplitudeVector, DenseMatrix, GateDescriptor)


def _starts_like_state(text: str) -> bool:
    # weighted sums may open with a coefficient, e.g. (0.5)*|0> or -|1>
    return "|" in text and ("*" in text or text[0] in "|<-")


def parse_literal(text: str, registry: MatrixRegistry = None):
    """
    Parse any operand literal.

    Requires:
         text is a non-empty literal.
    Ensures:
         Returns a Scalar, AmplitudeVector, RegisterState, DenseMatrix or
         GateDescriptor; raises ParseError otherwise.
    """
    stripped = text.strip()
    if not stripped:
        raise ParseError("empty literal", text, 0)
    first = stripped[0]
    if first == "{":
        return parse_gate(text, registry)
    if first == "[":
        if "," in stripped:
            return parse_matrix(text)
        return parse_vector(text)
    if first in "|<" or _starts_like_state(stripped):
        return parse_state(text)
    return parse_complex(text)


def to_parseable_string(obj) -> str:
    """Inverse of parse_literal for every operand kind."""
    if not isinstance(obj, OPERAND_TYPES):
        raise TypeError(f"No literal form for {type(obj).__name__}")
    return obj.to_parseable_string()
