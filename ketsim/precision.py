"""
precision.py

Numerical tolerance and display settings. A Precision value is immutable and
is handed explicitly to every operation that compares or prints numbers.
"""

from dataclasses import dataclass, replace


@dataclass(frozen=True)
class Precision:
    """
    internal_digits controls the equality tolerance: two numbers are equal
    when their difference is below eps = 0.5 / 10**internal_digits.
    digits is the number of significant digits used for display, and
    simple selects the compact complex notation (i instead of 0+1i).
    """
    internal_digits: int = 14
    digits: int = 3
    simple: bool = True

    def __post_init__(self):
        if self.internal_digits < 1:
            raise ValueError("internal_digits must be positive")
        if self.digits < 1:
            raise ValueError("digits must be positive")

    @property
    def eps(self) -> float:
        return 0.5 / 10 ** self.internal_digits

    def with_internal_digits(self, internal_digits: int) -> "Precision":
        return replace(self, internal_digits=internal_digits)

    def with_digits(self, digits: int) -> "Precision":
        return replace(self, digits=digits)

    def with_simple(self, simple: bool) -> "Precision":
        return replace(self, simple=simple)

    def clamp(self, value: float) -> float:
        """Maps values smaller than eps in magnitude to exact zero."""
        return 0.0 if abs(value) < self.eps else value


DEFAULT_PRECISION = Precision()


def format_number(value: float, digits: int) -> str:
    """
    Format a real number with the given number of significant digits.
    """
    if value == 0:
        return "0"
    text = format(value, f".{digits}g")
    if "e" in text:
        mantissa, exponent = text.split("e")
        text = f"{mantissa}E{int(exponent)}"
    return text
