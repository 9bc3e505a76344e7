"""
errors.py

Exception types raised by the simulator. Parse-time problems carry the
offending literal and the position of the failure so that a caret line can
be rendered under it.
"""


class KetsimError(Exception):
    """Base class for every error raised by ketsim."""


class ParseError(KetsimError, ValueError):
    def __init__(self, message: str, text: str = "", position: int = 0):
        self.message = message
        self.text = text
        self.position = position
        super().__init__(self.render())

    def render(self) -> str:
        """
        Returns the message followed by the literal and a caret marking
        the failure position.
        """
        if not self.text:
            return self.message
        return f"{self.message}\n{self.text}\n{' ' * self.position}^"


class DimensionMismatchError(KetsimError, ValueError):
    pass


class GateDefinitionError(KetsimError, ValueError):
    pass


class IrreversibleStepError(KetsimError, RuntimeError):
    pass
