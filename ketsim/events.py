"""
events.py

Progress notifications fired around every top-level gate application so
that an observer can refresh without polling.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, List

logger = logging.getLogger(__name__)


class EventAction(enum.IntEnum):
    STARTED = 1
    IN_PROGRESS = 2
    DONE = 3


@dataclass(frozen=True)
class ComputationEvent:
    operator: Any
    variable: Any
    current_step: int
    max_step: int
    action: EventAction


class EventDispatcher:
    """
    Holds listeners (callables taking a ComputationEvent) and delivers
    events to them in registration order.
    """

    def __init__(self):
        self._listeners: List[Callable[[ComputationEvent], None]] = []

    def add_listener(self, listener: Callable[[ComputationEvent], None]):
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def fire(self, operator, variable, action: EventAction,
             current_step: int = 0, max_step: int = 0):
        event = ComputationEvent(operator, variable, current_step, max_step, action)
        logger.debug("computation event %s for %s", action.name, operator)
        for listener in list(self._listeners):
            listener(event)
        return event
