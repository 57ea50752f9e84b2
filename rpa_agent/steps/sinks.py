"""Receivers of step.start / step.end events emitted by the runner."""
from typing import Any, Awaitable, Dict, List, Protocol, Union

StepEvent = Dict[str, Any]


class StepSink(Protocol):
    def write(self, event: StepEvent) -> Union[None, Awaitable[None]]:
        ...


class MemoryStepSink:
    """Collects step events in memory."""

    def __init__(self) -> None:
        self._events: List[StepEvent] = []

    def write(self, event: StepEvent) -> None:
        self._events.append(event)

    def get_events(self) -> List[StepEvent]:
        return list(self._events)

    def clear(self) -> None:
        self._events.clear()
