"""Sinks for task lifecycle events.

Workflows only see the EventEmitter interface. A sink that raises is
logged and skipped; it never fails the task that produced the event.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, Iterable, List, Optional

from src.devops_agent.events.models import EventType, TaskEvent


logger = logging.getLogger(__name__)


class EventSinkType(str, Enum):
    LOGGING = "logging"
    METRICS = "metrics"


_LEVELS: Dict[EventType, int] = {
    EventType.ERROR: logging.ERROR,
    EventType.TIMEOUT: logging.WARNING,
}


class EventEmitter(ABC):
    """Receives every TaskEvent the pipeline produces."""

    @abstractmethod
    async def emit(self, event: TaskEvent) -> None:
        ...

    async def close(self) -> None:
        pass


class LoggingEventEmitter(EventEmitter):
    """Writes one log record per event, with the event flattened into ``extra``.

    Errors log at ERROR and timeouts at WARNING; every other event type
    logs at INFO.
    """

    def __init__(self, logger_name: Optional[str] = None):
        self._logger = logging.getLogger(logger_name) if logger_name else logger

    async def emit(self, event: TaskEvent) -> None:
        self._logger.log(
            _LEVELS.get(event.event_type, logging.INFO),
            "Task event: %s for %s %s",
            event.event_type.value,
            event.kind,
            event.task_id,
            extra=event.to_log_dict(),
        )


class CompositeEventEmitter(EventEmitter):
    """Fans each event out to several sinks concurrently."""

    def __init__(self, emitters: Optional[Iterable[EventEmitter]] = None):
        self._emitters: List[EventEmitter] = list(emitters or [])

    def add_emitter(self, emitter: EventEmitter) -> None:
        self._emitters.append(emitter)

    @property
    def emitters(self) -> List[EventEmitter]:
        return list(self._emitters)

    async def emit(self, event: TaskEvent) -> None:
        outcomes = await asyncio.gather(
            *(sink.emit(event) for sink in self._emitters), return_exceptions=True
        )
        for sink, outcome in zip(self._emitters, outcomes):
            if isinstance(outcome, Exception):
                logger.error(
                    "Event sink %s rejected %s: %s",
                    type(sink).__name__,
                    event.event_type.value,
                    outcome,
                    extra={"task_id": event.task_id, "sink": type(sink).__name__},
                )

    async def close(self) -> None:
        outcomes = await asyncio.gather(
            *(sink.close() for sink in self._emitters), return_exceptions=True
        )
        for sink, outcome in zip(self._emitters, outcomes):
            if isinstance(outcome, Exception):
                logger.error("Closing event sink %s failed: %s", type(sink).__name__, outcome)


class NullEventEmitter(EventEmitter):
    async def emit(self, event: TaskEvent) -> None:
        pass


def _build_sink(sink_type: EventSinkType, logger_name: Optional[str]) -> Optional[EventEmitter]:
    if sink_type == EventSinkType.LOGGING:
        return LoggingEventEmitter(logger_name=logger_name)
    if sink_type == EventSinkType.METRICS:
        # metrics.py imports this module
        from src.devops_agent.events.metrics import MetricsEventEmitter

        return MetricsEventEmitter()
    logger.warning("Unknown event sink type: %s, skipping", sink_type)
    return None


def create_event_emitter(
    sink_types: Optional[List[EventSinkType]] = None,
    logger_name: Optional[str] = None,
) -> EventEmitter:
    """Build the emitter for ``sink_types`` (logging only when empty).

    A single sink is returned as-is; several are wrapped in a
    CompositeEventEmitter in the order given.
    """
    sinks = [
        sink
        for sink in (_build_sink(t, logger_name) for t in sink_types or [EventSinkType.LOGGING])
        if sink is not None
    ]
    if len(sinks) == 1:
        return sinks[0]
    return CompositeEventEmitter(sinks)
