"""Status notifications emitted by the tracking engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)

NO_ITEM_LABEL = "none"


class LogLevel(str, Enum):
    """Severity of a log event shown to the operator."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class TrackingUpdate:
    """What the engine currently sees, for display."""

    application: str
    activity: str
    item: str | None
    timestamp: datetime

    @property
    def since(self) -> str:
        return self.timestamp.strftime("%H:%M:%S")

    def to_dict(self) -> dict[str, str]:
        return {
            "application": self.application,
            "activity": self.activity,
            "item": self.item or NO_ITEM_LABEL,
            "since": self.since,
        }


class EventSink(Protocol):
    """Receiver for engine notifications."""

    def log_event(self, level: LogLevel, message: str) -> None: ...

    def tracking_update(
        self,
        application: str,
        activity: str,
        item: str | None,
        timestamp: datetime,
    ) -> None: ...


_LOGGING_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class LoggingEventSink:
    """Event sink that forwards everything to the ``logging`` module."""

    def __init__(self, name: str = "tracker_agent.events"):
        self._logger = logging.getLogger(name)
        self.last_update: TrackingUpdate | None = None

    def log_event(self, level: LogLevel, message: str) -> None:
        level = LogLevel(level)
        self._logger.log(_LOGGING_LEVELS[level], f"{level.value.upper()}: {message}")

    def tracking_update(
        self,
        application: str,
        activity: str,
        item: str | None,
        timestamp: datetime,
    ) -> None:
        self.last_update = TrackingUpdate(application, activity, item, timestamp)
        self._logger.debug(f"Tracking update: {self.last_update.to_dict()}")


class CompositeEventSink:
    """Fan out events to several sinks; a failing sink never affects the others."""

    def __init__(self, *sinks: EventSink):
        self._sinks = list(sinks)

    def log_event(self, level: LogLevel, message: str) -> None:
        for sink in self._sinks:
            try:
                sink.log_event(level, message)
            except Exception as e:
                logger.error(f"Event sink {sink!r} failed: {e}")

    def tracking_update(
        self,
        application: str,
        activity: str,
        item: str | None,
        timestamp: datetime,
    ) -> None:
        for sink in self._sinks:
            try:
                sink.tracking_update(application, activity, item, timestamp)
            except Exception as e:
                logger.error(f"Event sink {sink!r} failed: {e}")
