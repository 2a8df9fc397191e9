"""Exception hierarchy for the tracking agent."""

from __future__ import annotations


class TrackerError(Exception):
    """Base class for all tracker errors."""


# Fatal to start()


class ConfigurationError(TrackerError):
    """Configuration is missing or incomplete."""


class ItemLoadError(TrackerError):
    """The work item list could not be fetched when starting."""


# Lifecycle misuse


class AlreadyRunningError(TrackerError):
    """start() was called while the engine is running."""

    def __init__(self, message: str = "Tracker is already running"):
        super().__init__(message)


class NotRunningError(TrackerError):
    """stop() was called while the engine is stopped."""

    def __init__(self, message: str = "Tracker is not running"):
        super().__init__(message)


# Transient, per tick


class CaptureError(TrackerError):
    """Screen capture or OCR failed."""


class MatcherError(TrackerError):
    """Context classification failed."""


class BackendError(TrackerError):
    """A time-tracking backend call failed."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status
