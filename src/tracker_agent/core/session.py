"""In-memory state of the active tracking session."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime

# Tracking key used when no work item is matched confidently
GENERAL_WORK_KEY = "general_work"

# Consecutive changed-context ticks needed before the engine restarts tracking
RESTART_THRESHOLD = 2


@dataclass
class TrackingSession:
    """A running billing session on the backend.

    ``last_application`` and ``last_activity_description`` hold the stable
    baseline the session was started (or last confirmed) with; they are not
    overwritten while the context is unstable.
    """

    tracking_key: str
    external_session_id: str
    started_at: datetime
    last_application: str
    last_activity_description: str
    instability_counter: int = 0

    @property
    def is_general_work(self) -> bool:
        return self.tracking_key == GENERAL_WORK_KEY

    @property
    def item_id(self) -> str | None:
        """Backend item ID, or None for general work."""
        return None if self.is_general_work else self.tracking_key

    @property
    def duration_seconds(self) -> float:
        return (datetime.now() - self.started_at).total_seconds()

    def copy(self) -> TrackingSession:
        return replace(self)
