"""Time-tracking backend (Freelo) client and models."""

from tracker_agent.backend.freelo_client import FreeloClient
from tracker_agent.backend.models import ItemCache, WorkItem

__all__ = ["FreeloClient", "ItemCache", "WorkItem"]
