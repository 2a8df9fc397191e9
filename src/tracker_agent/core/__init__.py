"""Core tracking components."""

from tracker_agent.core.config import Config, get_config
from tracker_agent.core.errors import (
    AlreadyRunningError,
    ConfigurationError,
    NotRunningError,
    TrackerError,
)

__all__ = [
    "Config",
    "get_config",
    "TrackerError",
    "ConfigurationError",
    "AlreadyRunningError",
    "NotRunningError",
]
