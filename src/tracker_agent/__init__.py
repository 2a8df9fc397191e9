"""Tracker Agent - screen-aware automatic time tracking for Freelo."""

__version__ = "0.1.0"
