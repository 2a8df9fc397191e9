"""Hysteresis that keeps a single noisy classification from flipping billing state.

Each tick the engine feeds the current session (if any) and a fresh
``MatchResult`` into :func:`evaluate`. The result tells the engine whether to
start, continue, restart or hold. Only a context change observed on
``RESTART_THRESHOLD`` consecutive ticks leads to a restart.

A change of the derived tracking key counts as a context change as well, so a
new work item accumulates instability the same way a new application does.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from tracker_agent.core.session import GENERAL_WORK_KEY, RESTART_THRESHOLD, TrackingSession

if TYPE_CHECKING:
    from tracker_agent.matching.base import MatchResult


class Action(str, Enum):
    """What the engine should do this tick."""

    START = "start"
    CONTINUE = "continue"
    RESTART = "restart"
    HOLD = "hold"


@dataclass(frozen=True)
class Decision:
    """Outcome of evaluating one tick."""

    action: Action
    tracking_key: str
    instability_counter: int
    context_changed: bool = False
    key_changed: bool = False

    @property
    def item_id(self) -> str | None:
        """Item ID to send to the backend, None for general work."""
        return None if self.tracking_key == GENERAL_WORK_KEY else self.tracking_key

    @property
    def restart_due(self) -> bool:
        return self.instability_counter >= RESTART_THRESHOLD


def derive_tracking_key(result: MatchResult, threshold: float) -> str:
    """Item ID when the match is confident enough, otherwise the general-work key.

    The comparison is strict: a confidence equal to the threshold is not enough.
    """
    if result.candidate_item_id is not None and result.confidence > threshold:
        return str(result.candidate_item_id)
    return GENERAL_WORK_KEY


def context_changed(session: TrackingSession, result: MatchResult) -> bool:
    """Exact comparison of application and activity against the session baseline."""
    return (
        result.detected_context != session.last_application
        or result.activity_description != session.last_activity_description
    )


def evaluate(
    session: TrackingSession | None,
    result: MatchResult,
    threshold: float,
) -> Decision:
    """Decide the action for one tick."""
    key = derive_tracking_key(result, threshold)

    if session is None:
        return Decision(action=Action.START, tracking_key=key, instability_counter=0)

    key_changed = key != session.tracking_key
    changed = context_changed(session, result) or key_changed

    counter = min(session.instability_counter + 1, RESTART_THRESHOLD) if changed else 0
    restart_due = counter >= RESTART_THRESHOLD

    if not key_changed and not restart_due:
        action = Action.CONTINUE
    elif restart_due:
        action = Action.RESTART
    else:
        action = Action.HOLD

    return Decision(
        action=action,
        tracking_key=key,
        instability_counter=counter,
        context_changed=changed,
        key_changed=key_changed,
    )
