"""Context matching strategies."""

from tracker_agent.matching.base import ContextMatcher, MatchResult, build_matcher

__all__ = ["ContextMatcher", "MatchResult", "build_matcher"]
