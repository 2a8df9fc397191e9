"""AI module for Claude-powered context matching."""

from tracker_agent.ai.claude_client import ClaudeClient, parse_json_response, strip_code_fences
from tracker_agent.ai.schemas import TextMatchResponse, VisionAnalysisResponse

__all__ = [
    "ClaudeClient",
    "TextMatchResponse",
    "VisionAnalysisResponse",
    "parse_json_response",
    "strip_code_fences",
]
