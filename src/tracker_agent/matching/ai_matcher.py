"""Claude-backed matchers: screenshot vision and OCR text."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from anthropic import APIError
from pydantic import ValidationError

from tracker_agent.ai.claude_client import parse_json_response
from tracker_agent.ai.prompts import (
    VISION_SYSTEM_PROMPT,
    format_text_match_prompt,
    format_vision_prompt,
)
from tracker_agent.ai.schemas import TextMatchResponse, VisionAnalysisResponse
from tracker_agent.core.errors import MatcherError
from tracker_agent.matching.base import MatchResult
from tracker_agent.matching.text_matcher import detect_application

if TYPE_CHECKING:
    from tracker_agent.ai.claude_client import ClaudeClient
    from tracker_agent.backend.models import WorkItem
    from tracker_agent.trackers.ocr import OcrExtractor
    from tracker_agent.trackers.screen_sampler import CapturedScreen

logger = logging.getLogger(__name__)


async def _ask(client: ClaudeClient, prompt: str, **kwargs) -> dict:
    try:
        text = await client.complete(prompt, **kwargs)
    except APIError as e:
        raise MatcherError(f"Claude API error: {e}") from e

    try:
        return parse_json_response(text)
    except ValueError as e:
        raise MatcherError(f"AI JSON parse error: {e} (content: {text[:500]})") from e


class VisionMatcher:
    """Sends the screenshot itself to Claude."""

    name = "ai-vision"
    default_acceptance_threshold = 0.8

    def __init__(self, client: ClaudeClient):
        self._client = client

    async def classify(
        self,
        artifact: CapturedScreen,
        items: list[WorkItem],
        previous_label: str | None = None,
    ) -> MatchResult:
        prompt = format_vision_prompt(items, previous_label)
        data = await _ask(
            self._client,
            prompt,
            system=VISION_SYSTEM_PROMPT,
            image_base64=artifact.base64_jpeg,
            media_type=artifact.media_type,
        )

        try:
            analysis = VisionAnalysisResponse.model_validate(data)
        except ValidationError as e:
            raise MatcherError(f"Unexpected AI response: {e}") from e

        logger.info(
            f"AI analysis: {analysis.summary} | {analysis.detected_context} | "
            f"task={analysis.task_id} ({analysis.confidence * 100:.0f}%)"
        )

        return MatchResult(
            candidate_item_id=analysis.task_id,
            candidate_name=analysis.best_match_task_name,
            confidence=analysis.confidence,
            detected_context=analysis.detected_context,
            activity_description=analysis.summary,
        )


class OcrAIMatcher:
    """Extracts screen text with OCR and lets Claude pick the task."""

    name = "ai-ocr"
    default_acceptance_threshold = 0.8

    def __init__(self, client: ClaudeClient, ocr: OcrExtractor, char_limit: int = 3000):
        self._client = client
        self._ocr = ocr
        self._char_limit = char_limit

    async def classify(
        self,
        artifact: CapturedScreen,
        items: list[WorkItem],
        previous_label: str | None = None,
    ) -> MatchResult:
        text = await self._ocr.extract_text(artifact.image)
        prompt = format_text_match_prompt(text, items, self._char_limit, previous_label)
        data = await _ask(self._client, prompt)

        try:
            match = TextMatchResponse.model_validate(data)
        except ValidationError as e:
            raise MatcherError(f"Unexpected AI response: {json.dumps(data)[:300]}: {e}") from e

        logger.info(
            f"AI match: task_id={match.task_id}, confidence={match.confidence:.0f}%, "
            f"reasoning={match.reasoning}"
        )

        names = {item.id: item.name for item in items}
        return MatchResult(
            candidate_item_id=match.task_id,
            candidate_name=names.get(match.task_id) if match.task_id is not None else None,
            confidence=match.normalized_confidence,
            detected_context=detect_application(text),
            activity_description=match.activity_description,
        )
