"""Matcher capability shared by the heuristic and AI strategies."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from pydantic import BaseModel, Field, field_validator

if TYPE_CHECKING:
    from tracker_agent.backend.models import WorkItem
    from tracker_agent.core.config import Config
    from tracker_agent.trackers.screen_sampler import CapturedScreen

logger = logging.getLogger(__name__)


class MatchResult(BaseModel):
    """Normalized classification of one screen sample."""

    candidate_item_id: str | None = Field(default=None, description="Best matching work item")
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    detected_context: str = Field(description="Application or source identifier")
    activity_description: str = Field(description="Human-readable summary of the activity")
    matched_keywords: list[str] = Field(default_factory=list)
    candidate_name: str | None = Field(
        default=None, description="Display name of the best match, even below threshold"
    )

    @field_validator("candidate_item_id", mode="before")
    @classmethod
    def _stringify_item_id(cls, value):
        return None if value is None else str(value)


class ContextMatcher(Protocol):
    """Converts a screen sample into a :class:`MatchResult`."""

    name: str
    default_acceptance_threshold: float

    async def classify(
        self,
        artifact: CapturedScreen,
        items: list[WorkItem],
        previous_label: str | None = None,
    ) -> MatchResult:
        """Classify the sample.

        Raises:
            MatcherError: If classification fails.
            CaptureError: If text extraction fails.
        """
        ...


def build_matcher(config: Config) -> ContextMatcher:
    """Pick the matcher strategy: AI when matcher credentials exist, heuristic otherwise."""
    from tracker_agent.trackers.ocr import OcrExtractor

    debug_dir = config.debug_dir if config.ocr.save_debug else None
    api_key = config.matcher_api_key

    def make_ocr() -> OcrExtractor:
        return OcrExtractor(
            language=config.ocr.language,
            page_segmentation_mode=config.ocr.page_segmentation_mode,
            tesseract_cmd=config.ocr.tesseract_cmd,
            debug_dir=debug_dir,
        )

    if api_key:
        from tracker_agent.ai.claude_client import ClaudeClient
        from tracker_agent.matching.ai_matcher import OcrAIMatcher, VisionMatcher

        client = ClaudeClient(
            api_key=api_key,
            model=config.matching.model,
            max_tokens=config.matching.max_tokens,
        )
        if config.matching.ai_mode == "ocr":
            logger.info("Using AI matcher on OCR text")
            return OcrAIMatcher(client, make_ocr(), char_limit=config.matching.ocr_char_limit)
        logger.info("Using AI vision matcher")
        return VisionMatcher(client)

    from tracker_agent.matching.text_matcher import HeuristicMatcher

    logger.info("No matcher credentials configured - using heuristic OCR matcher")
    return HeuristicMatcher(make_ocr(), min_confidence=config.matching.heuristic_min_confidence)
