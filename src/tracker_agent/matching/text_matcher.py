"""Keyword heuristic that matches OCR text against work items.

Confidence for an item is a weighted blend of:
- Jaccard similarity between the screen text and the item name (weight 0.5)
- Jaccard similarity with the project name (weight 0.2)
- share of the item name's longer words found on screen (weight 0.3)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from tracker_agent.matching.base import MatchResult

if TYPE_CHECKING:
    from tracker_agent.backend.models import WorkItem
    from tracker_agent.trackers.ocr import OcrExtractor
    from tracker_agent.trackers.screen_sampler import CapturedScreen

logger = logging.getLogger(__name__)

UNKNOWN_APPLICATION = "Unknown Application"

NAME_WEIGHT = 0.5
PROJECT_WEIGHT = 0.2
KEYWORD_WEIGHT = 0.3
MIN_KEYWORD_LENGTH = 4
ACTIVITY_SNIPPET_CHARS = 50

# Checked in order; first hit wins
APP_SIGNATURES: list[tuple[tuple[str, ...], str]] = [
    (("visual studio code", "vscode"), "Visual Studio Code"),
    (("chrome", "google chrome"), "Google Chrome"),
    (("firefox",), "Firefox"),
    (("safari",), "Safari"),
    (("freelo",), "Freelo"),
    (("slack",), "Slack"),
    (("terminal", "iterm"), "Terminal"),
]


def normalize_text(text: str) -> str:
    """Lowercase, drop punctuation and collapse whitespace."""
    kept = "".join(c for c in text.lower() if c.isalnum() or c.isspace())
    return " ".join(kept.split())


def calculate_similarity(text1: str, text2: str) -> float:
    """Jaccard similarity of the word sets of two normalized texts."""
    words1 = set(text1.split())
    words2 = set(text2.split())

    if not words1 and not words2:
        return 1.0

    union = words1 | words2
    if not union:
        return 0.0

    return len(words1 & words2) / len(union)


def detect_application(ocr_text: str) -> str:
    """Guess the foreground application from screen text."""
    normalized = normalize_text(ocr_text)
    logger.debug(f"Detecting application from: {normalized[:200]}")

    for keywords, app_name in APP_SIGNATURES:
        if any(keyword in normalized for keyword in keywords):
            logger.debug(f"Detected application: {app_name}")
            return app_name

    return UNKNOWN_APPLICATION


def describe_activity(app_name: str, ocr_text: str) -> str:
    snippet = " ".join(ocr_text[:ACTIVITY_SNIPPET_CHARS].split())
    return f"{app_name} - {snippet}"


def score_item(normalized_ocr: str, item: WorkItem) -> tuple[float, list[str]]:
    """Return (confidence, matched keywords) for one item."""
    name = normalize_text(item.name)
    name_similarity = calculate_similarity(normalized_ocr, name)
    project_similarity = calculate_similarity(normalized_ocr, normalize_text(item.project_name))

    name_words = name.split()
    keywords = [
        word for word in name_words
        if len(word) >= MIN_KEYWORD_LENGTH and word in normalized_ocr
    ]
    keyword_bonus = KEYWORD_WEIGHT * len(keywords) / len(name_words) if keywords else 0.0

    confidence = name_similarity * NAME_WEIGHT + project_similarity * PROJECT_WEIGHT + keyword_bonus

    if confidence > 0.1:
        logger.debug(
            f"Item '{item.name}': name_sim={name_similarity:.2f}, "
            f"proj_sim={project_similarity:.2f}, keywords={len(keywords)}, "
            f"confidence={confidence * 100:.0f}%"
        )

    return min(confidence, 1.0), keywords


def find_best_matching_item(
    ocr_text: str,
    items: list[WorkItem],
    min_confidence: float = 0.3,
) -> MatchResult:
    """Find the work item that best matches the screen text.

    Items scoring at or below ``min_confidence`` are not reported as candidates.
    """
    app_name = detect_application(ocr_text)

    if not items:
        logger.info("No work items available for matching")
        return MatchResult(
            confidence=0.0,
            detected_context=app_name,
            activity_description=f"{app_name} - work outside Freelo",
        )

    normalized_ocr = normalize_text(ocr_text)
    activity = describe_activity(app_name, ocr_text)

    best: tuple[WorkItem, float, list[str]] | None = None
    for item in items:
        confidence, keywords = score_item(normalized_ocr, item)
        if best is None or confidence > best[1]:
            best = (item, confidence, keywords)

    item, confidence, keywords = best
    if confidence > min_confidence:
        logger.info(f"Matched item '{item.name}' (confidence: {confidence * 100:.0f}%)")
        return MatchResult(
            candidate_item_id=item.key,
            candidate_name=item.name,
            confidence=confidence,
            detected_context=app_name,
            activity_description=activity,
            matched_keywords=keywords,
        )

    logger.info(
        f"Best match '{item.name}' has low confidence ({confidence * 100:.0f}%), ignoring"
    )
    return MatchResult(
        confidence=0.0,
        detected_context=app_name,
        activity_description=activity,
    )


class HeuristicMatcher:
    """OCR + keyword heuristic, used when no AI credentials are configured."""

    name = "heuristic"
    default_acceptance_threshold = 0.3

    def __init__(self, ocr: OcrExtractor, min_confidence: float = 0.3):
        self._ocr = ocr
        self._min_confidence = min_confidence

    async def classify(
        self,
        artifact: CapturedScreen,
        items: list[WorkItem],
        previous_label: str | None = None,
    ) -> MatchResult:
        text = await self._ocr.extract_text(artifact.image)
        return find_best_matching_item(text, items, self._min_confidence)
