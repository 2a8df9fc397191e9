"""Text extraction from screen samples with Tesseract."""

from __future__ import annotations

import asyncio
import logging
import shutil
from datetime import datetime
from pathlib import Path

import pytesseract
from PIL import Image

from tracker_agent.core.errors import CaptureError

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 500


def is_tesseract_installed(tesseract_cmd: str | None = None) -> bool:
    """Check whether the tesseract binary can be run."""
    if tesseract_cmd:
        pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
    if shutil.which(pytesseract.pytesseract.tesseract_cmd) is None:
        return False
    try:
        pytesseract.get_tesseract_version()
        return True
    except pytesseract.TesseractNotFoundError:
        return False


class OcrExtractor:
    """Runs Tesseract OCR over a screen image.

    Sparse-text page segmentation (PSM 11) is used by default because screens
    are mostly scattered labels rather than paragraphs.
    """

    def __init__(
        self,
        language: str = "eng",
        page_segmentation_mode: int = 11,
        tesseract_cmd: str | None = None,
        debug_dir: Path | None = None,
    ):
        self._language = language
        self._psm = page_segmentation_mode
        self._debug_dir = debug_dir
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

    @property
    def tesseract_config(self) -> str:
        return f"--psm {self._psm}"

    async def extract_text(self, image: Image.Image) -> str:
        return await asyncio.to_thread(self.extract_text_sync, image)

    def extract_text_sync(self, image: Image.Image) -> str:
        """Extract text from an image.

        Raises:
            CaptureError: If Tesseract is missing or fails.
        """
        try:
            text = pytesseract.image_to_string(
                image, lang=self._language, config=self.tesseract_config
            )
        except pytesseract.TesseractNotFoundError as e:
            raise CaptureError(
                "Tesseract is not installed - install tesseract-ocr or set ocr.tesseract_cmd"
            ) from e
        except (pytesseract.TesseractError, RuntimeError, OSError) as e:
            raise CaptureError(f"OCR failed: {e}") from e

        logger.info(f"OCR extracted {len(text)} characters")

        if self._debug_dir:
            self._dump_debug(text)

        return text

    def _dump_debug(self, text: str) -> None:
        preview = text if len(text) <= PREVIEW_CHARS else f"{text[:PREVIEW_CHARS]}..."
        for line in preview.splitlines():
            logger.debug(f"  {line}")

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        path = self._debug_dir / f"{timestamp}_4_ocr_text.txt"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
            logger.info(f"Debug OCR text saved: {path}")
        except OSError as e:
            logger.warning(f"Could not save OCR text: {e}")
