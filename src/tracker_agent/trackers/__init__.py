"""Screen sampling and text extraction."""

from tracker_agent.trackers.ocr import OcrExtractor, is_tesseract_installed
from tracker_agent.trackers.screen_sampler import CapturedScreen, ScreenSampler

__all__ = ["CapturedScreen", "OcrExtractor", "ScreenSampler", "is_tesseract_installed"]
