"""Screen sampling using Pillow's ImageGrab.

Captures the screen on demand, downscales wide displays and encodes the
result as JPEG for the matchers.
"""

from __future__ import annotations

import asyncio
import base64
import io
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from PIL import Image, ImageGrab

from tracker_agent.core.errors import CaptureError

logger = logging.getLogger(__name__)


@dataclass
class CapturedScreen:
    """A single screen sample."""

    timestamp: datetime
    image: Image.Image
    jpeg_bytes: bytes
    width: int
    height: int
    capture_duration_ms: float = 0.0

    @property
    def base64_jpeg(self) -> str:
        return base64.standard_b64encode(self.jpeg_bytes).decode("utf-8")

    @property
    def media_type(self) -> str:
        return "image/jpeg"


class ScreenSampler:
    """Grabs the screen and prepares it for classification."""

    def __init__(
        self,
        max_width: int = 1920,
        jpeg_quality: int = 80,
        all_screens: bool = False,
        debug_dir: Path | None = None,
    ):
        """Initialize the sampler.

        Args:
            max_width: Screens wider than this are downscaled proportionally.
            jpeg_quality: JPEG quality (1-100).
            all_screens: Capture every monitor instead of the primary one.
            debug_dir: When set, every capture is also written there as PNG.
        """
        self._max_width = max_width
        self._jpeg_quality = jpeg_quality
        self._all_screens = all_screens
        self._debug_dir = debug_dir

    async def capture(self) -> CapturedScreen:
        """Capture the screen without blocking the event loop."""
        return await asyncio.to_thread(self.capture_sync)

    def capture_sync(self) -> CapturedScreen:
        """Capture the screen.

        Raises:
            CaptureError: If the screen cannot be grabbed or encoded.
        """
        start_time = datetime.now()

        try:
            raw = ImageGrab.grab(all_screens=self._all_screens)
        except OSError as e:
            raise CaptureError(f"Failed to capture screen: {e}") from e

        if raw is None:
            raise CaptureError("Screen capture returned no image")

        try:
            img = self.prepare_image(raw)
            jpeg_bytes = self.encode_jpeg(img)
        except (OSError, ValueError) as e:
            raise CaptureError(f"Failed to encode image: {e}") from e

        duration_ms = (datetime.now() - start_time).total_seconds() * 1000

        if self._debug_dir:
            self._save_debug(img, start_time)

        logger.debug(
            f"Screen captured: {img.width}x{img.height}, "
            f"{len(jpeg_bytes) / 1024:.1f}KB, {duration_ms:.0f}ms"
        )

        return CapturedScreen(
            timestamp=start_time,
            image=img,
            jpeg_bytes=jpeg_bytes,
            width=img.width,
            height=img.height,
            capture_duration_ms=duration_ms,
        )

    def prepare_image(self, img: Image.Image) -> Image.Image:
        """Downscale to ``max_width`` and drop alpha so the image can be JPEG-encoded."""
        if img.width > self._max_width:
            new_height = (self._max_width * img.height) // img.width
            img = img.resize((self._max_width, new_height), Image.Resampling.LANCZOS)

        if img.mode != "RGB":
            img = img.convert("RGB")

        return img

    def encode_jpeg(self, img: Image.Image) -> bytes:
        output = io.BytesIO()
        img.save(output, format="JPEG", quality=self._jpeg_quality, optimize=True)
        return output.getvalue()

    def _save_debug(self, img: Image.Image, timestamp: datetime) -> None:
        path = self._debug_dir / f"{timestamp.strftime('%Y%m%d_%H%M%S')}_0_original.png"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            img.save(path)
            logger.info(f"Debug screenshot saved: {path}")
        except OSError as e:
            logger.warning(f"Could not save debug screenshot: {e}")
