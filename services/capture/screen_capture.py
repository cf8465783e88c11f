"""Screen capture service.

Grabs the primary monitor with ``mss``, re-encodes the frame with Pillow
(downscaled to the configured width, JPEG at the configured quality) and
writes it to the screenshots directory under a timestamp-derived name.

Public class: `ScreenCaptureService`

Example:
    service = ScreenCaptureService(settings)
    path = await service.capture()
"""
from __future__ import annotations

import asyncio
import itertools
import logging
import time
from pathlib import Path
from typing import Callable, Optional

import mss
from PIL import Image

from models.errors import CaptureFailure
from utils.config import Settings

LOGGER = logging.getLogger(__name__)

FrameGrabber = Callable[[], Image.Image]


def grab_primary_monitor() -> Image.Image:
    """Return the primary monitor contents as an RGB Pillow image."""
    with mss.mss() as sct:
        # monitors[0] is the union of all displays; 1 is the primary one
        monitor = sct.monitors[1] if len(sct.monitors) > 1 else sct.monitors[0]
        shot = sct.grab(monitor)
        return Image.frombytes("RGB", shot.size, shot.bgra, "raw", "BGRX")


class ScreenCaptureService:
    """Produce one JPEG screenshot file per call.

    Args:
        settings: Runtime settings supplying the directory, width and quality.
        grabber: Optional callable returning a Pillow image; defaults to the
            primary monitor via ``mss``.
    """

    def __init__(self, settings: Settings, grabber: Optional[FrameGrabber] = None) -> None:
        self.directory = Path(settings.screenshots_dir)
        self.max_width = settings.image_max_width
        self.quality = settings.image_quality
        self.grabber = grabber or grab_primary_monitor
        self._sequence = itertools.count(1)
        self.directory.mkdir(parents=True, exist_ok=True)
        LOGGER.info("Screenshots directory created/verified at: %s", self.directory)

    async def capture(self) -> Path:
        """Capture the screen and return the path of the written JPEG.

        Raises:
            CaptureFailure: If grabbing or encoding the frame fails.
        """
        LOGGER.debug("Taking screenshot...")
        path = self._next_path()
        try:
            await asyncio.to_thread(self._capture_to, path)
        except Exception as exc:
            path.unlink(missing_ok=True)
            raise CaptureFailure(f"Failed to take or optimize screenshot: {exc}") from exc
        LOGGER.info("Screenshot saved at: %s", path)
        return path

    def _next_path(self) -> Path:
        timestamp = int(time.time() * 1000)
        return self.directory / f"screenshot-{timestamp}-{next(self._sequence)}.jpg"

    def _capture_to(self, path: Path) -> None:
        image = self.grabber()
        try:
            encoded = self._optimize(image)
            encoded.save(path, format="JPEG", quality=self.quality)
        finally:
            image.close()

    def _optimize(self, image: Image.Image) -> Image.Image:
        """Flatten to RGB and scale down to the configured width."""
        if image.mode != "RGB":
            image = image.convert("RGB")
        width, height = image.size
        if width > self.max_width:
            new_height = max(1, round(height * self.max_width / width))
            image = image.resize((self.max_width, new_height), Image.LANCZOS)
        return image
