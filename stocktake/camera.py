"""Barcode feeds: USB camera decoding with OpenCV, and keyboard-wedge input."""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from collections.abc import AsyncIterator, Callable
from typing import TextIO

logger = logging.getLogger(__name__)


class ScanThrottle:
    """Drop detections that arrive within ``window_ms`` of the last accepted one.

    A single physical scan usually decodes on several consecutive frames.
    """

    def __init__(
        self, window_ms: int = 800, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self._window = window_ms / 1000
        self._clock = clock
        self._last: float | None = None

    def allow(self) -> bool:
        now = self._clock()
        if self._last is not None and now - self._last < self._window:
            return False
        self._last = now
        return True

    def touch(self) -> None:
        """Restart the window now, e.g. after a prompt paused the feed.

        Frames buffered by the capture while the operator was answering
        still belong to the scan that was just handled.
        """
        self._last = self._clock()


async def throttled(
    feed: AsyncIterator[str], throttle: ScanThrottle
) -> AsyncIterator[str]:
    """Pass through the codes of ``feed`` that the throttle lets through."""
    async for code in feed:
        if throttle.allow():
            yield code
        else:
            logger.debug("Suppressed repeated detection %r", code)


async def line_codes(stream: TextIO | None = None) -> AsyncIterator[str]:
    """Codes typed (or sent by a keyboard-wedge scanner), one per line, until EOF."""
    stream = stream or sys.stdin
    while True:
        line = await asyncio.to_thread(stream.readline)
        if not line:
            return
        code = line.strip()
        if code:
            yield code


class BarcodeCamera:
    """Decode barcodes from a USB camera."""

    def __init__(self, camera_index: int = 0, poll_interval: float = 0.05) -> None:
        self._camera_index = camera_index
        self._poll_interval = poll_interval
        self._detector = None

    def decode_frame(self, frame) -> list[str]:
        """Decode every barcode visible in one frame."""
        cv2 = _import_cv2()
        if self._detector is None:
            self._detector = cv2.barcode.BarcodeDetector()
        ok, decoded, _points, _ = self._detector.detectAndDecodeMulti(frame)
        if not ok:
            return []
        return [d for d in decoded if d]

    async def codes(self, max_frames: int | None = None) -> AsyncIterator[str]:
        """Yield decoded strings as frames are read from the camera.

        Args:
            max_frames: Stop after this many frames; run until cancelled if None.
        """
        cv2 = _import_cv2()

        cap = cv2.VideoCapture(self._camera_index)
        if not cap.isOpened():
            raise RuntimeError(
                f"No se pudo abrir la cámara {self._camera_index}. "
                f"Verificá la conexión."
            )

        try:
            frames = 0
            while max_frames is None or frames < max_frames:
                ret, frame = await asyncio.to_thread(cap.read)
                frames += 1
                if not ret or frame is None:
                    raise RuntimeError(
                        f"No se pudo leer un cuadro de la cámara {self._camera_index}."
                    )
                for code in self.decode_frame(frame):
                    yield code
                await asyncio.sleep(self._poll_interval)
        finally:
            cap.release()

    @staticmethod
    def list_cameras(max_check: int = 10) -> list[int]:
        """List available USB camera indices by probing."""
        cv2 = _import_cv2()

        available: list[int] = []
        for i in range(max_check):
            cap = cv2.VideoCapture(i)
            if cap.isOpened():
                available.append(i)
                cap.release()
        return available


def _import_cv2():
    try:
        import cv2
    except ImportError:
        raise ImportError(
            "opencv-python is required: pip install 'stocktake[camera]'"
        ) from None
    return cv2
