"""
Frame sources.

FrameSource is the collaborator the capture loop, the remote session and the
quality sampler read frames from:

    is_ready() -> bool
    capture_frame() -> Frame | None
    video_dimensions() -> (width, height) | None

VideoCaptureSource wraps cv2.VideoCapture. A reader thread keeps only the
latest decoded image (latest-value-wins), so any number of consumers can
sample the current frame without touching the capture device concurrently.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Optional, Tuple, Union

import cv2
import numpy as np

from camstream_vision import Frame

logger = logging.getLogger(__name__)


class FrameSource(ABC):
    """Frame source interface."""

    @abstractmethod
    def is_ready(self) -> bool:
        pass

    @abstractmethod
    def capture_frame(self) -> Optional[Frame]:
        pass

    @abstractmethod
    def video_dimensions(self) -> Optional[Tuple[int, int]]:
        pass

    def release(self) -> None:
        pass


class VideoCaptureSource(FrameSource):
    """
    OpenCV camera / stream / file source.

    The source reports ready once the first frame has been decoded and the
    warm-up period since open() has elapsed.

    Usage:
        source = VideoCaptureSource(0, warmup_ms=500)
        if source.open():
            frame = source.capture_frame()
        source.release()
    """

    def __init__(
        self,
        source: Union[int, str] = 0,
        warmup_ms: int = 500,
        frame_resolution_wh: Optional[Tuple[int, int]] = None,
    ):
        self.source = source
        self.warmup_s = warmup_ms / 1000.0
        self.frame_resolution_wh = frame_resolution_wh

        self._capture: Optional[cv2.VideoCapture] = None
        self._reader: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._latest: Optional[np.ndarray] = None
        self._frame_count = 0
        self._read_failures = 0
        self._opened_at: Optional[float] = None

    def open(self) -> bool:
        """Open the device and start the reader thread."""
        capture = cv2.VideoCapture(self.source)
        if not capture.isOpened():
            logger.error(f"❌ Could not open video source: {self.source}")
            capture.release()
            return False

        if self.frame_resolution_wh is not None:
            width, height = self.frame_resolution_wh
            capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
            capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

        self._capture = capture
        self._opened_at = time.monotonic()
        self._stop_event.clear()
        self._reader = threading.Thread(
            target=self._read_loop,
            name="FrameReaderThread",
            daemon=True,
        )
        self._reader.start()
        logger.info(f"📷 Video source opened: {self.source}")
        return True

    def _read_loop(self) -> None:
        while not self._stop_event.is_set():
            ok, image = self._capture.read()
            if not ok or image is None:
                self._read_failures += 1
                if self._read_failures % 100 == 1:
                    logger.warning(f"⚠️ Frame read failed ({self._read_failures} failures)")
                self._stop_event.wait(0.05)
                continue

            with self._lock:
                self._latest = image
                self._frame_count += 1

    def is_ready(self) -> bool:
        if self._opened_at is None or self._latest is None:
            return False
        return time.monotonic() - self._opened_at >= self.warmup_s

    def capture_frame(self) -> Optional[Frame]:
        with self._lock:
            image, frame_id = self._latest, self._frame_count
        if image is None:
            return None
        return Frame.from_bgr(image, frame_id=frame_id)

    def video_dimensions(self) -> Optional[Tuple[int, int]]:
        image = self._latest
        if image is None:
            return None
        return int(image.shape[1]), int(image.shape[0])

    def release(self) -> None:
        self._stop_event.set()
        if self._reader is not None:
            self._reader.join(timeout=2.0)
            self._reader = None
        if self._capture is not None:
            self._capture.release()
            self._capture = None
            logger.info(f"📷 Video source released: {self.source}")
        with self._lock:
            self._latest = None
        self._opened_at = None
