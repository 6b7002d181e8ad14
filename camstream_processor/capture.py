"""
Capture Loop - fixed-rate frame sampling with admission control.

Each tick:
1. No-op unless the frame source is ready and the worker is operational
   (READY or BUSY)
2. Capture the current frame
3. Motion: compare with the previous frame (same dimensions only), overwrite
   the latest motion score, keep the current frame as "previous"
4. Try to submit the frame; a rejection (worker busy) drops the frame

Dropped frames are the expected steady state under a model slower than the
refresh rate; they are counted, never queued.

Threading:
- One CaptureLoop thread per detection configuration; stop() ends it and
  releases the previous-frame buffer.
"""

import logging
import threading
import time
from typing import Dict, Optional

import supervision as sv

from camstream_mqtt.logging import LogEvent, create_logger
from camstream_vision import Frame, motion_score
from camstream_processor.sources import FrameSource
from camstream_processor.state import LatestScores

logger = logging.getLogger(__name__)


class CaptureLoop:
    """
    Args:
        source: FrameSource to sample
        channel: Worker channel (is_operational(), submit(frame) -> bool)
        scores: Latest-value slot receiving motion scores
        refresh_hz: Tick rate
    """

    def __init__(
        self,
        source: FrameSource,
        channel,
        scores: LatestScores,
        refresh_hz: float = 30.0,
    ):
        self.source = source
        self.channel = channel
        self.scores = scores
        self.period_s = 1.0 / refresh_hz

        self._previous: Optional[Frame] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._stopped = False
        self._fps_monitor = sv.FPSMonitor()
        self._events = create_logger("capture")

        self.frames_captured = 0
        self.frames_submitted = 0
        self.frames_dropped = 0
        self.idle_ticks = 0

    @property
    def previous_frame(self) -> Optional[Frame]:
        return self._previous

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def tick(self) -> bool:
        """
        Run one capture step.

        Returns:
            True if a frame was submitted for inference
        """
        if self._stopped:
            return False

        if not self.source.is_ready() or not self.channel.is_operational():
            self.idle_ticks += 1
            return False

        frame = self.source.capture_frame()
        if frame is None:
            self.idle_ticks += 1
            return False

        self.frames_captured += 1
        self._fps_monitor.tick()

        if frame.same_dimensions(self._previous):
            self.scores.set_motion(motion_score(frame.pixels, self._previous.pixels))
        self._previous = frame

        if self.channel.submit(frame):
            self.frames_submitted += 1
            return True

        self.frames_dropped += 1
        self._events.debug(
            event=LogEvent.INFERENCE_FRAME_DROPPED,
            message=f"Frame {frame.frame_id} dropped (worker busy)",
            metadata={"frame_id": frame.frame_id},
        )
        return False

    def start(self) -> None:
        if self.is_running() or self._stopped:
            return
        self._thread = threading.Thread(
            target=self._run,
            name="CaptureLoopThread",
            daemon=True,
        )
        self._thread.start()
        logger.info(f"🎬 Capture loop started ({1.0 / self.period_s:.0f} Hz)")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            started = time.monotonic()
            try:
                self.tick()
            except Exception as e:
                logger.error(f"❌ Capture tick failed: {e}", exc_info=True)
            elapsed = time.monotonic() - started
            self._stop_event.wait(max(0.0, self.period_s - elapsed))

    def stop(self) -> None:
        """Stop ticking and release the previous frame. Idempotent."""
        self._stopped = True
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)
        self._thread = None
        if self._previous is not None:
            self._previous = None
            logger.info("🛑 Capture loop stopped")

    @property
    def fps(self) -> float:
        if self.frames_captured < 2:
            return 0.0
        return float(self._fps_monitor.fps)

    def get_stats(self) -> Dict[str, float]:
        return {
            "frames_captured": self.frames_captured,
            "frames_submitted": self.frames_submitted,
            "frames_dropped": self.frames_dropped,
            "idle_ticks": self.idle_ticks,
            "fps": round(self.fps, 1),
        }
