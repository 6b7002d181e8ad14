"""
Validation Reporter - periodic emission of the latest scores.

Runs only while detection is active. Each tick reads the LatestScores slot
and hands {motion, classification} to the consumer; the cadence is decoupled
from the frame rate. stop() joins the timer thread, so no tick fires after it
returns.
"""

import logging
import threading
from typing import Callable, Optional

from camstream_mqtt.logging import LogEvent, create_logger
from camstream_processor.state import LatestScores

logger = logging.getLogger(__name__)


class ValidationReporter:
    def __init__(
        self,
        scores: LatestScores,
        on_tick: Callable[[float, float], None],
        interval_ms: int = 1500,
    ):
        self.scores = scores
        self.on_tick = on_tick
        self.interval_s = interval_ms / 1000.0

        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._events = create_logger("validation")
        self.ticks = 0

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def tick(self) -> None:
        motion, classification = self.scores.snapshot()
        self.ticks += 1
        self._events.debug(
            event=LogEvent.VALIDATION_TICK,
            message="Validation tick",
            metadata={"motion_score": motion, "classification_score": classification},
        )
        self.on_tick(motion, classification)

    def start(self) -> None:
        """Start ticking. No-op if already running."""
        with self._lock:
            if self.is_running():
                return
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event,),
                name="ValidationReporterThread",
                daemon=True,
            )
            self._thread.start()
        logger.info(f"⏱️ Validation reporter started (every {self.interval_s:.1f}s)")

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self.interval_s):
            try:
                self.tick()
            except Exception as e:
                logger.error(f"❌ Validation tick failed: {e}", exc_info=True)

    def stop(self) -> None:
        """Cancel the timer. Idempotent."""
        with self._lock:
            thread, self._thread = self._thread, None
            self._stop_event.set()

        if thread is None:
            return
        if thread is not threading.current_thread():
            thread.join(timeout=self.interval_s + 1.0)
        logger.info("⏱️ Validation reporter stopped")
