"""
Latest-value slot for validation ticks.

Motion (capture loop) and classification (worker results) scores are
overwritten in place; the validation reporter reads a snapshot on its own
clock. No queue, no averaging: a tick always sees the freshest values.
"""

import threading
import time
from typing import Optional, Tuple


class LatestScores:
    """Thread-safe {motion, classification} slot."""

    def __init__(self):
        self._lock = threading.Lock()
        self._motion = 0.0
        self._classification = 0.0
        self._updated_at: Optional[float] = None

    def set_motion(self, value: float) -> None:
        with self._lock:
            self._motion = float(value)
            self._updated_at = time.time()

    def set_classification(self, value: float) -> None:
        with self._lock:
            self._classification = min(max(float(value), 0.0), 1.0)
            self._updated_at = time.time()

    def snapshot(self) -> Tuple[float, float]:
        """(motion_score, classification_score)"""
        with self._lock:
            return self._motion, self._classification

    @property
    def updated_at(self) -> Optional[float]:
        return self._updated_at

    def reset(self) -> None:
        with self._lock:
            self._motion = 0.0
            self._classification = 0.0
            self._updated_at = None
