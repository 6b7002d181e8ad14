"""
Frame value type.

A Frame is one captured image: an ``H x W x 3`` uint8 RGB numpy array plus the
sequence number and capture time assigned by the frame source. The pixel
buffer is marked read-only on construction so the single consumer of a
capture (metrics, worker channel or remote session) cannot mutate it.
"""

import time
from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np


@dataclass(frozen=True, eq=False)
class Frame:
    """
    Immutable captured frame.

    Attributes:
        pixels: H x W x C uint8 array (RGB, C >= 3)
        frame_id: Sequential number assigned by the frame source
        timestamp: Capture time (time.time())
    """
    pixels: np.ndarray
    frame_id: int = 0
    timestamp: float = field(default_factory=time.time)

    def __post_init__(self):
        if self.pixels.ndim != 3 or self.pixels.shape[2] < 3:
            raise ValueError(
                f"Frame pixels must be H x W x 3, got shape {self.pixels.shape}"
            )
        if self.pixels.dtype != np.uint8:
            raise ValueError(f"Frame pixels must be uint8, got {self.pixels.dtype}")
        self.pixels.setflags(write=False)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def dimensions(self) -> Tuple[int, int]:
        """(width, height)"""
        return self.width, self.height

    def same_dimensions(self, other: Optional["Frame"]) -> bool:
        return other is not None and self.pixels.shape == other.pixels.shape

    @classmethod
    def from_bgr(cls, image: np.ndarray, frame_id: int = 0,
                 timestamp: Optional[float] = None) -> "Frame":
        """Build from an OpenCV BGR image."""
        rgb = np.ascontiguousarray(image[:, :, 2::-1])
        return cls(
            pixels=rgb,
            frame_id=frame_id,
            timestamp=time.time() if timestamp is None else timestamp,
        )

    def to_bgr(self) -> np.ndarray:
        """Contiguous BGR copy for OpenCV / ultralytics."""
        return np.ascontiguousarray(self.pixels[:, :, 2::-1])
