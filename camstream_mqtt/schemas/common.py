"""
Shared value types for consumer-facing messages.

Boxes travel as ``[left, top, width, height]`` lists in source-frame pixels;
timestamps as ISO 8601 strings in UTC.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Sequence


@dataclass(frozen=True)
class BBox:
    """
    Detection box in source-frame pixels, origin at the top-left corner.

    Degenerate boxes (zero width or height) are rejected; the worker skips
    them before they reach a message.
    """
    x: float
    y: float
    width: float
    height: float

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Degenerate box {self.width}x{self.height} at ({self.x}, {self.y})")

    def to_list(self) -> List[float]:
        return [self.x, self.y, self.width, self.height]

    @classmethod
    def from_xyxy(cls, xyxy: Sequence[float]) -> 'BBox':
        """Corners as produced by sv.Detections.xyxy."""
        x_min, y_min, x_max, y_max = (float(v) for v in xyxy)
        return cls(x=x_min, y=y_min, width=x_max - x_min, height=y_max - y_min)

    @classmethod
    def parse(cls, raw: Any) -> 'BBox':
        """
        Decode a wire box.

        Accepts the ``[left, top, width, height]`` list this package emits,
        or a ``{x, y, width, height}`` mapping from older producers.

        Raises:
            ValueError: If the shape or any coordinate is invalid
        """
        try:
            if isinstance(raw, dict):
                values = (raw['x'], raw['y'], raw['width'], raw['height'])
            else:
                values = tuple(raw)
                if len(values) != 4:
                    raise ValueError(f"expected 4 values, got {len(values)}")
            x, y, width, height = (float(v) for v in values)
        except KeyError as e:
            raise ValueError(f"Missing bbox field: {e}")
        except TypeError as e:
            raise ValueError(f"Invalid bbox: {raw!r} ({e})")
        return cls(x=x, y=y, width=width, height=height)


@dataclass(frozen=True)
class Timestamp:
    value: str

    @classmethod
    def now(cls) -> 'Timestamp':
        return cls(value=datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> str:
        return self.value
