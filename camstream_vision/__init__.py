"""
camstream_vision - Frames and pixel-domain metrics

Leaf package: no state, no I/O.

- Frame: immutable captured image
- blur_score / lighting_score / motion_score: sparse-grid pixel metrics
- QualitySample / analyze_image_quality: screenshot quality
"""

from camstream_vision.frame import Frame
from camstream_vision.metrics import (
    QualitySample,
    analyze_image_quality,
    blur_score,
    lighting_score,
    motion_score,
    max_motion_score,
)

__all__ = [
    "Frame",
    "QualitySample",
    "analyze_image_quality",
    "blur_score",
    "lighting_score",
    "motion_score",
    "max_motion_score",
]
