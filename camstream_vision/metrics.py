"""
Pixel-domain quality metrics.

Pure functions over raw pixel buffers (``H x W x C`` uint8 arrays, RGB channel
order). They sample a sparse grid for speed and are deterministic: identical
buffers always give identical scores.

- blur_score: mean squared Laplacian response on the first channel, every
  4th row/column. Low values mean a blurry (or flat) image.
- lighting_score: mean luma (0.299 R + 0.587 G + 0.114 B) of every 4th pixel
  in raster order, normalized to [0, 1].
- motion_score: summed absolute R/G/B difference over every 10th row/column,
  divided by the total pixel count.
"""

from dataclasses import dataclass

import numpy as np

BLUR_STRIDE = 4
LIGHTING_STRIDE = 4
MOTION_STRIDE = 10

LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114])


@dataclass(frozen=True)
class QualitySample:
    """
    Screenshot quality.

    Attributes:
        blur_score: Non-negative; higher is sharper
        lighting_score: Normalized brightness in [0, 1]
    """
    blur_score: float
    lighting_score: float

    def __post_init__(self):
        if self.blur_score < 0:
            raise ValueError(f"blur_score must be >= 0, got {self.blur_score}")
        if not (0.0 <= self.lighting_score <= 1.0):
            raise ValueError(
                f"lighting_score must be in [0.0, 1.0], got {self.lighting_score}"
            )

    def rounded(self) -> "QualitySample":
        """Blur to whole units, lighting to two decimals (display precision)."""
        return QualitySample(
            blur_score=float(round(self.blur_score)),
            lighting_score=round(self.lighting_score, 2),
        )

    def to_dict(self):
        return {'blur_score': self.blur_score, 'lighting_score': self.lighting_score}


def _as_color(pixels: np.ndarray) -> np.ndarray:
    """View any grayscale or multi-channel buffer as H x W x 3."""
    if pixels.ndim == 2:
        return np.repeat(pixels[:, :, None], 3, axis=2)
    return pixels[:, :, :3]


def blur_score(pixels: np.ndarray, stride: int = BLUR_STRIDE) -> float:
    """
    Laplacian-variance style sharpness score.

    For every sampled pixel c (skipping the 1-pixel border) with neighbours
    l, r, t, b the response is |4c - l - r - t - b|; the score is the mean of
    the squared responses. Degenerate inputs (fewer than 3 rows or columns)
    score 0.
    """
    if pixels.size == 0:
        return 0.0

    plane = pixels if pixels.ndim == 2 else pixels[:, :, 0]
    plane = plane.astype(np.float64)
    height, width = plane.shape

    ys = np.arange(1, height - 1, stride)
    xs = np.arange(1, width - 1, stride)
    if ys.size == 0 or xs.size == 0:
        return 0.0

    center = plane[np.ix_(ys, xs)]
    left = plane[np.ix_(ys, xs - 1)]
    right = plane[np.ix_(ys, xs + 1)]
    top = plane[np.ix_(ys - 1, xs)]
    bottom = plane[np.ix_(ys + 1, xs)]

    laplacian = np.abs(4 * center - left - right - top - bottom)
    return float(np.mean(laplacian * laplacian))


def lighting_score(pixels: np.ndarray, stride: int = LIGHTING_STRIDE) -> float:
    """Mean normalized luma of every ``stride``-th pixel in raster order."""
    if pixels.size == 0:
        return 0.0

    flat = _as_color(pixels).reshape(-1, 3)[::stride].astype(np.float64)
    if flat.shape[0] == 0:
        return 0.0

    brightness = flat @ LUMA_WEIGHTS / 255.0
    return float(np.clip(brightness.mean(), 0.0, 1.0))


def motion_score(current: np.ndarray, previous: np.ndarray,
                 stride: int = MOTION_STRIDE) -> float:
    """
    Mean absolute color difference between two frames.

    Raises:
        ValueError: If the buffers do not share the same dimensions. Callers
            guard the first frame (no previous buffer) themselves.
    """
    if current.shape != previous.shape:
        raise ValueError(
            f"Frame dimensions differ: {current.shape} vs {previous.shape}"
        )

    height, width = current.shape[:2]
    if height == 0 or width == 0:
        return 0.0

    a = _as_color(current)[::stride, ::stride].astype(np.int32)
    b = _as_color(previous)[::stride, ::stride].astype(np.int32)
    total = int(np.abs(a - b).sum())
    return total / (width * height)


def max_motion_score(width: int, height: int, stride: int = MOTION_STRIDE) -> float:
    """Score of an all-black vs all-white pair of the given size."""
    if width <= 0 or height <= 0:
        return 0.0
    samples = len(range(0, height, stride)) * len(range(0, width, stride))
    return 765 * samples / (width * height)


def analyze_image_quality(pixels: np.ndarray) -> QualitySample:
    """Blur and lighting for one screenshot."""
    return QualitySample(
        blur_score=blur_score(pixels),
        lighting_score=lighting_score(pixels),
    )
