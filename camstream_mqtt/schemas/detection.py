"""
Inference result schemas.

Detection and Classification are what the worker reports for one frame; the
service thresholds and filters them and the consumer wraps the survivors in a
per-frame DetectionMessage or ClassificationMessage.

Wire format (``schema_version`` 1.0)::

    {"schema_version", "timestamp", "frame_id", "service_id",
     "detections": [{"class", "class_id", "score", "bbox": [l, t, w, h]}]}

    {"schema_version", "timestamp", "frame_id", "service_id",
     "classifications": [{"label", "score"}]}
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .common import BBox, Timestamp


def _check_unit(name: str, value: float) -> None:
    if not (0.0 <= value <= 1.0):
        raise ValueError(f"{name} must be in [0.0, 1.0], got {value}")


def _envelope(data: Dict[str, Any]) -> Dict[str, Any]:
    """Common header fields of a per-frame message."""
    return {
        'schema_version': str(data['schema_version']),
        'timestamp': Timestamp(value=data['timestamp']),
        'frame_id': int(data['frame_id']),
        'service_id': str(data['service_id']),
    }


@dataclass(frozen=True)
class Detection:
    """
    One labeled box.

    class_name is already resolved (label map entry, model class name or
    "Class <id>"); class_id is kept so allow-lists can match on it.
    """
    class_name: str
    confidence: float
    bbox: BBox
    class_id: Optional[int] = None

    def __post_init__(self):
        _check_unit("Confidence", self.confidence)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'class': self.class_name,
            'class_id': self.class_id,
            'score': self.confidence,
            'bbox': self.bbox.to_list(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Detection':
        try:
            class_id = data.get('class_id')
            return cls(
                class_name=str(data['class']),
                confidence=float(data['score']),
                bbox=BBox.parse(data['bbox']),
                class_id=int(class_id) if class_id is not None else None,
            )
        except KeyError as e:
            raise ValueError(f"Missing required Detection field: {e}")
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid Detection data: {e}")


@dataclass(frozen=True)
class Classification:
    """Score of one text prompt against a frame."""
    label: str
    score: float

    def __post_init__(self):
        _check_unit("Score", self.score)

    def to_dict(self) -> Dict[str, Any]:
        return {'label': self.label, 'score': self.score}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Classification':
        try:
            return cls(label=str(data['label']), score=float(data['score']))
        except KeyError as e:
            raise ValueError(f"Missing required Classification field: {e}")
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid Classification data: {e}")


@dataclass(frozen=True)
class DetectionMessage:
    """Published (thresholded, filtered) detections of one frame."""
    schema_version: str
    timestamp: Timestamp
    frame_id: int
    service_id: str
    detections: List[Detection] = field(default_factory=list)

    def __post_init__(self):
        if self.frame_id < 0:
            raise ValueError(f"Frame ID must be >= 0, got {self.frame_id}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'schema_version': self.schema_version,
            'timestamp': self.timestamp.to_dict(),
            'frame_id': self.frame_id,
            'service_id': self.service_id,
            'detections': [det.to_dict() for det in self.detections],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DetectionMessage':
        try:
            detections = [Detection.from_dict(det) for det in data.get('detections', [])]
            return cls(detections=detections, **_envelope(data))
        except KeyError as e:
            raise ValueError(f"Missing required DetectionMessage field: {e}")
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid DetectionMessage data: {e}")

    @property
    def detection_count(self) -> int:
        return len(self.detections)

    def get_detections_by_class(self, class_name: str) -> List[Detection]:
        return [det for det in self.detections if det.class_name == class_name]


@dataclass(frozen=True)
class ClassificationMessage:
    """Prompt scores of one frame, highest first."""
    schema_version: str
    timestamp: Timestamp
    frame_id: int
    service_id: str
    classifications: List[Classification] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'schema_version': self.schema_version,
            'timestamp': self.timestamp.to_dict(),
            'frame_id': self.frame_id,
            'service_id': self.service_id,
            'classifications': [c.to_dict() for c in self.classifications],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ClassificationMessage':
        try:
            classifications = [Classification.from_dict(c) for c in data.get('classifications', [])]
            return cls(classifications=classifications, **_envelope(data))
        except KeyError as e:
            raise ValueError(f"Missing required ClassificationMessage field: {e}")
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid ClassificationMessage data: {e}")

    @property
    def top(self) -> Optional[Classification]:
        if not self.classifications:
            return None
        return max(self.classifications, key=lambda c: c.score)
