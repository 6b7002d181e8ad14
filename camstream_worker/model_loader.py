"""
Model Loader - YOLO / YOLO-World loading and inference inside the worker process.

This module provides the ModelLoader class which loads the model described by
a WorkerConfig and turns raw ultralytics results into protocol-level
detections or prompt classifications via supervision.

Modes:
- detect: closed-set YOLO detector, one Detection per box
- classify: open-vocabulary YOLO-World with classes [primary, negative?];
  each prompt scores the max confidence among its boxes (0 when absent)

Thread Safety:
- NOT thread-safe; owned by the single worker process loop
"""

from typing import Dict, List, Optional

import supervision as sv
from ultralytics import YOLO, YOLOWorld

from camstream_mqtt.schemas import BBox, Classification, Detection
from camstream_vision import Frame
from camstream_worker.errors import ModelLoadError
from camstream_worker.protocol import InferenceResult, WorkerConfig


def class_label(class_id: int, names: Optional[Dict[int, str]] = None) -> str:
    """Model class name, else "Class <id>"."""
    if names and class_id in names:
        return names[class_id]
    return f"Class {class_id}"


def detections_from_supervision(
    detections: sv.Detections,
    names: Optional[Dict[int, str]] = None,
) -> List[Detection]:
    """
    Convert sv.Detections to protocol detections.

    Boxes are converted to [left, top, width, height]; degenerate boxes
    (zero width or height) are skipped.
    """
    result = []
    if len(detections) == 0:
        return result

    confidences = detections.confidence
    class_ids = detections.class_id

    for i in range(len(detections)):
        x_min, y_min, x_max, y_max = (float(v) for v in detections.xyxy[i])
        if x_max <= x_min or y_max <= y_min:
            continue

        class_id = int(class_ids[i]) if class_ids is not None else -1
        confidence = float(confidences[i]) if confidences is not None else 1.0
        result.append(Detection(
            class_name=class_label(class_id, names),
            confidence=min(max(confidence, 0.0), 1.0),
            bbox=BBox.from_xyxy((x_min, y_min, x_max, y_max)),
            class_id=class_id,
        ))
    return result


def classifications_from_supervision(
    detections: sv.Detections,
    labels: List[str],
) -> List[Classification]:
    """
    Score each prompt label by its highest box confidence.

    class_id indexes into labels (YOLO-World classes are set in label order).
    Returns one entry per label, sorted by score descending.
    """
    scores = {label: 0.0 for label in labels}

    if len(detections) > 0 and detections.class_id is not None:
        confidences = detections.confidence
        for i, class_id in enumerate(detections.class_id):
            if not 0 <= int(class_id) < len(labels):
                continue
            label = labels[int(class_id)]
            confidence = float(confidences[i]) if confidences is not None else 1.0
            scores[label] = max(scores[label], min(confidence, 1.0))

    ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    return [Classification(label=label, score=score) for label, score in ranked]


class ModelLoader:
    """
    Loads one model per worker lifetime and runs it on frames.

    Usage:
        loader = ModelLoader(WorkerConfig(model_identifier="yolo11n.pt"))
        loader.load()
        result = loader.predict(frame)
    """

    def __init__(self, config: WorkerConfig):
        self.config = config
        self._model = None
        self._names: Dict[int, str] = {}

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def load(self) -> "ModelLoader":
        """
        Load the configured model.

        Raises:
            ModelLoadError: If weights cannot be loaded or prompts rejected
        """
        config = self.config
        try:
            if config.task == "classify":
                model = YOLOWorld(config.model_identifier)
                model.set_classes(config.prompt_labels)
            else:
                model = YOLO(config.model_identifier)
        except Exception as e:
            raise ModelLoadError(f"Failed to load {config.model_identifier}: {e}") from e

        # Configure model for inference
        model.overrides["verbose"] = False
        model.overrides["imgsz"] = config.input_size
        if config.device:
            model.overrides["device"] = config.device

        self._model = model
        self._names = dict(getattr(model, "names", None) or {})
        return self

    def predict(self, frame: Frame) -> InferenceResult:
        """Run the model on one frame."""
        if self._model is None:
            raise ModelLoadError("predict() called before load()")

        results = self._model(frame.to_bgr(), verbose=False)[0]
        detections = sv.Detections.from_ultralytics(results)

        if self.config.task == "classify":
            return InferenceResult(
                frame_id=frame.frame_id,
                classifications=classifications_from_supervision(
                    detections, self.config.prompt_labels
                ),
            )

        names = getattr(results, "names", None) or self._names
        return InferenceResult(
            frame_id=frame.frame_id,
            detections=detections_from_supervision(detections, names),
        )

