"""
Worker message protocol.

Messages cross the process boundary as plain dicts
``{"type": <MessageType value>, "payload": {...}}``; WorkerMessage is the typed
view used on both sides.

Main side → worker:
    load       {model_identifier, task, primary_prompt, negative_prompt, ...}
    detect     {frame (H x W x 3 uint8 array), width, height, frame_id}
    terminate  {}  (no reply)

Worker → main side:
    ready            {model_identifier}
    detections       {frame_id, detections: [{class, class_id, score, bbox}]}
    classifications  {frame_id, classifications: [{label, score}]}
    error            {reason}
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import numpy as np

from camstream_mqtt.schemas import Classification, Detection
from camstream_vision import Frame
from camstream_worker.errors import ProtocolViolation

VALID_TASKS = {"detect", "classify"}


class MessageType(str, Enum):
    # main → worker
    LOAD = "load"
    DETECT = "detect"
    TERMINATE = "terminate"
    # worker → main
    READY = "ready"
    DETECTIONS = "detections"
    CLASSIFICATIONS = "classifications"
    ERROR = "error"


RESULT_TYPES = {MessageType.DETECTIONS, MessageType.CLASSIFICATIONS}


@dataclass(frozen=True)
class WorkerConfig:
    """
    Everything the worker needs to load a model.

    A change to any field requires a fresh worker; the channel never
    reconfigures a live one.

    Attributes:
        model_identifier: Model weights (path or ultralytics model name)
        task: "detect" (closed-set detector) or "classify" (open-vocabulary
            prompt scoring)
        primary_prompt: Text prompt scored in classify mode
        negative_prompt: Optional contrastive prompt paired with the primary one
        input_size: Inference image size
        device: Optional torch device ("cpu", "cuda:0", ...)
    """
    model_identifier: str
    task: str = "detect"
    primary_prompt: Optional[str] = None
    negative_prompt: Optional[str] = None
    input_size: int = 640
    device: Optional[str] = None

    def __post_init__(self):
        if not self.model_identifier:
            raise ValueError("model_identifier cannot be empty")
        if self.task not in VALID_TASKS:
            raise ValueError(f"Invalid task: {self.task}. Must be one of {VALID_TASKS}")
        if self.task == "classify" and not self.primary_prompt:
            raise ValueError("classify task requires a primary_prompt")
        if not 32 <= self.input_size <= 1280:
            raise ValueError(f"input_size must be in [32, 1280], got {self.input_size}")

    @property
    def prompt_labels(self) -> List[str]:
        """Open-vocabulary classes: [primary] or [primary, negative]."""
        labels = [self.primary_prompt] if self.primary_prompt else []
        if self.negative_prompt:
            labels.append(self.negative_prompt)
        return labels

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_identifier": self.model_identifier,
            "task": self.task,
            "primary_prompt": self.primary_prompt,
            "negative_prompt": self.negative_prompt,
            "input_size": self.input_size,
            "device": self.device,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkerConfig":
        try:
            return cls(
                model_identifier=data["model_identifier"],
                task=data.get("task", "detect"),
                primary_prompt=data.get("primary_prompt"),
                negative_prompt=data.get("negative_prompt"),
                input_size=int(data.get("input_size", 640)),
                device=data.get("device"),
            )
        except KeyError as e:
            raise ValueError(f"Missing required WorkerConfig field: {e}")


@dataclass(frozen=True)
class InferenceResult:
    """
    Result of one detect request.

    Exactly one of detections / classifications is set.
    """
    frame_id: int
    detections: Optional[List[Detection]] = None
    classifications: Optional[List[Classification]] = None

    @property
    def is_classification(self) -> bool:
        return self.classifications is not None


@dataclass(frozen=True)
class WorkerMessage:
    type: MessageType
    payload: Dict[str, Any] = field(default_factory=dict)

    # ----- main → worker -----

    @classmethod
    def load(cls, config: WorkerConfig) -> "WorkerMessage":
        return cls(MessageType.LOAD, config.to_dict())

    @classmethod
    def detect(cls, frame: Frame) -> "WorkerMessage":
        return cls(MessageType.DETECT, {
            "frame": frame.pixels,
            "width": frame.width,
            "height": frame.height,
            "frame_id": frame.frame_id,
        })

    @classmethod
    def terminate(cls) -> "WorkerMessage":
        return cls(MessageType.TERMINATE)

    # ----- worker → main -----

    @classmethod
    def ready(cls, model_identifier: str) -> "WorkerMessage":
        return cls(MessageType.READY, {"model_identifier": model_identifier})

    @classmethod
    def error(cls, reason: str) -> "WorkerMessage":
        return cls(MessageType.ERROR, {"reason": reason})

    @classmethod
    def from_result(cls, result: InferenceResult) -> "WorkerMessage":
        if result.is_classification:
            return cls(MessageType.CLASSIFICATIONS, {
                "frame_id": result.frame_id,
                "classifications": [c.to_dict() for c in result.classifications],
            })
        return cls(MessageType.DETECTIONS, {
            "frame_id": result.frame_id,
            "detections": [d.to_dict() for d in result.detections or []],
        })

    def to_result(self) -> InferenceResult:
        """
        Decode a detections/classifications message.

        Raises:
            ProtocolViolation: If this is not a result message or its items
                do not decode
        """
        if self.type not in RESULT_TYPES:
            raise ProtocolViolation(f"'{self.type.value}' is not a result message")

        frame_id = self.payload.get("frame_id", 0)
        try:
            if self.type is MessageType.CLASSIFICATIONS:
                items = self.payload["classifications"]
                return InferenceResult(
                    frame_id=frame_id,
                    classifications=[Classification.from_dict(c) for c in items],
                )
            items = self.payload["detections"]
            return InferenceResult(
                frame_id=frame_id,
                detections=[Detection.from_dict(d) for d in items],
            )
        except KeyError as e:
            raise ProtocolViolation(f"Result message missing field {e}")
        except (TypeError, ValueError) as e:
            raise ProtocolViolation(f"Malformed result message: {e}")

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "payload": self.payload}

    @classmethod
    def from_dict(cls, data: Any) -> "WorkerMessage":
        """
        Raises:
            ProtocolViolation: If data is not a message dict or the type is unknown
        """
        if not isinstance(data, dict) or "type" not in data:
            raise ProtocolViolation(f"Not a worker message: {data!r:.80}")
        try:
            message_type = MessageType(data["type"])
        except ValueError:
            raise ProtocolViolation(f"Unknown message type: {data['type']!r}")

        payload = data.get("payload") or {}
        if not isinstance(payload, dict):
            raise ProtocolViolation(f"Payload of '{message_type.value}' must be a dict")
        return cls(message_type, payload)


def empty_detections(frame_id: int = 0) -> InferenceResult:
    return InferenceResult(frame_id=frame_id, detections=[])


def as_frame(pixels: Any, frame_id: int = 0) -> Frame:
    """Rebuild a Frame from a pixel array received over the pipe."""
    return Frame(pixels=np.asarray(pixels, dtype=np.uint8), frame_id=frame_id)
