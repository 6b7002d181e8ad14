"""
Worker Runtime Tests (Without a Real Process or Model)
======================================================

Drives the worker-side message handling with a fake model loader and a
list-backed pipe, plus the supervision → protocol conversions.

Usage:
    pytest test_worker_runtime.py
"""

import numpy as np
import pytest
import supervision as sv

from camstream_mqtt.schemas import BBox, Detection
from camstream_vision import Frame
from camstream_worker import (
    InferenceResult,
    MessageType,
    ModelLoadError,
    ProtocolViolation,
    WorkerConfig,
    WorkerMessage,
    WorkerRuntime,
    run_worker,
)
from camstream_worker.model_loader import (
    class_label,
    classifications_from_supervision,
    detections_from_supervision,
)


class FakeModel:
    def __init__(self, fail=False):
        self.fail = fail
        self.frames = []

    def predict(self, frame):
        if self.fail:
            raise RuntimeError("CUDA out of memory")
        self.frames.append(frame)
        return InferenceResult(
            frame_id=frame.frame_id,
            detections=[Detection("person", 0.9, BBox(1, 2, 3, 4), class_id=0)],
        )


class FakeConn:
    """List-backed pipe end: recv() pops inbox, raises EOFError when empty."""

    def __init__(self, inbox):
        self.inbox = list(inbox)
        self.outbox = []
        self.closed = False

    def recv(self):
        if not self.inbox:
            raise EOFError
        return self.inbox.pop(0)

    def send(self, message):
        self.outbox.append(message)

    def close(self):
        self.closed = True


def load_message(model="yolo11n.pt"):
    return WorkerMessage.load(WorkerConfig(model_identifier=model))


def frame(frame_id=1):
    return Frame(np.zeros((8, 8, 3), dtype=np.uint8), frame_id=frame_id)


def test_load_then_detect():
    model = FakeModel()
    runtime = WorkerRuntime(loader_factory=lambda config: model)

    reply = runtime.handle(load_message())
    assert reply.type is MessageType.READY
    assert reply.payload["model_identifier"] == "yolo11n.pt"

    reply = runtime.handle(WorkerMessage.detect(frame(5)))
    assert reply.type is MessageType.DETECTIONS
    result = reply.to_result()
    assert result.frame_id == 5
    assert result.detections[0].class_name == "person"
    assert model.frames[0].frame_id == 5


def test_detect_before_load_replies_empty_detections():
    runtime = WorkerRuntime(loader_factory=lambda config: FakeModel())

    reply = runtime.handle(WorkerMessage.detect(frame(3)))

    assert reply.type is MessageType.DETECTIONS
    assert reply.to_result().detections == []
    assert reply.payload["frame_id"] == 3


def test_detect_without_frame_data_is_an_error():
    runtime = WorkerRuntime(loader_factory=lambda config: FakeModel())
    runtime.handle(load_message())

    reply = runtime.handle(WorkerMessage(MessageType.DETECT, {"frame_id": 1}))

    assert reply.type is MessageType.ERROR
    assert "frame" in reply.payload["reason"]


def test_load_failure_replies_error():
    def failing_loader(config):
        raise ModelLoadError(f"Failed to load {config.model_identifier}: not found")

    runtime = WorkerRuntime(loader_factory=failing_loader)
    reply = runtime.handle(load_message("missing.pt"))

    assert reply.type is MessageType.ERROR
    assert "missing.pt" in reply.payload["reason"]
    assert runtime.model is None


def test_inference_failure_replies_error():
    runtime = WorkerRuntime(loader_factory=lambda config: FakeModel(fail=True))
    runtime.handle(load_message())

    reply = runtime.handle(WorkerMessage.detect(frame(9)))

    assert reply.type is MessageType.ERROR
    assert "frame 9" in reply.payload["reason"]


def test_run_worker_serves_until_terminate():
    conn = FakeConn([
        load_message().to_dict(),
        WorkerMessage.detect(frame(1)).to_dict(),
        WorkerMessage.terminate().to_dict(),
        WorkerMessage.detect(frame(2)).to_dict(),  # never handled
    ])

    run_worker(conn, loader_factory=lambda config: FakeModel())

    assert [m["type"] for m in conn.outbox] == ["ready", "detections"]
    assert len(conn.inbox) == 1
    assert conn.closed


def test_run_worker_answers_garbage_with_error():
    conn = FakeConn([{"type": "bogus"}, "not a message"])

    run_worker(conn, loader_factory=lambda config: FakeModel())

    assert [m["type"] for m in conn.outbox] == ["error", "error"]
    assert conn.closed


def test_worker_message_decoding_violations():
    with pytest.raises(ProtocolViolation):
        WorkerMessage.from_dict({"payload": {}})
    with pytest.raises(ProtocolViolation):
        WorkerMessage.from_dict({"type": "ready", "payload": [1, 2]})
    with pytest.raises(ProtocolViolation):
        WorkerMessage.ready("yolo11n.pt").to_result()
    with pytest.raises(ProtocolViolation):
        WorkerMessage(MessageType.DETECTIONS, {"frame_id": 1}).to_result()
    with pytest.raises(ProtocolViolation):
        WorkerMessage(MessageType.CLASSIFICATIONS, {
            "classifications": [{"label": "a", "score": 4.0}],
        }).to_result()


def test_worker_config_validation():
    with pytest.raises(ValueError):
        WorkerConfig(model_identifier="")
    with pytest.raises(ValueError):
        WorkerConfig(model_identifier="yolov8s-world.pt", task="classify")
    with pytest.raises(ValueError):
        WorkerConfig(model_identifier="yolo11n.pt", task="segment")

    config = WorkerConfig(
        model_identifier="yolov8s-world.pt",
        task="classify",
        primary_prompt="a cat",
        negative_prompt="a dog",
    )
    assert config.prompt_labels == ["a cat", "a dog"]
    assert WorkerConfig.from_dict(config.to_dict()) == config


def test_class_label_fallback():
    assert class_label(0, {0: "person"}) == "person"
    assert class_label(7, {0: "person"}) == "Class 7"
    assert class_label(3) == "Class 3"


def test_detections_from_supervision():
    detections = sv.Detections(
        xyxy=np.array([[10, 20, 50, 100], [5, 5, 5, 30]], dtype=float),
        confidence=np.array([0.8, 0.9]),
        class_id=np.array([2, 0]),
    )

    result = detections_from_supervision(detections, {2: "car"})

    # degenerate (zero width) box skipped
    assert len(result) == 1
    assert result[0].class_name == "car"
    assert result[0].class_id == 2
    assert result[0].bbox.to_list() == [10.0, 20.0, 40.0, 80.0]
    assert result[0].confidence == pytest.approx(0.8)


def test_classifications_take_max_confidence_per_label():
    detections = sv.Detections(
        xyxy=np.array([[0, 0, 10, 10], [0, 0, 20, 20], [5, 5, 9, 9]], dtype=float),
        confidence=np.array([0.3, 0.7, 0.4]),
        class_id=np.array([0, 0, 1]),
    )

    result = classifications_from_supervision(detections, ["a cat", "a dog"])

    assert [c.label for c in result] == ["a cat", "a dog"]
    assert [c.score for c in result] == pytest.approx([0.7, 0.4])


def test_classifications_absent_labels_score_zero():
    result = classifications_from_supervision(sv.Detections.empty(), ["a cat", "a dog"])
    assert [c.score for c in result] == [0.0, 0.0]
    assert {c.label for c in result} == {"a cat", "a dog"}
