"""
Inference Worker Channel Tests (Without a Real Worker)
======================================================

State machine and admission control of InferenceWorkerChannel, driven by a
fake WorkerHandle. Worker replies are fed straight into handle_message() so
the tests do not depend on listener timing; worker death goes through the
listener thread.

Usage:
    pytest test_worker_channel.py
"""

import queue
import time

import numpy as np
import pytest

from camstream_mqtt.schemas import ErrorKind
from camstream_vision import Frame
from camstream_worker import (
    InferenceWorkerChannel,
    InvalidTransition,
    WorkerConfig,
    WorkerHandle,
    WorkerMessage,
    WorkerState,
    can_transition,
)
from camstream_worker.protocol import InferenceResult

CONFIG = WorkerConfig(model_identifier="yolo11n.pt")


class FakeWorkerHandle(WorkerHandle):
    def __init__(self):
        self.sent = []
        self.inbox = queue.Queue()
        self.alive = True
        self.terminate_calls = 0
        self.fail_send = False

    def send(self, message):
        if self.fail_send:
            raise BrokenPipeError("pipe closed")
        self.sent.append(message)

    def recv(self, timeout):
        try:
            return self.inbox.get(timeout=timeout)
        except queue.Empty:
            return None

    def is_alive(self):
        return self.alive

    def terminate(self):
        self.terminate_calls += 1
        self.alive = False


def test_worker_handle_is_abstract():
    with pytest.raises(TypeError):
        WorkerHandle()


class Recorder:
    def __init__(self):
        self.results = []
        self.errors = []
        self.ready = 0

    def on_result(self, result):
        self.results.append(result)

    def on_error(self, error):
        self.errors.append(error)

    def on_ready(self):
        self.ready += 1


def make_channel():
    handle = FakeWorkerHandle()
    recorder = Recorder()
    channel = InferenceWorkerChannel(
        on_result=recorder.on_result,
        on_error=recorder.on_error,
        on_ready=recorder.on_ready,
        spawn=lambda: handle,
        poll_interval=0.01,
    )
    return channel, handle, recorder


def ready_channel():
    channel, handle, recorder = make_channel()
    assert channel.start(CONFIG)
    channel.handle_message(WorkerMessage.ready(CONFIG.model_identifier).to_dict())
    return channel, handle, recorder


def frame(frame_id=1):
    return Frame(np.zeros((6, 6, 3), dtype=np.uint8), frame_id=frame_id)


def detections_reply(frame_id=1, score=0.9):
    return {
        "type": "detections",
        "payload": {
            "frame_id": frame_id,
            "detections": [{"class": "person", "class_id": 0, "score": score, "bbox": [1, 2, 3, 4]}],
        },
    }


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_start_sends_load_and_ready_enables_submit():
    channel, handle, recorder = make_channel()

    assert channel.start(CONFIG)
    assert channel.state is WorkerState.LOADING
    assert handle.sent[0]["type"] == "load"
    assert handle.sent[0]["payload"]["model_identifier"] == "yolo11n.pt"
    assert not channel.submit(frame())

    channel.handle_message(WorkerMessage.ready("yolo11n.pt").to_dict())

    assert channel.state is WorkerState.READY
    assert recorder.ready == 1
    channel.stop()


def test_second_submit_while_busy_is_rejected():
    channel, handle, recorder = ready_channel()

    assert channel.submit(frame(1))
    assert channel.state is WorkerState.BUSY
    assert not channel.submit(frame(2))

    detect_messages = [m for m in handle.sent if m["type"] == "detect"]
    assert len(detect_messages) == 1
    assert detect_messages[0]["payload"]["frame_id"] == 1
    assert channel.get_stats()["submissions_rejected"] == 1
    channel.stop()


def test_result_returns_channel_to_ready():
    channel, handle, recorder = ready_channel()
    channel.submit(frame(4))

    channel.handle_message(detections_reply(frame_id=4))

    assert channel.state is WorkerState.READY
    assert not channel.has_pending_request
    assert len(recorder.results) == 1
    result = recorder.results[0]
    assert isinstance(result, InferenceResult)
    assert result.frame_id == 4
    assert result.detections[0].class_name == "person"
    assert channel.submit(frame(5))
    channel.stop()


def test_load_failure_is_terminal():
    channel, handle, recorder = make_channel()
    channel.start(CONFIG)

    channel.handle_message(WorkerMessage.error("weights not found").to_dict())

    assert channel.state is WorkerState.ERRORED
    assert [e.kind for e in recorder.errors] == [ErrorKind.LOAD_FAILURE]
    assert recorder.errors[0].reason == "weights not found"
    assert not channel.submit(frame())
    assert recorder.ready == 0
    channel.stop()


def test_inference_failure_is_transient():
    channel, handle, recorder = ready_channel()
    channel.submit(frame(1))

    channel.handle_message(WorkerMessage.error("Inference failed on frame 1").to_dict())

    assert channel.state is WorkerState.READY
    assert [e.kind for e in recorder.errors] == [ErrorKind.INFERENCE_FAILURE]
    assert recorder.results == []
    assert channel.submit(frame(2))
    channel.stop()


def test_unsolicited_result_is_a_protocol_violation():
    channel, handle, recorder = ready_channel()

    channel.handle_message(detections_reply())

    assert channel.state is WorkerState.READY
    assert recorder.results == []
    assert [e.kind for e in recorder.errors] == [ErrorKind.PROTOCOL_VIOLATION]
    assert channel.get_stats()["protocol_violations"] == 1
    channel.stop()


def test_malformed_messages_are_discarded():
    channel, handle, recorder = ready_channel()
    channel.submit(frame(1))

    channel.handle_message({"type": "bogus"})
    channel.handle_message("garbage")
    channel.handle_message(WorkerMessage.ready("again").to_dict())

    assert channel.state is WorkerState.BUSY
    assert len(recorder.errors) == 3
    assert all(e.kind is ErrorKind.PROTOCOL_VIOLATION for e in recorder.errors)

    # a result whose items do not decode still frees the slot
    channel.handle_message(detections_reply(frame_id=1, score=7.0))
    assert channel.state is WorkerState.READY
    assert recorder.results == []
    channel.stop()


def test_stop_is_idempotent_and_final():
    channel, handle, recorder = ready_channel()
    channel.submit(frame(1))

    channel.stop()
    channel.stop()

    assert channel.state is WorkerState.TERMINATED
    assert handle.terminate_calls == 1
    assert not channel.has_pending_request
    assert not channel.submit(frame(2))
    with pytest.raises(InvalidTransition):
        channel.start(CONFIG)


def test_result_after_stop_is_not_delivered():
    channel, handle, recorder = ready_channel()
    channel.submit(frame(1))
    channel.stop()

    channel.handle_message(detections_reply(frame_id=1))

    assert recorder.results == []


def test_spawn_failure():
    recorder = Recorder()

    def broken_spawn():
        raise OSError("cannot fork")

    channel = InferenceWorkerChannel(
        on_result=recorder.on_result,
        on_error=recorder.on_error,
        spawn=broken_spawn,
    )

    assert not channel.start(CONFIG)
    assert channel.state is WorkerState.ERRORED
    assert [e.kind for e in recorder.errors] == [ErrorKind.SPAWN_FAILURE]
    channel.stop()
    assert channel.state is WorkerState.TERMINATED


def test_worker_death_is_detected_by_listener():
    channel, handle, recorder = ready_channel()

    handle.alive = False

    assert wait_for(lambda: len(recorder.errors) == 1)
    assert channel.state is WorkerState.ERRORED
    assert [e.kind for e in recorder.errors] == [ErrorKind.WORKER_EXITED]
    channel.stop()


def test_listener_delivers_worker_messages():
    channel, handle, recorder = make_channel()
    channel.start(CONFIG)

    handle.inbox.put(WorkerMessage.ready("yolo11n.pt").to_dict())
    assert wait_for(lambda: channel.state is WorkerState.READY)

    channel.submit(frame(3))
    handle.inbox.put(detections_reply(frame_id=3))
    assert wait_for(lambda: len(recorder.results) == 1)
    channel.stop()


def test_send_failure_marks_worker_exited():
    channel, handle, recorder = ready_channel()
    handle.fail_send = True

    assert not channel.submit(frame(1))
    assert channel.state is WorkerState.ERRORED
    assert [e.kind for e in recorder.errors] == [ErrorKind.WORKER_EXITED]
    channel.stop()


def test_transition_graph():
    assert can_transition(WorkerState.UNINITIALIZED, WorkerState.LOADING)
    assert can_transition(WorkerState.READY, WorkerState.BUSY)
    assert can_transition(WorkerState.BUSY, WorkerState.READY)
    assert can_transition(WorkerState.LOADING, WorkerState.ERRORED)
    assert can_transition(WorkerState.ERRORED, WorkerState.TERMINATED)
    assert not can_transition(WorkerState.LOADING, WorkerState.BUSY)
    assert not can_transition(WorkerState.ERRORED, WorkerState.READY)
    assert not can_transition(WorkerState.TERMINATED, WorkerState.ERRORED)
    assert not can_transition(WorkerState.ERRORED, WorkerState.ERRORED)
