"""
Capture Loop / Validation Reporter Tests
========================================

Fake frame source + fake channel; ticks are driven directly except where the
thread lifecycle itself is under test.

Usage:
    pytest test_capture_loop.py
"""

import time

import cv2
import numpy as np
import pytest

from camstream_mqtt.schemas import BBox, Classification, Detection
from camstream_processor import CaptureLoop, LatestScores, ValidationReporter
from camstream_processor.filtering import (
    apply_label_map,
    filter_detections,
    prompt_score,
    top_confidence,
)
from camstream_processor.sources import FrameSource, VideoCaptureSource
from camstream_vision import Frame, max_motion_score


def test_frame_source_is_abstract():
    with pytest.raises(TypeError):
        FrameSource()


class FakeSource(FrameSource):
    def __init__(self, images, ready=True):
        self.images = list(images)
        self.ready = ready
        self.captures = 0

    def is_ready(self):
        return self.ready

    def capture_frame(self):
        image = self.images[min(self.captures, len(self.images) - 1)]
        self.captures += 1
        return Frame(image.copy(), frame_id=self.captures)

    def video_dimensions(self):
        height, width = self.images[0].shape[:2]
        return width, height


class FakeChannel:
    def __init__(self, operational=True, accept=True):
        self.operational = operational
        self.accept = accept
        self.submitted = []

    def is_operational(self):
        return self.operational

    def submit(self, frame):
        if not self.accept:
            return False
        self.submitted.append(frame)
        return True


def solid(value, height=20, width=20):
    return np.full((height, width, 3), value, dtype=np.uint8)


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_tick_is_idle_until_source_ready():
    source = FakeSource([solid(0)], ready=False)
    channel = FakeChannel()
    loop = CaptureLoop(source, channel, LatestScores())

    assert not loop.tick()
    assert source.captures == 0
    assert loop.idle_ticks == 1


def test_tick_is_idle_while_worker_not_operational():
    source = FakeSource([solid(0)])
    loop = CaptureLoop(source, FakeChannel(operational=False), LatestScores())

    assert not loop.tick()
    assert source.captures == 0


def test_first_frame_submits_without_motion():
    scores = LatestScores()
    channel = FakeChannel()
    loop = CaptureLoop(FakeSource([solid(0)]), channel, scores)

    assert loop.tick()
    assert scores.snapshot() == (0.0, 0.0)
    assert scores.updated_at is None
    assert [f.frame_id for f in channel.submitted] == [1]
    assert loop.previous_frame.frame_id == 1


def test_busy_channel_drops_frame_but_updates_motion():
    scores = LatestScores()
    channel = FakeChannel()
    loop = CaptureLoop(FakeSource([solid(0), solid(255)]), channel, scores)

    loop.tick()
    channel.accept = False
    assert not loop.tick()

    motion, _ = scores.snapshot()
    assert motion == pytest.approx(max_motion_score(20, 20))
    assert loop.frames_dropped == 1
    assert loop.frames_submitted == 1
    assert loop.frames_captured == 2
    assert loop.previous_frame.frame_id == 2


def test_dimension_change_skips_motion():
    scores = LatestScores()
    loop = CaptureLoop(FakeSource([solid(0), solid(255, 30, 40)]), FakeChannel(), scores)

    loop.tick()
    loop.tick()

    assert scores.snapshot()[0] == 0.0
    assert loop.previous_frame.dimensions == (40, 30)


def test_stop_releases_previous_frame_and_ends_ticks():
    source = FakeSource([solid(0)])
    loop = CaptureLoop(source, FakeChannel(), LatestScores())
    loop.tick()

    loop.stop()
    loop.stop()

    assert loop.previous_frame is None
    assert not loop.tick()
    assert source.captures == 1


def test_loop_thread_runs_until_stopped():
    source = FakeSource([solid(0), solid(255)])
    channel = FakeChannel()
    loop = CaptureLoop(source, channel, LatestScores(), refresh_hz=100)

    loop.start()
    assert wait_for(lambda: loop.frames_captured >= 3)
    loop.stop()

    assert not loop.is_running()
    captured = loop.frames_captured
    time.sleep(0.05)
    assert loop.frames_captured == captured
    assert loop.get_stats()["frames_submitted"] == captured


def test_reporter_tick_reads_latest_values():
    scores = LatestScores()
    ticks = []
    reporter = ValidationReporter(scores, on_tick=lambda m, c: ticks.append((m, c)))

    scores.set_motion(5.0)
    scores.set_motion(9.0)
    scores.set_classification(0.75)
    reporter.tick()

    assert ticks == [(9.0, 0.75)]


def test_classification_score_is_clamped():
    scores = LatestScores()
    scores.set_classification(1.7)
    assert scores.snapshot()[1] == 1.0
    scores.set_classification(-0.2)
    assert scores.snapshot()[1] == 0.0


def test_reporter_thread_stops_cleanly():
    ticks = []
    reporter = ValidationReporter(LatestScores(), on_tick=lambda m, c: ticks.append(m), interval_ms=100)

    reporter.start()
    reporter.start()
    assert wait_for(lambda: len(ticks) >= 2)
    reporter.stop()
    reporter.stop()

    count = len(ticks)
    time.sleep(0.25)
    assert len(ticks) == count
    assert not reporter.is_running()

    # restartable after stop
    reporter.start()
    assert reporter.is_running()
    reporter.stop()


def detection(name, confidence, class_id):
    return Detection(name, confidence, BBox(0, 0, 10, 10), class_id=class_id)


def test_filter_threshold_is_inclusive():
    detections = [detection("a", 0.6, 0), detection("b", 0.3, 1), detection("c", 0.5, 2)]

    kept = filter_detections(detections, 0.5)

    assert [d.class_name for d in kept] == ["a", "c"]


def test_filter_class_allow_list():
    detections = [detection("a", 0.9, 0), detection("b", 0.9, 1)]

    assert [d.class_name for d in filter_detections(detections, 0.0, (1,))] == ["b"]
    assert len(filter_detections(detections, 0.0, ())) == 2


def test_label_map_and_scores():
    detections = apply_label_map([detection("Class 0", 0.4, 0), detection("car", 0.8, 2)], {0: "person"})

    assert [d.class_name for d in detections] == ["person", "car"]
    assert top_confidence(detections) == 0.8
    assert top_confidence([]) == 0.0

    classifications = [Classification("a cat", 0.2), Classification("a dog", 0.7)]
    assert prompt_score(classifications, "a cat") == 0.2
    assert prompt_score(classifications, "a bird") == 0.0


def test_video_source_missing_file(tmp_path):
    source = VideoCaptureSource(str(tmp_path / "missing.avi"))

    assert not source.open()
    assert not source.is_ready()
    assert source.capture_frame() is None
    source.release()


def test_video_source_reads_file(tmp_path):
    path = str(tmp_path / "clip.avi")
    writer = cv2.VideoWriter(path, cv2.VideoWriter_fourcc(*"MJPG"), 10, (32, 24))
    for value in range(0, 250, 50):
        writer.write(np.full((24, 32, 3), value, dtype=np.uint8))
    writer.release()

    source = VideoCaptureSource(path, warmup_ms=0)
    assert source.open()
    try:
        assert wait_for(source.is_ready)
        frame = source.capture_frame()
        assert frame.dimensions == (32, 24)
        assert frame.frame_id >= 1
        assert source.video_dimensions() == (32, 24)
    finally:
        source.release()
    assert not source.is_ready()
