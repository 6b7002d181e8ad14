"""
Configuration Tests
===================

Frozen-dataclass validation, fail-open filter / label map parsing and YAML
loading.

Usage:
    pytest test_config.py
"""

from dataclasses import replace

import pytest

from camstream_processor import (
    CaptureConfig,
    DetectionConfig,
    MQTTConfig,
    RemoteConfig,
    ServiceConfig,
    ValidationConfig,
    parse_class_filter,
    parse_label_map,
)


def test_parse_class_filter():
    assert parse_class_filter("1, 3,7") == (1, 3, 7)
    assert parse_class_filter([2, "4"]) == (2, 4)
    assert parse_class_filter("") == ()
    assert parse_class_filter(None) == ()


def test_parse_class_filter_fails_open():
    assert parse_class_filter("1, person, 3") == ()
    assert parse_class_filter(12) == ()


def test_parse_label_map():
    assert parse_label_map('{"0": "person", "2": "car"}') == {0: "person", 2: "car"}
    assert parse_label_map({1: "bike"}) == {1: "bike"}
    assert parse_label_map("") == {}


def test_parse_label_map_fails_open():
    assert parse_label_map("{not json") == {}
    assert parse_label_map('["person"]') == {}
    assert parse_label_map('{"person": "0"}') == {}


def test_detection_config_normalizes_raw_values():
    config = DetectionConfig(class_filter="0, 2", label_map='{"0": "person"}')

    assert config.class_filter == (0, 2)
    assert config.label_map == {0: "person"}
    assert replace(config, score_threshold=0.3).class_filter == (0, 2)

    worker = config.worker_config()
    assert worker.model_identifier == "yolo11n.pt"
    assert worker.task == "detect"


def test_detection_config_validation():
    with pytest.raises(ValueError):
        DetectionConfig(score_threshold=1.5)
    with pytest.raises(ValueError):
        DetectionConfig(task="classify")
    with pytest.raises(ValueError):
        DetectionConfig(model_identifier="")
    with pytest.raises(ValueError):
        DetectionConfig(input_size=4096)


def test_validation_interval_bounds():
    assert ValidationConfig().interval_ms == 1500
    assert ValidationConfig(interval_ms=100).interval_ms == 100
    with pytest.raises(ValueError):
        ValidationConfig(interval_ms=50)
    with pytest.raises(ValueError):
        ValidationConfig(interval_ms=60001)


def test_remote_config():
    config = RemoteConfig(requests_per_second=0.5, timeout_ms=15000)
    assert config.delay_s == 2.0
    assert config.timeout_s == 15.0

    with pytest.raises(ValueError):
        RemoteConfig(enabled=True)
    with pytest.raises(ValueError):
        RemoteConfig(requests_per_second=0)
    with pytest.raises(ValueError):
        RemoteConfig(jpeg_quality=0)


def test_capture_and_mqtt_validation():
    with pytest.raises(ValueError):
        CaptureConfig(refresh_hz=0)
    with pytest.raises(ValueError):
        CaptureConfig(frame_resolution_wh=(0, 480))
    with pytest.raises(ValueError):
        MQTTConfig(port=70000)
    with pytest.raises(ValueError):
        MQTTConfig(qos=3)


def test_service_topics():
    config = ServiceConfig(service_id="cam_02")

    assert config.data_topic == "camstream/data/cam_02"
    assert config.command_topic == "camstream/control/cam_02/commands"
    assert config.status_topic == "camstream/control/cam_02/status"

    with pytest.raises(ValueError):
        ServiceConfig(service_id="")


def test_from_yaml(tmp_path):
    path = tmp_path / "cam.yaml"
    path.write_text(
        """
service_id: "cam_07"
detection:
  model_identifier: "yolo11s.pt"
  score_threshold: 0.4
  class_filter: "0, 2"
  label_map: '{"0": "person"}'
validation:
  interval_ms: 500
capture:
  source: "rtsp://camera.local/stream"
  refresh_hz: 15
  frame_resolution_wh: [640, 480]
remote:
  enabled: true
  endpoint: "http://localhost:8000/v1"
  negative_prompt: "an empty room"
mqtt_config:
  broker: "mqtt.local"
  qos: 1
"""
    )

    config = ServiceConfig.from_yaml(path)

    assert config.service_id == "cam_07"
    assert config.detection.model_identifier == "yolo11s.pt"
    assert config.detection.class_filter == (0, 2)
    assert config.detection.label_map == {0: "person"}
    assert config.validation.interval_ms == 500
    assert config.capture.source == "rtsp://camera.local/stream"
    assert config.capture.frame_resolution_wh == (640, 480)
    assert config.remote.enabled
    assert config.remote.negative_prompt == "an empty room"
    assert config.mqtt_config.broker == "mqtt.local"
    assert config.mqtt_config.qos == 1


def test_from_yaml_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        ServiceConfig.from_yaml(tmp_path / "missing.yaml")


def test_example_config_loads():
    config = ServiceConfig.from_yaml("config/camstream/cam_01.yaml")
    assert config.service_id == "cam_01"
    assert config.detection.class_filter == (0, 2)
    assert not config.remote.enabled
