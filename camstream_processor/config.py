"""
Configuration schema for the camera stream service.

This module defines the configuration structure for the service: detection
(model, prompts, filtering), validation ticks, frame capture, the remote
multimodal session and MQTT. Everything is a frozen dataclass validated at
construction; runtime changes produce new instances via dataclasses.replace.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml

from camstream_worker.protocol import VALID_TASKS, WorkerConfig

logger = logging.getLogger(__name__)


def parse_class_filter(value: Any) -> Tuple[int, ...]:
    """
    Parse a class id allow-list.

    Accepts "1, 3, 7", a list of ints/strings, or empty/None. An empty result
    means "allow all classes". Any unparseable entry discards the whole
    filter (fail-open) and logs a warning.
    """
    if value is None:
        return ()
    if isinstance(value, str):
        parts = [p.strip() for p in value.split(",") if p.strip()]
    elif isinstance(value, (list, tuple)):
        parts = list(value)
    else:
        logger.warning(f"⚠️ Ignoring class filter of type {type(value).__name__}, allowing all classes")
        return ()

    try:
        return tuple(int(p) for p in parts)
    except (TypeError, ValueError):
        logger.warning(f"⚠️ Could not parse class filter {value!r}, allowing all classes")
        return ()


def parse_label_map(value: Any) -> Dict[int, str]:
    """
    Parse a class id -> label mapping.

    Accepts a JSON object string ('{"0": "person"}') or a mapping. Parse
    failure yields an empty map (fail-open) and logs a warning.
    """
    if value is None or value == "":
        return {}

    data = value
    if isinstance(value, str):
        try:
            data = json.loads(value)
        except json.JSONDecodeError:
            logger.warning(f"⚠️ Could not parse label map {value!r}, using model labels")
            return {}

    if not isinstance(data, dict):
        logger.warning(f"⚠️ Label map must be an object, got {type(data).__name__}; using model labels")
        return {}

    try:
        return {int(k): str(v) for k, v in data.items()}
    except (TypeError, ValueError):
        logger.warning(f"⚠️ Label map has non-integer keys {list(data)}, using model labels")
        return {}


@dataclass(frozen=True)
class DetectionConfig:
    """
    Local inference configuration.

    task:
    - "detect": closed-set detector; classification score is the top
      filtered detection confidence
    - "classify": open-vocabulary prompt scoring; classification score is the
      primary prompt's score

    class_filter and label_map accept raw user strings and are normalized
    (fail-open) on construction.
    """

    enabled: bool = True
    model_identifier: str = "yolo11n.pt"
    task: str = "detect"
    primary_prompt: Optional[str] = None
    negative_prompt: Optional[str] = None
    score_threshold: float = 0.5
    class_filter: Tuple[int, ...] = ()
    label_map: Dict[int, str] = field(default_factory=dict)
    input_size: int = 640
    device: Optional[str] = None

    def __post_init__(self):
        """Validate detection configuration."""
        if not self.model_identifier:
            raise ValueError("model_identifier cannot be empty")

        if self.task not in VALID_TASKS:
            raise ValueError(
                f"Invalid task: {self.task}. Must be one of {VALID_TASKS}"
            )

        if self.task == "classify" and not self.primary_prompt:
            raise ValueError("task 'classify' requires a primary_prompt")

        if not 0.0 <= self.score_threshold <= 1.0:
            raise ValueError(
                f"score_threshold must be in [0.0, 1.0], got {self.score_threshold}"
            )

        if not 32 <= self.input_size <= 1280:
            raise ValueError(
                f"input_size must be in [32, 1280], got {self.input_size}"
            )

        object.__setattr__(self, "class_filter", parse_class_filter(self.class_filter))
        object.__setattr__(self, "label_map", parse_label_map(self.label_map))

    def worker_config(self) -> WorkerConfig:
        """The part of this config that requires a fresh worker when changed."""
        return WorkerConfig(
            model_identifier=self.model_identifier,
            task=self.task,
            primary_prompt=self.primary_prompt,
            negative_prompt=self.negative_prompt,
            input_size=self.input_size,
            device=self.device,
        )


@dataclass(frozen=True)
class ValidationConfig:
    """Validation tick cadence."""

    enabled: bool = True
    interval_ms: int = 1500

    def __post_init__(self):
        if not 100 <= self.interval_ms <= 60000:
            raise ValueError(
                f"interval_ms must be in [100, 60000], got {self.interval_ms}"
            )


@dataclass(frozen=True)
class CaptureConfig:
    """
    Frame source and capture loop.

    source is a camera index (0) or a URL / file path understood by OpenCV.
    """

    source: Union[int, str] = 0
    refresh_hz: float = 30.0
    warmup_ms: int = 500
    frame_resolution_wh: Optional[Tuple[int, int]] = None  # (width, height)

    def __post_init__(self):
        if isinstance(self.source, str) and not self.source:
            raise ValueError("source cannot be empty")

        if not 1 <= self.refresh_hz <= 240:
            raise ValueError(
                f"refresh_hz must be in [1, 240], got {self.refresh_hz}"
            )

        if self.warmup_ms < 0:
            raise ValueError(f"warmup_ms must be >= 0, got {self.warmup_ms}")

        if self.frame_resolution_wh is not None:
            width, height = self.frame_resolution_wh
            if width <= 0 or height <= 0:
                raise ValueError(
                    f"frame_resolution_wh must have positive dimensions, got {self.frame_resolution_wh}"
                )
            if width > 4096 or height > 4096:
                raise ValueError(
                    f"frame_resolution_wh dimensions too large (max 4096x4096), got {self.frame_resolution_wh}"
                )


@dataclass(frozen=True)
class RemoteConfig:
    """
    Remote multimodal session.

    With negative_prompt set the endpoint is called in contrastive mode
    (labels [primary, negative], score of the primary label is published);
    otherwise the endpoint answers the primary prompt in free text.
    """

    enabled: bool = False
    endpoint: str = ""
    api_key: Optional[str] = None
    model: str = ""
    primary_prompt: str = "Describe what you see in this image."
    negative_prompt: Optional[str] = None
    requests_per_second: float = 0.5
    timeout_ms: int = 15000
    request_timeout_s: float = 60.0
    jpeg_quality: int = 80

    def __post_init__(self):
        if self.enabled and not self.endpoint:
            raise ValueError("remote endpoint is required when remote is enabled")

        if not self.primary_prompt:
            raise ValueError("remote primary_prompt cannot be empty")

        if not 0.0 < self.requests_per_second <= 10.0:
            raise ValueError(
                f"requests_per_second must be in (0, 10], got {self.requests_per_second}"
            )

        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be > 0, got {self.timeout_ms}")

        if self.request_timeout_s <= 0:
            raise ValueError(
                f"request_timeout_s must be > 0, got {self.request_timeout_s}"
            )

        if not 1 <= self.jpeg_quality <= 100:
            raise ValueError(
                f"jpeg_quality must be in [1, 100], got {self.jpeg_quality}"
            )

    @property
    def delay_s(self) -> float:
        """Pause between a reply and the next capture."""
        return 1.0 / self.requests_per_second

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000.0


@dataclass(frozen=True)
class MQTTConfig:
    """MQTT broker configuration."""

    broker: str = "localhost"
    port: int = 1883
    username: Optional[str] = None
    password: Optional[str] = None
    qos: int = 0  # Data plane QoS (fire-and-forget)

    data_topic: str = "camstream/data/{service_id}"
    command_topic: str = "camstream/control/{service_id}/commands"
    status_topic: str = "camstream/control/{service_id}/status"

    def __post_init__(self):
        """Validate MQTT configuration."""
        if not 1 <= self.port <= 65535:
            raise ValueError(
                f"MQTT port must be in [1, 65535], got {self.port}"
            )

        if self.qos not in {0, 1, 2}:
            raise ValueError(
                f"MQTT QoS must be 0, 1, or 2, got {self.qos}"
            )


@dataclass(frozen=True)
class ServiceConfig:
    """
    Main configuration for the camera stream service.

    This configuration is loaded from YAML and validated at startup.
    Immutable after construction (frozen dataclass).
    """

    service_id: str
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    mqtt_config: MQTTConfig = field(default_factory=MQTTConfig)

    def __post_init__(self):
        if not self.service_id:
            raise ValueError("service_id cannot be empty")

    def topic(self, template: str) -> str:
        """Resolve a topic template for this service."""
        return template.format(service_id=self.service_id)

    @property
    def data_topic(self) -> str:
        return self.topic(self.mqtt_config.data_topic)

    @property
    def command_topic(self) -> str:
        return self.topic(self.mqtt_config.command_topic)

    @property
    def status_topic(self) -> str:
        return self.topic(self.mqtt_config.status_topic)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceConfig":
        capture_data = dict(data.get("capture", {}))
        if capture_data.get("frame_resolution_wh") is not None:
            capture_data["frame_resolution_wh"] = tuple(capture_data["frame_resolution_wh"])

        return cls(
            service_id=data["service_id"],
            detection=DetectionConfig(**data.get("detection", {})),
            validation=ValidationConfig(**data.get("validation", {})),
            capture=CaptureConfig(**capture_data),
            remote=RemoteConfig(**data.get("remote", {})),
            mqtt_config=MQTTConfig(**data.get("mqtt_config", {})),
        )

    @classmethod
    def from_yaml(cls, yaml_path: Path) -> "ServiceConfig":
        """
        Load configuration from YAML file.

        Example YAML:
            service_id: "cam_01"

            detection:
              model_identifier: "yolo11n.pt"
              score_threshold: 0.5
              class_filter: "0, 2"
              label_map: '{"0": "person", "2": "car"}'

            validation:
              interval_ms: 1500

            capture:
              source: 0
              refresh_hz: 30

            remote:
              enabled: false
              endpoint: "http://localhost:8000/v1"
              requests_per_second: 0.5

            mqtt_config:
              broker: "localhost"
              port: 1883
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)
