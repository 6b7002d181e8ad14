"""
camstream_processor - Camera stream orchestration

This package composes the camera stream: configuration, frame sources, the
capture loop, the validation reporter and the CameraStreamService
orchestrator that owns worker channel and remote session lifecycles.

Architecture:
- CameraStreamService: Main orchestrator
- CaptureLoop: refresh-rate frame sampling + admission control
- ValidationReporter: fixed-interval latest-score ticks
- LatestScores: latest-value slot shared by the two
- ServiceConfig: Configuration management

Threading Model:
- Frame Reader Thread (VideoCaptureSource)
- Capture Loop Thread
- Worker Listener Thread (camstream_worker)
- Validation Reporter Thread
- Remote Session Thread (camstream_remote)
- Control Plane Thread (paho-mqtt internal for commands)
"""

from camstream_processor.config import (
    CaptureConfig,
    DetectionConfig,
    MQTTConfig,
    RemoteConfig,
    ServiceConfig,
    ValidationConfig,
    parse_class_filter,
    parse_label_map,
)
from camstream_processor.sources import FrameSource, VideoCaptureSource
from camstream_processor.state import LatestScores
from camstream_processor.capture import CaptureLoop
from camstream_processor.reporter import ValidationReporter
from camstream_processor.service import CameraStreamService

__all__ = [
    "CaptureConfig",
    "DetectionConfig",
    "MQTTConfig",
    "RemoteConfig",
    "ServiceConfig",
    "ValidationConfig",
    "parse_class_filter",
    "parse_label_map",
    "FrameSource",
    "VideoCaptureSource",
    "LatestScores",
    "CaptureLoop",
    "ValidationReporter",
    "CameraStreamService",
]
