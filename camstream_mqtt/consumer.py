"""
Stream Consumers
================

Bounded Context: Consumer-facing outputs

The camera stream reports through a StreamConsumer. The presentation layer
(or any other sink) subclasses it and overrides the callbacks it cares about;
every callback defaults to a no-op.

Callbacks run on the thread that produced the value (capture loop, worker
listener, validation reporter or remote session). Keep them fast.

MQTTStreamConsumer forwards every callback to the MQTT publishers.
"""

import logging
from typing import Any, Dict, List, Optional

from camstream_vision import QualitySample
from .schemas import (
    SCHEMA_VERSION,
    Classification,
    ClassificationMessage,
    Detection,
    DetectionMessage,
    ErrorMessage,
    ErrorReport,
    QualityMessage,
    RemoteResponseMessage,
    Timestamp,
    ValidationTickMessage,
)
from .publishers import DetectionPublisher, StreamEventPublisher

logger = logging.getLogger(__name__)


class StreamConsumer:
    """No-op consumer; subclass and override."""

    def on_validation_tick(self, motion_score: float, classification_score: float) -> None:
        pass

    def on_detections(self, detections: List[Detection], frame_id: int = 0) -> None:
        pass

    def on_classifications(self, classifications: List[Classification], frame_id: int = 0) -> None:
        pass

    def on_remote_response(self, text: str, score: Optional[float] = None) -> None:
        pass

    def on_error(self, error: ErrorReport) -> None:
        pass

    def on_quality_sample(self, sample: QualitySample) -> None:
        pass

    def on_status(self, status: str, details: Optional[Dict[str, Any]] = None) -> None:
        pass


class LoggingConsumer(StreamConsumer):
    """Writes every output to the log. Used when no broker is configured."""

    def on_validation_tick(self, motion_score, classification_score):
        logger.info(f"Validation tick: motion={motion_score:.2f} score={classification_score:.2f}")

    def on_detections(self, detections, frame_id=0):
        labels = ", ".join(f"{d.class_name}:{d.confidence:.2f}" for d in detections)
        logger.info(f"Frame {frame_id}: {len(detections)} detections [{labels}]")

    def on_classifications(self, classifications, frame_id=0):
        labels = ", ".join(f"{c.label}:{c.score:.2f}" for c in classifications)
        logger.info(f"Frame {frame_id}: classifications [{labels}]")

    def on_remote_response(self, text, score=None):
        logger.info(f"Remote response: {text}")

    def on_error(self, error):
        logger.warning(f"{error.source} error ({error.kind.value}): {error.reason}")

    def on_quality_sample(self, sample):
        logger.info(
            f"Quality: blur={sample.blur_score:.0f} lighting={sample.lighting_score:.2f}"
        )

    def on_status(self, status, details=None):
        logger.info(f"Status: {status}")


class MQTTStreamConsumer(StreamConsumer):
    """
    Publishes consumer outputs over MQTT.

    Example:
        >>> consumer = MQTTStreamConsumer(
        ...     service_id="cam_01",
        ...     detection_publisher=detection_publisher,
        ...     event_publisher=event_publisher,
        ... )
        >>> consumer.connect()
    """

    def __init__(
        self,
        service_id: str,
        detection_publisher: DetectionPublisher,
        event_publisher: StreamEventPublisher,
    ):
        self.service_id = service_id
        self.detection_publisher = detection_publisher
        self.event_publisher = event_publisher

    def connect(self, timeout: float = 10.0) -> bool:
        detections_ok = self.detection_publisher.connect(timeout=timeout)
        events_ok = self.event_publisher.connect(timeout=timeout)
        return detections_ok and events_ok

    def disconnect(self) -> None:
        self.detection_publisher.disconnect()
        self.event_publisher.disconnect()

    def on_validation_tick(self, motion_score, classification_score):
        self.event_publisher.publish_validation_tick(ValidationTickMessage(
            schema_version=SCHEMA_VERSION,
            timestamp=Timestamp.now(),
            service_id=self.service_id,
            motion_score=motion_score,
            classification_score=classification_score,
        ))

    def on_detections(self, detections, frame_id=0):
        self.detection_publisher.publish_detection(DetectionMessage(
            schema_version=SCHEMA_VERSION,
            timestamp=Timestamp.now(),
            frame_id=frame_id,
            service_id=self.service_id,
            detections=list(detections),
        ))

    def on_classifications(self, classifications, frame_id=0):
        self.detection_publisher.publish_classification(ClassificationMessage(
            schema_version=SCHEMA_VERSION,
            timestamp=Timestamp.now(),
            frame_id=frame_id,
            service_id=self.service_id,
            classifications=list(classifications),
        ))

    def on_remote_response(self, text, score=None):
        self.event_publisher.publish_remote_response(RemoteResponseMessage(
            schema_version=SCHEMA_VERSION,
            timestamp=Timestamp.now(),
            service_id=self.service_id,
            text=text,
            score=score,
        ))

    def on_error(self, error):
        self.event_publisher.publish_error(ErrorMessage(
            schema_version=SCHEMA_VERSION,
            service_id=self.service_id,
            error=error,
        ))

    def on_quality_sample(self, sample):
        self.event_publisher.publish_quality(QualityMessage(
            schema_version=SCHEMA_VERSION,
            timestamp=Timestamp.now(),
            service_id=self.service_id,
            blur_score=sample.blur_score,
            lighting_score=sample.lighting_score,
        ))
