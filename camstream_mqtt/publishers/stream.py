"""
Stream Event Publisher
======================

Bounded Context: Consumer event production

Publishes validation ticks, remote session responses, errors and quality
samples. One MQTT client, one sub-topic per event kind under a base topic:

    <base>/validation
    <base>/remote
    <base>/errors
    <base>/quality
"""

from typing import Dict, Any, Optional
from .base import BasePublisher
from ..schemas import (
    ValidationTickMessage,
    RemoteResponseMessage,
    ErrorMessage,
    QualityMessage,
)
from ..logging import StructuredLogger

VALIDATION = "validation"
REMOTE = "remote"
ERRORS = "errors"
QUALITY = "quality"

STREAM_EVENT_KINDS = (VALIDATION, REMOTE, ERRORS, QUALITY)


class StreamEventPublisher(BasePublisher):
    """
    Publisher for non-detection consumer events.

    Example:
        >>> publisher = StreamEventPublisher(
        ...     broker_host="localhost",
        ...     base_topic="camstream/data/cam_01",
        ...     logger=logger
        ... )
        >>> publisher.topic_for("validation")
        'camstream/data/cam_01/validation'
    """

    def __init__(
        self,
        broker_host: str,
        base_topic: str,
        logger: StructuredLogger,
        broker_port: int = 1883,
        client_id: str = "camstream_event_publisher",
        username: Optional[str] = None,
        password: Optional[str] = None,
        qos: int = 0
    ):
        super().__init__(
            broker_host=broker_host,
            broker_port=broker_port,
            topic=f"{base_topic}/{VALIDATION}",
            client_id=client_id,
            logger=logger,
            username=username,
            password=password,
            qos=qos
        )
        self.base_topic = base_topic

    def topic_for(self, kind: str) -> str:
        if kind not in STREAM_EVENT_KINDS:
            raise ValueError(f"Unknown stream event kind: {kind}")
        return f"{self.base_topic}/{kind}"

    def format_message(self, message) -> Dict[str, Any]:
        try:
            return message.to_dict()
        except (AttributeError, TypeError, ValueError) as e:
            raise ValueError(f"Failed to format {type(message).__name__}: {e}")

    def _publish_kind(self, kind: str, message, retain: bool = False) -> bool:
        return self.publish_message(message, topic=self.topic_for(kind), retain=retain)

    def publish_validation_tick(self, message: ValidationTickMessage) -> bool:
        return self._publish_kind(VALIDATION, message)

    def publish_remote_response(self, message: RemoteResponseMessage) -> bool:
        # retained: latest observation only
        return self._publish_kind(REMOTE, message, retain=True)

    def publish_error(self, message: ErrorMessage) -> bool:
        return self._publish_kind(ERRORS, message)

    def publish_quality(self, message: QualityMessage) -> bool:
        return self._publish_kind(QUALITY, message, retain=True)
