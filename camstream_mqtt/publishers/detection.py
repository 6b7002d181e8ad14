"""
Detection publisher.

Per-frame inference results: detections on the default topic,
classifications on ``classification_topic``. One client serves both, since
a service runs in exactly one of the two modes at a time.
"""

from typing import Any, Dict, Optional, Union

from .base import BasePublisher
from ..schemas import DetectionMessage, ClassificationMessage
from ..logging import StructuredLogger, LogEvent


class DetectionPublisher(BasePublisher):
    """
    Example:
        >>> publisher = DetectionPublisher(
        ...     broker_host="localhost",
        ...     topic="camstream/data/cam_01/detections",
        ...     classification_topic="camstream/data/cam_01/classifications",
        ...     logger=logger
        ... )
        >>> publisher.publish_detection(message)
    """

    def __init__(
        self,
        broker_host: str,
        topic: str,
        logger: StructuredLogger,
        classification_topic: Optional[str] = None,
        broker_port: int = 1883,
        client_id: str = "camstream_detection_publisher",
        username: Optional[str] = None,
        password: Optional[str] = None,
        qos: int = 0
    ):
        super().__init__(
            broker_host=broker_host,
            broker_port=broker_port,
            topic=topic,
            client_id=client_id,
            logger=logger,
            username=username,
            password=password,
            qos=qos
        )
        self.classification_topic = classification_topic or f"{topic}/classifications"

    def format_message(
        self,
        message: Union[DetectionMessage, ClassificationMessage]
    ) -> Dict[str, Any]:
        try:
            formatted = message.to_dict()
        except (AttributeError, TypeError, ValueError) as e:
            raise ValueError(f"Failed to format inference result message: {e}")

        self.logger.debug(
            event=LogEvent.DETECTION_SERIALIZED,
            message="Serialized inference result",
            metadata={'frame_id': message.frame_id, 'type': type(message).__name__}
        )
        return formatted

    def publish_detection(self, detection_msg: DetectionMessage) -> bool:
        return self.publish_message(detection_msg)

    def publish_classification(self, classification_msg: ClassificationMessage) -> bool:
        return self.publish_message(classification_msg, topic=self.classification_topic)
