"""
camstream MQTT Communication Package
====================================

Bounded Context: Consumer-facing messaging for the camera stream

This package carries everything the camera stream reports (detections,
classifications, validation ticks, remote responses, errors, quality samples)
to consumers that live outside the service process.

Architecture:
- schemas/: Immutable data structures with type safety
- publishers/: Message producers (DetectionPublisher, StreamEventPublisher)
- consumer.py: StreamConsumer interface + MQTT / logging implementations
- subscriber.py: Typed message consumption
- logging/: Structured JSON logging for observability

Public API
----------
Consumers:
    StreamConsumer, LoggingConsumer, MQTTStreamConsumer

Publishers:
    DetectionPublisher, StreamEventPublisher, BasePublisher

Subscriber:
    MessageSubscriber

Logging:
    LogEvent, StructuredLogger, create_logger

Example (service side):
    >>> from camstream_mqtt import DetectionPublisher, StreamEventPublisher
    >>> from camstream_mqtt import MQTTStreamConsumer, create_logger
    >>>
    >>> logger = create_logger("publisher")
    >>> consumer = MQTTStreamConsumer(
    ...     service_id="cam_01",
    ...     detection_publisher=DetectionPublisher(
    ...         broker_host="localhost",
    ...         topic="camstream/data/cam_01/detections",
    ...         logger=logger,
    ...     ),
    ...     event_publisher=StreamEventPublisher(
    ...         broker_host="localhost",
    ...         base_topic="camstream/data/cam_01",
    ...         logger=logger,
    ...     ),
    ... )
    >>> consumer.connect()
"""

from .consumer import StreamConsumer, LoggingConsumer, MQTTStreamConsumer
from .publishers import BasePublisher, DetectionPublisher, StreamEventPublisher
from .subscriber import MessageSubscriber
from .logging import LogEvent, StructuredLogger, create_logger

__all__ = [
    # Consumers
    'StreamConsumer',
    'LoggingConsumer',
    'MQTTStreamConsumer',
    # Publishers
    'BasePublisher',
    'DetectionPublisher',
    'StreamEventPublisher',
    # Subscriber
    'MessageSubscriber',
    # Logging
    'LogEvent',
    'StructuredLogger',
    'create_logger',
]

__version__ = '1.0.0'
