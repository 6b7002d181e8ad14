"""
MQTT Publishers
==============

Bounded Context: Message Production

Design:
- BasePublisher: Abstract base with connection management
- DetectionPublisher: Publishes detection / classification messages
- StreamEventPublisher: Publishes validation, remote, error, quality events

Public API
----------
    BasePublisher, DetectionPublisher, StreamEventPublisher
"""

from .base import BasePublisher
from .detection import DetectionPublisher
from .stream import StreamEventPublisher, STREAM_EVENT_KINDS

__all__ = [
    'BasePublisher',
    'DetectionPublisher',
    'StreamEventPublisher',
    'STREAM_EVENT_KINDS',
]
