"""
camstream MQTT Schemas
======================

Bounded Context: Data Structures

Immutable, typed data structures for inference results and consumer messages.

Design:
- Frozen dataclasses (immutability)
- to_dict() for JSON serialization
- from_dict() for deserialization
- Schema versioning for evolution

Public API
----------
Common Types:
    BBox, Timestamp

Inference Types:
    Detection, Classification, DetectionMessage, ClassificationMessage

Stream Event Types:
    ErrorKind, ErrorReport, ErrorMessage
    ValidationTickMessage, RemoteResponseMessage, QualityMessage
"""

from .common import BBox, Timestamp
from .detection import (
    Detection,
    Classification,
    DetectionMessage,
    ClassificationMessage,
)
from .stream import (
    ErrorKind,
    ErrorReport,
    ErrorMessage,
    ValidationTickMessage,
    RemoteResponseMessage,
    QualityMessage,
)

SCHEMA_VERSION = "1.0"

__all__ = [
    'SCHEMA_VERSION',
    # Common types
    'BBox',
    'Timestamp',
    # Inference types
    'Detection',
    'Classification',
    'DetectionMessage',
    'ClassificationMessage',
    # Stream event types
    'ErrorKind',
    'ErrorReport',
    'ErrorMessage',
    'ValidationTickMessage',
    'RemoteResponseMessage',
    'QualityMessage',
]
