"""
Stream Event Schemas
====================

Bounded Context: Consumer-facing event data structures

Everything the camera stream reports besides per-frame inference results:
periodic validation ticks, remote session responses, errors and screenshot
quality samples.

Design:
- ErrorKind: closed error taxonomy (str enum, serializes as its value)
- ErrorReport: immutable error value handed to consumers
- *Message: versioned envelopes for MQTT publication
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Any, Optional
from .common import Timestamp


class ErrorKind(str, Enum):
    """Error taxonomy for everything surfaced through on_error."""

    SPAWN_FAILURE = "spawn_failure"
    """Worker process could not be started."""

    LOAD_FAILURE = "load_failure"
    """Model or prompt rejected by the worker."""

    INFERENCE_FAILURE = "inference_failure"
    """A submitted frame failed to produce a result (transient)."""

    WORKER_EXITED = "worker_exited"
    """Worker process died without being stopped."""

    REMOTE_SEND_FAILURE = "remote_send_failure"
    """Remote request failed or its reply could not be parsed."""

    REMOTE_TIMEOUT = "remote_timeout"
    """Remote endpoint has not replied within the liveness window."""

    PROTOCOL_VIOLATION = "protocol_violation"
    """Unexpected or malformed worker message."""

    @property
    def is_terminal(self) -> bool:
        """True when the current worker instance cannot recover."""
        return self in (
            ErrorKind.SPAWN_FAILURE,
            ErrorKind.LOAD_FAILURE,
            ErrorKind.WORKER_EXITED,
        )


@dataclass(frozen=True)
class ErrorReport:
    """
    Immutable error value.

    Attributes:
        kind: Error category
        reason: Human-readable reason
        source: Reporting component ("worker", "remote", ...)
        timestamp: When the error was observed
    """
    kind: ErrorKind
    reason: str
    source: str
    timestamp: Timestamp

    @classmethod
    def create(cls, kind: ErrorKind, reason: str, source: str) -> 'ErrorReport':
        return cls(kind=kind, reason=reason, source=source, timestamp=Timestamp.now())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value,
            'reason': self.reason,
            'source': self.source,
            'timestamp': self.timestamp.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ErrorReport':
        try:
            return cls(
                kind=ErrorKind(data['kind']),
                reason=str(data['reason']),
                source=str(data['source']),
                timestamp=Timestamp(value=data['timestamp']),
            )
        except KeyError as e:
            raise ValueError(f"Missing required ErrorReport field: {e}")
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid ErrorReport data: {e}")


@dataclass(frozen=True)
class ValidationTickMessage:
    """
    Latest scores at tick time.

    Attributes:
        motion_score: Latest motion score (>= 0)
        classification_score: Latest classification score in [0, 1]
    """
    schema_version: str
    timestamp: Timestamp
    service_id: str
    motion_score: float
    classification_score: float

    def __post_init__(self):
        if self.motion_score < 0:
            raise ValueError(f"motion_score must be >= 0, got {self.motion_score}")
        if not (0.0 <= self.classification_score <= 1.0):
            raise ValueError(
                f"classification_score must be in [0.0, 1.0], got {self.classification_score}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'schema_version': self.schema_version,
            'timestamp': self.timestamp.to_dict(),
            'service_id': self.service_id,
            'motion_score': self.motion_score,
            'classification_score': self.classification_score,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ValidationTickMessage':
        try:
            return cls(
                schema_version=str(data['schema_version']),
                timestamp=Timestamp(value=data['timestamp']),
                service_id=str(data['service_id']),
                motion_score=float(data['motion_score']),
                classification_score=float(data['classification_score']),
            )
        except KeyError as e:
            raise ValueError(f"Missing required ValidationTickMessage field: {e}")
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid ValidationTickMessage data: {e}")


@dataclass(frozen=True)
class RemoteResponseMessage:
    """
    Remote session reply.

    Attributes:
        text: Natural-language response (or "<label>: <score>" in contrastive mode)
        score: Primary prompt score in contrastive mode, None otherwise
    """
    schema_version: str
    timestamp: Timestamp
    service_id: str
    text: str
    score: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'schema_version': self.schema_version,
            'timestamp': self.timestamp.to_dict(),
            'service_id': self.service_id,
            'text': self.text,
            'score': self.score,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RemoteResponseMessage':
        try:
            score = data.get('score')
            return cls(
                schema_version=str(data['schema_version']),
                timestamp=Timestamp(value=data['timestamp']),
                service_id=str(data['service_id']),
                text=str(data['text']),
                score=float(score) if score is not None else None,
            )
        except KeyError as e:
            raise ValueError(f"Missing required RemoteResponseMessage field: {e}")
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid RemoteResponseMessage data: {e}")


@dataclass(frozen=True)
class ErrorMessage:
    """Envelope for an ErrorReport."""
    schema_version: str
    service_id: str
    error: ErrorReport

    def to_dict(self) -> Dict[str, Any]:
        return {
            'schema_version': self.schema_version,
            'service_id': self.service_id,
            'error': self.error.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ErrorMessage':
        try:
            return cls(
                schema_version=str(data['schema_version']),
                service_id=str(data['service_id']),
                error=ErrorReport.from_dict(data['error']),
            )
        except KeyError as e:
            raise ValueError(f"Missing required ErrorMessage field: {e}")


@dataclass(frozen=True)
class QualityMessage:
    """Screenshot quality sample."""
    schema_version: str
    timestamp: Timestamp
    service_id: str
    blur_score: float
    lighting_score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'schema_version': self.schema_version,
            'timestamp': self.timestamp.to_dict(),
            'service_id': self.service_id,
            'blur_score': self.blur_score,
            'lighting_score': self.lighting_score,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'QualityMessage':
        try:
            return cls(
                schema_version=str(data['schema_version']),
                timestamp=Timestamp(value=data['timestamp']),
                service_id=str(data['service_id']),
                blur_score=float(data['blur_score']),
                lighting_score=float(data['lighting_score']),
            )
        except KeyError as e:
            raise ValueError(f"Missing required QualityMessage field: {e}")
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid QualityMessage data: {e}")
