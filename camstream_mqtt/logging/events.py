"""
Structured Log Event Types
==========================

Bounded Context: Observability Event Taxonomy

This module defines typed event names for structured logging.

Design:
- Enum-based (prevents typos, enables autocomplete)
- Hierarchical naming (namespace.category.action)
- Searchable in log aggregators (Elasticsearch, CloudWatch Insights)

Event Naming Convention:
    <component>.<category>.<action>

    component: mqtt, worker, inference, validation, remote, error
    category: state, frame, request, publish
    action: changed, dropped, failed, success

Example Log Query (CloudWatch Insights):
    fields @timestamp, event, message, metadata.frame_id
    | filter event = "inference.frame.dropped"
    | stats count() by bin(5m)
"""

from enum import Enum


class LogEvent(str, Enum):
    """
    Typed log event names for structured logging.

    Categories:
    - mqtt.*: MQTT broker interactions
    - worker.*: Inference worker lifecycle
    - inference.*: Frame submission and results
    - validation.*: Periodic score reports
    - remote.*: Remote multimodal session
    - error.*: Error conditions
    """

    # ========== MQTT Events ==========
    MQTT_CONNECTED = "mqtt.connected"
    """MQTT broker connection established."""

    MQTT_DISCONNECTED = "mqtt.disconnected"
    """MQTT broker connection lost."""

    MQTT_PUBLISH_SUCCESS = "mqtt.publish.success"
    """Message successfully published to broker."""

    MQTT_PUBLISH_FAILED = "mqtt.publish.failed"
    """Message publication failed."""

    # ========== Worker Events ==========
    WORKER_SPAWNED = "worker.spawned"
    """Worker process started and load message sent."""

    WORKER_STATE_CHANGED = "worker.state.changed"
    """WorkerState transition."""

    WORKER_TERMINATED = "worker.terminated"
    """Worker process terminated."""

    # ========== Inference Events ==========
    INFERENCE_FRAME_SUBMITTED = "inference.frame.submitted"
    """Frame admitted and sent to the worker."""

    INFERENCE_FRAME_DROPPED = "inference.frame.dropped"
    """Frame rejected because the worker was not Ready."""

    INFERENCE_RESULT_RECEIVED = "inference.result.received"
    """Worker replied with detections or classifications."""

    DETECTION_SERIALIZED = "detection.serialized"
    """Detection message serialized to JSON."""

    DETECTION_RECEIVED = "detection.received"
    """Detection message received by subscriber."""

    # ========== Validation / Remote Events ==========
    VALIDATION_TICK = "validation.tick"
    """Latest scores emitted to the consumer."""

    STREAM_EVENT_RECEIVED = "stream.event.received"
    """Validation/remote/error/quality message received by subscriber."""

    REMOTE_STATE_CHANGED = "remote.state.changed"
    """Remote session state transition."""

    REMOTE_REQUEST_SENT = "remote.request.sent"
    """Frame + prompt sent to the remote endpoint."""

    REMOTE_RESPONSE_RECEIVED = "remote.response.received"
    """Remote endpoint replied."""

    REMOTE_REQUEST_FAILED = "remote.request.failed"
    """Remote request failed, timed out or returned an unparseable reply."""

    # ========== Error Events ==========
    SERIALIZATION_ERROR = "error.serialization"
    """Failed to serialize message to JSON."""

    DESERIALIZATION_ERROR = "error.deserialization"
    """Failed to deserialize message from JSON."""

    SCHEMA_VALIDATION_ERROR = "error.schema_validation"
    """Message failed schema validation."""

    PROTOCOL_VIOLATION = "error.protocol_violation"
    """Unexpected or malformed worker message discarded."""

    MQTT_CONNECTION_ERROR = "error.mqtt_connection"
    """Failed to connect to MQTT broker."""

    MQTT_PUBLISH_ERROR = "error.mqtt_publish"
    """Error during message publication."""


# Event categories for filtering
MQTT_EVENTS = {
    LogEvent.MQTT_CONNECTED,
    LogEvent.MQTT_DISCONNECTED,
    LogEvent.MQTT_PUBLISH_SUCCESS,
    LogEvent.MQTT_PUBLISH_FAILED,
}

WORKER_EVENTS = {
    LogEvent.WORKER_SPAWNED,
    LogEvent.WORKER_STATE_CHANGED,
    LogEvent.WORKER_TERMINATED,
    LogEvent.INFERENCE_FRAME_SUBMITTED,
    LogEvent.INFERENCE_FRAME_DROPPED,
    LogEvent.INFERENCE_RESULT_RECEIVED,
}

REMOTE_EVENTS = {
    LogEvent.REMOTE_STATE_CHANGED,
    LogEvent.REMOTE_REQUEST_SENT,
    LogEvent.REMOTE_RESPONSE_RECEIVED,
    LogEvent.REMOTE_REQUEST_FAILED,
}

ERROR_EVENTS = {
    LogEvent.SERIALIZATION_ERROR,
    LogEvent.DESERIALIZATION_ERROR,
    LogEvent.SCHEMA_VALIDATION_ERROR,
    LogEvent.PROTOCOL_VIOLATION,
    LogEvent.MQTT_CONNECTION_ERROR,
    LogEvent.MQTT_PUBLISH_ERROR,
}
