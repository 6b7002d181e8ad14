"""
MQTT Subscriber
==============

Receives what MQTTStreamConsumer publishes under one service's data topic,
decodes each payload into its schema and hands it to a callback. Used by
``camstream-cli watch`` and by presentation layers in other processes.

One wildcard subscription (``<base_topic>/+``) covers every kind:

    detections       -> on_detection(DetectionMessage)
    classifications  -> on_classification(ClassificationMessage)
    validation, remote, errors, quality -> on_event(kind, message)

Example:
    >>> subscriber = MessageSubscriber(
    ...     broker_host="localhost",
    ...     base_topic="camstream/data/cam_01",
    ...     on_detection=lambda msg: print(msg.detection_count),
    ...     on_event=lambda kind, msg: print(kind, msg),
    ...     logger=create_logger("watcher"),
    ... )
    >>> subscriber.connect()
    >>> subscriber.start()
"""

import json
import threading
from collections import Counter
from typing import Any, Callable, Dict, Optional, Tuple, Type

import paho.mqtt.client as mqtt

from .schemas import (
    DetectionMessage,
    ClassificationMessage,
    ValidationTickMessage,
    RemoteResponseMessage,
    ErrorMessage,
    QualityMessage,
)
from .logging import StructuredLogger, LogEvent

EVENT_SCHEMAS: Dict[str, Type] = {
    'validation': ValidationTickMessage,
    'remote': RemoteResponseMessage,
    'errors': ErrorMessage,
    'quality': QualityMessage,
}


class MessageSubscriber:
    """
    Callbacks run on the paho network thread; keep them short.
    A payload that fails to decode is logged and dropped.
    """

    def __init__(
        self,
        broker_host: str,
        base_topic: str,
        logger: StructuredLogger,
        on_detection: Optional[Callable[[DetectionMessage], None]] = None,
        on_classification: Optional[Callable[[ClassificationMessage], None]] = None,
        on_event: Optional[Callable[[str, Any], None]] = None,
        broker_port: int = 1883,
        client_id: str = "camstream_subscriber",
        username: Optional[str] = None,
        password: Optional[str] = None,
        qos: int = 0
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.base_topic = base_topic.rstrip('/')
        self.logger = logger
        self.qos = qos

        self._routes: Dict[str, Tuple[Type, Optional[Callable[[Any], None]]]] = {
            'detections': (DetectionMessage, on_detection),
            'classifications': (ClassificationMessage, on_classification),
        }
        for kind, schema in EVENT_SCHEMAS.items():
            callback = (lambda message, kind=kind: on_event(kind, message)) if on_event else None
            self._routes[kind] = (schema, callback)

        self.client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
        )
        if username and password:
            self.client.username_pw_set(username, password)
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_message = self._on_message

        self._connected = threading.Event()
        self._running = False
        self._stats_lock = threading.Lock()
        self._received: Counter = Counter()
        self._rejected = 0

    @property
    def topics(self) -> Dict[str, str]:
        """Message kind -> topic."""
        return {kind: f"{self.base_topic}/{kind}" for kind in self._routes}

    @property
    def broker(self) -> str:
        return f"{self.broker_host}:{self.broker_port}"

    # ===== Decoding =====

    def route(self, topic: str, payload: bytes) -> bool:
        """
        Decode one payload and invoke its callback.

        Returns:
            True if the payload was delivered (or had no callback)
        """
        prefix, _, kind = topic.rpartition('/')
        if prefix != self.base_topic or kind not in self._routes:
            self.logger.warning(
                event=LogEvent.DESERIALIZATION_ERROR,
                message=f"Message on unexpected topic: {topic}"
            )
            return self._reject()

        schema, callback = self._routes[kind]
        try:
            message = schema.from_dict(json.loads(payload.decode('utf-8')))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            self.logger.error(
                event=LogEvent.DESERIALIZATION_ERROR,
                message=f"Undecodable {kind} payload",
                exc_info=e,
                metadata={'topic': topic}
            )
            return self._reject()
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            self.logger.error(
                event=LogEvent.SCHEMA_VALIDATION_ERROR,
                message=f"{kind} message failed schema validation",
                exc_info=e,
                metadata={'topic': topic}
            )
            return self._reject()

        with self._stats_lock:
            self._received[kind] += 1
        self.logger.debug(
            event=LogEvent.DETECTION_RECEIVED if kind == 'detections' else LogEvent.STREAM_EVENT_RECEIVED,
            message=f"Received {kind} message",
        )
        if callback is not None:
            callback(message)
        return True

    def _reject(self) -> bool:
        with self._stats_lock:
            self._rejected += 1
        return False

    # ===== MQTT callbacks =====

    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        if reason_code.is_failure:
            self.logger.error(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message=f"Broker refused connection (rc={reason_code})",
                metadata={'broker': self.broker}
            )
            return
        client.subscribe(f"{self.base_topic}/+", qos=self.qos)
        self._connected.set()
        self.logger.info(
            event=LogEvent.MQTT_CONNECTED,
            message="Subscribed to stream topics",
            metadata={'broker': self.broker, 'base_topic': self.base_topic}
        )

    def _on_disconnect(self, client, userdata, flags, reason_code, properties) -> None:
        self._connected.clear()
        if reason_code.is_failure:
            self.logger.warning(
                event=LogEvent.MQTT_DISCONNECTED,
                message="Subscriber lost broker connection",
                metadata={'broker': self.broker, 'reason_code': str(reason_code)}
            )

    def _on_message(self, client, userdata, msg) -> None:
        try:
            self.route(msg.topic, msg.payload)
        except Exception as e:
            self.logger.error(
                event=LogEvent.DESERIALIZATION_ERROR,
                message="Message callback failed",
                exc_info=e,
                metadata={'topic': msg.topic}
            )

    # ===== Lifecycle =====

    def connect(self, timeout: float = 10.0) -> bool:
        try:
            self.client.connect(self.broker_host, self.broker_port)
            self.client.loop_start()
        except Exception as e:
            self.logger.error(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message="Failed to connect to broker",
                exc_info=e,
                metadata={'broker': self.broker}
            )
            return False

        if self._connected.wait(timeout=timeout):
            return True
        self.logger.error(
            event=LogEvent.MQTT_CONNECTION_ERROR,
            message="Connection timeout",
            metadata={'broker': self.broker, 'timeout': timeout}
        )
        return False

    def start(self) -> None:
        """Mark the subscriber as listening; the network loop runs from connect()."""
        if not self._connected.is_set():
            self.logger.warning(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message="Cannot start: not connected to broker"
            )
            return
        self._running = True

    def stop(self) -> None:
        self._running = False
        self.client.loop_stop()
        self.client.disconnect()
        self.logger.info(
            event=LogEvent.MQTT_DISCONNECTED,
            message="Subscriber stopped",
            metadata=self.get_stats()
        )

    def is_connected(self) -> bool:
        return self._connected.is_set()

    def is_running(self) -> bool:
        return self._running

    def get_stats(self) -> dict:
        with self._stats_lock:
            return {
                **{f"{kind}_received": self._received[kind] for kind in self._routes},
                'rejected': self._rejected,
                'connected': self._connected.is_set(),
                'running': self._running,
                'broker': self.broker,
            }
