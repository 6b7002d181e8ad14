"""
Base MQTT publisher.

One paho client per publisher, running its own network loop
(``loop_start()``); capture, reporter and remote threads publish through it.
Publishing while disconnected is a soft failure: the message is counted as
dropped and ``False`` is returned, never raised.

Subclasses provide the topic routing and ``format_message``; every message
goes through ``publish_message``.
"""

import json
import threading
from abc import ABC, abstractmethod
from collections import Counter
from typing import Any, Dict, Optional

import paho.mqtt.client as mqtt

from ..logging import StructuredLogger, LogEvent


class BasePublisher(ABC):
    """
    Connection lifecycle and JSON publishing for consumer-facing topics.

    ``topic`` is the default destination; subclasses may route each message
    to another topic. QoS defaults to 0.
    """

    def __init__(
        self,
        broker_host: str,
        broker_port: int,
        topic: str,
        client_id: str,
        logger: StructuredLogger,
        username: Optional[str] = None,
        password: Optional[str] = None,
        qos: int = 0
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.topic = topic
        self.client_id = client_id
        self.logger = logger
        self.qos = qos

        self.client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
        )
        if username and password:
            self.client.username_pw_set(username, password)
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect

        self._connected = threading.Event()
        self._counts_lock = threading.Lock()
        self._published: Counter = Counter()
        self._dropped = 0

    @property
    def broker(self) -> str:
        return f"{self.broker_host}:{self.broker_port}"

    # ===== Connection =====

    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        if reason_code.is_failure:
            self.logger.error(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message=f"Broker refused connection (rc={reason_code})",
                metadata={'broker': self.broker, 'client_id': self.client_id}
            )
            return
        self._connected.set()
        self.logger.info(
            event=LogEvent.MQTT_CONNECTED,
            message="Publisher connected",
            metadata={'broker': self.broker, 'client_id': self.client_id, 'topic': self.topic}
        )

    def _on_disconnect(self, client, userdata, flags, reason_code, properties) -> None:
        self._connected.clear()
        if reason_code.is_failure:
            self.logger.warning(
                event=LogEvent.MQTT_DISCONNECTED,
                message="Publisher lost broker connection",
                metadata={'broker': self.broker, 'reason_code': str(reason_code)}
            )

    def connect(self, timeout: float = 10.0) -> bool:
        """Connect and start the network loop; False on refusal or timeout."""
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

    def disconnect(self) -> None:
        try:
            self.client.loop_stop()
            self.client.disconnect()
        except Exception as e:
            self.logger.error(
                event=LogEvent.MQTT_CONNECTION_ERROR,
                message="Error during disconnect",
                exc_info=e
            )
            return
        self._connected.clear()
        self.logger.info(
            event=LogEvent.MQTT_DISCONNECTED,
            message="Publisher disconnected",
            metadata=self.get_stats()
        )

    def is_connected(self) -> bool:
        return self._connected.is_set()

    # ===== Publishing =====

    @abstractmethod
    def format_message(self, message) -> Dict[str, Any]:
        """Message object -> JSON-compatible dict. Raises ValueError."""

    def publish_message(self, message, topic: Optional[str] = None, retain: bool = False) -> bool:
        """Format and publish a schema object; never raises."""
        target_topic = topic or self.topic
        try:
            payload = self.format_message(message)
        except ValueError as e:
            self.logger.error(
                event=LogEvent.SERIALIZATION_ERROR,
                message=f"Dropping unserializable {type(message).__name__}",
                exc_info=e,
                metadata={'topic': target_topic}
            )
            self._count_dropped()
            return False
        return self.publish(payload, topic=target_topic, retain=retain)

    def publish(
        self,
        message_data: Dict[str, Any],
        topic: Optional[str] = None,
        retain: bool = False
    ) -> bool:
        """Send an already formatted dict to ``topic`` (default topic if None)."""
        target_topic = topic or self.topic

        if not self._connected.is_set():
            self.logger.warning(
                event=LogEvent.MQTT_PUBLISH_FAILED,
                message="Not connected, message dropped",
                metadata={'topic': target_topic}
            )
            self._count_dropped()
            return False

        try:
            result = self.client.publish(
                topic=target_topic,
                payload=json.dumps(message_data),
                qos=self.qos,
                retain=retain
            )
        except Exception as e:
            self.logger.error(
                event=LogEvent.MQTT_PUBLISH_ERROR,
                message="Error publishing message",
                exc_info=e,
                metadata={'topic': target_topic}
            )
            self._count_dropped()
            return False

        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            self.logger.warning(
                event=LogEvent.MQTT_PUBLISH_FAILED,
                message=f"Publish failed (rc={result.rc})",
                metadata={'topic': target_topic}
            )
            self._count_dropped()
            return False

        with self._counts_lock:
            self._published[target_topic] += 1
        self.logger.debug(
            event=LogEvent.MQTT_PUBLISH_SUCCESS,
            message="Published",
            metadata={'topic': target_topic, 'qos': self.qos, 'retain': retain}
        )
        return True

    def _count_dropped(self) -> None:
        with self._counts_lock:
            self._dropped += 1

    def get_stats(self) -> Dict[str, Any]:
        with self._counts_lock:
            return {
                'broker': self.broker,
                'connected': self._connected.is_set(),
                'published': dict(self._published),
                'dropped': self._dropped,
            }
