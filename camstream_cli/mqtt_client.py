"""
One-shot MQTT client for camstream-cli.

``send_command`` publishes a command with QoS 1 and returns once the broker
acknowledged it. ``request`` additionally waits for the service's next live
status message (retained statuses replayed on subscribe are ignored).
"""

import json
import queue
from typing import Any, Dict, Optional

import paho.mqtt.client as mqtt


class MQTTCommandClient:
    def __init__(
        self,
        broker: str = "localhost",
        port: int = 1883,
        username: Optional[str] = None,
        password: Optional[str] = None,
        client_id: str = "camstream_cli"
    ):
        self.broker = broker
        self.port = port

        self.client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
        )
        if username and password:
            self.client.username_pw_set(username, password)

        self._replies: "queue.Queue[Dict[str, Any]]" = queue.Queue()
        self.client.on_message = self._on_message

    def _on_message(self, client, userdata, msg):
        if msg.retain:
            return
        text = msg.payload.decode("utf-8", errors="replace")
        try:
            self._replies.put(json.loads(text))
        except json.JSONDecodeError:
            self._replies.put({"status": "undecodable", "raw": text})

    def _connect(self) -> None:
        try:
            self.client.connect(self.broker, self.port, keepalive=60)
        except OSError:
            raise ConnectionError(
                f"Unable to connect to MQTT broker at {self.broker}:{self.port}. "
                "Is mosquitto running?"
            )
        self.client.loop_start()

    def _close(self) -> None:
        self.client.disconnect()
        self.client.loop_stop()

    def _publish(self, topic: str, command: Dict[str, Any], qos: int, timeout: float) -> None:
        try:
            payload = json.dumps(command)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid command data: {e}")

        result = self.client.publish(topic, payload, qos=qos)
        result.wait_for_publish(timeout=timeout)
        if not result.is_published():
            raise RuntimeError(f"Command not acknowledged within {timeout}s")

    def send_command(
        self,
        topic: str,
        command: Dict[str, Any],
        qos: int = 1,
        timeout: float = 5.0
    ) -> None:
        """
        Raises:
            ConnectionError: Broker unreachable
            ValueError: Command not JSON serializable
            RuntimeError: Broker did not acknowledge in time
        """
        self._connect()
        try:
            self._publish(topic, command, qos, timeout)
        finally:
            self._close()
        print(f"✅ Command sent: {command.get('command', 'unknown')}")

    def request(
        self,
        topic: str,
        status_topic: str,
        command: Dict[str, Any],
        timeout: float = 5.0
    ) -> Optional[Dict[str, Any]]:
        """
        Send a command and return the first status published after it,
        or None if the service stayed silent for ``timeout`` seconds.
        """
        self._connect()
        try:
            subscribed = self.client.subscribe(status_topic, qos=1)
            if subscribed[0] != mqtt.MQTT_ERR_SUCCESS:
                raise RuntimeError(f"Could not subscribe to {status_topic}")
            self._publish(topic, command, 1, timeout)
            try:
                return self._replies.get(timeout=timeout)
            except queue.Empty:
                return None
        finally:
            self._close()
