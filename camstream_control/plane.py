"""
MQTTControlPlane - command reception and service status over MQTT.

Topics (per service):
    camstream/control/{service_id}/commands   JSON commands in, QoS 1
    camstream/control/{service_id}/status     status out, QoS 1, retained

A last-will message marks the service "offline" on the status topic if the
process dies without disconnecting.

Command handlers run on the paho network thread; they must hand long work
(worker respawn, remote session start) to the service's own threads.
"""

import json
import logging
import threading
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import paho.mqtt.client as mqtt

from .registry import CommandRegistry, CommandNotAvailableError

logger = logging.getLogger(__name__)


class MQTTControlPlane:
    """
    Example:
        control_plane = MQTTControlPlane(
            broker_host="localhost",
            broker_port=1883,
            command_topic="camstream/control/cam_01/commands",
            status_topic="camstream/control/cam_01/status",
            client_id="camstream_cam_01_control",
        )
        service = CameraStreamService(config, source, consumer, control_plane)
        service.setup()  # registers the service commands
        control_plane.connect(timeout=5.0)
    """

    def __init__(
        self,
        broker_host: str,
        broker_port: int,
        command_topic: str,
        status_topic: str,
        client_id: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.command_topic = command_topic
        self.status_topic = status_topic
        self.client_id = client_id

        self.client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            protocol=mqtt.MQTTv311,
        )
        self.client.on_connect = self._on_connect
        self.client.on_message = self._on_message
        self.client.on_disconnect = self._on_disconnect
        if username and password:
            self.client.username_pw_set(username, password)
        self.client.will_set(
            status_topic,
            json.dumps(self.build_status("offline")),
            qos=1,
            retain=True,
        )

        self._connected = threading.Event()
        self._running = False
        self._outcomes: Counter = Counter()
        self._outcomes_lock = threading.Lock()

        self.command_registry = CommandRegistry()
        self.command_registry.register("help", self._handle_help, "List available commands")

    # ===== Lifecycle =====

    def connect(self, timeout: float = 5.0) -> bool:
        """False on refusal, network error or timeout."""
        logger.info(f"🔌 Connecting control plane to {self.broker_host}:{self.broker_port}")
        try:
            self.client.connect(self.broker_host, self.broker_port, keepalive=60)
        except Exception as e:
            logger.error(f"❌ Error connecting to MQTT: {e}")
            return False

        self.client.loop_start()
        self._running = True
        if not self._connected.wait(timeout=timeout):
            logger.error(f"❌ Control plane connection timeout after {timeout}s")
            return False
        return True

    def disconnect(self) -> None:
        """Publishes a final "disconnected" status. Safe to call multiple times."""
        if not self._running:
            return
        self.publish_status("disconnected")
        self.client.loop_stop()
        self.client.disconnect()
        self._running = False
        self._connected.clear()
        logger.info(f"✅ Control plane disconnected ({self.get_stats()})")

    def is_connected(self) -> bool:
        return self._connected.is_set()

    # ===== Status =====

    def build_status(self, status: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        message: Dict[str, Any] = {
            "status": status,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "client_id": self.client_id,
        }
        if details is not None:
            message["details"] = details
        return message

    def publish_status(self, status: str, details: Optional[Dict[str, Any]] = None) -> None:
        try:
            self.client.publish(
                self.status_topic,
                json.dumps(self.build_status(status, details), default=str),
                qos=1,
                retain=True,
            )
        except Exception as e:
            logger.error(f"❌ Error publishing status '{status}': {e}")
            return
        logger.debug(f"📤 Status published: {status}")

    # ===== Commands =====

    def dispatch(self, command_data: Any) -> bool:
        """
        Execute a decoded command payload.

        Unknown commands publish ``command_rejected``; handlers raising
        KeyError / ValueError / TypeError (bad arguments) publish
        ``command_failed``. Returns True if a handler ran to completion.
        """
        if not isinstance(command_data, dict):
            logger.warning(f"⚠️ Command payload must be a JSON object, got {type(command_data).__name__}")
            self._count("malformed")
            return False

        command = str(command_data.get("command", "")).strip().lower()
        if not command:
            logger.warning("⚠️ Command payload without 'command'")
            self._count("malformed")
            return False

        logger.info(f"🎯 Executing command: {command}")
        try:
            self.command_registry.execute(command, command_data)
        except CommandNotAvailableError as e:
            logger.warning(f"⚠️ {e}")
            self._count("rejected")
            self.publish_status("command_rejected", {"command": command, "reason": str(e)})
            return False
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"⚠️ Invalid arguments for '{command}': {e}")
            self._count("failed")
            self.publish_status("command_failed", {"command": command, "reason": str(e)})
            return False

        self._count("executed")
        return True

    def _handle_help(self, command_data: Dict[str, Any]) -> None:
        self.publish_status("help", {"commands": self.command_registry.get_help()})

    def _count(self, outcome: str) -> None:
        with self._outcomes_lock:
            self._outcomes[outcome] += 1

    def get_stats(self) -> Dict[str, int]:
        with self._outcomes_lock:
            return dict(self._outcomes)

    # ===== MQTT callbacks (paho network thread) =====

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            logger.error(f"❌ Control plane connection refused (rc={reason_code})")
            self._connected.clear()
            return
        client.subscribe(self.command_topic, qos=1)
        logger.info(f"✅ Control plane connected, listening on {self.command_topic}")
        self.publish_status("connected")
        self._connected.set()

    def _on_disconnect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            logger.warning(f"⚠️ Control plane lost connection (rc={reason_code})")
        self._connected.clear()

    def _on_message(self, client, userdata, msg):
        try:
            command_data = json.loads(msg.payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(f"❌ Undecodable command on {msg.topic}: {e}")
            self._count("malformed")
            return
        try:
            self.dispatch(command_data)
        except Exception as e:
            logger.error(f"❌ Command handler crashed: {e}", exc_info=True)
            self._count("crashed")
