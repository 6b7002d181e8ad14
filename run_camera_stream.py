#!/usr/bin/env python3
"""
Camera Stream Service - Entry Point
====================================

Starts one CameraStreamService for one camera:

- frames from a camera index, stream URL or file (OpenCV reader thread)
- YOLO detection or YOLO-World prompt scoring in a worker process
- motion + classification scores reported at a fixed interval
- optional remote multimodal session
- outputs published to MQTT, commands received on the control topic

Usage:
    python run_camera_stream.py --config config/camstream/cam_01.yaml
    python run_camera_stream.py --config config/camstream/cam_01.yaml --source rtsp://cam/stream
    python run_camera_stream.py --config config/camstream/cam_01.yaml --no-mqtt --no-log-file

SIGINT and SIGTERM both trigger a graceful shutdown.
"""

import argparse
import dataclasses
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

from camstream_processor import CameraStreamService, ServiceConfig, VideoCaptureSource
from camstream_control import MQTTControlPlane
from camstream_mqtt import (
    DetectionPublisher,
    LoggingConsumer,
    MQTTStreamConsumer,
    StreamConsumer,
    StreamEventPublisher,
    create_logger,
)

BANNER = "=" * 80


# ─────────────────────────────────────────────────────────────────────────────
# Logging Setup
# ─────────────────────────────────────────────────────────────────────────────

def setup_logging(log_file: Optional[Path] = None, level: int = logging.INFO) -> logging.Logger:
    """Console handler, plus a file handler when log_file is given."""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )
    return logging.getLogger("camstream")


def parse_source(value: str) -> Union[int, str]:
    """'0' -> camera index 0; anything else is a path or URL."""
    return int(value) if value.isdigit() else value


# ─────────────────────────────────────────────────────────────────────────────
# Application
# ─────────────────────────────────────────────────────────────────────────────

class CameraStreamApp:
    """
    Wires config, frame source, consumer and control plane around a
    CameraStreamService and owns their shutdown.
    """

    def __init__(
        self,
        config_path: Path,
        log_file: Optional[Path] = None,
        use_mqtt: bool = True,
        source_override: Optional[Union[int, str]] = None,
        status_interval_s: float = 0.0,
        log_level: int = logging.INFO,
    ):
        self.config_path = config_path
        self.use_mqtt = use_mqtt
        self.source_override = source_override
        self.status_interval_s = status_interval_s
        self.logger = setup_logging(log_file, log_level)

        self.config: Optional[ServiceConfig] = None
        self.source: Optional[VideoCaptureSource] = None
        self.control_plane: Optional[MQTTControlPlane] = None
        self.consumer: Optional[StreamConsumer] = None
        self.service: Optional[CameraStreamService] = None

        self._stop_event = threading.Event()
        self._shutdown_lock = threading.Lock()
        self._shut_down = False

    def setup(self):
        """
        Raises:
            FileNotFoundError / ValueError: Invalid configuration
            RuntimeError: Frame source or MQTT broker unavailable
        """
        self.logger.info(BANNER)
        self.logger.info("🚀 Camstream camera stream - starting")
        self.logger.info(BANNER)

        self.config = self._load_config()

        capture = self.config.capture
        self.logger.info(f"🎥 Opening source: {capture.source}")
        self.source = VideoCaptureSource(
            source=capture.source,
            warmup_ms=capture.warmup_ms,
            frame_resolution_wh=capture.frame_resolution_wh,
        )
        if not self.source.open():
            raise RuntimeError(f"Could not open video source: {capture.source}")

        if self.use_mqtt:
            self._setup_mqtt()
        else:
            self.logger.info("📝 MQTT disabled, outputs go to the log")
            self.consumer = LoggingConsumer()

        self.service = CameraStreamService(
            config=self.config,
            source=self.source,
            consumer=self.consumer,
            control_plane=self.control_plane,
        )
        self.service.setup()

        detection = self.config.detection
        self.logger.info(
            f"✅ Service ready (detection={'on' if detection.enabled else 'off'}, "
            f"model={detection.model_identifier}, task={detection.task}, "
            f"remote={'on' if self.config.remote.enabled else 'off'})"
        )

    def _load_config(self) -> ServiceConfig:
        self.logger.info(f"📄 Loading configuration: {self.config_path}")
        config = ServiceConfig.from_yaml(self.config_path)
        if self.source_override is not None:
            self.logger.info(f"🔀 Source override: {self.source_override}")
            config = dataclasses.replace(
                config,
                capture=dataclasses.replace(config.capture, source=self.source_override),
            )
        self.logger.info(f"✅ Configuration loaded (service_id={config.service_id})")
        return config

    def _setup_mqtt(self):
        mqtt_config = self.config.mqtt_config
        service_id = self.config.service_id
        broker = f"{mqtt_config.broker}:{mqtt_config.port}"
        credentials = dict(username=mqtt_config.username, password=mqtt_config.password)

        self.control_plane = MQTTControlPlane(
            broker_host=mqtt_config.broker,
            broker_port=mqtt_config.port,
            command_topic=self.config.command_topic,
            status_topic=self.config.status_topic,
            client_id=f"camstream_{service_id}_control",
            **credentials,
        )
        if not self.control_plane.connect(timeout=10.0):
            raise RuntimeError(f"Could not connect control plane to {broker}")

        data_topic = self.config.data_topic
        mqtt_logger = create_logger("mqtt_publisher", service_id=service_id)
        self.consumer = MQTTStreamConsumer(
            service_id=service_id,
            detection_publisher=DetectionPublisher(
                broker_host=mqtt_config.broker,
                broker_port=mqtt_config.port,
                topic=f"{data_topic}/detections",
                classification_topic=f"{data_topic}/classifications",
                logger=mqtt_logger.bind(publisher="detections"),
                client_id=f"camstream_{service_id}_detections",
                qos=mqtt_config.qos,
                **credentials,
            ),
            event_publisher=StreamEventPublisher(
                broker_host=mqtt_config.broker,
                broker_port=mqtt_config.port,
                base_topic=data_topic,
                logger=mqtt_logger.bind(publisher="events"),
                client_id=f"camstream_{service_id}_events",
                qos=mqtt_config.qos,
                **credentials,
            ),
        )
        if not self.consumer.connect(timeout=10.0):
            raise RuntimeError(f"Could not connect publishers to {broker}")

        self.logger.info(f"📡 MQTT {broker}")
        self.logger.info(f"  - Data topic: {data_topic}/#")
        self.logger.info(f"  - Command topic: {self.config.command_topic}")
        self.logger.info(f"  - Status topic: {self.config.status_topic}")

    def run(self):
        """Start the service and block until a signal or stop() arrives."""
        if not self.service:
            raise RuntimeError("Service not initialized. Call setup() first.")

        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

        try:
            self.service.start()
            self.logger.info("✅ Service started, press Ctrl+C to stop")
            wait_s = self.status_interval_s if self.status_interval_s > 0 else 1.0
            while not self._stop_event.wait(timeout=wait_s):
                if self.status_interval_s > 0:
                    self._log_status()
        except Exception as e:
            self.logger.error(f"❌ Service error: {e}", exc_info=True)
            self.shutdown()
            sys.exit(1)

        self.shutdown()

    def stop(self):
        self._stop_event.set()

    def _log_status(self):
        status = self.service.status()
        detection = status["detection"]
        capture = detection["capture"] or {}
        validation = status["validation"]
        self.logger.info(
            f"📊 worker={detection['state']} fps={capture.get('fps', 0)} "
            f"dropped={capture.get('frames_dropped', 0)} "
            f"motion={validation['motion_score']:.2f} "
            f"score={validation['classification_score']:.2f} "
            f"remote={status['remote'].get('state')}"
        )

    def _shutdown_steps(self) -> List[Tuple[str, Callable[[], None]]]:
        steps: List[Tuple[str, Callable[[], None]]] = []
        if self.service and self.service.is_running:
            steps.append(("Service stopped", self.service.stop))
        if isinstance(self.consumer, MQTTStreamConsumer):
            steps.append(("Publishers disconnected", self.consumer.disconnect))
        if self.control_plane:
            steps.append(("Control plane disconnected", self.control_plane.disconnect))
        if self.source:
            steps.append(("Source released", self.source.release))
        return steps

    def shutdown(self):
        """Stop service, then publishers, control plane and source. Idempotent."""
        with self._shutdown_lock:
            if self._shut_down:
                return
            self._shut_down = True
        self._stop_event.set()

        self.logger.info("🛑 Shutting down camera stream service")
        for label, step in self._shutdown_steps():
            try:
                step()
                self.logger.info(f"✅ {label}")
            except Exception as e:
                self.logger.error(f"❌ {label} failed: {e}", exc_info=True)
        self.logger.info("✅ Shutdown complete")

    def _signal_handler(self, signum, frame):
        self.logger.info(f"⚠️  Received {signal.Signals(signum).name}")
        self._stop_event.set()


# ─────────────────────────────────────────────────────────────────────────────
# CLI
# ─────────────────────────────────────────────────────────────────────────────

def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Camstream camera stream - capture, local inference, remote session, MQTT",
    )
    parser.add_argument('--config', type=Path, required=True,
                        help='Service configuration YAML')
    parser.add_argument('--source', type=parse_source, default=None,
                        help='Override capture.source (camera index, file or URL)')
    parser.add_argument('--log-file', type=Path, default=Path('logs/camstream.log'),
                        help='Log file (default: logs/camstream.log)')
    parser.add_argument('--no-log-file', action='store_true',
                        help='Console logging only')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    parser.add_argument('--no-mqtt', action='store_true',
                        help='Log outputs instead of publishing them (no control plane)')
    parser.add_argument('--status-interval', type=float, default=0.0, metavar='SECONDS',
                        help='Log a one-line status every SECONDS (0 = off)')
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    if not args.config.exists():
        print(f"❌ Error: Configuration file not found: {args.config}", file=sys.stderr)
        sys.exit(1)

    app = CameraStreamApp(
        config_path=args.config,
        log_file=None if args.no_log_file else args.log_file,
        use_mqtt=not args.no_mqtt,
        source_override=args.source,
        status_interval_s=args.status_interval,
        log_level=getattr(logging, args.log_level),
    )

    try:
        app.setup()
        app.run()
    except Exception as e:
        print(f"❌ Fatal error: {e}", file=sys.stderr)
        app.shutdown()
        sys.exit(1)


if __name__ == '__main__':
    main()
