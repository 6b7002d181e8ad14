"""
Camera Stream Service - orchestrator.

This module provides the CameraStreamService class which composes the
camera stream pipeline from configuration and owns every component's
lifecycle:

- InferenceWorkerChannel: one out-of-process worker per model configuration
- CaptureLoop: frame sampling, motion scoring, admission-controlled submit
- ValidationReporter: periodic latest-score ticks while detection is active
- RemoteSessionManager: optional independently paced remote analysis

Model reconfiguration tears down the capture loop and worker channel and
starts fresh ones (one stop, one start); a live worker is never reconfigured.

Threading Model:
- Capture Loop Thread (submit frames)
- Worker Listener Thread (results/errors, calls _on_worker_*)
- Validation Reporter Thread (ticks)
- Remote Session Thread (remote requests)
- Control Plane Thread (paho-mqtt internal, command handlers)

Thread Safety:
- Lifecycle changes (start/stop/reconfigure/enable/disable) are serialized
  by _lifecycle_lock
- Worker callbacks never take _lifecycle_lock; callbacks from a replaced
  channel are recognized by their generation number and ignored
"""

import logging
import threading
from dataclasses import replace
from functools import partial
from typing import Any, Callable, Dict, Optional

from camstream_mqtt import StreamConsumer
from camstream_mqtt.schemas import ErrorReport
from camstream_remote import RemoteClient, RemoteSessionManager
from camstream_vision import QualitySample, analyze_image_quality
from camstream_worker import InferenceResult, InferenceWorkerChannel, WorkerState
from camstream_processor.capture import CaptureLoop
from camstream_processor.config import ServiceConfig, parse_class_filter
from camstream_processor.filtering import (
    apply_label_map,
    filter_detections,
    prompt_score,
    top_confidence,
)
from camstream_processor.reporter import ValidationReporter
from camstream_processor.sources import FrameSource
from camstream_processor.state import LatestScores

logger = logging.getLogger(__name__)

ChannelFactory = Callable[..., InferenceWorkerChannel]


class CameraStreamService:
    """
    Main camera stream service.

    Usage:
        config = ServiceConfig.from_yaml("config/camstream/cam_01.yaml")
        source = VideoCaptureSource(config.capture.source)
        source.open()

        service = CameraStreamService(
            config=config,
            source=source,
            consumer=consumer,
            control_plane=control_plane,
        )
        service.setup()
        service.start()
        ...
        service.stop()

    Args:
        config: Service configuration
        source: Frame source shared by capture loop, remote session and
            quality sampling
        consumer: Receives every output (ticks, detections, errors, ...)
        control_plane: Optional MQTTControlPlane; commands are registered on
            setup() and status is published through it
        channel_factory: Builds a worker channel from
            (on_result, on_error, on_ready) callbacks
        remote_client_factory: Builds the remote client from RemoteConfig
    """

    def __init__(
        self,
        config: ServiceConfig,
        source: FrameSource,
        consumer: StreamConsumer,
        control_plane=None,  # MQTTControlPlane
        channel_factory: ChannelFactory = InferenceWorkerChannel,
        remote_client_factory: Optional[Callable[..., Any]] = None,
    ):
        self.config = config
        self.source = source
        self.consumer = consumer
        self.control_plane = control_plane
        self._channel_factory = channel_factory
        self._remote_client_factory = remote_client_factory or self._build_remote_client

        self.scores = LatestScores()
        self.reporter = ValidationReporter(
            self.scores,
            on_tick=self.consumer.on_validation_tick,
            interval_ms=config.validation.interval_ms,
        )

        # Detection (replaced as a unit on reconfiguration)
        self.channel: Optional[InferenceWorkerChannel] = None
        self.capture_loop: Optional[CaptureLoop] = None
        self._generation = 0

        # Remote
        self.remote_session: Optional[RemoteSessionManager] = None
        self._remote_client = None

        # Lifecycle state
        self._lifecycle_lock = threading.RLock()
        self._running = False

        logger.info(f"CameraStreamService initialized for service_id={config.service_id}")

    # ─────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._running

    def setup(self) -> None:
        """Register control handlers. Must be called before start() when a
        control plane is used."""
        if self.control_plane is not None:
            self._setup_control_handlers()

    def start(self) -> None:
        """Start the enabled pipelines (non-blocking)."""
        with self._lifecycle_lock:
            if self._running:
                logger.warning("Service already running")
                return

            logger.info("Starting camera stream service")
            self._running = True

            if self.config.detection.enabled:
                self._start_detection()
            if self.config.remote.enabled:
                self._start_remote()

        self._publish_status("running", self.status())
        logger.info("✅ Camera stream service started")

    def stop(self) -> None:
        """
        Stop everything.

        Order: remote session, capture loop, worker channel, validation
        reporter.
        """
        with self._lifecycle_lock:
            if not self._running:
                logger.warning("Service not running")
                return

            logger.info("Stopping camera stream service")
            self._stop_remote()
            self._stop_detection()
            self._running = False

        self._publish_status("stopped")
        logger.info("✅ Camera stream service stopped")

    # ─────────────────────────────────────────────────────────────────────
    # Detection pipeline
    # ─────────────────────────────────────────────────────────────────────

    def _start_detection(self) -> None:
        """Spawn a fresh channel + capture loop for the current config."""
        self._generation += 1
        generation = self._generation

        channel = self._channel_factory(
            on_result=partial(self._on_worker_result, generation),
            on_error=partial(self._on_worker_error, generation),
            on_ready=partial(self._on_worker_ready, generation),
        )
        self.channel = channel
        self.capture_loop = CaptureLoop(
            self.source,
            channel,
            self.scores,
            refresh_hz=self.config.capture.refresh_hz,
        )

        detection = self.config.detection
        logger.info(f"🧠 Starting detection: {detection.model_identifier} (task={detection.task})")
        if channel.start(detection.worker_config()):
            self.capture_loop.start()

    def _stop_detection(self) -> None:
        """Tear down capture loop, worker channel and reporter (in that order)."""
        capture_loop, channel = self.capture_loop, self.channel
        self.capture_loop = None
        self.channel = None
        self._generation += 1

        if capture_loop is not None:
            capture_loop.stop()
        if channel is not None:
            channel.stop()
        self.reporter.stop()
        self.scores.reset()

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _on_worker_ready(self, generation: int) -> None:
        """Worker Listener Thread"""
        if not self._is_current(generation):
            return
        if self.config.validation.enabled:
            self.reporter.start()
        self._publish_status("detection_ready", {
            "model_identifier": self.config.detection.model_identifier,
        })

    def _on_worker_result(self, generation: int, result: InferenceResult) -> None:
        """Worker Listener Thread"""
        if not self._is_current(generation):
            return

        detection = self.config.detection
        if result.is_classification:
            score = prompt_score(result.classifications, detection.primary_prompt)
            self.scores.set_classification(score)
            self.consumer.on_classifications(result.classifications, result.frame_id)
            return

        detections = filter_detections(
            apply_label_map(result.detections, detection.label_map),
            detection.score_threshold,
            detection.class_filter,
        )
        self.scores.set_classification(top_confidence(detections))
        self.consumer.on_detections(detections, result.frame_id)

    def _on_worker_error(self, generation: int, error: ErrorReport) -> None:
        """Worker Listener Thread (or caller of start() on spawn failure)"""
        if not self._is_current(generation):
            return

        self.consumer.on_error(error)
        if error.kind.is_terminal:
            logger.error(f"❌ Detection unavailable ({error.kind.value}): {error.reason}")
            self.reporter.stop()
            self._publish_status("detection_errored", error.to_dict())

    def set_detection_enabled(self, enabled: bool) -> None:
        """Enable / disable local inference. Enabling an errored detection
        pipeline restarts it with a fresh worker."""
        with self._lifecycle_lock:
            self.config = replace(
                self.config, detection=replace(self.config.detection, enabled=enabled)
            )
            if not self._running:
                return
            if enabled:
                if self.channel is not None and self.channel.state is WorkerState.ERRORED:
                    self._stop_detection()
                if self.channel is None:
                    self._start_detection()
            elif self.channel is not None:
                self._stop_detection()
                logger.info("🧠 Detection disabled")

    def reconfigure_model(
        self,
        model_identifier: str,
        primary_prompt: Optional[str] = None,
        negative_prompt: Optional[str] = None,
        task: Optional[str] = None,
    ) -> None:
        """
        Replace the model (and prompts). A running worker is stopped once and
        a fresh one started.

        Raises:
            ValueError: If the resulting detection config is invalid
        """
        with self._lifecycle_lock:
            current = self.config.detection
            detection = replace(
                current,
                model_identifier=model_identifier,
                primary_prompt=primary_prompt if primary_prompt is not None else current.primary_prompt,
                negative_prompt=negative_prompt if negative_prompt is not None else current.negative_prompt,
                task=task or current.task,
            )
            self.config = replace(self.config, detection=detection)

            if self._running and self.channel is not None:
                self._stop_detection()
                self._start_detection()

        logger.info(f"🧠 Model changed: {model_identifier}")
        self._publish_status("model_changed", {"model_identifier": model_identifier})

    def set_filter(self, class_filter: Any, score_threshold: Optional[float] = None) -> None:
        """Change class filter / threshold. Applied to the next result; no respawn."""
        with self._lifecycle_lock:
            current = self.config.detection
            detection = replace(
                current,
                class_filter=parse_class_filter(class_filter),
                score_threshold=current.score_threshold if score_threshold is None else float(score_threshold),
            )
            self.config = replace(self.config, detection=detection)

        self._publish_status("filter_changed", {
            "class_filter": list(detection.class_filter),
            "score_threshold": detection.score_threshold,
        })

    # ─────────────────────────────────────────────────────────────────────
    # Remote pipeline
    # ─────────────────────────────────────────────────────────────────────

    def _build_remote_client(self, remote_config) -> RemoteClient:
        return RemoteClient(
            endpoint=remote_config.endpoint,
            api_key=remote_config.api_key,
            model=remote_config.model,
            timeout_s=remote_config.request_timeout_s,
            jpeg_quality=remote_config.jpeg_quality,
        )

    def _start_remote(self) -> None:
        remote = self.config.remote
        if self._remote_client is None:
            self._remote_client = self._remote_client_factory(remote)

        self.remote_session = RemoteSessionManager(
            source=self.source,
            client=self._remote_client,
            on_response=self.consumer.on_remote_response,
            on_error=self.consumer.on_error,
            primary_prompt=remote.primary_prompt,
            negative_prompt=remote.negative_prompt,
            delay_s=remote.delay_s,
            timeout_s=remote.timeout_s,
        )
        self.remote_session.start()

    def _stop_remote(self) -> None:
        """Stop the session and close its HTTP client; the next enable builds a new one."""
        session, self.remote_session = self.remote_session, None
        if session is not None:
            session.stop()
        client, self._remote_client = self._remote_client, None
        if client is not None:
            client.close()

    def set_remote_enabled(self, enabled: bool) -> None:
        """
        Raises:
            ValueError: If enabling without a configured endpoint
        """
        with self._lifecycle_lock:
            self.config = replace(
                self.config, remote=replace(self.config.remote, enabled=enabled)
            )
            if not self._running:
                return
            if enabled and self.remote_session is None:
                self._start_remote()
            elif not enabled:
                self._stop_remote()

    def resume_remote(self) -> bool:
        """Clear a remote error and retry immediately."""
        session = self.remote_session
        return session.resume() if session is not None else False

    # ─────────────────────────────────────────────────────────────────────
    # Quality / status
    # ─────────────────────────────────────────────────────────────────────

    def capture_quality_sample(self) -> Optional[QualitySample]:
        """Blur / lighting of the current frame, rounded for display."""
        if not self.source.is_ready():
            return None
        frame = self.source.capture_frame()
        if frame is None:
            return None

        sample = analyze_image_quality(frame.pixels).rounded()
        self.consumer.on_quality_sample(sample)
        return sample

    def status(self) -> Dict[str, Any]:
        detection = self.config.detection
        channel, capture_loop, session = self.channel, self.capture_loop, self.remote_session
        motion, classification = self.scores.snapshot()

        return {
            "service_id": self.config.service_id,
            "running": self._running,
            "detection": {
                "enabled": detection.enabled,
                "model_identifier": detection.model_identifier,
                "task": detection.task,
                "score_threshold": detection.score_threshold,
                "class_filter": list(detection.class_filter),
                "state": channel.state.value if channel is not None else None,
                "worker": channel.get_stats() if channel is not None else None,
                "capture": capture_loop.get_stats() if capture_loop is not None else None,
            },
            "validation": {
                "running": self.reporter.is_running(),
                "interval_ms": self.config.validation.interval_ms,
                "motion_score": motion,
                "classification_score": classification,
                "updated_at": self.scores.updated_at,
            },
            "remote": session.get_stats() if session is not None else {"state": "disabled"},
        }

    def _publish_status(self, status: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.consumer.on_status(status, details)
        if self.control_plane is not None:
            self.control_plane.publish_status(status, details)

    # ─────────────────────────────────────────────────────────────────────
    # Command Handlers (called by Control Plane Thread)
    # ─────────────────────────────────────────────────────────────────────

    def _setup_control_handlers(self) -> None:
        registry = self.control_plane.command_registry

        registry.register("enable_detection", self._handle_enable_detection, "Start local inference")
        registry.register("disable_detection", self._handle_disable_detection, "Stop local inference")
        registry.register("set_model", self._handle_set_model, "Respawn the worker with a new model/prompt")
        registry.register("set_filter", self._handle_set_filter, "Change class filter / score threshold")
        registry.register("enable_remote", self._handle_enable_remote, "Start the remote session")
        registry.register("disable_remote", self._handle_disable_remote, "Stop the remote session")
        registry.register("resume_remote", self._handle_resume_remote, "Retry an errored remote session now")
        registry.register("quality", self._handle_quality, "Publish blur/lighting of the current frame")
        registry.register("status", self._handle_status, "Publish service status")

        logger.info("Control handlers registered")

    def _handle_enable_detection(self, command: Dict) -> None:
        self.set_detection_enabled(True)
        self._publish_status("detection_enabled")

    def _handle_disable_detection(self, command: Dict) -> None:
        self.set_detection_enabled(False)
        self._publish_status("detection_disabled")

    def _handle_set_model(self, command: Dict) -> None:
        self.reconfigure_model(
            model_identifier=command["model_identifier"],
            primary_prompt=command.get("primary_prompt"),
            negative_prompt=command.get("negative_prompt"),
            task=command.get("task"),
        )

    def _handle_set_filter(self, command: Dict) -> None:
        self.set_filter(command.get("class_filter"), command.get("score_threshold"))

    def _handle_enable_remote(self, command: Dict) -> None:
        self.set_remote_enabled(True)
        self._publish_status("remote_enabled")

    def _handle_disable_remote(self, command: Dict) -> None:
        self.set_remote_enabled(False)
        self._publish_status("remote_disabled")

    def _handle_resume_remote(self, command: Dict) -> None:
        resumed = self.resume_remote()
        self._publish_status("remote_resumed" if resumed else "remote_not_errored")

    def _handle_quality(self, command: Dict) -> None:
        sample = self.capture_quality_sample()
        if sample is None:
            self._publish_status("quality_unavailable")
            return
        self._publish_status("quality", sample.to_dict())

    def _handle_status(self, command: Dict) -> None:
        self._publish_status("status", self.status())
