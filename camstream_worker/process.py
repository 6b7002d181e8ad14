"""
Worker process side of the inference channel.

The worker runs in its own process (multiprocessing "spawn" context) and
talks to the main side over a duplex Pipe. It handles one message at a time:

    load       → load model, reply ready | error
    detect     → run model, reply detections | classifications | error
                 (not loaded yet: reply empty detections so the main side is
                 never left busy)
    terminate  → exit loop, no reply

WorkerRuntime holds the per-process state and is usable without a process
(tests drive it directly). ProcessWorkerHandle is the main-side handle the
channel spawns.
"""

import logging
import multiprocessing
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from camstream_worker.errors import ModelLoadError, ProtocolViolation
from camstream_worker.protocol import (
    MessageType,
    WorkerConfig,
    WorkerMessage,
    as_frame,
    empty_detections,
)

logger = logging.getLogger(__name__)

JOIN_TIMEOUT_S = 2.0


def _default_loader_factory(config: WorkerConfig):
    # ultralytics is only imported inside the worker process
    from camstream_worker.model_loader import ModelLoader
    return ModelLoader(config).load()


class WorkerRuntime:
    """
    Message handler for the worker process.

    Args:
        loader_factory: WorkerConfig -> loaded model object exposing
            predict(frame) -> InferenceResult. Raises on load failure.
    """

    def __init__(self, loader_factory: Callable[[WorkerConfig], Any] = _default_loader_factory):
        self._loader_factory = loader_factory
        self.model = None
        self.config: Optional[WorkerConfig] = None

    def handle(self, message: WorkerMessage) -> Optional[WorkerMessage]:
        """Process one request; returns the reply (None for terminate)."""
        if message.type is MessageType.LOAD:
            return self._handle_load(message.payload)
        if message.type is MessageType.DETECT:
            return self._handle_detect(message.payload)
        if message.type is MessageType.TERMINATE:
            return None
        return WorkerMessage.error(f"Unexpected message type: {message.type.value}")

    def _handle_load(self, payload: dict) -> WorkerMessage:
        try:
            config = WorkerConfig.from_dict(payload)
        except ValueError as e:
            return WorkerMessage.error(f"Invalid load request: {e}")

        try:
            self.model = self._loader_factory(config)
        except ModelLoadError as e:
            return WorkerMessage.error(str(e))
        except Exception as e:
            return WorkerMessage.error(f"Failed to load {config.model_identifier}: {e}")

        self.config = config
        logger.info(f"✅ Model loaded: {config.model_identifier} (task={config.task})")
        return WorkerMessage.ready(config.model_identifier)

    def _handle_detect(self, payload: dict) -> WorkerMessage:
        frame_id = int(payload.get("frame_id", 0))
        if self.model is None:
            return WorkerMessage.from_result(empty_detections(frame_id))

        pixels = payload.get("frame")
        if pixels is None or not payload.get("width") or not payload.get("height"):
            return WorkerMessage.error("Detect request without frame data")

        try:
            frame = as_frame(pixels, frame_id=frame_id)
            result = self.model.predict(frame)
        except Exception as e:
            return WorkerMessage.error(f"Inference failed on frame {frame_id}: {e}")
        return WorkerMessage.from_result(result)


def run_worker(conn, loader_factory: Callable[[WorkerConfig], Any] = _default_loader_factory) -> None:
    """Worker process entry point: serve requests until terminate or EOF."""
    runtime = WorkerRuntime(loader_factory)

    while True:
        try:
            raw = conn.recv()
        except (EOFError, OSError):
            break

        try:
            message = WorkerMessage.from_dict(raw)
        except ProtocolViolation as e:
            conn.send(WorkerMessage.error(str(e)).to_dict())
            continue

        if message.type is MessageType.TERMINATE:
            break

        reply = runtime.handle(message)
        if reply is not None:
            try:
                conn.send(reply.to_dict())
            except (BrokenPipeError, OSError):
                break

    conn.close()


class WorkerHandle(ABC):
    """Main-side handle of a running worker."""

    @abstractmethod
    def send(self, message: dict) -> None:
        pass

    @abstractmethod
    def recv(self, timeout: float) -> Optional[dict]:
        """Next message, None on timeout. Raises EOFError once the worker is gone."""

    @abstractmethod
    def is_alive(self) -> bool:
        pass

    @abstractmethod
    def terminate(self) -> None:
        pass


class ProcessWorkerHandle(WorkerHandle):
    """
    Worker in a separate process connected by a Pipe.

    Spawning happens in the constructor; failures propagate to the channel
    as SpawnFailure.
    """

    def __init__(self, start_method: str = "spawn"):
        ctx = multiprocessing.get_context(start_method)
        self._conn, child_conn = ctx.Pipe(duplex=True)
        self._process = ctx.Process(
            target=run_worker,
            args=(child_conn,),
            name="InferenceWorker",
            daemon=True,
        )
        self._process.start()
        child_conn.close()
        logger.info(f"🚀 Inference worker spawned (pid={self._process.pid})")

    def send(self, message: dict) -> None:
        self._conn.send(message)

    def recv(self, timeout: float) -> Optional[dict]:
        if self._conn.poll(timeout):
            return self._conn.recv()
        return None

    def is_alive(self) -> bool:
        return self._process.is_alive()

    def terminate(self) -> None:
        if self._process.is_alive():
            try:
                self._conn.send(WorkerMessage.terminate().to_dict())
            except (BrokenPipeError, OSError) as e:
                logger.debug(f"Terminate signal not delivered: {e}")
            self._process.join(timeout=JOIN_TIMEOUT_S)

        if self._process.is_alive():
            logger.warning("⚠️ Worker did not exit, terminating process")
            self._process.terminate()
            self._process.join(timeout=JOIN_TIMEOUT_S)

        self._conn.close()
        logger.info(f"🛑 Inference worker stopped (exitcode={self._process.exitcode})")
