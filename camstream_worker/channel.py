"""
Inference Worker Channel - lifecycle and admission control for one worker.

The channel owns exactly one out-of-process worker and its message protocol:

    UNINITIALIZED → LOADING → READY ⇄ BUSY
    any state     → ERRORED | TERMINATED   (TERMINATED is final)

Admission control: submit() is accepted only in READY. While a request is in
flight the channel is BUSY and every further submit() is rejected (the caller
drops the frame). Nothing is ever queued, so a slow model skips frames instead
of building a backlog.

Requests and responses are correlated by the single in-flight slot, not by
ids: a result that arrives while not BUSY is a protocol violation, logged and
discarded.

Error policy:
- spawn/load failure, worker exit: channel → ERRORED, reported once, no retry
  (a new channel is needed)
- inference failure: channel → READY, frame lost, reported as transient
- protocol violation: logged, reported, message discarded

Threading:
- A listener thread receives worker messages and calls handle_message()
- submit()/stop() are called from the capture loop / control plane threads
- State is guarded by a lock; callbacks always run outside it
"""

import logging
import threading
from enum import Enum
from typing import Callable, Dict, Optional

from camstream_mqtt.logging import LogEvent, create_logger
from camstream_mqtt.schemas import ErrorKind, ErrorReport
from camstream_vision import Frame
from camstream_worker.errors import InvalidTransition, ProtocolViolation
from camstream_worker.process import ProcessWorkerHandle, WorkerHandle
from camstream_worker.protocol import (
    InferenceResult,
    MessageType,
    RESULT_TYPES,
    WorkerConfig,
    WorkerMessage,
)

logger = logging.getLogger(__name__)

ERROR_SOURCE = "worker"


class WorkerState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    BUSY = "busy"
    ERRORED = "errored"
    TERMINATED = "terminated"


_FORWARD_TRANSITIONS = {
    WorkerState.UNINITIALIZED: {WorkerState.LOADING},
    WorkerState.LOADING: {WorkerState.READY},
    WorkerState.READY: {WorkerState.BUSY},
    WorkerState.BUSY: {WorkerState.READY},
    WorkerState.ERRORED: set(),
    WorkerState.TERMINATED: set(),
}


def can_transition(current: WorkerState, target: WorkerState) -> bool:
    """Allowed WorkerState transitions."""
    if current is WorkerState.TERMINATED:
        return False
    if target in (WorkerState.ERRORED, WorkerState.TERMINATED):
        return current is not target
    return target in _FORWARD_TRANSITIONS[current]


class InferenceWorkerChannel:
    """
    One worker, at most one request in flight.

    Args:
        on_result: Called with each InferenceResult (listener thread)
        on_error: Called with each ErrorReport
        on_ready: Called once when the model finished loading
        spawn: Factory returning a started WorkerHandle
        poll_interval: Listener receive timeout in seconds

    Example:
        channel = InferenceWorkerChannel(on_result=..., on_error=...)
        channel.start(WorkerConfig(model_identifier="yolo11n.pt"))
        ...
        if not channel.submit(frame):
            pass  # busy: frame dropped
        ...
        channel.stop()
    """

    def __init__(
        self,
        on_result: Callable[[InferenceResult], None],
        on_error: Callable[[ErrorReport], None],
        on_ready: Optional[Callable[[], None]] = None,
        spawn: Callable[[], WorkerHandle] = ProcessWorkerHandle,
        poll_interval: float = 0.1,
    ):
        self._on_result = on_result
        self._on_error = on_error
        self._on_ready = on_ready
        self._spawn = spawn
        self._poll_interval = poll_interval

        self._lock = threading.Lock()
        self._state = WorkerState.UNINITIALIZED
        self._handle: Optional[WorkerHandle] = None
        self._pending_frame_id: Optional[int] = None
        self._listener: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self.config: Optional[WorkerConfig] = None

        self._stats = {
            "requests_sent": 0,
            "requests_completed": 0,
            "requests_failed": 0,
            "submissions_rejected": 0,
            "protocol_violations": 0,
        }
        self._events = create_logger("worker")

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> WorkerState:
        return self._state

    def is_ready(self) -> bool:
        return self._state is WorkerState.READY

    def is_operational(self) -> bool:
        """Model loaded: READY or BUSY."""
        return self._state in (WorkerState.READY, WorkerState.BUSY)

    @property
    def has_pending_request(self) -> bool:
        return self._pending_frame_id is not None

    def _transition(self, target: WorkerState) -> None:
        """Must be called with the lock held."""
        if not can_transition(self._state, target):
            raise InvalidTransition(
                f"Invalid worker transition {self._state.value} → {target.value}"
            )
        previous, self._state = self._state, target
        self._events.debug(
            event=LogEvent.WORKER_STATE_CHANGED,
            message=f"Worker {previous.value} → {target.value}",
            metadata={"from": previous.value, "to": target.value},
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, config: WorkerConfig) -> bool:
        """
        Spawn a fresh worker and send the load request.

        Returns:
            True if the worker was spawned and load sent. On failure the
            channel is ERRORED and a SpawnFailure has been reported.

        Raises:
            InvalidTransition: If the channel was already started
        """
        with self._lock:
            if self._state is not WorkerState.UNINITIALIZED:
                raise InvalidTransition(
                    f"start() requires an uninitialized channel, state is {self._state.value}"
                )
            self._transition(WorkerState.LOADING)
            self.config = config

        try:
            handle = self._spawn()
            handle.send(WorkerMessage.load(config).to_dict())
        except Exception as e:
            logger.error(f"❌ Failed to spawn inference worker: {e}", exc_info=True)
            self._fail(ErrorKind.SPAWN_FAILURE, f"Failed to spawn worker: {e}")
            return False

        with self._lock:
            if self._state is WorkerState.TERMINATED:
                stopped_during_spawn = True
            else:
                stopped_during_spawn = False
                self._handle = handle
        if stopped_during_spawn:
            handle.terminate()
            return False

        self._events.info(
            event=LogEvent.WORKER_SPAWNED,
            message=f"Worker spawned, loading {config.model_identifier}",
            metadata={"model_identifier": config.model_identifier, "task": config.task},
        )

        self._listener = threading.Thread(
            target=self._listen,
            args=(handle,),
            name="WorkerListenerThread",
            daemon=True,
        )
        self._listener.start()
        return True

    def stop(self) -> None:
        """
        Terminate the worker unconditionally.

        Releases the in-flight request (no result is delivered for it).
        Idempotent.
        """
        with self._lock:
            if self._state is WorkerState.TERMINATED:
                return
            self._transition(WorkerState.TERMINATED)
            handle, self._handle = self._handle, None
            self._pending_frame_id = None

        self._stop_event.set()

        if handle is not None:
            try:
                handle.terminate()
            except Exception as e:
                logger.error(f"❌ Error terminating worker: {e}")

        listener = self._listener
        if listener is not None and listener is not threading.current_thread():
            listener.join(timeout=5.0)

        self._events.info(
            event=LogEvent.WORKER_TERMINATED,
            message="Worker channel terminated",
            metadata=self.get_stats(),
        )

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def submit(self, frame: Frame) -> bool:
        """
        Submit a frame for inference.

        Returns:
            True if accepted (channel now BUSY); False if rejected because the
            channel is not READY. Rejected frames are dropped, never queued.
        """
        with self._lock:
            if self._state is not WorkerState.READY:
                self._stats["submissions_rejected"] += 1
                return False
            self._transition(WorkerState.BUSY)
            self._pending_frame_id = frame.frame_id
            handle = self._handle

        try:
            handle.send(WorkerMessage.detect(frame).to_dict())
        except Exception as e:
            logger.error(f"❌ Failed to send frame {frame.frame_id} to worker: {e}")
            self._fail(ErrorKind.WORKER_EXITED, f"Worker unreachable: {e}")
            return False

        with self._lock:
            self._stats["requests_sent"] += 1
        self._events.debug(
            event=LogEvent.INFERENCE_FRAME_SUBMITTED,
            message=f"Frame {frame.frame_id} submitted",
            metadata={"frame_id": frame.frame_id},
        )
        return True

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    def handle_message(self, raw: dict) -> None:
        """
        Process one message from the worker.

        Called by the listener thread. Never raises for bad messages: they are
        logged and discarded as protocol violations.
        """
        try:
            message = WorkerMessage.from_dict(raw)
        except ProtocolViolation as e:
            self._protocol_violation(str(e))
            return

        if message.type is MessageType.READY:
            self._handle_ready(message)
        elif message.type is MessageType.ERROR:
            self._handle_error(message)
        elif message.type in RESULT_TYPES:
            self._handle_result(message)
        else:
            self._protocol_violation(f"Worker sent a request message: {message.type.value}")

    def _handle_ready(self, message: WorkerMessage) -> None:
        with self._lock:
            if self._state is not WorkerState.LOADING:
                violation = f"'ready' received while {self._state.value}"
            else:
                violation = None
                self._transition(WorkerState.READY)

        if violation:
            self._protocol_violation(violation)
            return

        logger.info(f"✅ Worker ready ({message.payload.get('model_identifier')})")
        if self._on_ready:
            self._on_ready()

    def _handle_error(self, message: WorkerMessage) -> None:
        reason = str(message.payload.get("reason") or "unknown worker error")

        with self._lock:
            if self._state is WorkerState.LOADING:
                kind = ErrorKind.LOAD_FAILURE
                self._transition(WorkerState.ERRORED)
            elif self._state is WorkerState.BUSY:
                kind = ErrorKind.INFERENCE_FAILURE
                self._transition(WorkerState.READY)
                self._pending_frame_id = None
                self._stats["requests_failed"] += 1
            else:
                kind = None
                state = self._state

        if kind is None:
            self._protocol_violation(f"'error' received while {state.value}: {reason}")
            return

        if kind is ErrorKind.LOAD_FAILURE:
            logger.error(f"❌ Model load failed: {reason}")
        else:
            logger.warning(f"⚠️ Inference failed: {reason}")
        self._on_error(ErrorReport.create(kind, reason, ERROR_SOURCE))

    def _handle_result(self, message: WorkerMessage) -> None:
        with self._lock:
            if self._state is not WorkerState.BUSY:
                violation = f"'{message.type.value}' received while {self._state.value}"
            else:
                violation = None
                self._transition(WorkerState.READY)
                self._pending_frame_id = None
                self._stats["requests_completed"] += 1

        if violation:
            self._protocol_violation(violation)
            return

        try:
            result = message.to_result()
        except ProtocolViolation as e:
            self._protocol_violation(str(e))
            return

        self._events.debug(
            event=LogEvent.INFERENCE_RESULT_RECEIVED,
            message=f"Result for frame {result.frame_id}",
            metadata={"frame_id": result.frame_id, "type": message.type.value},
        )
        self._on_result(result)

    def _protocol_violation(self, reason: str) -> None:
        with self._lock:
            self._stats["protocol_violations"] += 1
        self._events.warning(
            event=LogEvent.PROTOCOL_VIOLATION,
            message=f"Discarding worker message: {reason}",
        )
        self._on_error(ErrorReport.create(ErrorKind.PROTOCOL_VIOLATION, reason, ERROR_SOURCE))

    def _fail(self, kind: ErrorKind, reason: str) -> None:
        """Enter ERRORED (unless already stopped/errored) and report once."""
        with self._lock:
            if self._state in (WorkerState.TERMINATED, WorkerState.ERRORED):
                return
            self._transition(WorkerState.ERRORED)
            self._pending_frame_id = None
        self._on_error(ErrorReport.create(kind, reason, ERROR_SOURCE))

    # ------------------------------------------------------------------
    # Listener thread
    # ------------------------------------------------------------------

    def _listen(self, handle: WorkerHandle) -> None:
        while not self._stop_event.is_set():
            try:
                raw = handle.recv(timeout=self._poll_interval)
            except (EOFError, OSError) as e:
                if not self._stop_event.is_set():
                    logger.error(f"❌ Worker connection lost: {e}")
                    self._fail(ErrorKind.WORKER_EXITED, "Worker process exited unexpectedly")
                break

            if raw is None:
                if not handle.is_alive() and not self._stop_event.is_set():
                    logger.error("❌ Worker process is no longer alive")
                    self._fail(ErrorKind.WORKER_EXITED, "Worker process exited unexpectedly")
                    break
                continue

            try:
                self.handle_message(raw)
            except Exception as e:
                logger.error(f"❌ Error handling worker message: {e}", exc_info=True)

    def get_stats(self) -> Dict[str, object]:
        with self._lock:
            return {
                **self._stats,
                "state": self._state.value,
                "model_identifier": self.config.model_identifier if self.config else None,
            }
