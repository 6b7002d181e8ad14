"""
Remote Session Manager - sequential frame → remote model → reply loop.

State machine:

    DISABLED → INITIALIZING → ACTIVE ⇄ AWAITING_REPLY
    any → ERRORED on send/parse failure; ERRORED → ACTIVE on resume()
    or on the next successful reply

Loop (one thread, never two requests in flight):
1. INITIALIZING until the frame source is ready
2. capture one frame, send it with the prompt(s), AWAITING_REPLY
3. publish the reply, ACTIVE, wait delay_s (= 1 / requests_per_second)
4. repeat until stop()

Liveness:
- If the first reply has not arrived timeout_s after a request was sent, a
  REMOTE_TIMEOUT notice is published once.
- stop() clears the session's liveness flag; an in-flight request that
  returns afterwards publishes nothing and does not reschedule.
"""

import logging
import threading
from enum import Enum
from typing import Callable, Dict, Optional

from camstream_mqtt.logging import LogEvent, create_logger
from camstream_mqtt.schemas import ErrorKind, ErrorReport
from camstream_remote.client import RemoteReply, RemoteRequestError

logger = logging.getLogger(__name__)

ERROR_SOURCE = "remote"


class RemoteState(str, Enum):
    DISABLED = "disabled"
    INITIALIZING = "initializing"
    ACTIVE = "active"
    AWAITING_REPLY = "awaiting_reply"
    ERRORED = "errored"


class RemoteSessionManager:
    """
    Args:
        source: FrameSource (is_ready, capture_frame)
        client: RemoteClient-like (analyze(frame, prompt, negative_prompt))
        on_response: Called with (text, score) for each reply
        on_error: Called with ErrorReport on failure / timeout
        primary_prompt: Prompt sent with every frame
        negative_prompt: Optional contrastive prompt
        delay_s: Pause between a reply and the next capture
        timeout_s: First-reply liveness window
    """

    def __init__(
        self,
        source,
        client,
        on_response: Callable[[str, Optional[float]], None],
        on_error: Callable[[ErrorReport], None],
        primary_prompt: str,
        negative_prompt: Optional[str] = None,
        delay_s: float = 2.0,
        timeout_s: float = 15.0,
        poll_interval: float = 0.1,
    ):
        self.source = source
        self.client = client
        self.on_response = on_response
        self.on_error = on_error
        self.primary_prompt = primary_prompt
        self.negative_prompt = negative_prompt
        self.delay_s = delay_s
        self.timeout_s = timeout_s
        self.poll_interval = poll_interval

        self._state = RemoteState.DISABLED
        self._state_lock = threading.Lock()
        self._alive = threading.Event()
        self._wake = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._watchdogs: Dict[threading.Event, threading.Timer] = {}
        self._watchdog_lock = threading.Lock()
        self._timeout_notified = False

        self.last_response_text: Optional[str] = None
        self.requests_sent = 0
        self.replies_received = 0
        self.failures = 0
        self._events = create_logger("remote")

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> RemoteState:
        return self._state

    @property
    def active(self) -> bool:
        return self._alive.is_set()

    @property
    def has_response(self) -> bool:
        return self.last_response_text is not None

    def _set_state(self, state: RemoteState) -> None:
        with self._state_lock:
            previous, self._state = self._state, state
        if previous is not state:
            self._events.debug(
                event=LogEvent.REMOTE_STATE_CHANGED,
                message=f"Remote {previous.value} → {state.value}",
                metadata={"from": previous.value, "to": state.value},
            )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the session loop. No-op if already active."""
        if self._alive.is_set():
            return

        alive = threading.Event()
        alive.set()
        wake = threading.Event()
        self._alive = alive
        self._wake = wake
        self._timeout_notified = False
        self._set_state(RemoteState.INITIALIZING)

        self._thread = threading.Thread(
            target=self._run,
            args=(alive, wake),
            name="RemoteSessionThread",
            daemon=True,
        )
        self._thread.start()
        logger.info(f"🌐 Remote session started (every {self.delay_s:.1f}s)")

    def stop(self) -> None:
        """Disable the session. Idempotent; does not wait for an in-flight request."""
        if not self._alive.is_set() and self._state is RemoteState.DISABLED:
            return

        alive = self._alive
        alive.clear()
        self._wake.set()
        self._cancel_watchdog(alive)
        self._set_state(RemoteState.DISABLED)

        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.poll_interval * 2)
        logger.info("🌐 Remote session stopped")

    def resume(self) -> bool:
        """
        Clear an ERRORED state and trigger the next request immediately.

        Returns:
            True if the session was errored and has been resumed
        """
        if not self._alive.is_set() or self._state is not RemoteState.ERRORED:
            return False
        self._set_state(RemoteState.ACTIVE)
        self._wake.set()
        logger.info("🌐 Remote session resumed")
        return True

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def _run(self, alive: threading.Event, wake: threading.Event) -> None:
        while alive.is_set() and not self.source.is_ready():
            wake.wait(self.poll_interval)

        if not alive.is_set():
            return
        self._set_state(RemoteState.ACTIVE)

        while alive.is_set():
            try:
                self.step(alive)
            except Exception as e:
                logger.error(f"❌ Remote step failed: {e}", exc_info=True)

            if not alive.is_set():
                break
            wake.wait(self.delay_s)
            wake.clear()

    def step(self, alive: Optional[threading.Event] = None) -> bool:
        """
        One request/reply round trip.

        Returns:
            True if a reply was published
        """
        alive = alive or self._alive
        if not alive.is_set():
            return False

        frame = self.source.capture_frame()
        if frame is None:
            return False

        self._set_state(RemoteState.AWAITING_REPLY)
        self.requests_sent += 1
        self._arm_watchdog(alive)
        self._events.debug(
            event=LogEvent.REMOTE_REQUEST_SENT,
            message=f"Frame {frame.frame_id} sent to remote endpoint",
            metadata={"frame_id": frame.frame_id, "request": self.requests_sent},
        )

        try:
            reply: RemoteReply = self.client.analyze(
                frame, self.primary_prompt, self.negative_prompt
            )
        except Exception as e:
            self._cancel_watchdog(alive)
            if not alive.is_set():
                return False
            self._fail(e)
            return False

        self._cancel_watchdog(alive)
        if not alive.is_set():
            return False

        self.replies_received += 1
        self.last_response_text = reply.text
        self._set_state(RemoteState.ACTIVE)
        self._events.debug(
            event=LogEvent.REMOTE_RESPONSE_RECEIVED,
            message="Remote reply received",
            metadata={"length": len(reply.text), "score": reply.score},
        )
        self.on_response(reply.text, reply.score)
        return True

    def _fail(self, error: Exception) -> None:
        self.failures += 1
        self._set_state(RemoteState.ERRORED)
        if isinstance(error, RemoteRequestError):
            reason = str(error)
        else:
            reason = f"Unexpected remote failure: {error}"
            logger.error(f"❌ {reason}", exc_info=error)

        self._events.warning(
            event=LogEvent.REMOTE_REQUEST_FAILED,
            message=reason,
            metadata={"failures": self.failures},
        )
        self.on_error(ErrorReport.create(ErrorKind.REMOTE_SEND_FAILURE, reason, ERROR_SOURCE))

    # ------------------------------------------------------------------
    # Liveness watchdog
    # ------------------------------------------------------------------

    def _arm_watchdog(self, alive: threading.Event) -> None:
        """One watchdog per run, keyed by the run's liveness flag."""
        if self.has_response or self._timeout_notified:
            return
        self._cancel_watchdog(alive)
        watchdog = threading.Timer(self.timeout_s, self._on_timeout, args=(alive,))
        watchdog.daemon = True
        with self._watchdog_lock:
            self._watchdogs[alive] = watchdog
        watchdog.start()

    def _cancel_watchdog(self, alive: threading.Event) -> None:
        with self._watchdog_lock:
            watchdog = self._watchdogs.pop(alive, None)
        if watchdog is not None:
            watchdog.cancel()

    def _on_timeout(self, alive: threading.Event) -> None:
        if not alive.is_set() or self.has_response or self._timeout_notified:
            return
        if self._state is not RemoteState.AWAITING_REPLY:
            return

        self._timeout_notified = True
        reason = f"No response from remote endpoint after {self.timeout_s:.0f}s"
        self._events.warning(
            event=LogEvent.REMOTE_REQUEST_FAILED,
            message=reason,
        )
        self.on_error(ErrorReport.create(ErrorKind.REMOTE_TIMEOUT, reason, ERROR_SOURCE))

    def get_stats(self) -> Dict[str, object]:
        return {
            "state": self._state.value,
            "requests_sent": self.requests_sent,
            "replies_received": self.replies_received,
            "failures": self.failures,
            "last_response_text": self.last_response_text,
        }
