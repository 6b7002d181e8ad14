"""
Remote Client / Session Tests (Without a Real Endpoint)
=======================================================

RemoteClient against an httpx.MockTransport; RemoteSessionManager with a
fake client that blocks or fails on demand.

Usage:
    pytest test_remote_session.py
"""

import json
import threading
import time

import httpx
import numpy as np
import pytest

from camstream_mqtt.schemas import ErrorKind
from camstream_remote import (
    RemoteClient,
    RemoteReply,
    RemoteRequestError,
    RemoteSessionManager,
    RemoteState,
)
from camstream_vision import Frame


class FakeSource:
    def __init__(self, ready=True):
        self.ready = ready
        self.captures = 0

    def is_ready(self):
        return self.ready

    def capture_frame(self):
        self.captures += 1
        return Frame(np.zeros((8, 8, 3), dtype=np.uint8), frame_id=self.captures)


class FakeClient:
    """Blocks while the gate is closed; fails the first `failures` calls."""

    def __init__(self, failures=0, blocked=False):
        self.failures = failures
        self.gate = threading.Event()
        if not blocked:
            self.gate.set()
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def analyze(self, frame, prompt, negative_prompt=None):
        with self._lock:
            self.calls += 1
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            call = self.calls
        try:
            self.gate.wait(5.0)
            if call <= self.failures:
                raise RemoteRequestError("Remote endpoint returned 503 for chat/completions")
            return RemoteReply(text=f"reply {call}")
        finally:
            with self._lock:
                self.in_flight -= 1


class Recorder:
    def __init__(self):
        self.responses = []
        self.errors = []

    def on_response(self, text, score):
        self.responses.append((text, score))

    def on_error(self, error):
        self.errors.append(error)


def make_session(client, source=None, delay_s=0.02, timeout_s=5.0):
    recorder = Recorder()
    session = RemoteSessionManager(
        source=source or FakeSource(),
        client=client,
        on_response=recorder.on_response,
        on_error=recorder.on_error,
        primary_prompt="Describe what you see in this image.",
        delay_s=delay_s,
        timeout_s=timeout_s,
        poll_interval=0.01,
    )
    return session, recorder


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_requests_never_overlap_and_timeout_is_reported_once():
    client = FakeClient(blocked=True)
    session, recorder = make_session(client, timeout_s=0.1)

    session.start()
    assert wait_for(lambda: session.state is RemoteState.AWAITING_REPLY)
    assert wait_for(lambda: len(recorder.errors) == 1)
    time.sleep(0.2)

    assert [e.kind for e in recorder.errors] == [ErrorKind.REMOTE_TIMEOUT]
    assert client.calls == 1

    client.gate.set()
    assert wait_for(lambda: len(recorder.responses) >= 3)
    session.stop()

    assert client.max_in_flight == 1
    assert recorder.responses[0] == ("reply 1", None)
    assert [e.kind for e in recorder.errors] == [ErrorKind.REMOTE_TIMEOUT]


def test_failure_errors_session_and_resume_retries_now():
    client = FakeClient(failures=1)
    session, recorder = make_session(client, delay_s=30.0)

    session.start()
    assert wait_for(lambda: len(recorder.errors) == 1)
    assert session.state is RemoteState.ERRORED
    assert [e.kind for e in recorder.errors] == [ErrorKind.REMOTE_SEND_FAILURE]
    assert "503" in recorder.errors[0].reason

    assert session.resume()
    assert wait_for(lambda: len(recorder.responses) == 1)
    assert session.state is RemoteState.ACTIVE
    assert session.get_stats()["failures"] == 1
    session.stop()


def test_resume_when_not_errored_is_a_noop():
    session, recorder = make_session(FakeClient(), delay_s=30.0)
    assert not session.resume()

    session.start()
    assert wait_for(lambda: len(recorder.responses) == 1)
    assert not session.resume()
    session.stop()


def test_stop_discards_in_flight_reply():
    client = FakeClient(blocked=True)
    session, recorder = make_session(client)

    session.start()
    assert wait_for(lambda: client.calls == 1)
    session.stop()
    client.gate.set()
    time.sleep(0.1)

    assert recorder.responses == []
    assert session.state is RemoteState.DISABLED
    assert client.calls == 1


class GatedClient:
    """Call n blocks until gates[n] is set."""

    def __init__(self):
        self.gates = {}

    def analyze(self, frame, prompt, negative_prompt=None):
        gate = self.gates.setdefault(len(self.gates) + 1, threading.Event())
        gate.wait(5.0)
        return RemoteReply(text="late")


def test_restart_keeps_timeout_when_previous_request_returns():
    client = GatedClient()
    session, recorder = make_session(client, timeout_s=0.3)

    session.start()
    assert wait_for(lambda: len(client.gates) == 1)
    session.stop()
    session.start()
    assert wait_for(lambda: len(client.gates) == 2)

    client.gates[1].set()
    assert wait_for(lambda: len(recorder.errors) == 1)
    assert [e.kind for e in recorder.errors] == [ErrorKind.REMOTE_TIMEOUT]
    assert recorder.responses == []

    client.gates[2].set()
    session.stop()


def test_waits_for_source_before_sending():
    source = FakeSource(ready=False)
    client = FakeClient()
    session, recorder = make_session(client, source=source)

    session.start()
    time.sleep(0.1)
    assert session.state is RemoteState.INITIALIZING
    assert client.calls == 0

    source.ready = True
    assert wait_for(lambda: len(recorder.responses) >= 1)
    session.stop()
    session.stop()


def frame():
    return Frame(np.full((16, 16, 3), 127, dtype=np.uint8), frame_id=1)


def mock_client(handler, **kwargs):
    http_client = httpx.Client(
        base_url="http://remote.test/v1",
        transport=httpx.MockTransport(handler),
    )
    return RemoteClient(endpoint="http://remote.test/v1", http_client=http_client, **kwargs)


def test_describe_request():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": " A desk. "}}]})

    reply = mock_client(handler, model="llava").analyze(frame(), "What is this?")

    assert reply == RemoteReply(text="A desk.")
    assert seen["path"] == "/v1/chat/completions"
    content = seen["body"]["messages"][0]["content"]
    assert content[0] == {"type": "text", "text": "What is this?"}
    assert content[1]["image_url"]["url"].startswith("data:image/jpeg;base64,")
    assert seen["body"]["model"] == "llava"


def test_contrastive_request_selects_primary_label():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"results": [
            {"label": "an empty room", "score": 0.1},
            {"label": "a person", "score": 0.9},
        ]})

    reply = mock_client(handler).analyze(frame(), "a person", "an empty room")

    assert seen["path"] == "/v1/classify"
    assert seen["body"]["labels"] == ["a person", "an empty room"]
    assert reply.score == pytest.approx(0.9)
    assert reply.text == "a person: 0.90"


def test_contrastive_reply_without_primary_label_is_empty():
    def handler(request):
        return httpx.Response(200, json={"results": [{"label": "other", "score": 0.4}]})

    reply = mock_client(handler).analyze(frame(), "a person", "an empty room")
    assert reply == RemoteReply(text="")


def test_http_errors_raise_remote_request_error():
    def server_error(request):
        return httpx.Response(500, text="boom")

    def not_json(request):
        return httpx.Response(200, text="<html>")

    def wrong_shape(request):
        return httpx.Response(200, json={"choices": []})

    for handler in (server_error, not_json, wrong_shape):
        with pytest.raises(RemoteRequestError):
            mock_client(handler).analyze(frame(), "What is this?")
