from __future__ import annotations

from collections import deque
from typing import Callable, Optional

import httpx
import pytest

from otscan.client import ScanBackendClient
from otscan.config import BackendSettings, ScanSettings, Settings

BACKEND_URL = "http://backend.test"


class FakeBackend:
    """httpx MockTransport handler standing in for the scan backend.

    Status replies are queued per task id; an entry is either
    ``(status_code, body)`` or an exception to raise as a transport error.
    ``on_status`` runs while a status request is "in flight", before the
    reply is produced.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.start_replies: deque = deque()
        self.status_replies: dict[str, deque] = {}
        self.on_status: Optional[Callable[[str], None]] = None
        self._next_id = 0

    def queue_start(self, body: dict, status_code: int = 200) -> None:
        self.start_replies.append((status_code, body))

    def queue_start_error(self, exc: Exception) -> None:
        self.start_replies.append(exc)

    def queue_status(self, task_id: str, body: dict, status_code: int = 200) -> None:
        self.status_replies.setdefault(task_id, deque()).append((status_code, body))

    def queue_status_error(self, task_id: str, exc: Exception) -> None:
        self.status_replies.setdefault(task_id, deque()).append(exc)

    @property
    def start_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "POST"]

    @property
    def status_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "GET"]

    def _reply(self, item, request: httpx.Request) -> httpx.Response:
        if isinstance(item, Exception):
            raise item
        status_code, body = item
        return httpx.Response(status_code, json=body, request=request)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "POST" and path == "/api/scan/start":
            if self.start_replies:
                return self._reply(self.start_replies.popleft(), request)
            self._next_id += 1
            return httpx.Response(200, json={"task_id": f"t{self._next_id}"}, request=request)
        if request.method == "GET" and path.startswith("/api/scan/status/"):
            task_id = path.rsplit("/", 1)[-1]
            if self.on_status is not None:
                self.on_status(task_id)
            replies = self.status_replies.get(task_id)
            if not replies:
                return httpx.Response(404, json={"detail": f"Task {task_id} not found"}, request=request)
            return self._reply(replies.popleft(), request)
        return httpx.Response(404, json={"detail": "Not Found"}, request=request)


class ManualTimer:
    """Timer that only ticks when the test calls ``fire()``."""

    def __init__(self, interval: float, callback: Callable[[], None]) -> None:
        self.interval = interval
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if self.started and not self.cancelled:
            self.callback()


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def client(backend):
    c = ScanBackendClient(BackendSettings(base_url=BACKEND_URL), transport=httpx.MockTransport(backend.handler))
    yield c
    c.close()


@pytest.fixture
def timers():
    """List of every ManualTimer created through ``timer_factory``."""
    return []


@pytest.fixture
def timer_factory(timers):
    def _factory(interval, callback):
        timer = ManualTimer(interval, callback)
        timers.append(timer)
        return timer
    return _factory


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(
        backend=BackendSettings(base_url=BACKEND_URL),
        scan=ScanSettings(poll_interval=3.0),
    )


@pytest.fixture
def events():
    return []


def completed_body(results=None, duration=4.2, timestamp=1_700_000_000.0) -> dict:
    return {
        "status": "completed",
        "timestamp": timestamp,
        "duration_seconds": duration,
        "results": results if results is not None else [],
    }


def running_body(timestamp=1_700_000_000.0) -> dict:
    return {"status": "running", "timestamp": timestamp}
