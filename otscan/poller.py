"""Status polling for a submitted scan job.

A :class:`PollingScheduler` follows at most one task at a time.  Each task
gets a :class:`PollHandle`; the handle owns the recurring timer driving the
status queries.  Starting a new task releases the previous handle (and its
timer) before the new timer exists, and every event is delivered under the
same lock that guards release, so a response that lands after ``cancel()``
is dropped instead of reported.
"""
from __future__ import annotations

import threading
import time
from typing import Any, Callable, List, Optional, Protocol

from pydantic import ValidationError

from otscan.client import ScanBackendClient
from otscan.config import DEFAULT_POLL_INTERVAL
from otscan.errors import BackendError, PollError, ProtocolViolation, ScanError
from otscan.log import get_logger
from otscan.models import PollEvent, ScanTask, StatusResponse, TaskState

logger = get_logger("poller")

EventListener = Callable[[PollEvent], None]


class Timer(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], Timer]


class RecurringTimer:
    """Run ``callback`` every ``interval`` seconds on one daemon thread.

    The first call happens one interval after ``start()``.  Calls never
    overlap.  ``cancel()`` may be called any number of times, from any
    thread, including from inside the callback.
    """

    def __init__(self, interval: float, callback: Callable[[], None], name: str = "otscan-poll") -> None:
        self.interval = interval
        self._callback = callback
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    @property
    def active(self) -> bool:
        return self._thread.is_alive() and not self._stop_event.is_set()

    def start(self) -> None:
        self._thread.start()

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self._callback()
            except Exception:
                logger.exception("Timer callback raised; stopping timer")
                self._stop_event.set()

    def cancel(self) -> None:
        self._stop_event.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout)


class PollHandle:
    """The caller's grip on one polled task."""

    def __init__(self, scheduler: "PollingScheduler", task: ScanTask) -> None:
        self.task = task
        self._scheduler = scheduler
        self._timer: Optional[Timer] = None
        self._released = False

    @property
    def task_id(self) -> str:
        return self.task.id

    @property
    def state(self) -> TaskState:
        return self.task.state

    @property
    def active(self) -> bool:
        return not self._released

    def cancel(self) -> bool:
        """Stop polling this task. Returns False if it had already stopped."""
        return self._scheduler._cancel(self)

    def __repr__(self) -> str:
        return f"<PollHandle {self.task.id} {self.task.state.value}{'' if self.active else ' released'}>"


class PollingScheduler:
    def __init__(
        self,
        client: ScanBackendClient,
        interval: float = DEFAULT_POLL_INTERVAL,
        timer_factory: TimerFactory = RecurringTimer,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.interval = interval
        self._timer_factory = timer_factory
        self._clock = clock
        self._lock = threading.RLock()
        self._active: Optional[PollHandle] = None
        self._listeners: List[EventListener] = []

    def add_listener(self, callback: EventListener) -> None:
        self._listeners.append(callback)

    @property
    def active(self) -> Optional[PollHandle]:
        with self._lock:
            return self._active

    def begin(self, task_id: str) -> PollHandle:
        with self._lock:
            current = self._active
            if current is not None and current.task_id == task_id:
                return current
            if current is not None:
                logger.info("Task %s replaces task %s; cancelling its polling", task_id, current.task_id)
                self._release(current)

            task = ScanTask(id=task_id, state=TaskState.STARTING, submitted_at=self._clock())
            handle = PollHandle(self, task)
            handle._timer = self._timer_factory(self.interval, lambda: self._tick(handle))
            self._active = handle
            handle._timer.start()
        logger.info("Polling task %s every %.1fs", task_id, self.interval)
        return handle

    def cancel(self) -> None:
        """Cancel whatever task is currently being polled, if any."""
        with self._lock:
            if self._active is not None:
                self._cancel(self._active)

    def close(self) -> None:
        with self._lock:
            handle = self._active
            if handle is not None:
                self._cancel(handle)
        timer = handle._timer if handle is not None else None
        if isinstance(timer, RecurringTimer):
            timer.join(timeout=1.0)

    def __enter__(self) -> "PollingScheduler":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # -- internals ---------------------------------------------------------

    def _cancel(self, handle: PollHandle) -> bool:
        with self._lock:
            if handle._released:
                return False
            logger.info("Polling of task %s cancelled", handle.task_id)
            self._release(handle)
            return True

    def _release(self, handle: PollHandle) -> None:
        handle._released = True
        if handle._timer is not None:
            handle._timer.cancel()
        if self._active is handle:
            self._active = None

    def _tick(self, handle: PollHandle) -> None:
        if handle._released:
            return
        try:
            status = self.client.get_status(handle.task_id)
        except BackendError as e:
            self._finish_failed(handle, PollError(e.detail))
            return
        except ValidationError as e:
            self._finish_failed(handle, ProtocolViolation(f"Malformed status response: {e.error_count()} error(s)"))
            return
        except Exception as e:
            logger.exception("Status query for task %s raised", handle.task_id)
            self._finish_failed(handle, PollError(str(e) or e.__class__.__name__))
            return

        with self._lock:
            if handle._released:
                logger.debug("Discarding late status %r for task %s", status.status, handle.task_id)
                return
            self._on_status(handle, status)

    def _on_status(self, handle: PollHandle, status: StatusResponse) -> None:
        task = handle.task
        if status.submitted_at is not None:
            task.submitted_at = status.submitted_at

        if status.status == "running":
            task.state = TaskState.RUNNING
            elapsed = max(0.0, self._clock() - task.submitted_at)
            self._emit(PollEvent(type="progress", task_id=task.id, elapsed_seconds=elapsed))
        elif status.status == "completed":
            duration = status.duration_seconds
            if duration is None:
                duration = max(0.0, self._clock() - task.submitted_at)
            results = status.results or []
            task.state = TaskState.COMPLETED
            self._release(handle)
            logger.info("Task %s completed in %.2fs with %d host(s)", task.id, duration, len(results))
            self._emit(PollEvent(type="completed", task_id=task.id, results=results, duration_seconds=duration))
        elif status.status == "failed":
            detail = status.error or status.detail or "Scan job failed"
            self._finish_failed(handle, PollError(detail))
        else:
            self._finish_failed(handle, ProtocolViolation(f"Unexpected scan status: {status.status!r}"))

    def _finish_failed(self, handle: PollHandle, error: ScanError) -> None:
        kind = "protocol_violation" if isinstance(error, ProtocolViolation) else "poll_error"
        with self._lock:
            if handle._released:
                logger.debug("Discarding late failure for task %s: %s", handle.task_id, error.detail)
                return
            handle.task.state = TaskState.FAILED
            self._release(handle)
            logger.warning("Task %s failed (%s): %s", handle.task_id, kind, error.detail)
            self._emit(PollEvent(type="failed", task_id=handle.task_id, error=error.detail, error_kind=kind))

    def _emit(self, event: PollEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Poll listener %r raised on %s event", listener, event.type)
