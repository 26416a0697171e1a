from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

from otscan.client import ScanBackendClient
from otscan.config import Settings
from otscan.errors import ScanError
from otscan.log import get_logger
from otscan.models import Device, PollEvent, ScanSummary, ScanTask
from otscan.normalize import normalize
from otscan.poller import EventListener, PollingScheduler, RecurringTimer, TimerFactory
from otscan.submit import TaskSubmitter
from otscan.summary import aggregate

logger = get_logger("engine")


class ScanSession:
    """Submit a scan, follow it to the end, and keep the resulting inventory.

    The inventory is only ever replaced as a whole: by a completed scan, or
    (when ``scan.clear_on_failure`` is set) by an empty list after a failed
    one.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[ScanBackendClient] = None,
        timer_factory: TimerFactory = RecurringTimer,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or Settings()
        self._owns_client = client is None
        self.client = client or ScanBackendClient(self.settings.backend)
        self.submitter = TaskSubmitter(
            self.client,
            mode=self.settings.scan.mode,
            external_api_key=self.settings.scan.external_api_key,
        )
        self.scheduler = PollingScheduler(
            self.client,
            interval=self.settings.scan.poll_interval,
            timer_factory=timer_factory,
            clock=clock,
        )
        self.scheduler.add_listener(self._on_event)

        self._lock = threading.RLock()
        self._devices: List[Device] = []
        self._last_scan_time: Optional[datetime] = None
        self._last_task: Optional[ScanTask] = None
        self._last_error: Optional[str] = None
        self._status_message = "Idle"
        self._listeners: List[EventListener] = []
        self._done = threading.Event()
        self._done.set()

    # -- operations --------------------------------------------------------

    def start_scan(self, range_spec: str) -> ScanTask:
        """Submit ``range_spec`` and start polling the new task.

        Any task still being polled is abandoned first.  InvalidInput and
        SubmissionError propagate unchanged; no polling starts for them.
        """
        self.scheduler.cancel()
        self._set_status("Starting scan request...")
        try:
            task_id = self.submitter.submit(range_spec)
        except ScanError as e:
            with self._lock:
                self._last_error = e.detail
            self._set_status(f"Error: Failed to start scan. {e.detail}")
            self._done.set()
            raise

        # the first tick may finish before begin() returns
        with self._lock:
            self._last_error = None
            self._status_message = f"Scan started. Task ID: {task_id}. Polling..."
        self._done.clear()
        handle = self.scheduler.begin(task_id)
        with self._lock:
            self._last_task = handle.task
        return handle.task

    def cancel(self) -> bool:
        handle = self.scheduler.active
        if handle is None or not handle.cancel():
            return False
        self._set_status(f"Scan {handle.task_id} cancelled")
        self._done.set()
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the current task is finished or cancelled."""
        return self._done.wait(timeout)

    def add_listener(self, callback: EventListener) -> None:
        self._listeners.append(callback)

    def close(self) -> None:
        self.scheduler.close()
        self._done.set()
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "ScanSession":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # -- views -------------------------------------------------------------

    @property
    def devices(self) -> List[Device]:
        with self._lock:
            return list(self._devices)

    @property
    def last_scan_time(self) -> Optional[datetime]:
        with self._lock:
            return self._last_scan_time

    @property
    def last_task(self) -> Optional[ScanTask]:
        with self._lock:
            return self._last_task

    @property
    def last_error(self) -> Optional[str]:
        with self._lock:
            return self._last_error

    @property
    def status_message(self) -> str:
        with self._lock:
            return self._status_message

    @property
    def scanning(self) -> bool:
        return self.scheduler.active is not None

    def summary(self) -> ScanSummary:
        with self._lock:
            devices, last_scan_time = self._devices, self._last_scan_time
        return aggregate(devices, last_scan_time)

    # -- event handling ----------------------------------------------------

    def _set_status(self, message: str) -> None:
        with self._lock:
            self._status_message = message

    def _on_event(self, event: PollEvent) -> None:
        if event.type == "progress":
            self._set_status(f"Scanning... Time elapsed: {event.elapsed_seconds or 0:.1f}s. Waiting for results.")
        elif event.type == "completed":
            devices = normalize(event.results)
            with self._lock:
                self._devices = devices
                self._last_scan_time = datetime.now(timezone.utc)
                self._status_message = f"Scan completed in {event.duration_seconds or 0:.2f}s"
            logger.info("Inventory replaced with %d device(s) from task %s", len(devices), event.task_id)
        elif event.type == "failed":
            with self._lock:
                self._last_error = event.error
                if self.settings.scan.clear_on_failure:
                    self._devices = []
                self._status_message = f"Scan failed: {event.error}"

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Session listener %r raised on %s event", listener, event.type)

        if event.type != "progress":
            self._done.set()
