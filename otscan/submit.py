from __future__ import annotations

import ipaddress
from typing import Optional

from otscan.client import ScanBackendClient
from otscan.errors import BackendError, InvalidInput, SubmissionError
from otscan.log import get_logger

logger = get_logger("submit")


def validate_range(range_spec: str) -> str:
    """Return the stripped range, or raise InvalidInput.

    Accepts CIDR networks (host bits may be set) and single addresses,
    IPv4 or IPv6.
    """
    if range_spec is None or not range_spec.strip():
        raise InvalidInput("Please enter a valid network subnet (e.g., 192.168.1.0/24)")
    range_spec = range_spec.strip()
    try:
        ipaddress.ip_network(range_spec, strict=False)
    except ValueError as exc:
        raise InvalidInput(f"Invalid network range {range_spec!r}: {exc}") from exc
    return range_spec


class TaskSubmitter:
    """Validates a range and creates one scan job for it.

    Submitting never starts polling; hand the returned id to a
    PollingScheduler when the caller wants to follow the job.
    """

    def __init__(
        self,
        client: ScanBackendClient,
        mode: str = "full",
        external_api_key: Optional[str] = None,
    ) -> None:
        self.client = client
        self.mode = mode
        self.external_api_key = external_api_key

    def submit(self, range_spec: str) -> str:
        subnet = validate_range(range_spec)
        try:
            task_id = self.client.start_scan(subnet, mode=self.mode, api_key=self.external_api_key)
        except BackendError as e:
            logger.warning("scan submission for %s rejected: %s", subnet, e.detail)
            raise SubmissionError(e.detail) from e
        logger.info("Scan of %s submitted as task %s", subnet, task_id)
        return task_id
