"""HTTP client for the remote scan backend."""
from __future__ import annotations

from typing import Any, Optional

import httpx

from otscan.config import BackendSettings
from otscan.errors import BackendError
from otscan.log import get_logger
from otscan.models import StatusResponse

logger = get_logger("client")

SCAN_TYPES = {
    "quick": "1",
    "full": "2",
}


def error_detail(exc: Exception) -> str:
    """Prefer the backend's ``detail`` field, fall back to the error text."""
    response = getattr(exc, "response", None)
    if isinstance(exc, httpx.HTTPStatusError) and response is not None:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("detail"):
            detail = body["detail"]
            return detail if isinstance(detail, str) else str(detail)
    return str(exc) or exc.__class__.__name__


class ScanBackendClient:
    def __init__(
        self,
        settings: Optional[BackendSettings] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.settings = settings or BackendSettings()
        self._http = httpx.Client(
            base_url=self.settings.base_url,
            timeout=self.settings.timeout,
            transport=transport,
            headers={"User-Agent": "otscan/0.1"},
        )

    def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = self._http.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise BackendError(error_detail(e), status_code=e.response.status_code) from e
        except httpx.HTTPError as e:
            raise BackendError(error_detail(e)) from e
        except ValueError as e:
            raise BackendError(f"invalid JSON from backend: {e}") from e

    def start_scan(self, subnet: str, mode: str = "full", api_key: Optional[str] = None) -> str:
        if mode not in SCAN_TYPES:
            raise ValueError(f"Unknown scan mode: {mode}")
        payload = {
            "subnet": subnet,
            "scan_type": SCAN_TYPES[mode],
            "shodan_api_key": api_key,
        }
        data = self._request("POST", self.settings.start_path, json=payload)
        task_id = data.get("task_id") if isinstance(data, dict) else None
        if not task_id:
            raise BackendError("backend response did not include a task_id")
        logger.debug("backend accepted %s as task %s", subnet, task_id)
        return str(task_id)

    def get_status(self, task_id: str) -> StatusResponse:
        """Query one task.  Raises BackendError on transport/backend failure
        and ValidationError when the body is not a status document."""
        url = self.settings.status_path.format(task_id=task_id)
        data = self._request("GET", url)
        return StatusResponse.model_validate(data)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "ScanBackendClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()
