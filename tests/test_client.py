"""Tests for otscan.client (httpx transport to the scan backend)."""
from __future__ import annotations

import json

import httpx
import pytest
from pydantic import ValidationError

from otscan.client import error_detail
from otscan.errors import BackendError


class TestStartScan:
    def test_request_payload(self, client, backend):
        task_id = client.start_scan("192.168.1.0/24", mode="full", api_key="k3y")
        assert task_id == "t1"
        request = backend.start_requests[0]
        assert json.loads(request.content) == {
            "subnet": "192.168.1.0/24",
            "scan_type": "2",
            "shodan_api_key": "k3y",
        }

    def test_quick_mode_and_no_key(self, client, backend):
        client.start_scan("10.0.0.0/30", mode="quick")
        body = json.loads(backend.start_requests[0].content)
        assert body["scan_type"] == "1"
        assert body["shodan_api_key"] is None

    def test_unknown_mode(self, client, backend):
        with pytest.raises(ValueError, match="Unknown scan mode"):
            client.start_scan("10.0.0.0/30", mode="stealth")
        assert backend.requests == []

    def test_backend_detail_extracted(self, client, backend):
        backend.queue_start({"detail": "nmap is not installed"}, status_code=500)
        with pytest.raises(BackendError) as excinfo:
            client.start_scan("10.0.0.0/30")
        assert excinfo.value.detail == "nmap is not installed"
        assert excinfo.value.status_code == 500

    def test_transport_error_text(self, client, backend):
        backend.queue_start_error(httpx.ConnectError("Connection refused"))
        with pytest.raises(BackendError) as excinfo:
            client.start_scan("10.0.0.0/30")
        assert excinfo.value.detail == "Connection refused"
        assert excinfo.value.status_code is None

    def test_missing_task_id(self, client, backend):
        backend.queue_start({"status": "ok"})
        with pytest.raises(BackendError, match="task_id"):
            client.start_scan("10.0.0.0/30")


class TestGetStatus:
    def test_parses_status(self, client, backend):
        backend.queue_status("t9", {"status": "running", "timestamp": 123.0})
        status = client.get_status("t9")
        assert status.status == "running"
        assert status.submitted_at == 123.0
        assert backend.status_requests[0].url.path == "/api/scan/status/t9"

    def test_not_found_detail(self, client):
        with pytest.raises(BackendError, match="Task nope not found"):
            client.get_status("nope")

    def test_malformed_body(self, client, backend):
        backend.queue_status("t1", {"results": []})
        with pytest.raises(ValidationError):
            client.get_status("t1")


class TestErrorDetail:
    def _status_error(self, status_code, **kwargs):
        request = httpx.Request("GET", "http://backend.test/x")
        response = httpx.Response(status_code, request=request, **kwargs)
        return httpx.HTTPStatusError("Server error '500'", request=request, response=response)

    def test_detail_field(self):
        assert error_detail(self._status_error(400, json={"detail": "bad subnet"})) == "bad subnet"

    def test_non_string_detail(self):
        detail = error_detail(self._status_error(422, json={"detail": [{"msg": "field required"}]}))
        assert "field required" in detail

    def test_non_json_body_uses_error_text(self):
        assert error_detail(self._status_error(500, text="<html>oops</html>")) == "Server error '500'"

    def test_plain_exception(self):
        assert error_detail(httpx.ReadTimeout("timed out")) == "timed out"
        assert error_detail(httpx.ReadTimeout("")) == "ReadTimeout"
