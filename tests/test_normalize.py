"""Tests for otscan.normalize."""
from __future__ import annotations

from otscan.models import RawScanResult, RiskLevel, Service
from otscan.normalize import normalize, to_device


def _raw(address, vendor="Unknown", risk="Low", services=()):
    return RawScanResult.model_validate({
        "ip": address,
        "mac": "aa:bb:cc:dd:ee:ff",
        "vendor": vendor,
        "risk": risk,
        "ot_services": [list(s) for s in services],
    })


class TestToDevice:
    def test_unknown_vendor_named_by_address(self):
        device = to_device(_raw("10.0.0.1"))
        assert device.display_name == "Device @10.0.0.1"
        assert device.primary_protocol == "None Detected"
        assert device.open_ports == []

    def test_known_vendor_named_by_vendor(self):
        device = to_device(_raw("10.0.0.5", vendor="Acme", risk="High", services=[(502, "modbus"), (80, "http")]))
        assert device.display_name == "Acme Device"
        assert device.primary_protocol == "modbus"
        assert device.open_ports == [502, 80]
        assert device.risk_level is RiskLevel.HIGH

    def test_vendor_sentinel_is_case_sensitive(self):
        device = to_device(_raw("10.0.0.9", vendor="unknown"))
        assert device.display_name == "unknown Device"

    def test_duplicate_ports_kept_in_order(self):
        device = to_device(_raw("10.0.0.2", vendor="Siemens", services=[(102, "s7comm"), (80, "http"), (102, "s7comm")]))
        assert device.open_ports == [102, 80, 102]
        assert device.primary_protocol == "s7comm"

    def test_fields_carried_over(self):
        raw = RawScanResult(address="10.0.0.3", hardware_id="00:11:22:33:44:55", vendor="Rockwell",
                            risk_level=RiskLevel.CRITICAL, services=[Service(port=44818, protocol="EtherNet/IP")])
        device = to_device(raw)
        assert device.id == "10.0.0.3"
        assert device.address == "10.0.0.3"
        assert device.hardware_id == "00:11:22:33:44:55"
        assert device.vendor == "Rockwell"
        assert device.risk_level is RiskLevel.CRITICAL


class TestNormalize:
    def test_empty(self):
        assert normalize([]) == []

    def test_order_preserved(self):
        raws = [_raw(f"10.0.0.{i}") for i in (7, 3, 9, 1)]
        devices = normalize(raws)
        assert [d.id for d in devices] == [r.address for r in raws]

    def test_idempotent(self):
        raws = [
            _raw("10.0.0.1"),
            _raw("10.0.0.5", vendor="Acme", risk="High", services=[(502, "modbus")]),
        ]
        assert normalize(raws) == normalize(raws)

    def test_accepts_any_iterable(self):
        devices = normalize(_raw(f"10.0.0.{i}") for i in range(3))
        assert len(devices) == 3
