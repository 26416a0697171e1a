from __future__ import annotations

from typing import Iterable

from otscan.models import NO_PROTOCOL, UNKNOWN_VENDOR, Device, RawScanResult


def display_name(raw: RawScanResult) -> str:
    if raw.vendor == UNKNOWN_VENDOR:
        return f"Device @{raw.address}"
    return f"{raw.vendor} Device"


def to_device(raw: RawScanResult) -> Device:
    if raw.services:
        primary_protocol = raw.services[0].protocol
    else:
        primary_protocol = NO_PROTOCOL
    return Device(
        id=raw.address,
        address=raw.address,
        hardware_id=raw.hardware_id,
        vendor=raw.vendor,
        risk_level=raw.risk_level,
        display_name=display_name(raw),
        primary_protocol=primary_protocol,
        open_ports=[service.port for service in raw.services],
    )


def normalize(raw_results: Iterable[RawScanResult]) -> list[Device]:
    """Map raw host records to devices, one for one and in input order."""
    return [to_device(raw) for raw in raw_results]
