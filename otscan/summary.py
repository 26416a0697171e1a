from __future__ import annotations

import math
from datetime import datetime
from typing import Optional, Sequence

from otscan.models import Device, RiskLevel, ScanSummary


def aggregate(devices: Sequence[Device], last_scan_time: Optional[datetime] = None) -> ScanSummary:
    """Reduce an inventory to its summary statistics.

    A device counts as an anomaly when its risk is above ``Low``.  Protocols
    are listed once each, in the order they are first seen.
    """
    protocols: dict[str, None] = {}
    anomalies = 0
    for device in devices:
        if device.risk_level != RiskLevel.LOW:
            anomalies += 1
        protocols.setdefault(device.primary_protocol, None)
    return ScanSummary(
        total_devices=len(devices),
        anomalies_detected=anomalies,
        protocols_used=list(protocols),
        last_scan_time=last_scan_time,
    )


def security_score(summary: ScanSummary) -> int:
    """Percentage of devices with no anomaly; 100 for an empty inventory."""
    if summary.total_devices <= 0:
        return 100
    healthy = summary.total_devices - summary.anomalies_detected
    # halves round up
    return int(math.floor(100 * healthy / summary.total_devices + 0.5))
