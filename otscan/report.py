from __future__ import annotations

import csv
import io
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Sequence

from otscan.models import Device, ScanSummary
from otscan.summary import aggregate, security_score

DEVICE_FIELDS = ["address", "display_name", "vendor", "hardware_id", "risk_level", "primary_protocol", "open_ports"]


def device_rows(devices: Sequence[Device]) -> list[dict]:
    rows = []
    for device in devices:
        row = device.model_dump(mode="json")
        row["open_ports"] = " ".join(str(port) for port in device.open_ports)
        row["hardware_id"] = device.hardware_id or ""
        rows.append(row)
    return rows


def devices_csv(devices: Sequence[Device]) -> str:
    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=DEVICE_FIELDS, extrasaction="ignore")
    writer.writeheader()
    for row in device_rows(devices):
        writer.writerow(row)
    return output.getvalue()


def _write_markdown_table(title: str, rows: list[dict], fieldnames: list[str]) -> str:
    if not rows:
        return f"## {title}\n\n(no data)\n"
    header = "| " + " | ".join(fieldnames) + " |\n"
    sep = "| " + " | ".join(["---"] * len(fieldnames)) + " |\n"
    lines = [f"## {title}\n\n", header, sep]
    for row in rows:
        line = "| " + " | ".join(str(row.get(name, "")) for name in fieldnames) + " |\n"
        lines.append(line)
    lines.append("\n")
    return "".join(lines)


def summary_dict(summary: ScanSummary) -> dict[str, Any]:
    data = summary.model_dump(mode="json")
    data["security_score"] = security_score(summary)
    return data


def render_markdown(devices: Sequence[Device], summary: ScanSummary) -> str:
    md = ["# Network Summary\n\n"]
    if summary.last_scan_time:
        md.append(f"Last scan: {summary.last_scan_time.isoformat()}\n\n")
    md.append(f"- Total devices: {summary.total_devices}\n")
    md.append(f"- Anomalies detected: {summary.anomalies_detected}\n")
    md.append(f"- Protocols used: {', '.join(summary.protocols_used) or 'none'}\n")
    md.append(f"- Security score: {security_score(summary)}%\n\n")
    md.append(_write_markdown_table("Devices", device_rows(devices), DEVICE_FIELDS))
    return "".join(md)


def inventory_document(devices: Sequence[Device], summary: ScanSummary) -> dict[str, Any]:
    return {
        "summary": summary_dict(summary),
        "devices": [device.model_dump(mode="json") for device in devices],
    }


def load_inventory(path: str) -> tuple[list[Device], ScanSummary]:
    """Read a document written by ``inventory_document``; the summary is
    recomputed from the devices rather than trusted."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected an inventory object, got {type(data).__name__}")
    devices = [Device.model_validate(item) for item in data.get("devices", [])]
    last_scan: Optional[datetime] = None
    raw_time = (data.get("summary") or {}).get("last_scan_time")
    if raw_time:
        last_scan = datetime.fromisoformat(raw_time)
    return devices, aggregate(devices, last_scan)


def export_report(input_path: str, fmt: str, output_path: str) -> str:
    devices, summary = load_inventory(input_path)
    output_file = Path(output_path)
    fmt = fmt.lower()
    if fmt == "csv":
        output_file.write_text(devices_csv(devices), encoding="utf-8")
    elif fmt == "md":
        output_file.write_text(render_markdown(devices, summary), encoding="utf-8")
    elif fmt == "json":
        output_file.write_text(json.dumps(inventory_document(devices, summary), indent=2), encoding="utf-8")
    else:
        raise ValueError(f"Unsupported report format: {fmt}")
    return str(output_file)
