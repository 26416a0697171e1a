from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Sequence

import uvicorn

from otscan.client import ScanBackendClient
from otscan.config import Settings, apply_config, load_config
from otscan.engine import ScanSession
from otscan.errors import ScanError
from otscan.log import setup_logging
from otscan.models import Device, PollEvent, ScanSummary
from otscan.notify import notification_listener
from otscan.report import export_report, inventory_document
from otscan.summary import security_score


def _settings(args: argparse.Namespace) -> Settings:
    settings = Settings.from_config(getattr(args, "config", None) or {})
    if getattr(args, "base_url", None):
        settings.backend.base_url = args.base_url
    if getattr(args, "poll_interval", None):
        settings.scan.poll_interval = args.poll_interval
    if getattr(args, "external_api_key", None):
        settings.scan.external_api_key = args.external_api_key
    return settings


def _print_event(event: PollEvent) -> None:
    if event.type == "progress":
        print(f"[*] Scanning... Time elapsed: {event.elapsed_seconds or 0:.1f}s", file=sys.stderr)
    elif event.type == "completed":
        print(f"[+] Scan completed in {event.duration_seconds or 0:.2f}s, "
              f"{len(event.results)} host(s) found", file=sys.stderr)
    elif event.type == "failed":
        print(f"[!] Scan failed: {event.error}", file=sys.stderr)


def _print_devices(devices: Sequence[Device]) -> None:
    if not devices:
        print("No devices discovered")
        return
    for d in devices:
        ports = ",".join(str(p) for p in d.open_ports) or "-"
        mac = d.hardware_id or "unknown"
        print(f"{d.address:>15} {mac:>17} {d.risk_level.value:<8} {d.primary_protocol:<16} "
              f"ports={ports} name={d.display_name}")


def _print_summary(summary: ScanSummary) -> None:
    print()
    print(f"Total devices:      {summary.total_devices}")
    print(f"Anomalies detected: {summary.anomalies_detected}")
    print(f"Protocols used:     {', '.join(summary.protocols_used) or 'none'}")
    print(f"Security score:     {security_score(summary)}%")
    if summary.last_scan_time:
        print(f"Last scan:          {summary.last_scan_time.isoformat()}")


def cmd_scan(args: argparse.Namespace) -> None:
    settings = _settings(args)
    with ScanSession(settings) as session:
        session.add_listener(_print_event)
        session.add_listener(notification_listener(settings.notifications))
        try:
            task = session.start_scan(args.subnet)
        except ScanError as e:
            raise SystemExit(f"error: {e.detail}")
        print(f"[*] Scan started. Task ID: {task.id}", file=sys.stderr)
        if args.no_wait:
            print(task.id)
            return

        try:
            while not session.wait(timeout=0.5):
                pass
        except KeyboardInterrupt:
            session.cancel()
            raise SystemExit(f"aborted; task {task.id} keeps running on the backend")

        if session.last_error:
            raise SystemExit(f"scan failed: {session.last_error}")
        devices = session.devices
        summary = session.summary()

    _print_devices(devices)
    _print_summary(summary)
    if args.json:
        Path(args.json).write_text(json.dumps(inventory_document(devices, summary), indent=2), encoding="utf-8")


def cmd_status(args: argparse.Namespace) -> None:
    settings = _settings(args)
    with ScanBackendClient(settings.backend) as client:
        try:
            status = client.get_status(args.task_id)
        except ScanError as e:
            raise SystemExit(f"error: {e.detail}")
    print(f"task:     {args.task_id}")
    print(f"status:   {status.status}")
    if status.duration_seconds is not None:
        print(f"duration: {status.duration_seconds:.2f}s")
    if status.results is not None:
        print(f"hosts:    {len(status.results)}")
    if status.error or status.detail:
        print(f"error:    {status.error or status.detail}")


def cmd_report(args: argparse.Namespace) -> None:
    try:
        print(export_report(args.input, args.format, args.output))
    except (OSError, ValueError) as e:
        raise SystemExit(f"error: {e}")


def cmd_web(args: argparse.Namespace) -> None:
    print(f"[*] Starting Web Control Plane on {args.host}:{args.port}")
    uvicorn.run("otscan.web.api:app", host=args.host, port=args.port, reload=False)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="otscan",
        description="Submit OT network scans to a scan backend and summarise the discovered devices.",
    )
    parser.add_argument("--backend", dest="base_url", help="Scan backend base URL")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging (repeatable)")
    parser.add_argument("--version", action="version", version="otscan 0.1.0")
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan_parser = subparsers.add_parser("scan", help="Scan a network range and list discovered devices")
    scan_parser.add_argument("subnet", help="Range to scan (e.g. 192.168.1.0/24)")
    scan_parser.add_argument("--poll-interval", type=float, help="Seconds between status queries")
    scan_parser.add_argument("--api-key", dest="external_api_key", help="External lookup API key")
    scan_parser.add_argument("--json", help="Write devices and summary to JSON")
    scan_parser.add_argument("--no-wait", action="store_true", help="Print the task id and exit")
    scan_parser.set_defaults(func=cmd_scan)

    status_parser = subparsers.add_parser("status", help="Query the status of a scan task once")
    status_parser.add_argument("task_id", help="Task id returned by 'scan'")
    status_parser.set_defaults(func=cmd_status)

    report_parser = subparsers.add_parser("report", help="Export a saved inventory to CSV/Markdown/JSON")
    report_parser.add_argument("--input", required=True, help="JSON written by 'scan --json'")
    report_parser.add_argument("--format", choices=["csv", "md", "json"], default="md", help="Output format")
    report_parser.add_argument("--output", required=True, help="Output file")
    report_parser.set_defaults(func=cmd_report)

    web_parser = subparsers.add_parser("web", help="Start Web Control Plane (REST API)")
    web_parser.add_argument("--host", default="127.0.0.1", help="Bind host")
    web_parser.add_argument("--port", type=int, default=8080, help="Bind port")
    web_parser.set_defaults(func=cmd_web)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    config = load_config()
    apply_config(parser, config)
    args = parser.parse_args(argv)
    args.config = config
    setup_logging(logging.DEBUG if args.verbose > 1 else logging.INFO if args.verbose else logging.WARNING)
    args.func(args)
    return 0


if __name__ == "__main__":
    sys.exit(main())
