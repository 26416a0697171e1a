from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

UNKNOWN_VENDOR = "Unknown"
NO_PROTOCOL = "None Detected"


class TaskState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TaskState.COMPLETED, TaskState.FAILED)


_RISK_ORDER = ("Low", "Medium", "High", "Critical")


class RiskLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self.value)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: Any) -> "RiskLevel":
        """Case-insensitive lookup; anything unrecognised is Low."""
        if isinstance(value, RiskLevel):
            return value
        if isinstance(value, str):
            for level in cls:
                if level.value.lower() == value.strip().lower():
                    return level
        return cls.LOW


class ScanTask(BaseModel):
    id: str
    state: TaskState = TaskState.IDLE
    submitted_at: float


class Service(BaseModel):
    port: int
    protocol: str


def _coerce_service(entry: Any) -> Optional[Service]:
    if isinstance(entry, Service):
        return entry
    if isinstance(entry, dict):
        port, protocol = entry.get("port"), entry.get("protocol")
    elif isinstance(entry, (list, tuple)) and len(entry) >= 2:
        port, protocol = entry[0], entry[1]
    else:
        return None
    try:
        port = int(port)
    except (TypeError, ValueError):
        return None
    if protocol is None:
        return None
    return Service(port=port, protocol=str(protocol))


class RawScanResult(BaseModel):
    """One host record as reported by the scan backend.

    Accepts the backend's wire names (``ip``, ``mac``, ``risk``,
    ``ot_services``) as well as the field names.  Optional fields that are
    missing or malformed fall back to sentinels instead of failing.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    address: str = Field(alias="ip")
    hardware_id: Optional[str] = Field(default=None, alias="mac")
    vendor: str = UNKNOWN_VENDOR
    risk_level: RiskLevel = Field(default=RiskLevel.LOW, alias="risk")
    services: List[Service] = Field(default_factory=list, alias="ot_services")

    @field_validator("hardware_id", mode="before")
    @classmethod
    def _blank_mac(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @field_validator("vendor", mode="before")
    @classmethod
    def _vendor_sentinel(cls, value: Any) -> str:
        if value is None or not str(value).strip():
            return UNKNOWN_VENDOR
        return str(value)

    @field_validator("risk_level", mode="before")
    @classmethod
    def _risk(cls, value: Any) -> RiskLevel:
        return RiskLevel.parse(value)

    @field_validator("services", mode="before")
    @classmethod
    def _services(cls, value: Any) -> list[Service]:
        if not isinstance(value, (list, tuple)):
            return []
        services = []
        for entry in value:
            service = _coerce_service(entry)
            if service is not None:
                services.append(service)
        return services


class Device(BaseModel):
    id: str
    address: str
    hardware_id: Optional[str] = None
    vendor: str
    risk_level: RiskLevel
    display_name: str
    primary_protocol: str
    open_ports: List[int] = Field(default_factory=list)


class ScanSummary(BaseModel):
    total_devices: int = 0
    anomalies_detected: int = 0
    protocols_used: List[str] = Field(default_factory=list)
    last_scan_time: Optional[datetime] = None


class StatusResponse(BaseModel):
    """Body of a status query. ``status`` is left as a plain string so the
    scheduler can tell an unexpected value apart from a malformed body."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: str
    submitted_at: Optional[float] = Field(default=None, alias="timestamp")
    duration_seconds: Optional[float] = None
    results: Optional[List[RawScanResult]] = None
    error: Optional[str] = None
    detail: Optional[str] = None

    @field_validator("results", mode="before")
    @classmethod
    def _addressable_hosts(cls, value: Any) -> Any:
        # Records without an address cannot become devices; skip them.
        if not isinstance(value, list):
            return value
        return [
            entry for entry in value
            if isinstance(entry, RawScanResult)
            or (isinstance(entry, dict) and (entry.get("ip") or entry.get("address")))
        ]


class PollEvent(BaseModel):
    type: Literal["progress", "completed", "failed"]
    task_id: str
    elapsed_seconds: Optional[float] = None
    results: List[RawScanResult] = Field(default_factory=list)
    duration_seconds: Optional[float] = None
    error: Optional[str] = None
    error_kind: Optional[Literal["poll_error", "protocol_violation"]] = None
