from __future__ import annotations

from dataclasses import dataclass, field

DEVICE_STATUS_OK = "ok"
DEVICE_STATUS_WARN = "warn"
DEVICE_STATUS_CRIT = "crit"
DEVICE_STATUS_UNKNOWN = "unknown"

DEVICE_STATUSES: tuple[str, ...] = (
    DEVICE_STATUS_OK,
    DEVICE_STATUS_WARN,
    DEVICE_STATUS_CRIT,
    DEVICE_STATUS_UNKNOWN,
)


@dataclass(frozen=True)
class DeviceRecord:
    id: str
    tenant: str
    labels: dict[str, str] = field(default_factory=dict)
    location: str | None = None
    version: str | None = None
    channel: str | None = None
    status: str = DEVICE_STATUS_UNKNOWN
    last_seen_at: str | None = None
    created_at: str = ""
    updated_at: str = ""
