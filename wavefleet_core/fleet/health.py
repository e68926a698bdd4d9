from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

from wavefleet_core.fleet.types import DEVICE_STATUS_OK, DeviceRecord


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def heartbeat_age(device: DeviceRecord, now: datetime) -> float | None:
    last_seen = parse_timestamp(device.last_seen_at)
    if last_seen is None:
        return None
    return (now - last_seen).total_seconds()


def is_offline(device: DeviceRecord, *, now: datetime, grace_s: float) -> bool:
    """A device that never reported, or whose heartbeat is older than grace."""
    age = heartbeat_age(device, now)
    if age is None:
        return True
    return age > grace_s


def is_healthy(device: DeviceRecord) -> bool:
    return device.status == DEVICE_STATUS_OK


def snapshot_order(devices: Iterable[DeviceRecord]) -> list[DeviceRecord]:
    """Most recently seen first, never-seen last, ties broken by id."""

    def _key(device: DeviceRecord) -> tuple[int, float, str]:
        last_seen = parse_timestamp(device.last_seen_at)
        if last_seen is None:
            return (1, 0.0, device.id)
        return (0, -last_seen.timestamp(), device.id)

    return sorted(devices, key=_key)
