from __future__ import annotations

import uuid
from dataclasses import asdict, replace
from datetime import datetime, timezone
from typing import Iterable, Mapping

from wavefleet_core.errors import DeviceApplyError, NotFoundError, ValidationError
from wavefleet_core.fleet.health import parse_timestamp, snapshot_order
from wavefleet_core.fleet.selector import filter_devices, normalize_labels
from wavefleet_core.fleet.types import (
    DEVICE_STATUS_OK,
    DEVICE_STATUS_UNKNOWN,
    DEVICE_STATUSES,
    DeviceRecord,
)
from wavefleet_core.storage.documents import read_items, write_items
from wavefleet_core.storage.paths import control_document_uri


def device_registry_uri(base_uri: str) -> str:
    return control_document_uri(base_uri, "devices.json")


def load_devices(base_uri: str) -> list[DeviceRecord]:
    items = read_items(device_registry_uri(base_uri), "devices")
    return snapshot_order(device_from_dict(item) for item in items)


def save_devices(base_uri: str, devices: Iterable[DeviceRecord]) -> str:
    return write_items(
        device_registry_uri(base_uri),
        "devices",
        [asdict(device) for device in devices],
    )


def get_device(base_uri: str, device_id: str) -> DeviceRecord:
    match = next(
        (device for device in load_devices(base_uri) if device.id == device_id),
        None,
    )
    if match is None:
        raise NotFoundError(f"Device not found: {device_id}")
    return match


def new_device(
    *,
    tenant: str,
    labels: Mapping[str, object] | None = None,
    location: str | None = None,
    version: str | None = None,
    channel: str | None = None,
    device_id: str | None = None,
    now: str | None = None,
) -> DeviceRecord:
    tenant = (tenant or "").strip()
    if not tenant:
        raise ValidationError("tenant required")
    timestamp = now or datetime.now(timezone.utc).isoformat()
    return DeviceRecord(
        id=device_id or f"dev-{uuid.uuid4().hex}",
        tenant=tenant,
        labels=normalize_labels(labels),
        location=location,
        version=version,
        channel=channel,
        status=DEVICE_STATUS_UNKNOWN,
        last_seen_at=timestamp,
        created_at=timestamp,
        updated_at=timestamp,
    )


def normalize_status(status: str | None) -> str:
    value = (status or DEVICE_STATUS_OK).strip().lower()
    if value not in DEVICE_STATUSES:
        allowed = ", ".join(DEVICE_STATUSES)
        raise ValidationError(f"status must be one of: {allowed}")
    return value


def normalize_seen_at(value: str | None, default: str) -> str:
    if not value:
        return default
    parsed = parse_timestamp(value)
    if parsed is None:
        raise ValidationError(f"last_seen_at is not an ISO-8601 timestamp: {value!r}")
    return parsed.isoformat()


def claim_device(
    *,
    base_uri: str,
    tenant: str,
    labels: Mapping[str, object] | None = None,
    location: str | None = None,
    version: str | None = None,
    channel: str | None = None,
    device_id: str | None = None,
) -> DeviceRecord:
    device = new_device(
        tenant=tenant,
        labels=labels,
        location=location,
        version=version,
        channel=channel,
        device_id=device_id,
    )
    return upsert_device(base_uri, device)


def upsert_device(base_uri: str, device: DeviceRecord) -> DeviceRecord:
    devices = load_devices(base_uri)
    updated: list[DeviceRecord] = []
    found = False
    for existing in devices:
        if existing.id == device.id:
            updated.append(replace(device, created_at=existing.created_at))
            found = True
        else:
            updated.append(existing)
    if not found:
        updated.append(device)
    save_devices(base_uri, updated)
    return device


def record_heartbeat(
    *,
    base_uri: str,
    device_id: str,
    status: str | None = None,
    last_seen_at: str | None = None,
) -> DeviceRecord:
    resolved_status = normalize_status(status)
    now = datetime.now(timezone.utc).isoformat()
    seen_at = normalize_seen_at(last_seen_at, now)
    devices = load_devices(base_uri)
    updated: list[DeviceRecord] = []
    match: DeviceRecord | None = None
    for existing in devices:
        if existing.id == device_id:
            match = replace(
                existing,
                status=resolved_status,
                last_seen_at=seen_at,
                updated_at=now,
            )
            updated.append(match)
        else:
            updated.append(existing)
    if match is None:
        raise NotFoundError(f"Device not found: {device_id}")
    save_devices(base_uri, updated)
    return match


def fetch_devices(
    base_uri: str,
    *,
    tenant: str,
    selector: Mapping[str, str] | None,
) -> list[DeviceRecord]:
    return filter_devices(load_devices(base_uri), tenant, selector)


def apply_version_channel(
    *,
    base_uri: str,
    device_id: str,
    version: str,
    channel: str,
) -> DeviceRecord:
    now = datetime.now(timezone.utc).isoformat()
    devices = load_devices(base_uri)
    updated: list[DeviceRecord] = []
    match: DeviceRecord | None = None
    for existing in devices:
        if existing.id == device_id:
            match = replace(existing, version=version, channel=channel, updated_at=now)
            updated.append(match)
        else:
            updated.append(existing)
    if match is None:
        raise DeviceApplyError(f"Device not found: {device_id}")
    save_devices(base_uri, updated)
    return match


def device_from_dict(payload: dict[str, object]) -> DeviceRecord:
    return DeviceRecord(
        id=str(payload.get("id")),
        tenant=str(payload.get("tenant", "")),
        labels=_coerce_labels(payload.get("labels")),
        location=_coerce_optional_str(payload.get("location")),
        version=_coerce_optional_str(payload.get("version")),
        channel=_coerce_optional_str(payload.get("channel")),
        status=str(payload.get("status", DEVICE_STATUS_UNKNOWN)),
        last_seen_at=_coerce_optional_str(payload.get("last_seen_at")),
        created_at=str(payload.get("created_at", "")),
        updated_at=str(payload.get("updated_at", "")),
    )


def _coerce_optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _coerce_labels(value: object) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return normalize_labels(value)
