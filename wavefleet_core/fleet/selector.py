from __future__ import annotations

from typing import Iterable, Mapping

from wavefleet_core.errors import ValidationError
from wavefleet_core.fleet.types import DeviceRecord


def matches(
    device: DeviceRecord,
    tenant: str | None,
    selector: Mapping[str, str] | None,
) -> bool:
    """Tenant equality (when given) plus exact match of every selector pair."""
    if tenant and device.tenant != tenant:
        return False
    if not selector:
        return True
    labels = device.labels or {}
    for key, value in selector.items():
        if key not in labels or labels[key] != value:
            return False
    return True


def filter_devices(
    devices: Iterable[DeviceRecord],
    tenant: str | None,
    selector: Mapping[str, str] | None,
) -> list[DeviceRecord]:
    return [device for device in devices if matches(device, tenant, selector)]


def parse_selector(items: Iterable[str] | None) -> dict[str, str]:
    parsed: dict[str, str] = {}
    if not items:
        return parsed
    for item in items:
        if "=" not in item:
            raise ValidationError(f"Invalid selector pair: {item}")
        key, value = item.split("=", 1)
        key = key.strip()
        if not key:
            raise ValidationError(f"Invalid selector pair: {item}")
        parsed[key] = value.strip()
    return parsed


def normalize_labels(labels: Mapping[str, object] | None) -> dict[str, str]:
    if not labels:
        return {}
    return {str(key): str(value) for key, value in labels.items()}
