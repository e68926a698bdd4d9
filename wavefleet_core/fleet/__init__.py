"""Device registry, label selection and heartbeat health."""

from wavefleet_core.fleet.health import is_healthy, is_offline, snapshot_order
from wavefleet_core.fleet.selector import filter_devices, matches, parse_selector
from wavefleet_core.fleet.types import DEVICE_STATUSES, DeviceRecord

__all__ = [
    "DEVICE_STATUSES",
    "DeviceRecord",
    "filter_devices",
    "is_healthy",
    "is_offline",
    "matches",
    "parse_selector",
    "snapshot_order",
]
