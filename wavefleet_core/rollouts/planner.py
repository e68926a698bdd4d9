from __future__ import annotations

from datetime import datetime
from typing import Iterable, Sequence

from wavefleet_core.errors import ValidationError
from wavefleet_core.fleet.health import is_healthy, is_offline
from wavefleet_core.fleet.types import DeviceRecord
from wavefleet_core.rollouts.types import (
    DISPOSITION_APPLY,
    DISPOSITION_FAIL_OFFLINE,
    DISPOSITION_FAIL_STATUS,
    DISPOSITION_SKIP_OFFLINE,
    RUN_COMPLETED,
    RUN_FAILED,
    RUN_PARTIAL,
    DeviceDisposition,
    RolloutOptions,
    RolloutPlan,
    WavePlan,
)


def coerce_wave_count(value: object) -> int:
    try:
        count = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 1
    return max(1, count)


def partition_waves(
    device_ids: Sequence[str],
    wave_count: int,
) -> tuple[tuple[str, ...], ...]:
    """Round-robin: the device at position ``i`` lands in bucket ``i % wave_count``.

    Always returns exactly ``wave_count`` buckets; trailing buckets are empty
    when there are fewer devices than waves.
    """
    if wave_count <= 0:
        raise ValidationError("wave_count must be >= 1")
    buckets: list[list[str]] = [[] for _ in range(wave_count)]
    for idx, device_id in enumerate(device_ids):
        buckets[idx % wave_count].append(device_id)
    return tuple(tuple(bucket) for bucket in buckets)


def classify_device(
    device: DeviceRecord,
    *,
    now: datetime,
    options: RolloutOptions,
) -> DeviceDisposition:
    if is_offline(device, now=now, grace_s=options.heartbeat_grace):
        if options.skip_offline:
            return DeviceDisposition(
                device_id=device.id,
                action=DISPOSITION_SKIP_OFFLINE,
                reason="offline",
            )
        return DeviceDisposition(
            device_id=device.id,
            action=DISPOSITION_FAIL_OFFLINE,
            reason="offline",
        )
    if options.require_ok and not is_healthy(device):
        return DeviceDisposition(
            device_id=device.id,
            action=DISPOSITION_FAIL_STATUS,
            reason=f"status={device.status}",
        )
    return DeviceDisposition(device_id=device.id, action=DISPOSITION_APPLY)


def classify_wave(applied: int, any_failed: bool) -> str:
    if applied > 0 and not any_failed:
        return RUN_COMPLETED
    if applied > 0:
        return RUN_PARTIAL
    return RUN_FAILED


def plan_waves(
    devices: Iterable[DeviceRecord],
    wave_count: int,
    *,
    now: datetime,
    options: RolloutOptions,
    rollout_id: str | None = None,
) -> RolloutPlan:
    snapshot = list(devices)
    by_id = {device.id: device for device in snapshot}
    buckets = partition_waves([device.id for device in snapshot], wave_count)
    waves: list[WavePlan] = []
    for idx, bucket in enumerate(buckets, start=1):
        dispositions = tuple(
            classify_device(by_id[device_id], now=now, options=options)
            for device_id in bucket
        )
        waves.append(
            WavePlan(
                wave_index=idx,
                device_ids=bucket,
                dispositions=dispositions,
            )
        )
    return RolloutPlan(
        rollout_id=rollout_id,
        total_devices=len(snapshot),
        waves=tuple(waves),
    )
