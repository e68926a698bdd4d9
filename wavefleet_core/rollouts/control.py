from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Mapping

from wavefleet_core.errors import InvalidTransitionError, ValidationError
from wavefleet_core.logging import get_logger
from wavefleet_core.rollouts.planner import coerce_wave_count, plan_waves
from wavefleet_core.rollouts.runner import RolloutRunner
from wavefleet_core.rollouts.types import (
    ROLLOUT_DRAFT,
    RolloutOptions,
    RolloutPlan,
    RolloutRecord,
)
from wavefleet_core.stores.interfaces import FleetStore, RolloutStore

logger = get_logger(__name__)


def new_rollout(
    *,
    tenant: str,
    artifact: str,
    channel: str,
    selector: Mapping[str, object] | None = None,
    waves: object = 1,
    rollout_id: str | None = None,
    now: str | None = None,
) -> RolloutRecord:
    tenant = (tenant or "").strip()
    if not tenant:
        raise ValidationError("tenant required")
    return RolloutRecord(
        id=rollout_id or f"ro-{uuid.uuid4().hex}",
        tenant=tenant,
        artifact=artifact or "",
        channel=channel or "",
        selector={str(key): str(value) for key, value in (selector or {}).items()},
        waves=coerce_wave_count(waves),
        status=ROLLOUT_DRAFT,
        created_at=now or datetime.now(timezone.utc).isoformat(),
        finished_at=None,
    )


def create_rollout(
    store: RolloutStore,
    *,
    tenant: str,
    artifact: str,
    channel: str,
    selector: Mapping[str, object] | None = None,
    waves: object = 1,
) -> RolloutRecord:
    rollout = store.create_rollout(
        new_rollout(
            tenant=tenant,
            artifact=artifact,
            channel=channel,
            selector=selector,
            waves=waves,
        )
    )
    logger.info(
        "Rollout created",
        extra={
            "rollout_id": rollout.id,
            "tenant": rollout.tenant,
            "artifact": rollout.artifact,
            "channel": rollout.channel,
            "waves": rollout.waves,
        },
    )
    return rollout


def clone_for_retry(rollout: RolloutRecord, *, now: str | None = None) -> RolloutRecord:
    return replace(
        rollout,
        id=f"ro-{uuid.uuid4().hex}",
        selector=dict(rollout.selector),
        status=ROLLOUT_DRAFT,
        created_at=now or datetime.now(timezone.utc).isoformat(),
        finished_at=None,
    )


def start_rollout(
    store: RolloutStore,
    runner: RolloutRunner,
    rollout_id: str,
) -> RolloutRecord:
    rollout = store.get_rollout(rollout_id)
    if rollout.status != ROLLOUT_DRAFT:
        raise InvalidTransitionError(
            f"Rollout {rollout.id} is {rollout.status}, expected {ROLLOUT_DRAFT}"
        )
    runner.start(rollout)
    logger.info("Rollout launched", extra={"rollout_id": rollout.id})
    return rollout


def retry_rollout(
    store: RolloutStore,
    runner: RolloutRunner,
    rollout_id: str,
) -> RolloutRecord:
    original = store.get_rollout(rollout_id)
    clone = store.create_rollout(clone_for_retry(original))
    runner.start(clone)
    logger.info(
        "Rollout retried",
        extra={"rollout_id": clone.id, "source_rollout_id": original.id},
    )
    return clone


def cancel_rollout(runner: RolloutRunner, rollout_id: str) -> bool:
    return runner.cancel(rollout_id)


def simulate_rollout(
    fleet: FleetStore,
    rollouts: RolloutStore,
    rollout_id: str,
    *,
    waves: int | None = None,
    options: RolloutOptions | None = None,
    now: datetime | None = None,
) -> RolloutPlan:
    """Plan the rollout against the current fleet without writing anything."""
    rollout = rollouts.get_rollout(rollout_id)
    devices = fleet.fetch_devices(tenant=rollout.tenant, selector=rollout.selector)
    wave_count = coerce_wave_count(waves if waves is not None else rollout.waves)
    return plan_waves(
        devices,
        wave_count,
        now=now or datetime.now(timezone.utc),
        options=options or RolloutOptions(),
        rollout_id=rollout.id,
    )
