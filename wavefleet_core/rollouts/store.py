from __future__ import annotations

from dataclasses import asdict, replace
from typing import Iterable

from wavefleet_core.errors import InvalidTransitionError, NotFoundError, ValidationError
from wavefleet_core.rollouts.lifecycle import ensure_run_transition, ensure_transition
from wavefleet_core.rollouts.types import (
    ROLLOUT_DRAFT,
    RUN_RUNNING,
    RolloutRecord,
    RolloutRunRecord,
)
from wavefleet_core.storage.documents import read_items, write_items
from wavefleet_core.storage.paths import control_document_uri


def rollout_registry_uri(base_uri: str) -> str:
    return control_document_uri(base_uri, "rollouts.json")


def rollout_runs_uri(base_uri: str) -> str:
    return control_document_uri(base_uri, "rollout_runs.json")


def load_rollouts(base_uri: str) -> list[RolloutRecord]:
    items = read_items(rollout_registry_uri(base_uri), "rollouts")
    return [rollout_from_dict(item) for item in items]


def save_rollouts(base_uri: str, rollouts: Iterable[RolloutRecord]) -> str:
    return write_items(
        rollout_registry_uri(base_uri),
        "rollouts",
        [asdict(rollout) for rollout in rollouts],
    )


def create_rollout(base_uri: str, rollout: RolloutRecord) -> RolloutRecord:
    rollouts = load_rollouts(base_uri)
    if any(existing.id == rollout.id for existing in rollouts):
        raise ValidationError(f"Rollout already exists: {rollout.id}")
    rollouts.append(rollout)
    save_rollouts(base_uri, rollouts)
    return rollout


def get_rollout(base_uri: str, rollout_id: str) -> RolloutRecord:
    match = next(
        (rollout for rollout in load_rollouts(base_uri) if rollout.id == rollout_id),
        None,
    )
    if match is None:
        raise NotFoundError(f"Rollout not found: {rollout_id}")
    return match


def list_rollouts(base_uri: str, *, tenant: str | None = None) -> list[RolloutRecord]:
    rollouts = load_rollouts(base_uri)
    if tenant:
        rollouts = [rollout for rollout in rollouts if rollout.tenant == tenant]
    return order_rollouts(rollouts)


def order_rollouts(rollouts: Iterable[RolloutRecord]) -> list[RolloutRecord]:
    ordered = sorted(rollouts, key=lambda rollout: rollout.id)
    return sorted(ordered, key=lambda rollout: rollout.created_at, reverse=True)


def set_rollout_status(
    base_uri: str,
    *,
    rollout_id: str,
    status: str,
    finished_at: str | None = None,
    expected_status: str | None = None,
) -> RolloutRecord:
    rollouts = load_rollouts(base_uri)
    updated: list[RolloutRecord] = []
    match: RolloutRecord | None = None
    for existing in rollouts:
        if existing.id == rollout_id:
            check_status_change(existing, status, expected_status)
            match = replace(
                existing,
                status=status,
                finished_at=finished_at or existing.finished_at,
            )
            updated.append(match)
        else:
            updated.append(existing)
    if match is None:
        raise NotFoundError(f"Rollout not found: {rollout_id}")
    save_rollouts(base_uri, updated)
    return match


def check_status_change(
    existing: RolloutRecord,
    status: str,
    expected_status: str | None,
) -> None:
    if expected_status is not None and existing.status != expected_status:
        raise InvalidTransitionError(
            f"Rollout {existing.id} is {existing.status}, expected {expected_status}"
        )
    ensure_transition(existing.status, status)


def load_runs(base_uri: str) -> list[RolloutRunRecord]:
    items = read_items(rollout_runs_uri(base_uri), "runs")
    return [run_from_dict(item) for item in items]


def save_runs(base_uri: str, runs: Iterable[RolloutRunRecord]) -> str:
    return write_items(
        rollout_runs_uri(base_uri),
        "runs",
        [asdict(run) for run in runs],
    )


def create_run(base_uri: str, run: RolloutRunRecord) -> RolloutRunRecord:
    get_rollout(base_uri, run.rollout_id)
    runs = load_runs(base_uri)
    existing = next((item for item in runs if item.id == run.id), None)
    if existing is not None:
        return existing
    runs.append(run)
    save_runs(base_uri, runs)
    return run


def complete_run(
    base_uri: str,
    *,
    run_id: str,
    status: str,
    finished_at: str,
    applied: int = 0,
    failed: int = 0,
    skipped: int = 0,
) -> RolloutRunRecord:
    runs = load_runs(base_uri)
    updated: list[RolloutRunRecord] = []
    match: RolloutRunRecord | None = None
    for existing in runs:
        if existing.id == run_id:
            ensure_run_transition(existing.status, status)
            match = replace(
                existing,
                status=status,
                finished_at=finished_at,
                applied=applied,
                failed=failed,
                skipped=skipped,
            )
            updated.append(match)
        else:
            updated.append(existing)
    if match is None:
        raise NotFoundError(f"Run not found: {run_id}")
    save_runs(base_uri, updated)
    return match


def list_runs(base_uri: str, rollout_id: str) -> list[RolloutRunRecord]:
    runs = [run for run in load_runs(base_uri) if run.rollout_id == rollout_id]
    return sorted(runs, key=lambda run: run.wave_index)


def rollout_from_dict(payload: dict[str, object]) -> RolloutRecord:
    return RolloutRecord(
        id=str(payload.get("id")),
        tenant=str(payload.get("tenant", "")),
        artifact=str(payload.get("artifact") or ""),
        channel=str(payload.get("channel") or ""),
        selector=_coerce_selector(payload.get("selector")),
        waves=_coerce_int(payload.get("waves"), 1),
        status=str(payload.get("status", ROLLOUT_DRAFT)),
        created_at=str(payload.get("created_at", "")),
        finished_at=_coerce_optional_str(payload.get("finished_at")),
    )


def run_from_dict(payload: dict[str, object]) -> RolloutRunRecord:
    device_ids = payload.get("device_ids")
    return RolloutRunRecord(
        id=str(payload.get("id")),
        rollout_id=str(payload.get("rollout_id", "")),
        wave_index=_coerce_int(payload.get("wave_index"), 0),
        device_ids=tuple(str(item) for item in device_ids)
        if isinstance(device_ids, (list, tuple))
        else (),
        status=str(payload.get("status", RUN_RUNNING)),
        started_at=str(payload.get("started_at", "")),
        finished_at=_coerce_optional_str(payload.get("finished_at")),
        applied=_coerce_int(payload.get("applied"), 0),
        failed=_coerce_int(payload.get("failed"), 0),
        skipped=_coerce_int(payload.get("skipped"), 0),
    )


def _coerce_optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _coerce_selector(value: object) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(key): str(item) for key, item in value.items()}


def _coerce_int(value: object, default: int) -> int:
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
