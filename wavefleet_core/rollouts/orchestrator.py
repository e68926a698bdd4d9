from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Callable

from wavefleet_core.errors import InvalidTransitionError, WavefleetError
from wavefleet_core.fleet.types import DeviceRecord
from wavefleet_core.logging import get_logger
from wavefleet_core.rollouts.planner import (
    classify_device,
    classify_wave,
    coerce_wave_count,
    partition_waves,
)
from wavefleet_core.rollouts.types import (
    DISPOSITION_APPLY,
    DISPOSITION_SKIP_OFFLINE,
    ROLLOUT_ABORTED,
    ROLLOUT_COMPLETED,
    ROLLOUT_DRAFT,
    ROLLOUT_FAILED,
    ROLLOUT_RUNNING,
    RUN_FAILED,
    RUN_RUNNING,
    RolloutOptions,
    RolloutOutcome,
    RolloutRecord,
    RolloutRunRecord,
    WaveResult,
)
from wavefleet_core.stores.interfaces import FleetStore, RolloutStore

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def run_id_for(rollout_id: str, wave_index: int) -> str:
    return f"run-{rollout_id}-{wave_index}"


class WaveOrchestrator:
    """Drive one draft rollout to a terminal status, wave by wave.

    The device set is read once up front and every wave works off that
    snapshot. Run records and terminal status writes are best effort: a
    failing write is logged and recorded on the outcome, never raised.
    """

    def __init__(
        self,
        fleet: FleetStore,
        rollouts: RolloutStore,
        options: RolloutOptions | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.fleet = fleet
        self.rollouts = rollouts
        self.options = options or RolloutOptions()
        self._clock = clock or utc_now

    def run(
        self,
        rollout: RolloutRecord,
        cancel_event: threading.Event | None = None,
    ) -> RolloutOutcome:
        cancel_event = cancel_event or threading.Event()
        persistence_errors: list[str] = []
        log_extra = {"rollout_id": rollout.id, "tenant": rollout.tenant}

        try:
            devices = self.fleet.fetch_devices(
                tenant=rollout.tenant,
                selector=rollout.selector,
            )
        except WavefleetError as exc:
            logger.error(
                "Rollout device snapshot failed",
                extra={**log_extra, "error_message": str(exc)},
            )
            return RolloutOutcome(
                rollout_id=rollout.id,
                status=rollout.status,
                error=f"fetch devices: {exc}",
            )

        if not devices:
            logger.info(
                "Rollout matched no devices",
                extra={**log_extra, "status": ROLLOUT_FAILED},
            )
            try:
                self.rollouts.set_rollout_status(
                    rollout_id=rollout.id,
                    status=ROLLOUT_FAILED,
                    expected_status=ROLLOUT_DRAFT,
                    finished_at=self._clock().isoformat(),
                )
            except InvalidTransitionError as exc:
                logger.warning(
                    "Rollout claim failed",
                    extra={**log_extra, "error_message": str(exc)},
                )
                return RolloutOutcome(
                    rollout_id=rollout.id,
                    status=rollout.status,
                    error=f"claim rollout: {exc}",
                )
            except WavefleetError as exc:
                self._record_write_failure(
                    "set_rollout_status",
                    persistence_errors,
                    exc,
                    rollout_id=rollout.id,
                )
            return RolloutOutcome(
                rollout_id=rollout.id,
                status=ROLLOUT_FAILED,
                error="no devices matched",
                persistence_errors=tuple(persistence_errors),
            )

        wave_count = coerce_wave_count(rollout.waves)
        buckets = partition_waves([device.id for device in devices], wave_count)
        by_id = {device.id: device for device in devices}

        try:
            self.rollouts.set_rollout_status(
                rollout_id=rollout.id,
                status=ROLLOUT_RUNNING,
                expected_status=ROLLOUT_DRAFT,
            )
        except WavefleetError as exc:
            logger.warning(
                "Rollout claim failed",
                extra={**log_extra, "error_message": str(exc)},
            )
            return RolloutOutcome(
                rollout_id=rollout.id,
                status=rollout.status,
                error=f"claim rollout: {exc}",
            )
        logger.info(
            "Rollout started",
            extra={
                **log_extra,
                "status": ROLLOUT_RUNNING,
                "waves": wave_count,
                "device_count": len(devices),
                "artifact": rollout.artifact,
                "channel": rollout.channel,
            },
        )

        results: list[WaveResult] = []
        for wave_index, bucket in enumerate(buckets, start=1):
            if cancel_event.is_set():
                return self._cancelled(rollout.id, results, persistence_errors)

            result = self._run_wave(
                rollout,
                wave_index,
                bucket,
                by_id,
                persistence_errors,
            )
            results.append(result)

            if result.status == RUN_FAILED:
                self._finish(rollout.id, ROLLOUT_FAILED, persistence_errors)
                return RolloutOutcome(
                    rollout_id=rollout.id,
                    status=ROLLOUT_FAILED,
                    waves=tuple(results),
                    error=f"wave {wave_index} failed",
                    persistence_errors=tuple(persistence_errors),
                )

            if wave_index < len(buckets) and self.options.wave_interval > 0:
                if cancel_event.wait(self.options.wave_interval):
                    return self._cancelled(rollout.id, results, persistence_errors)

        self._finish(rollout.id, ROLLOUT_COMPLETED, persistence_errors)
        return RolloutOutcome(
            rollout_id=rollout.id,
            status=ROLLOUT_COMPLETED,
            waves=tuple(results),
            persistence_errors=tuple(persistence_errors),
        )

    def _run_wave(
        self,
        rollout: RolloutRecord,
        wave_index: int,
        bucket: tuple[str, ...],
        by_id: dict[str, DeviceRecord],
        persistence_errors: list[str],
    ) -> WaveResult:
        run_id = run_id_for(rollout.id, wave_index)
        started_at = self._clock()
        self._best_effort(
            "create_run",
            persistence_errors,
            lambda: self.rollouts.create_run(
                RolloutRunRecord(
                    id=run_id,
                    rollout_id=rollout.id,
                    wave_index=wave_index,
                    device_ids=bucket,
                    status=RUN_RUNNING,
                    started_at=started_at.isoformat(),
                )
            ),
            run_id=run_id,
        )

        applied = 0
        failed = 0
        skipped = 0
        for device_id in bucket:
            device = by_id[device_id]
            disposition = classify_device(
                device,
                now=self._clock(),
                options=self.options,
            )
            device_extra = {
                "rollout_id": rollout.id,
                "run_id": run_id,
                "wave_index": wave_index,
                "device_id": device_id,
            }
            if disposition.action == DISPOSITION_SKIP_OFFLINE:
                skipped += 1
                logger.info(
                    "Device skipped",
                    extra={**device_extra, "reason": disposition.reason},
                )
                continue
            if disposition.action != DISPOSITION_APPLY:
                failed += 1
                logger.warning(
                    "Device failed health gate",
                    extra={**device_extra, "reason": disposition.reason},
                )
                continue
            try:
                self.fleet.apply_version_channel(
                    device_id=device_id,
                    version=rollout.artifact,
                    channel=rollout.channel,
                )
            except Exception as exc:
                failed += 1
                logger.warning(
                    "Device apply failed",
                    extra={
                        **device_extra,
                        "reason": "apply_error",
                        "error_message": str(exc),
                    },
                )
                continue
            applied += 1
            logger.info(
                "Device applied",
                extra={
                    **device_extra,
                    "artifact": rollout.artifact,
                    "channel": rollout.channel,
                },
            )

        status = classify_wave(applied, failed > 0)
        finished_at = self._clock().isoformat()
        self._best_effort(
            "complete_run",
            persistence_errors,
            lambda: self.rollouts.complete_run(
                run_id=run_id,
                status=status,
                finished_at=finished_at,
                applied=applied,
                failed=failed,
                skipped=skipped,
            ),
            run_id=run_id,
        )
        logger.info(
            "Wave finished",
            extra={
                "rollout_id": rollout.id,
                "run_id": run_id,
                "wave_index": wave_index,
                "status": status,
                "applied": applied,
                "failed": failed,
                "skipped": skipped,
            },
        )
        return WaveResult(
            wave_index=wave_index,
            run_id=run_id,
            device_ids=bucket,
            status=status,
            applied=applied,
            failed=failed,
            skipped=skipped,
        )

    def _cancelled(
        self,
        rollout_id: str,
        results: list[WaveResult],
        persistence_errors: list[str],
    ) -> RolloutOutcome:
        status = ROLLOUT_RUNNING
        if self.options.abort_on_cancel:
            status = ROLLOUT_ABORTED
            self._finish(rollout_id, ROLLOUT_ABORTED, persistence_errors)
        else:
            logger.info(
                "Rollout cancelled, left running",
                extra={"rollout_id": rollout_id, "status": status},
            )
        return RolloutOutcome(
            rollout_id=rollout_id,
            status=status,
            waves=tuple(results),
            cancelled=True,
            persistence_errors=tuple(persistence_errors),
        )

    def _finish(
        self,
        rollout_id: str,
        status: str,
        persistence_errors: list[str],
    ) -> None:
        finished_at = self._clock().isoformat()
        self._best_effort(
            "set_rollout_status",
            persistence_errors,
            lambda: self.rollouts.set_rollout_status(
                rollout_id=rollout_id,
                status=status,
                finished_at=finished_at,
            ),
            rollout_id=rollout_id,
        )
        logger.info(
            "Rollout finished",
            extra={"rollout_id": rollout_id, "status": status},
        )

    def _best_effort(
        self,
        op: str,
        persistence_errors: list[str],
        write: Callable[[], object],
        **fields: object,
    ) -> None:
        try:
            write()
        except Exception as exc:
            self._record_write_failure(op, persistence_errors, exc, **fields)

    def _record_write_failure(
        self,
        op: str,
        persistence_errors: list[str],
        exc: Exception,
        **fields: object,
    ) -> None:
        persistence_errors.append(f"{op}: {exc}")
        logger.warning(
            "Rollout persistence write failed",
            extra={
                **fields,
                "persistence_op": op,
                "error_message": str(exc),
            },
        )
