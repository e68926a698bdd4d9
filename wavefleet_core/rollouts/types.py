from __future__ import annotations

from dataclasses import dataclass, field

ROLLOUT_DRAFT = "draft"
ROLLOUT_RUNNING = "running"
ROLLOUT_COMPLETED = "completed"
ROLLOUT_FAILED = "failed"
ROLLOUT_ABORTED = "aborted"

ROLLOUT_STATUSES: tuple[str, ...] = (
    ROLLOUT_DRAFT,
    ROLLOUT_RUNNING,
    ROLLOUT_COMPLETED,
    ROLLOUT_FAILED,
    ROLLOUT_ABORTED,
)

RUN_RUNNING = "running"
RUN_COMPLETED = "completed"
RUN_PARTIAL = "partial"
RUN_FAILED = "failed"

RUN_STATUSES: tuple[str, ...] = (RUN_RUNNING, RUN_COMPLETED, RUN_PARTIAL, RUN_FAILED)

DISPOSITION_APPLY = "apply"
DISPOSITION_SKIP_OFFLINE = "skip_offline"
DISPOSITION_FAIL_OFFLINE = "fail_offline"
DISPOSITION_FAIL_STATUS = "fail_status"


@dataclass(frozen=True)
class RolloutRecord:
    id: str
    tenant: str
    artifact: str
    channel: str
    selector: dict[str, str]
    waves: int
    status: str
    created_at: str
    finished_at: str | None = None


@dataclass(frozen=True)
class RolloutRunRecord:
    id: str
    rollout_id: str
    wave_index: int
    device_ids: tuple[str, ...]
    status: str
    started_at: str
    finished_at: str | None = None
    applied: int = 0
    failed: int = 0
    skipped: int = 0


@dataclass(frozen=True)
class RolloutOptions:
    """Knobs consumed by the wave orchestrator.

    Durations are in seconds. ``abort_on_cancel`` decides whether a cancelled
    rollout is marked ``aborted`` or left ``running``.
    """

    wave_interval: float = 8.0
    heartbeat_grace: float = 120.0
    require_ok: bool = False
    skip_offline: bool = True
    abort_on_cancel: bool = True


@dataclass(frozen=True)
class DeviceDisposition:
    device_id: str
    action: str
    reason: str | None = None


@dataclass(frozen=True)
class WavePlan:
    wave_index: int
    device_ids: tuple[str, ...]
    dispositions: tuple[DeviceDisposition, ...] = ()


@dataclass(frozen=True)
class RolloutPlan:
    rollout_id: str | None
    total_devices: int
    waves: tuple[WavePlan, ...]


@dataclass(frozen=True)
class WaveResult:
    wave_index: int
    run_id: str
    device_ids: tuple[str, ...]
    status: str
    applied: int
    failed: int
    skipped: int


@dataclass(frozen=True)
class RolloutOutcome:
    rollout_id: str
    status: str
    waves: tuple[WaveResult, ...] = ()
    cancelled: bool = False
    error: str | None = None
    persistence_errors: tuple[str, ...] = field(default_factory=tuple)
