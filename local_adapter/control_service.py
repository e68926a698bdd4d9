from __future__ import annotations

import os
import threading
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from wavefleet_core.config import get_config
from wavefleet_core.errors import WavefleetError
from wavefleet_core.fleet.types import DeviceRecord
from wavefleet_core.logging import configure_logging, get_logger
from wavefleet_core.rollouts import control
from wavefleet_core.rollouts.runner import RolloutRunner
from wavefleet_core.rollouts.types import (
    ROLLOUT_RUNNING,
    RolloutPlan,
    RolloutRecord,
    RolloutRunRecord,
)
from wavefleet_core.services.fastapi_scaffolding import (
    HealthResponse,
    add_correlation_id_middleware,
    apply_cors_middleware,
    authorize_api_key,
    build_health_response,
    to_http_exception,
)
from wavefleet_core.stores.registry import StoreBundle, get_store_bundle

SERVICE_NAME = "wavefleet-control"

configure_logging(
    service=SERVICE_NAME,
    env=os.getenv("ENV", "local"),
    version=os.getenv("WAVEFLEET_VERSION"),
)
logger = get_logger(__name__)


@dataclass
class ControlState:
    bundle: StoreBundle | None = None
    runner: RolloutRunner | None = None


STATE = ControlState()
_STATE_LOCK = threading.Lock()


def _get_bundle() -> StoreBundle:
    with _STATE_LOCK:
        if STATE.bundle is None:
            config = get_config()
            STATE.bundle = get_store_bundle(config)
            logger.info(
                "Control store ready",
                extra={"control_plane_store": STATE.bundle.backend},
            )
        return STATE.bundle


def _get_runner() -> RolloutRunner:
    bundle = _get_bundle()
    with _STATE_LOCK:
        if STATE.runner is None:
            STATE.runner = RolloutRunner(
                bundle.fleet,
                bundle.rollouts,
                get_config().rollout_options(),
            )
        return STATE.runner


def reset_state() -> None:
    with _STATE_LOCK:
        runner = STATE.runner
        STATE.runner = None
        STATE.bundle = None
    if runner is not None:
        runner.shutdown()


@asynccontextmanager
async def lifespan(_: FastAPI):
    yield
    reset_state()


app = FastAPI(lifespan=lifespan)
apply_cors_middleware(app)
add_correlation_id_middleware(app)


class ClaimRequest(BaseModel):
    tenant: str
    labels: dict[str, Any] = Field(default_factory=dict)
    location: str | None = None
    version: str | None = None
    channel: str | None = None
    device_id: str | None = None


class ClaimResponse(BaseModel):
    device_id: str


class HeartbeatRequest(BaseModel):
    status: str | None = None
    ts: str | None = None


class OkResponse(BaseModel):
    ok: bool


class DeviceResponse(BaseModel):
    id: str
    tenant: str
    labels: dict[str, str]
    location: str | None = None
    version: str | None = None
    channel: str | None = None
    status: str
    last_seen_at: str | None = None
    created_at: str
    updated_at: str


class RolloutCreateRequest(BaseModel):
    tenant: str
    artifact: str = ""
    channel: str = ""
    selector: dict[str, Any] | None = None
    waves: int = 1


class RolloutStatusResponse(BaseModel):
    id: str
    status: str


class RolloutResponse(BaseModel):
    id: str
    tenant: str
    artifact: str
    channel: str
    selector: dict[str, str]
    waves: int
    status: str
    created_at: str
    finished_at: str | None = None
    active: bool = False


class CancelResponse(BaseModel):
    id: str
    cancelled: bool


class RunResponse(BaseModel):
    id: str
    rollout_id: str
    wave_index: int
    device_ids: list[str]
    status: str
    started_at: str
    finished_at: str | None = None
    applied: int = 0
    failed: int = 0
    skipped: int = 0


class DispositionResponse(BaseModel):
    device_id: str
    action: str
    reason: str | None = None


class WavePlanResponse(BaseModel):
    wave_index: int
    device_ids: list[str]
    dispositions: list[DispositionResponse]


class PlanResponse(BaseModel):
    rollout_id: str | None
    total_devices: int
    waves: list[WavePlanResponse]


def _authorize(request: Request) -> None:
    authorize_api_key(request, get_config().api_key)


def _device_response(device: DeviceRecord) -> DeviceResponse:
    return DeviceResponse(**asdict(device))


def _rollout_response(rollout: RolloutRecord, active: bool = False) -> RolloutResponse:
    return RolloutResponse(**asdict(rollout), active=active)


def _run_response(run: RolloutRunRecord) -> RunResponse:
    payload = asdict(run)
    payload["device_ids"] = list(run.device_ids)
    return RunResponse(**payload)


def _plan_response(plan: RolloutPlan) -> PlanResponse:
    return PlanResponse(
        rollout_id=plan.rollout_id,
        total_devices=plan.total_devices,
        waves=[
            WavePlanResponse(
                wave_index=wave.wave_index,
                device_ids=list(wave.device_ids),
                dispositions=[
                    DispositionResponse(**asdict(item)) for item in wave.dispositions
                ],
            )
            for wave in plan.waves
        ],
    )


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return build_health_response(SERVICE_NAME)


@app.get("/api/devices", response_model=list[DeviceResponse])
def list_devices(request: Request) -> list[DeviceResponse]:
    _authorize(request)
    try:
        devices = _get_bundle().fleet.load_devices()
    except WavefleetError as exc:
        raise to_http_exception(exc) from exc
    return [_device_response(device) for device in devices]


@app.post("/api/devices/claim", response_model=ClaimResponse)
def claim_device(request: Request, payload: ClaimRequest) -> ClaimResponse:
    _authorize(request)
    try:
        device = _get_bundle().fleet.claim_device(
            tenant=payload.tenant,
            labels=payload.labels,
            location=payload.location,
            version=payload.version,
            channel=payload.channel,
            device_id=payload.device_id,
        )
    except WavefleetError as exc:
        raise to_http_exception(exc) from exc
    logger.info(
        "Device claimed",
        extra={
            "device_id": device.id,
            "tenant": device.tenant,
            "correlation_id": request.state.correlation_id,
        },
    )
    return ClaimResponse(device_id=device.id)


@app.post("/api/devices/{device_id}/heartbeat", response_model=OkResponse)
def device_heartbeat(
    request: Request,
    device_id: str,
    payload: HeartbeatRequest | None = None,
) -> OkResponse:
    _authorize(request)
    payload = payload or HeartbeatRequest()
    try:
        _get_bundle().fleet.record_heartbeat(
            device_id=device_id,
            status=payload.status,
            last_seen_at=payload.ts,
        )
    except WavefleetError as exc:
        raise to_http_exception(exc) from exc
    return OkResponse(ok=True)


@app.get("/api/rollouts", response_model=list[RolloutResponse])
def list_rollouts(request: Request, tenant: str | None = None) -> list[RolloutResponse]:
    _authorize(request)
    try:
        rollouts = _get_bundle().rollouts.list_rollouts(tenant=tenant)
        runner = _get_runner()
    except WavefleetError as exc:
        raise to_http_exception(exc) from exc
    return [
        _rollout_response(rollout, runner.is_active(rollout.id))
        for rollout in rollouts
    ]


@app.post("/api/rollouts", response_model=RolloutStatusResponse)
def create_rollout(
    request: Request,
    payload: RolloutCreateRequest,
) -> RolloutStatusResponse:
    _authorize(request)
    try:
        rollout = control.create_rollout(
            _get_bundle().rollouts,
            tenant=payload.tenant,
            artifact=payload.artifact,
            channel=payload.channel,
            selector=payload.selector,
            waves=payload.waves,
        )
    except WavefleetError as exc:
        raise to_http_exception(exc) from exc
    return RolloutStatusResponse(id=rollout.id, status=rollout.status)


@app.get("/api/rollouts/{rollout_id}", response_model=RolloutResponse)
def get_rollout(request: Request, rollout_id: str) -> RolloutResponse:
    _authorize(request)
    try:
        rollout = _get_bundle().rollouts.get_rollout(rollout_id)
        active = _get_runner().is_active(rollout_id)
    except WavefleetError as exc:
        raise to_http_exception(exc) from exc
    return _rollout_response(rollout, active)


@app.post("/api/rollouts/{rollout_id}/start", response_model=RolloutStatusResponse)
@app.post(
    "/api/rollouts/{rollout_id}:start",
    response_model=RolloutStatusResponse,
    include_in_schema=False,
)
def start_rollout(request: Request, rollout_id: str) -> RolloutStatusResponse:
    _authorize(request)
    try:
        rollout = control.start_rollout(
            _get_bundle().rollouts,
            _get_runner(),
            rollout_id,
        )
    except WavefleetError as exc:
        raise to_http_exception(exc) from exc
    return RolloutStatusResponse(id=rollout.id, status=ROLLOUT_RUNNING)


@app.post("/api/rollouts/{rollout_id}/retry", response_model=RolloutStatusResponse)
@app.post(
    "/api/rollouts/{rollout_id}:retry",
    response_model=RolloutStatusResponse,
    include_in_schema=False,
)
def retry_rollout(request: Request, rollout_id: str) -> RolloutStatusResponse:
    _authorize(request)
    try:
        clone = control.retry_rollout(
            _get_bundle().rollouts,
            _get_runner(),
            rollout_id,
        )
    except WavefleetError as exc:
        raise to_http_exception(exc) from exc
    return RolloutStatusResponse(id=clone.id, status=ROLLOUT_RUNNING)


@app.post("/api/rollouts/{rollout_id}/cancel", response_model=CancelResponse)
def cancel_rollout(request: Request, rollout_id: str) -> CancelResponse:
    _authorize(request)
    try:
        _get_bundle().rollouts.get_rollout(rollout_id)
        cancelled = control.cancel_rollout(_get_runner(), rollout_id)
    except WavefleetError as exc:
        raise to_http_exception(exc) from exc
    return CancelResponse(id=rollout_id, cancelled=cancelled)


@app.get("/api/rollouts/{rollout_id}/runs", response_model=list[RunResponse])
def list_runs(request: Request, rollout_id: str) -> list[RunResponse]:
    _authorize(request)
    try:
        bundle = _get_bundle()
        bundle.rollouts.get_rollout(rollout_id)
        runs = bundle.rollouts.list_runs(rollout_id)
    except WavefleetError as exc:
        raise to_http_exception(exc) from exc
    return [_run_response(run) for run in runs]


@app.post("/api/rollouts/{rollout_id}/simulate", response_model=PlanResponse)
@app.post(
    "/api/rollouts/{rollout_id}:simulate",
    response_model=PlanResponse,
    include_in_schema=False,
)
def simulate_rollout(
    request: Request,
    rollout_id: str,
    waves: int | None = None,
) -> PlanResponse:
    _authorize(request)
    if waves is not None and waves <= 0:
        raise HTTPException(status_code=400, detail="waves must be >= 1")
    try:
        bundle = _get_bundle()
        plan = control.simulate_rollout(
            bundle.fleet,
            bundle.rollouts,
            rollout_id,
            waves=waves,
            options=get_config().rollout_options(),
        )
    except WavefleetError as exc:
        raise to_http_exception(exc) from exc
    return _plan_response(plan)
