from __future__ import annotations

import os
import secrets
import time
import uuid

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from wavefleet_core.errors import (
    AuthError,
    BackingUnavailable,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
    WavefleetError,
)


class HealthResponse(BaseModel):
    status: str
    service: str
    version: str
    commit: str
    timestamp: str


def cors_origins(*, raw: str | None = None, env: str | None = None) -> list[str]:
    raw_value = raw if raw is not None else os.getenv("CORS_ALLOW_ORIGINS", "")
    if raw_value:
        return [origin.strip() for origin in raw_value.split(",") if origin.strip()]
    env_value = (env or os.getenv("ENV", "dev")).lower()
    if env_value in {"dev", "local", "test"}:
        return ["*"]
    return []


def apply_cors_middleware(app: FastAPI, *, env: str | None = None) -> list[str]:
    origins = cors_origins(env=env)
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    return origins


def correlation_id(header_value: str | None) -> str:
    if header_value:
        return header_value
    return str(uuid.uuid4())


def add_correlation_id_middleware(app: FastAPI) -> None:
    @app.middleware("http")
    async def _add_correlation_id(request: Request, call_next):
        corr = correlation_id(request.headers.get("x-correlation-id"))
        request.state.correlation_id = corr
        response = await call_next(request)
        response.headers["x-correlation-id"] = corr
        return response


def authorize_api_key(request: Request, api_key: str | None) -> None:
    if not api_key:
        return
    header_key = request.headers.get("x-api-key")
    if not header_key or not secrets.compare_digest(header_key, api_key):
        raise HTTPException(status_code=401, detail="Unauthorized")


def http_status_for(exc: WavefleetError) -> int:
    if isinstance(exc, InvalidTransitionError):
        return 409
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, AuthError):
        return 401
    if isinstance(exc, BackingUnavailable):
        return 503
    return 500


def to_http_exception(exc: WavefleetError) -> HTTPException:
    return HTTPException(status_code=http_status_for(exc), detail=str(exc))


def build_health_response(
    service_name: str,
    *,
    status: str = "ok",
    version: str | None = None,
    commit: str | None = None,
) -> HealthResponse:
    return HealthResponse(
        status=status,
        service=service_name,
        version=version or os.getenv("WAVEFLEET_VERSION", "dev"),
        commit=commit or os.getenv("GIT_COMMIT", "unknown"),
        timestamp=time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
    )
