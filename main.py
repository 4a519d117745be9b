"""FastAPI application exposing the gated charity-site API."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Query, Request, Response

from app.config import Settings, get_settings
from app.cors import handle_options, with_cors
from app.gating import (
    GateRejected,
    admin_required,
    api_key_required,
    get_rate_limiter,
    rate_limited,
    seed_required,
)
from app.logging_config import configure_logging
from app.rate_limit import STRICT_POLICY, RateLimitSweeper
from app.utils import get_client_identity

configure_logging()
LOGGER = logging.getLogger(__name__)


def _resolve(dependency):
    """Call ``dependency`` honouring ``app.dependency_overrides``."""

    return app.dependency_overrides.get(dependency, dependency)()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = _resolve(get_settings)
    limiter = _resolve(get_rate_limiter)
    limiter.store.init()
    sweeper = RateLimitSweeper(limiter, settings.rate_limit_sweep_interval_seconds)
    sweeper.start()
    LOGGER.info("request gates ready", extra={"reason": settings.environment})
    try:
        yield
    finally:
        try:
            await sweeper.stop()
        finally:
            limiter.store.teardown()


app = FastAPI(title="Charity Site API", lifespan=lifespan)


@app.exception_handler(GateRejected)
async def gate_rejected_handler(request: Request, exc: GateRejected) -> Response:
    return exc.response


@app.middleware("http")
async def apply_cors(request: Request, call_next):  # type: ignore[override]
    try:
        response = await call_next(request)
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception(
            "Unhandled exception",
            extra={"client_ip": get_client_identity(request.headers), "path": request.url.path},
        )
        raise exc
    if request.url.path.startswith("/api"):
        with_cors(response, request, _resolve(get_settings))
    return response


@app.options("/api/{path:path}")
async def preflight(request: Request, settings: Settings = Depends(get_settings)) -> Response:
    """Answer CORS preflight requests for every API route."""

    return handle_options(request, settings)


@app.get("/api/health", dependencies=[Depends(rate_limited())])
async def health() -> dict:
    """Report liveness without exposing configuration."""

    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get(
    "/api/check-env",
    dependencies=[Depends(rate_limited()), Depends(api_key_required)],
)
async def check_env(settings: Settings = Depends(get_settings)) -> dict:
    """Report which gate secrets are configured, never their values."""

    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.environment,
        "adminAuth": {"configured": settings.admin_auth_configured},
        "seedAuth": {"configured": settings.seed_auth_configured},
        "apiKey": {"configured": bool(settings.api_secret_key)},
    }


@app.post(
    "/api/admin/init",
    dependencies=[Depends(rate_limited(STRICT_POLICY)), Depends(admin_required)],
)
async def admin_init() -> dict:
    """Confirm the caller holds admin access."""

    return {"success": True, "message": "Admin access verified"}


@app.post(
    "/api/seed",
    status_code=202,
    dependencies=[Depends(rate_limited(STRICT_POLICY)), Depends(seed_required)],
)
async def seed(force: bool = Query(False, description="Clear existing records first.")) -> dict:
    """Accept an authorized seeding request."""

    LOGGER.info("seed request accepted", extra={"reason": "force" if force else "initial"})
    return {"success": True, "message": "Seed request accepted", "force": force}
