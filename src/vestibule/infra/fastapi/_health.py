"""Health endpoints.

``/health`` is a plain liveness probe. ``/healthz`` reports per-subsystem
readiness, currently whether the OIDC client finished discovery.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_class=PlainTextResponse)
async def health() -> str:
    """Liveness probe."""
    return "ok"


def _check_oidc(request: Request) -> dict[str, str]:
    if getattr(request.app.state, "oidc_client", None) is None:
        return {"status": "error", "detail": "OIDC client not initialised"}
    return {"status": "ok"}


@router.get("/healthz")
async def healthz(request: Request) -> Any:
    """Aggregated readiness check.

    Returns HTTP 200 when all subsystems are healthy, HTTP 503 otherwise.
    """
    checks = {"oidc": _check_oidc(request)}

    all_ok = all(c["status"] == "ok" for c in checks.values())
    result = {
        "status": "ok" if all_ok else "degraded",
        "checks": checks,
    }
    return JSONResponse(content=result, status_code=200 if all_ok else 503)
