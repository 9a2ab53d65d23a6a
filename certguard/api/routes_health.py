import logging
from typing import Any

import anyio
from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy import text

router = APIRouter(tags=["health"])
logger = logging.getLogger(__name__)

DATABASE_CHECK_TIMEOUT_SECONDS = 2.0


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.head("/healthz")
async def healthz_head() -> Response:
    return Response(status_code=200)


async def _check_database(request: Request) -> dict[str, Any]:
    session_factory = getattr(request.app.state, "db_session_factory", None)
    if session_factory is None:
        return {"ok": False, "message": "database session factory unavailable"}
    try:
        with anyio.fail_after(DATABASE_CHECK_TIMEOUT_SECONDS):
            async with session_factory() as session:
                await session.execute(text("SELECT 1"))
    except TimeoutError:
        return {"ok": False, "message": "database check timed out"}
    except Exception as exc:  # noqa: BLE001 - reported as not ready
        logger.warning("readiness_database_failed", extra={"extra": {"error_type": type(exc).__name__}})
        return {"ok": False, "message": "database check failed", "error": type(exc).__name__}
    return {"ok": True, "message": "database reachable"}


def _email_check(request: Request) -> dict[str, Any]:
    app_settings = getattr(request.app.state, "app_settings", None)
    mode = getattr(app_settings, "email_mode", "off")
    # Notifications queue in the outbox while email is off, so this never fails readiness.
    return {"ok": True, "mode": mode}


@router.get("/readyz")
async def readyz(request: Request) -> JSONResponse:
    checks = {"database": await _check_database(request), "email": _email_check(request)}
    ready = all(check["ok"] for check in checks.values())
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ok" if ready else "unavailable", "checks": checks},
    )
