import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from certguard.api.problem_details import (
    PROBLEM_TYPE_DOMAIN,
    PROBLEM_TYPE_SERVER,
    PROBLEM_TYPE_VALIDATION,
    problem_details,
)
from certguard.api.routes_admin import router as admin_router
from certguard.api.routes_compliance import router as compliance_router
from certguard.api.routes_dispatch import router as dispatch_router
from certguard.api.routes_health import router as health_router
from certguard.api.routes_public import router as public_router
from certguard.domain.errors import ComplianceBlocked, DomainError, OverrideReasonRequired
from certguard.infra import models  # noqa: F401
from certguard.infra.db import dispose_engine, get_session_factory
from certguard.infra.logging import clear_log_context, configure_logging, update_log_context
from certguard.infra.metrics import configure_metrics
from certguard.settings import settings

logger = logging.getLogger(__name__)
request_logger = logging.getLogger("certguard.request")

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
}
PUBLIC_VERIFY_PREFIX = "/v1/public/verify/"
ROUTERS = (health_router, public_router, compliance_router, dispatch_router, admin_router)


def _actor_log_fields(request: Request) -> dict[str, str]:
    identity = getattr(request.state, "actor_identity", None)
    if identity is None:
        return {}
    return {"actor_id": identity.actor_id, "role": identity.role.value, "company_id": identity.company_id}


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assigns the request id, binds it to the log context and writes one access log line."""

    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        update_log_context(request_id=request_id, method=request.method, path=request.url.path)
        started = time.monotonic()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            latency_ms = int((time.monotonic() - started) * 1000)
            update_log_context(status_code=status_code, latency_ms=latency_ms, **_actor_log_fields(request))
            request_logger.info("request")
            clear_log_context()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        # Verification tokens travel in the path; keep them out of shared caches.
        if request.url.path.startswith(PUBLIC_VERIFY_PREFIX):
            response.headers["Cache-Control"] = "no-store"
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: FastAPI, metrics_client) -> None:
        super().__init__(app)
        self.metrics = metrics_client

    async def dispatch(self, request: Request, call_next: Callable):
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            # Route templates keep verification tokens and ids out of label values.
            route = getattr(request.scope.get("route"), "path", "unmatched")
            self.metrics.record_http_latency(
                request.method, route, status_code, time.perf_counter() - started
            )


def _cors_origins(app_settings) -> list[str]:
    if app_settings.cors_origins:
        return list(app_settings.cors_origins)
    return ["http://localhost:3000"] if app_settings.app_env == "dev" else []


def _problem_extensions(exc: DomainError) -> dict:
    if isinstance(exc, ComplianceBlocked):
        return {"compliance_summary": exc.summary}
    if isinstance(exc, OverrideReasonRequired):
        return {"min_length": exc.min_length}
    return {}


def _validation_errors(exc: RequestValidationError) -> list[dict[str, str]]:
    errors = []
    for error in exc.errors():
        parts = [str(part) for part in error.get("loc", []) if part not in {"body", "query", "path"}]
        errors.append({"field": ".".join(parts) or "body", "message": error.get("msg", "Invalid value")})
    return errors


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def on_validation_error(request: Request, exc: RequestValidationError):
        return problem_details(
            request=request,
            status=422,
            title="Validation Error",
            detail="Request validation failed",
            errors=_validation_errors(exc),
            type_=PROBLEM_TYPE_VALIDATION,
        )

    @app.exception_handler(DomainError)
    async def on_domain_error(request: Request, exc: DomainError):
        logger.info(
            "domain_error",
            extra={"extra": {"title": exc.title, "status_code": exc.status_code}},
        )
        return problem_details(
            request=request,
            status=exc.status_code,
            title=exc.title,
            detail=exc.detail,
            errors=exc.errors or [],
            type_=exc.type or PROBLEM_TYPE_DOMAIN,
            extensions=_problem_extensions(exc),
        )

    @app.exception_handler(StarletteHTTPException)
    async def on_http_error(request: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else None
        return problem_details(
            request=request,
            status=exc.status_code,
            title=message or "HTTP Error",
            detail=message or "Request failed",
            type_=PROBLEM_TYPE_SERVER if exc.status_code >= 500 else PROBLEM_TYPE_DOMAIN,
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def on_unhandled_error(request: Request, exc: Exception):
        update_log_context(
            request_id=getattr(request.state, "request_id", None),
            path=request.url.path,
            status_code=500,
            error_type=type(exc).__name__,
            **_actor_log_fields(request),
        )
        logger.exception("unhandled_exception")
        return problem_details(
            request=request,
            status=500,
            title="Internal Server Error",
            detail="Unexpected error",
            type_=PROBLEM_TYPE_SERVER,
        )


def create_app(app_settings) -> FastAPI:
    configure_logging()
    metrics_client = configure_metrics(app_settings.metrics_enabled)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Tests may preinstall state; only fill what is missing.
        app.state.app_settings = getattr(app.state, "app_settings", app_settings)
        if getattr(app.state, "metrics", None) is None:
            app.state.metrics = metrics_client
        if getattr(app.state, "db_session_factory", None) is None:
            app.state.db_session_factory = get_session_factory()
        try:
            yield
        finally:
            await dispose_engine()

    app = FastAPI(title=app_settings.app_name, version="1.0.0", lifespan=lifespan)

    # Last added is outermost.
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(MetricsMiddleware, metrics_client=metrics_client)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(app_settings),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_exception_handlers(app)

    for router in ROUTERS:
        app.include_router(router)
    if app_settings.metrics_enabled:
        from certguard.api.routes_metrics import router as metrics_router

        app.include_router(metrics_router)

    return app


app = create_app(settings)
