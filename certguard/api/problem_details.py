"""RFC 7807 problem responses shared by every route and exception handler."""

import uuid
from http import HTTPStatus
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

PROBLEM_BASE = "https://certguard.dev/problems/"
PROBLEM_TYPE_VALIDATION = PROBLEM_BASE + "validation-error"
PROBLEM_TYPE_DOMAIN = PROBLEM_BASE + "domain-error"
PROBLEM_TYPE_UNAUTHORIZED = PROBLEM_BASE + "unauthorized"
PROBLEM_TYPE_SERVER = PROBLEM_BASE + "server-error"
PROBLEM_MEDIA_TYPE = "application/problem+json"


def resolve_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")
    request.state.request_id = request_id or str(uuid.uuid4())
    return request.state.request_id


def _default_type(status_code: int) -> str:
    if status_code == 422:
        return PROBLEM_TYPE_VALIDATION
    if status_code == 401:
        return PROBLEM_TYPE_UNAUTHORIZED
    return PROBLEM_TYPE_SERVER if status_code >= 500 else PROBLEM_TYPE_DOMAIN


def _default_title(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


def problem_details(
    request: Request,
    *,
    status: int,
    title: str | None,
    detail: str,
    errors: list[dict[str, Any]] | None = None,
    type_: str | None = None,
    headers: dict[str, str] | None = None,
    extensions: dict[str, Any] | None = None,
) -> JSONResponse:
    """Build the problem body. ``extensions`` never overrides a standard member."""
    request_id = resolve_request_id(request)
    body: dict[str, Any] = dict(extensions or {})
    body.update(
        type=type_ or _default_type(status),
        title=title or _default_title(status),
        status=status,
        detail=detail,
        request_id=request_id,
        errors=errors or [],
    )
    response = JSONResponse(status_code=status, content=body, headers=headers, media_type=PROBLEM_MEDIA_TYPE)
    response.headers.setdefault("X-Request-ID", request_id)
    return response
