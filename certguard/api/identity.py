"""Actor identity supplied by the upstream authorization proxy.

The proxy authenticates the caller and forwards who they are as headers. The
headers are honoured only when the TCP peer is a configured trusted proxy;
anything else gets a 401 before the headers are read.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from fastapi import Depends, HTTPException, Request, status

from certguard.domain.errors import RoleForbidden
from certguard.infra.logging import update_log_context
from certguard.infra.security import is_trusted_proxy_source
from certguard.settings import settings

ACTOR_ID_HEADER = "X-Actor-Id"
ACTOR_ROLE_HEADER = "X-Actor-Role"
COMPANY_ID_HEADER = "X-Company-Id"

logger = logging.getLogger(__name__)


class ActorRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    DISPATCH = "dispatch"
    VIEWER = "viewer"


COMPLIANCE_ROLES = frozenset({ActorRole.OWNER, ActorRole.ADMIN})
DISPATCH_ROLES = frozenset({ActorRole.OWNER, ActorRole.ADMIN, ActorRole.DISPATCH})


@dataclass(frozen=True)
class ActorIdentity:
    actor_id: str
    role: ActorRole
    company_id: str


def _ensure_trusted_proxy_source(request: Request) -> None:
    if not settings.trust_proxy_headers or not is_trusted_proxy_source(
        request, settings.trusted_proxy_ips, settings.trusted_proxy_cidrs
    ):
        logger.warning(
            "actor_identity_untrusted_source",
            extra={"extra": {"path": request.url.path, "trust_proxy_headers": settings.trust_proxy_headers}},
        )
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Untrusted identity source")


def _header(request: Request, name: str) -> str | None:
    value = request.headers.get(name)
    if value is None:
        return None
    return value.strip() or None


async def get_actor_identity(request: Request) -> ActorIdentity:
    cached: ActorIdentity | None = getattr(request.state, "actor_identity", None)
    if cached is not None:
        return cached

    _ensure_trusted_proxy_source(request)
    actor_id = _header(request, ACTOR_ID_HEADER)
    raw_role = _header(request, ACTOR_ROLE_HEADER)
    company_id = _header(request, COMPANY_ID_HEADER)
    if not actor_id or not raw_role or not company_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing actor identity")
    try:
        role = ActorRole(raw_role.lower())
    except ValueError as exc:
        raise RoleForbidden(detail="Unknown actor role") from exc

    identity = ActorIdentity(actor_id=actor_id, role=role, company_id=company_id)
    request.state.actor_identity = identity
    update_log_context(actor_id=actor_id, role=role.value, company_id=company_id)
    return identity


def require_roles(roles: Iterable[ActorRole], detail: str):
    allowed = frozenset(roles)

    async def _require(identity: ActorIdentity = Depends(get_actor_identity)) -> ActorIdentity:
        if identity.role not in allowed:
            raise RoleForbidden(detail=detail)
        return identity

    return _require


require_compliance_actor = require_roles(COMPLIANCE_ROLES, "Compliance access restricted to owners/admins")
require_dispatch_actor = require_roles(DISPATCH_ROLES, "Dispatch access restricted to dispatchers/admins")
require_owner = require_roles({ActorRole.OWNER}, "Only owners can manage presets")
