import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from certguard.domain.compliance.schemas import PublicVerificationResponse
from certguard.domain.compliance.snapshots import resolve_token
from certguard.domain.compliance.status import ensure_utc
from certguard.infra.db import get_db_session

router = APIRouter(prefix="/v1/public", tags=["public"])
logger = logging.getLogger(__name__)


@router.get("/verify/{token}", response_model=PublicVerificationResponse)
async def verify_token(
    token: str,
    session: AsyncSession = Depends(get_db_session),
) -> PublicVerificationResponse:
    record = await resolve_token(session, token)
    integrity_verified = record.integrity_verified
    if not integrity_verified:
        logger.warning(
            "snapshot_integrity_mismatch",
            extra={"extra": {"snapshot_id": record.snapshot.snapshot_id, "worker_id": record.worker.worker_id}},
        )
    return PublicVerificationResponse(
        company_name=record.snapshot.payload["worker"]["company_name"],
        snapshot_hash=record.snapshot.snapshot_hash,
        issued_at=ensure_utc(record.snapshot.created_at),
        status=record.snapshot.status,
        integrity_verified=integrity_verified,
        payload=record.snapshot.payload,
    )
