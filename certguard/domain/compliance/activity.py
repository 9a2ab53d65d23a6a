from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from certguard.domain.compliance.db_models import ComplianceActivity
from certguard.domain.compliance.schemas import ActivityType
from certguard.domain.compliance.status import utcnow

logger = logging.getLogger(__name__)


@dataclass
class ActivityEntry:
    company_id: str
    actor_id: str
    type: ActivityType
    worker_id: str | None = None
    certification_id: str | None = None
    company_document_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    note: str | None = None


def _build(entry: ActivityEntry, created_at: datetime) -> ComplianceActivity:
    return ComplianceActivity(
        company_id=entry.company_id,
        actor_id=entry.actor_id,
        type=ActivityType(entry.type).value,
        worker_id=entry.worker_id,
        certification_id=entry.certification_id,
        company_document_id=entry.company_document_id,
        metadata_json=entry.metadata or None,
        note=entry.note,
        created_at=created_at,
    )


async def log_activity(session: AsyncSession, entry: ActivityEntry) -> ComplianceActivity:
    """Append one audit row inside the caller's transaction."""
    row = _build(entry, utcnow())
    session.add(row)
    logger.info(
        "compliance_activity",
        extra={
            "extra": {
                "company_id": entry.company_id,
                "activity_type": row.type,
                "worker_id": entry.worker_id,
            }
        },
    )
    return row


async def log_activities(session: AsyncSession, entries: Sequence[ActivityEntry]) -> list[ComplianceActivity]:
    if not entries:
        return []
    created_at = utcnow()
    rows = [_build(entry, created_at) for entry in entries]
    session.add_all(rows)
    logger.info(
        "compliance_activity_batch",
        extra={"extra": {"count": len(rows), "activity_type": rows[0].type}},
    )
    return rows


async def list_activities(
    session: AsyncSession,
    company_id: str,
    *,
    worker_id: str | None = None,
    activity_type: ActivityType | str | None = None,
    limit: int = 100,
) -> list[ComplianceActivity]:
    stmt = select(ComplianceActivity).where(ComplianceActivity.company_id == company_id)
    if worker_id:
        stmt = stmt.where(ComplianceActivity.worker_id == worker_id)
    if activity_type:
        stmt = stmt.where(ComplianceActivity.type == ActivityType(activity_type).value)
    stmt = stmt.order_by(ComplianceActivity.created_at.desc()).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())
