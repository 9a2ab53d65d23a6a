from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from certguard.domain.compliance.status import utcnow
from certguard.domain.dispatch.db_models import WorkOrder, WorkOrderActivity
from certguard.domain.dispatch.schemas import WorkOrderCreateRequest
from certguard.domain.errors import WorkOrderNotFound
from certguard.infra.db import transaction


async def create_work_order(
    session: AsyncSession,
    *,
    company_id: str,
    request: WorkOrderCreateRequest,
) -> WorkOrder:
    async with transaction(session):
        work_order = WorkOrder(
            company_id=company_id,
            title=request.title.strip(),
            status=request.status.value,
            site_name=request.site_name,
            site_address=request.site_address,
            scheduled_start=request.scheduled_start,
            instructions=request.instructions,
        )
        session.add(work_order)
        await session.flush()
    return work_order


async def get_work_order(
    session: AsyncSession,
    work_order_id: str,
    *,
    company_id: str | None = None,
) -> WorkOrder:
    stmt = select(WorkOrder).where(WorkOrder.work_order_id == work_order_id)
    if company_id is not None:
        stmt = stmt.where(WorkOrder.company_id == company_id)
    work_order = (await session.execute(stmt)).scalar_one_or_none()
    if work_order is None:
        raise WorkOrderNotFound()
    return work_order


def record_work_order_activity(
    session: AsyncSession,
    *,
    work_order_id: str,
    actor_id: str,
    type: str,
    message: str,
    metadata: dict[str, Any] | None = None,
) -> WorkOrderActivity:
    activity = WorkOrderActivity(
        work_order_id=work_order_id,
        actor_id=actor_id,
        type=type,
        message=message,
        metadata_json=metadata,
        created_at=utcnow(),
    )
    session.add(activity)
    return activity


async def list_work_order_activities(session: AsyncSession, work_order_id: str) -> list[WorkOrderActivity]:
    result = await session.execute(
        select(WorkOrderActivity)
        .where(WorkOrderActivity.work_order_id == work_order_id)
        .order_by(WorkOrderActivity.created_at)
    )
    return list(result.scalars().all())
