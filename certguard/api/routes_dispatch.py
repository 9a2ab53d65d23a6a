from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from certguard.api.identity import ActorIdentity, require_dispatch_actor
from certguard.domain.compliance.schemas import ComplianceSummary
from certguard.domain.dispatch import gate, work_orders
from certguard.domain.dispatch.schemas import (
    AssignmentRequest,
    AssignmentResponse,
    WorkOrderCreateRequest,
    WorkOrderResponse,
)
from certguard.infra.db import get_db_session

router = APIRouter(prefix="/v1/dispatch", tags=["dispatch"])


@router.get("/workers/{worker_id}/compliance", response_model=ComplianceSummary)
async def get_worker_compliance(
    worker_id: str,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_dispatch_actor),
) -> ComplianceSummary:
    return await gate.get_worker_compliance_summary(session, worker_id, company_id=identity.company_id)


@router.post("/work-orders", response_model=WorkOrderResponse, status_code=status.HTTP_201_CREATED)
async def create_work_order(
    payload: WorkOrderCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_dispatch_actor),
) -> WorkOrderResponse:
    work_order = await work_orders.create_work_order(session, company_id=identity.company_id, request=payload)
    return WorkOrderResponse.model_validate(work_order)


@router.post(
    "/work-orders/{work_order_id}/assignments",
    response_model=AssignmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def assign_worker(
    work_order_id: str,
    payload: AssignmentRequest,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_dispatch_actor),
) -> AssignmentResponse:
    assignment = await gate.assign_worker(
        session,
        work_order_id,
        payload.worker_id,
        identity.actor_id,
        force_override=payload.force_override,
        override_reason=payload.override_reason,
        company_id=identity.company_id,
    )
    return AssignmentResponse.model_validate(assignment)


@router.post("/assignments/{assignment_id}/unassign", response_model=AssignmentResponse)
async def unassign_worker(
    assignment_id: str,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_dispatch_actor),
) -> AssignmentResponse:
    assignment = await gate.unassign_worker(
        session,
        assignment_id,
        identity.actor_id,
        company_id=identity.company_id,
    )
    return AssignmentResponse.model_validate(assignment)
