from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from certguard.domain.compliance.db_models import ComplianceStatus
from certguard.domain.dispatch.db_models import WorkOrderStatus


class WorkOrderCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    status: WorkOrderStatus = WorkOrderStatus.SCHEDULED
    site_name: str | None = Field(None, max_length=255)
    site_address: str | None = Field(None, max_length=500)
    scheduled_start: datetime | None = None
    instructions: str | None = None


class WorkOrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    work_order_id: str
    company_id: str
    title: str
    status: WorkOrderStatus
    site_name: str | None = None
    site_address: str | None = None
    scheduled_start: datetime | None = None
    instructions: str | None = None


class AssignmentRequest(BaseModel):
    worker_id: str
    force_override: bool = False
    override_reason: str | None = None


class AssignmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    assignment_id: str
    work_order_id: str
    worker_id: str
    assigned_by_id: str
    compliance_status: ComplianceStatus
    gap_summary: dict | None = None
    override_acknowledged: bool
    override_reason: str | None = None
    override_actor_id: str | None = None
    override_at: datetime | None = None
    compliance_snapshot_hash: str | None = None
    assigned_at: datetime
    unassigned_at: datetime | None = None
