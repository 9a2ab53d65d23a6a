import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, event, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from certguard.infra.db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkOrderStatus(str, Enum):
    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


LOCKED_WORK_ORDER_STATUSES = {WorkOrderStatus.COMPLETED.value, WorkOrderStatus.CANCELLED.value}


class WorkOrder(Base):
    __tablename__ = "work_orders"

    work_order_id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    company_id: Mapped[str] = mapped_column(
        ForeignKey("companies.company_id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=WorkOrderStatus.DRAFT.value)
    site_name: Mapped[str | None] = mapped_column(String(255))
    site_address: Mapped[str | None] = mapped_column(String(500))
    scheduled_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    instructions: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    assignments: Mapped[list["WorkOrderAssignment"]] = relationship(
        "WorkOrderAssignment", back_populates="work_order"
    )

    __table_args__ = (Index("ix_work_orders_company_status", "company_id", "status"),)


class WorkOrderAssignment(Base):
    __tablename__ = "work_order_assignments"

    assignment_id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    work_order_id: Mapped[str] = mapped_column(
        ForeignKey("work_orders.work_order_id", ondelete="RESTRICT"), nullable=False
    )
    worker_id: Mapped[str] = mapped_column(
        ForeignKey("compliance_workers.worker_id", ondelete="RESTRICT"), nullable=False
    )
    assigned_by_id: Mapped[str] = mapped_column(String(128), nullable=False)
    compliance_status: Mapped[str] = mapped_column(String(16), nullable=False)
    gap_summary: Mapped[dict | None] = mapped_column(JSON)
    override_acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    override_reason: Mapped[str | None] = mapped_column(Text)
    override_actor_id: Mapped[str | None] = mapped_column(String(128))
    override_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    compliance_snapshot_hash: Mapped[str | None] = mapped_column(String(64))
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    unassigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    work_order: Mapped["WorkOrder"] = relationship("WorkOrder", back_populates="assignments")

    __table_args__ = (
        Index("ix_work_order_assignments_pair", "work_order_id", "worker_id"),
        Index("ix_work_order_assignments_worker", "worker_id"),
    )


class WorkOrderActivity(Base):
    __tablename__ = "work_order_activities"

    activity_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    work_order_id: Mapped[str] = mapped_column(
        ForeignKey("work_orders.work_order_id", ondelete="CASCADE"), nullable=False
    )
    actor_id: Mapped[str] = mapped_column(String(128), nullable=False)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_work_order_activities_order_created", "work_order_id", "created_at"),)


@event.listens_for(WorkOrderAssignment, "before_delete", propagate=True)
def _prevent_assignment_deletes(mapper, connection, target) -> None:  # noqa: ARG001
    raise ValueError("Work order assignments cannot be deleted; unassign instead")
