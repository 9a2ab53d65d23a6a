"""Compliance gate in front of work-order assignment.

Gaps are computed live from certifications and proofs, never from a stored
snapshot. A worker with gaps can only be assigned through an explicit override
that carries a reason; the gap summary is frozen onto the assignment row.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from certguard.domain.compliance.activity import ActivityEntry, log_activities, log_activity
from certguard.domain.compliance.db_models import CertificationStatus, ComplianceStatus, Worker
from certguard.domain.compliance.schemas import (
    ActivityType,
    ComplianceGap,
    ComplianceSummary,
    GapReason,
    SnapshotSource,
)
from certguard.domain.compliance.service import load_worker
from certguard.domain.compliance.snapshots import create_snapshot, report_snapshot_created
from certguard.domain.compliance.status import (
    derive_certification_status,
    derive_worker_status,
    ensure_utc,
    is_expiring,
    utcnow,
)
from certguard.domain.dispatch.db_models import (
    LOCKED_WORK_ORDER_STATUSES,
    WorkOrder,
    WorkOrderAssignment,
)
from certguard.domain.dispatch.notifications import enqueue_assignment_notification
from certguard.domain.dispatch.work_orders import get_work_order, record_work_order_activity
from certguard.domain.errors import (
    AssignmentNotFound,
    ComplianceBlocked,
    OverrideReasonRequired,
    WorkerNotFound,
    WorkOrderLocked,
)
from certguard.infra.db import transaction
from certguard.infra.metrics import metrics
from certguard.settings import settings

logger = logging.getLogger(__name__)


def summarize_worker_compliance(
    worker: Worker,
    now: datetime,
    *,
    window_days: int | None = None,
) -> ComplianceSummary:
    window = window_days if window_days is not None else settings.expiring_window_days
    missing: list[ComplianceGap] = []
    expiring: list[ComplianceGap] = []
    statuses: list[tuple[bool, CertificationStatus]] = []
    for cert in worker.certifications:
        status = derive_certification_status(cert, len(cert.proofs), now)
        statuses.append((cert.required, status))
        if not cert.required:
            continue
        if status != CertificationStatus.PASS:
            missing.append(
                ComplianceGap(
                    certification_id=cert.certification_id,
                    label=cert.label,
                    status=status,
                    expires_at=ensure_utc(cert.expires_at),
                    required=True,
                    reason=GapReason.EXPIRED if status == CertificationStatus.EXPIRED else GapReason.MISSING,
                )
            )
        elif is_expiring(cert, status, now, window):
            expiring.append(
                ComplianceGap(
                    certification_id=cert.certification_id,
                    label=cert.label,
                    status=status,
                    expires_at=ensure_utc(cert.expires_at),
                    required=True,
                    reason=GapReason.EXPIRING,
                )
            )
    worker_status = derive_worker_status(statuses)
    return ComplianceSummary(
        status=worker_status,
        missing=missing,
        expiring=expiring,
        # INCOMPLETE (an optional certification without proof) also needs an override.
        needs_override=worker_status != ComplianceStatus.PASS or bool(missing or expiring),
    )


async def get_worker_compliance_summary(
    session: AsyncSession,
    worker_id: str,
    *,
    company_id: str | None = None,
    now: datetime | None = None,
) -> ComplianceSummary:
    worker = await load_worker(session, worker_id, company_id=company_id)
    return summarize_worker_compliance(worker, ensure_utc(now) or utcnow())


def _blocked(summary: ComplianceSummary) -> ComplianceBlocked:
    gaps = [gap.model_dump(mode="json") for gap in summary.missing + summary.expiring]
    return ComplianceBlocked(errors=gaps, summary=summary.model_dump(mode="json"))


async def _active_assignment(session: AsyncSession, work_order_id: str, worker_id: str) -> WorkOrderAssignment | None:
    return await session.scalar(
        select(WorkOrderAssignment).where(
            WorkOrderAssignment.work_order_id == work_order_id,
            WorkOrderAssignment.worker_id == worker_id,
            WorkOrderAssignment.unassigned_at.is_(None),
        )
    )


def _ensure_mutable(work_order: WorkOrder) -> None:
    if work_order.status in LOCKED_WORK_ORDER_STATUSES:
        raise WorkOrderLocked()


async def assign_worker(
    session: AsyncSession,
    work_order_id: str,
    worker_id: str,
    actor_id: str,
    force_override: bool = False,
    override_reason: str | None = None,
    *,
    company_id: str | None = None,
    now: datetime | None = None,
) -> WorkOrderAssignment:
    current = ensure_utc(now) or utcnow()
    reason = (override_reason or "").strip()

    async with transaction(session):
        work_order = await get_work_order(session, work_order_id, company_id=company_id)
        _ensure_mutable(work_order)
        worker = await load_worker(session, worker_id, company_id=work_order.company_id)
        if not worker.active:
            raise WorkerNotFound(detail="Worker is inactive")

        summary = summarize_worker_compliance(worker, current)
        if summary.needs_override and not force_override:
            metrics.record_assignment("blocked")
            logger.info(
                "dispatch_assignment_blocked",
                extra={
                    "extra": {
                        "work_order_id": work_order_id,
                        "worker_id": worker_id,
                        "missing": len(summary.missing),
                        "expiring": len(summary.expiring),
                    }
                },
            )
            raise _blocked(summary)
        if force_override and len(reason) < settings.override_reason_min_length:
            metrics.record_assignment("rejected")
            raise OverrideReasonRequired(
                detail=f"Override reason must be at least {settings.override_reason_min_length} characters",
                min_length=settings.override_reason_min_length,
            )

        existing = await _active_assignment(session, work_order.work_order_id, worker.worker_id)
        if existing is not None:
            return existing

        overridden = summary.needs_override
        sealed = await create_snapshot(
            session,
            worker.worker_id,
            actor_id,
            SnapshotSource.DISPATCH,
            now=current,
        )
        assignment = WorkOrderAssignment(
            work_order_id=work_order.work_order_id,
            worker_id=worker.worker_id,
            assigned_by_id=actor_id,
            compliance_status=summary.status.value,
            gap_summary={
                "missing": [gap.model_dump(mode="json") for gap in summary.missing],
                "expiring": [gap.model_dump(mode="json") for gap in summary.expiring],
            },
            override_acknowledged=overridden,
            override_reason=override_reason if overridden else None,
            override_actor_id=actor_id if overridden else None,
            override_at=current if overridden else None,
            compliance_snapshot_hash=sealed.snapshot.snapshot_hash,
            assigned_at=current,
        )
        session.add(assignment)
        await session.flush()

        entries = [
            ActivityEntry(
                company_id=work_order.company_id,
                actor_id=actor_id,
                type=ActivityType.EMPLOYEE_ASSIGNED,
                worker_id=worker.worker_id,
                metadata={
                    "work_order_id": work_order.work_order_id,
                    "assignment_id": assignment.assignment_id,
                    "compliance_status": summary.status.value,
                    "override": overridden,
                },
            )
        ]
        record_work_order_activity(
            session,
            work_order_id=work_order.work_order_id,
            actor_id=actor_id,
            type=ActivityType.EMPLOYEE_ASSIGNED.value,
            message=f"Assigned {worker.full_name}",
            metadata={"worker_id": worker.worker_id, "assignment_id": assignment.assignment_id},
        )
        if overridden:
            entries.append(
                ActivityEntry(
                    company_id=work_order.company_id,
                    actor_id=actor_id,
                    type=ActivityType.COMPLIANCE_OVERRIDE_APPLIED,
                    worker_id=worker.worker_id,
                    metadata={
                        "work_order_id": work_order.work_order_id,
                        "assignment_id": assignment.assignment_id,
                        "reason": override_reason,
                        "missing": [gap.label for gap in summary.missing],
                        "expiring": [gap.label for gap in summary.expiring],
                    },
                )
            )
            record_work_order_activity(
                session,
                work_order_id=work_order.work_order_id,
                actor_id=actor_id,
                type="COMPLIANCE_OVERRIDE",
                message=f"Compliance override for {worker.full_name}: {override_reason}",
                metadata={"worker_id": worker.worker_id, "assignment_id": assignment.assignment_id},
            )
        await log_activities(session, entries)
        await enqueue_assignment_notification(
            session,
            work_order=work_order,
            worker=worker,
            assignment=assignment,
            actor_id=actor_id,
            company_name=worker.company.name,
        )
        await session.flush()

    report_snapshot_created(sealed)
    metrics.record_assignment("override" if overridden else "clean")
    logger.info(
        "dispatch_assignment_created",
        extra={
            "extra": {
                "work_order_id": work_order_id,
                "worker_id": worker_id,
                "assignment_id": assignment.assignment_id,
                "override": overridden,
            }
        },
    )
    return assignment


async def unassign_worker(
    session: AsyncSession,
    assignment_id: str,
    actor_id: str,
    *,
    company_id: str | None = None,
    now: datetime | None = None,
) -> WorkOrderAssignment:
    current = ensure_utc(now) or utcnow()
    async with transaction(session):
        stmt = (
            select(WorkOrderAssignment, WorkOrder)
            .join(WorkOrder, WorkOrder.work_order_id == WorkOrderAssignment.work_order_id)
            .where(WorkOrderAssignment.assignment_id == assignment_id)
        )
        if company_id is not None:
            stmt = stmt.where(WorkOrder.company_id == company_id)
        row = (await session.execute(stmt)).first()
        if row is None:
            raise AssignmentNotFound()
        assignment, work_order = row
        if assignment.unassigned_at is not None:
            return assignment
        _ensure_mutable(work_order)

        assignment.unassigned_at = current
        await log_activity(
            session,
            ActivityEntry(
                company_id=work_order.company_id,
                actor_id=actor_id,
                type=ActivityType.EMPLOYEE_UNASSIGNED,
                worker_id=assignment.worker_id,
                metadata={
                    "work_order_id": work_order.work_order_id,
                    "assignment_id": assignment.assignment_id,
                },
            ),
        )
        record_work_order_activity(
            session,
            work_order_id=work_order.work_order_id,
            actor_id=actor_id,
            type=ActivityType.EMPLOYEE_UNASSIGNED.value,
            message="Employee unassigned",
            metadata={"worker_id": assignment.worker_id, "assignment_id": assignment.assignment_id},
        )
        await session.flush()

    logger.info(
        "dispatch_assignment_removed",
        extra={"extra": {"assignment_id": assignment_id, "work_order_id": work_order.work_order_id}},
    )
    return assignment
