"""Assignment notifications queued through the outbox."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from certguard.domain.compliance.db_models import Worker
from certguard.domain.compliance.status import ensure_utc
from certguard.domain.dispatch.db_models import WorkOrder, WorkOrderAssignment
from certguard.domain.outbox.db_models import OutboxEvent
from certguard.domain.outbox.service import enqueue_outbox_event

NOT_PROVIDED = "Not provided"


def _format_datetime(value: datetime | None) -> str:
    if value is None:
        return NOT_PROVIDED
    return ensure_utc(value).strftime("%b %d, %Y %H:%M UTC")


def _gap_labels(gap_summary: dict | None, key: str) -> list[str]:
    return [gap.get("label", "") for gap in (gap_summary or {}).get(key) or [] if gap.get("label")]


def build_override_notice(assignment: WorkOrderAssignment) -> list[str]:
    if not assignment.override_acknowledged:
        return []
    missing = _gap_labels(assignment.gap_summary, "missing")
    expiring = _gap_labels(assignment.gap_summary, "expiring")
    lines = [
        "",
        "COMPLIANCE OVERRIDE NOTICE",
        "This assignment was made with a compliance override.",
        "Missing certifications:",
    ]
    lines.extend(f"  - {label}" for label in missing or ["None listed"])
    lines.append("Expiring certifications:")
    lines.extend(f"  - {label}" for label in expiring or ["None listed"])
    lines.append(f"Reason: {assignment.override_reason}")
    return lines


def attachment_reference(work_order: WorkOrder) -> str:
    return f"work_orders/{work_order.work_order_id}/latest.pdf"


def build_assignment_email(
    work_order: WorkOrder,
    worker: Worker,
    assignment: WorkOrderAssignment,
    company_name: str | None = None,
) -> tuple[str, str]:
    subject = f"Work Order Assigned - {work_order.title}"
    lines = [
        f"Hi {worker.full_name},",
        "You have been assigned to a work order.",
        f"Company: {company_name or 'Company not set'}",
        f"Job: {work_order.title}",
        f"Site: {work_order.site_name or NOT_PROVIDED}",
        f"Location: {work_order.site_address or NOT_PROVIDED}",
        f"Date / time: {_format_datetime(work_order.scheduled_start)}",
        f"Assigned role: {worker.role or worker.title or NOT_PROVIDED}",
    ]
    if work_order.instructions:
        lines.append(f"Special instructions: {work_order.instructions}")
    else:
        lines.append("No additional notes provided.")
    lines.extend(build_override_notice(assignment))
    lines.extend(["", "A PDF copy of the work order is available for your records.", "Thank you."])
    return subject, "\n".join(lines)


async def enqueue_assignment_notification(
    session: AsyncSession,
    *,
    work_order: WorkOrder,
    worker: Worker,
    assignment: WorkOrderAssignment,
    actor_id: str,
    company_name: str | None = None,
) -> OutboxEvent:
    subject, body = build_assignment_email(work_order, worker, assignment, company_name)
    payload = {
        "recipient": worker.email,
        "subject": subject,
        "body": body,
        "attachment": attachment_reference(work_order),
        "context": {
            "assignment_id": assignment.assignment_id,
            "work_order_id": work_order.work_order_id,
            "worker_id": worker.worker_id,
            "actor_id": actor_id,
            "override": assignment.override_acknowledged,
        },
    }
    return await enqueue_outbox_event(
        session,
        company_id=work_order.company_id,
        kind="email",
        payload=payload,
        dedupe_key=f"assignment:{assignment.assignment_id}",
    )
