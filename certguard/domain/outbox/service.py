from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, NamedTuple

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from certguard.domain.compliance.activity import ActivityEntry, log_activity
from certguard.domain.compliance.schemas import ActivityType
from certguard.domain.outbox.db_models import OutboxEvent
from certguard.infra.email import EmailAdapter, NoopEmailAdapter
from certguard.infra.logging import clear_log_context, update_log_context
from certguard.infra.metrics import metrics
from certguard.settings import settings

logger = logging.getLogger(__name__)

PENDING_STATUSES = {"pending", "retry"}
PERMANENT_ERRORS = {"missing_payload", "missing_recipient", "unknown_kind"}


class OutboxAdapters:
    def __init__(self, *, email_adapter: EmailAdapter | NoopEmailAdapter | None = None) -> None:
        self.email_adapter = email_adapter


class DeliveryOutcome(NamedTuple):
    delivered: bool
    error: str | None = None


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _retry_at(attempt: int) -> datetime:
    # 30s, 60s, 120s ... with the default base.
    return _now() + timedelta(seconds=settings.outbox_base_backoff_seconds * 2 ** max(0, attempt - 1))


async def enqueue_outbox_event(
    session: AsyncSession,
    *,
    company_id: str,
    kind: str,
    payload: dict,
    dedupe_key: str,
) -> OutboxEvent:
    """Queue an event in the caller's transaction; a repeated dedupe key returns the existing row."""
    values = {
        "company_id": company_id,
        "kind": kind,
        "payload_json": payload,
        "dedupe_key": dedupe_key,
        "status": "pending",
        "attempts": 0,
        "next_attempt_at": _now(),
        "last_error": None,
    }
    bind = session.get_bind()
    if bind is not None and bind.dialect.name == "postgresql":
        stmt = (
            pg_insert(OutboxEvent)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["company_id", "dedupe_key"])
            .returning(OutboxEvent)
        )
        created = (await session.execute(stmt)).scalar_one_or_none()
        if created is not None:
            return created
    existing = await session.scalar(
        select(OutboxEvent).where(OutboxEvent.company_id == company_id, OutboxEvent.dedupe_key == dedupe_key)
    )
    if existing is not None:
        return existing
    event = OutboxEvent(**values)
    session.add(event)
    await session.flush()
    return event


async def _deliver_email(adapter, payload: dict) -> DeliveryOutcome:
    if not payload.get("subject") or not payload.get("body"):
        return DeliveryOutcome(False, "missing_payload")
    if not payload.get("recipient"):
        return DeliveryOutcome(False, "missing_recipient")
    if adapter is None:
        return DeliveryOutcome(False, "email_adapter_missing")
    try:
        accepted = await adapter.send_email(
            payload["recipient"], payload["subject"], payload["body"], headers=payload.get("headers") or None
        )
    except Exception as exc:  # noqa: BLE001 - recorded on the event and retried
        logger.warning("outbox_email_send_failed", extra={"extra": {"reason": type(exc).__name__}})
        return DeliveryOutcome(False, type(exc).__name__)
    return DeliveryOutcome(True) if accepted else DeliveryOutcome(False, "send_skipped")


def _apply_outcome(event: OutboxEvent, outcome: DeliveryOutcome) -> None:
    if outcome.delivered:
        event.status, event.next_attempt_at, event.last_error = "sent", None, None
        return
    event.last_error = outcome.error or "failed"
    if event.last_error in PERMANENT_ERRORS or event.attempts >= settings.outbox_max_attempts:
        event.status, event.next_attempt_at = "dead", None
    else:
        event.status, event.next_attempt_at = "retry", _retry_at(event.attempts)


async def _record_delivery_activity(session: AsyncSession, event: OutboxEvent) -> None:
    context = (event.payload_json or {}).get("context") or {}
    worker_id = context.get("worker_id")
    if not worker_id:
        return
    await log_activity(
        session,
        ActivityEntry(
            company_id=event.company_id,
            actor_id=context.get("actor_id") or "system",
            type=ActivityType.NOTIFICATION_SENT if event.status == "sent" else ActivityType.NOTIFICATION_FAILED,
            worker_id=worker_id,
            metadata={
                "outbox_event_id": event.event_id,
                "work_order_id": context.get("work_order_id"),
                "assignment_id": context.get("assignment_id"),
                "attempt": event.attempts,
                "status": event.status,
                "error": event.last_error,
            },
        ),
    )


async def deliver_outbox_event(session: AsyncSession, event: OutboxEvent, adapters: OutboxAdapters) -> DeliveryOutcome:
    """Attempt one delivery and move the event to sent, retry or dead."""
    event.attempts = (event.attempts or 0) + 1
    if event.kind == "email":
        outcome = await _deliver_email(adapters.email_adapter, event.payload_json or {})
        _apply_outcome(event, outcome)
        metrics.record_notification(event.status)
    else:
        outcome = DeliveryOutcome(False, "unknown_kind")
        _apply_outcome(event, outcome)
    await _record_delivery_activity(session, event)
    await session.flush()
    logger.info(
        "outbox_event_delivered" if outcome.delivered else "outbox_event_failed",
        extra={
            "extra": {
                "event_id": event.event_id,
                "kind": event.kind,
                "status": event.status,
                "attempts": event.attempts,
                "error": event.last_error,
            }
        },
    )
    return outcome


async def process_outbox(session: AsyncSession, adapters: OutboxAdapters, *, limit: int = 50) -> dict[str, int]:
    due = (
        await session.execute(
            select(OutboxEvent)
            .where(OutboxEvent.status.in_(PENDING_STATUSES), OutboxEvent.next_attempt_at <= _now())
            .order_by(OutboxEvent.created_at)
            .limit(limit)
        )
    ).scalars().all()
    summary = {"sent": 0, "dead": 0, "pending": len(due)}
    for event in due:
        update_log_context(outbox_event_id=event.event_id, company_id=event.company_id)
        try:
            outcome = await deliver_outbox_event(session, event, adapters)
        finally:
            clear_log_context()
        if outcome.delivered:
            summary["sent"] += 1
        elif event.status == "dead":
            summary["dead"] += 1
    if due:
        await session.commit()
    for status, count in (await outbox_counts_by_status(session, ("pending", "retry", "dead"))).items():
        metrics.set_outbox_depth(status, count)
    return summary


async def outbox_counts_by_status(session: AsyncSession, statuses: Iterable[str]) -> dict[str, int]:
    counts = dict.fromkeys(statuses, 0)
    rows = await session.execute(
        select(OutboxEvent.status, func.count())
        .where(OutboxEvent.status.in_(list(counts)))
        .group_by(OutboxEvent.status)
    )
    counts.update({status: int(count) for status, count in rows.all()})
    return counts


async def list_dead_letter(session: AsyncSession, company_id: str, *, limit: int = 100) -> list[OutboxEvent]:
    result = await session.scalars(
        select(OutboxEvent)
        .where(OutboxEvent.company_id == company_id, OutboxEvent.status == "dead")
        .order_by(OutboxEvent.created_at.desc())
        .limit(limit)
    )
    return list(result)


async def get_outbox_event(session: AsyncSession, company_id: str, event_id: str) -> OutboxEvent | None:
    return await session.scalar(
        select(OutboxEvent).where(OutboxEvent.company_id == company_id, OutboxEvent.event_id == event_id)
    )


async def replay_outbox_event(session: AsyncSession, event: OutboxEvent) -> None:
    """Give a dead event a fresh attempt budget."""
    event.status = "pending"
    event.attempts = 0
    event.last_error = None
    event.next_attempt_at = _now()
    await session.commit()
