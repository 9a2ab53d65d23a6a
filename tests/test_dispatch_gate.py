import anyio
import pytest
from sqlalchemy import func, select

from certguard.domain.compliance.activity import list_activities
from certguard.domain.compliance.db_models import ComplianceStatus
from certguard.domain.compliance.schemas import ActivityType, GapReason
from certguard.domain.dispatch.db_models import WorkOrderAssignment, WorkOrderStatus
from certguard.domain.dispatch.gate import (
    assign_worker,
    get_worker_compliance_summary,
    unassign_worker,
)
from certguard.domain.dispatch.work_orders import list_work_order_activities
from certguard.domain.errors import (
    ComplianceBlocked,
    OverrideReasonRequired,
    WorkerNotFound,
    WorkOrderLocked,
)
from certguard.domain.outbox.db_models import OutboxEvent

DISPATCHER = "dispatcher-1"
REASON = "Supervisor on site verified paper card"


async def _assignment_count(async_session_maker) -> int:
    async with async_session_maker() as session:
        return await session.scalar(select(func.count()).select_from(WorkOrderAssignment))


async def _blocked_worker(seed, company_id: str) -> str:
    worker_id = await seed.worker(company_id, employee_code="E-300", email="lee@example.com")
    await seed.certification(company_id, worker_id, name="Confined Space", expires_in_days=-10, proofs=0)
    await seed.certification(company_id, worker_id, name="First Aid", required=False, expires_in_days=-5)
    return worker_id


def test_clean_worker_is_assigned_without_override(async_session_maker, seed):
    async def _run():
        company_id = await seed.company()
        worker_id = await seed.compliant_worker(company_id)
        work_order_id = await seed.work_order(company_id)

        async with async_session_maker() as session:
            assignment = await assign_worker(session, work_order_id, worker_id, DISPATCHER, now=seed.now)

        assert assignment.override_acknowledged is False
        assert assignment.override_reason is None
        assert assignment.compliance_status == ComplianceStatus.PASS.value
        assert assignment.compliance_snapshot_hash
        assert assignment.gap_summary == {"missing": [], "expiring": []}

        async with async_session_maker() as session:
            events = (await session.execute(select(OutboxEvent))).scalars().all()
            assert len(events) == 1
            assert events[0].dedupe_key == f"assignment:{assignment.assignment_id}"
            assert "COMPLIANCE OVERRIDE NOTICE" not in events[0].payload_json["body"]

    anyio.run(_run)


def test_forced_override_on_clean_worker_still_needs_reason(async_session_maker, seed):
    async def _run():
        company_id = await seed.company()
        worker_id = await seed.compliant_worker(company_id)
        work_order_id = await seed.work_order(company_id)

        async with async_session_maker() as session:
            with pytest.raises(OverrideReasonRequired):
                await assign_worker(session, work_order_id, worker_id, DISPATCHER, force_override=True, now=seed.now)

        async with async_session_maker() as session:
            assignment = await assign_worker(
                session, work_order_id, worker_id, DISPATCHER, True, REASON, now=seed.now
            )
        assert assignment.override_acknowledged is False

    anyio.run(_run)


def test_worker_with_gaps_is_blocked_without_override(async_session_maker, seed):
    async def _run():
        company_id = await seed.company()
        worker_id = await _blocked_worker(seed, company_id)
        work_order_id = await seed.work_order(company_id)

        async with async_session_maker() as session:
            with pytest.raises(ComplianceBlocked) as excinfo:
                await assign_worker(session, work_order_id, worker_id, DISPATCHER, now=seed.now)

        summary = excinfo.value.summary
        assert summary["status"] == ComplianceStatus.FAIL.value
        assert summary["needs_override"] is True
        assert [gap["label"] for gap in summary["missing"]] == ["Confined Space"]
        assert summary["missing"][0]["reason"] == GapReason.EXPIRED.value
        assert len(excinfo.value.errors) == 1
        assert await _assignment_count(async_session_maker) == 0

    anyio.run(_run)


def test_override_reason_below_minimum_is_rejected(async_session_maker, seed):
    async def _run():
        company_id = await seed.company()
        worker_id = await _blocked_worker(seed, company_id)
        work_order_id = await seed.work_order(company_id)

        for reason in (None, "   ", "too short"):
            async with async_session_maker() as session:
                with pytest.raises(OverrideReasonRequired) as excinfo:
                    await assign_worker(session, work_order_id, worker_id, DISPATCHER, True, reason, now=seed.now)
            assert excinfo.value.min_length == 10

        assert await _assignment_count(async_session_maker) == 0

    anyio.run(_run)


def test_override_assignment_is_audited_and_notified(async_session_maker, seed):
    async def _run():
        company_id = await seed.company()
        worker_id = await _blocked_worker(seed, company_id)
        work_order_id = await seed.work_order(company_id)

        async with async_session_maker() as session:
            assignment = await assign_worker(
                session, work_order_id, worker_id, DISPATCHER, True, REASON, now=seed.now
            )

        assert assignment.override_acknowledged is True
        assert assignment.override_reason == REASON
        assert assignment.override_actor_id == DISPATCHER
        assert assignment.override_at is not None
        assert assignment.compliance_status == ComplianceStatus.FAIL.value
        assert [gap["label"] for gap in assignment.gap_summary["missing"]] == ["Confined Space"]

        async with async_session_maker() as session:
            overrides = await list_activities(
                session, company_id, activity_type=ActivityType.COMPLIANCE_OVERRIDE_APPLIED
            )
            assert len(overrides) == 1
            assert overrides[0].metadata_json["reason"] == REASON
            assert overrides[0].metadata_json["missing"] == ["Confined Space"]
            assigned = await list_activities(session, company_id, activity_type=ActivityType.EMPLOYEE_ASSIGNED)
            assert assigned[0].metadata_json["override"] is True

            order_trail = await list_work_order_activities(session, work_order_id)
            assert {row.type for row in order_trail} == {"EMPLOYEE_ASSIGNED", "COMPLIANCE_OVERRIDE"}

            event = (await session.execute(select(OutboxEvent))).scalar_one()
            body = event.payload_json["body"]
            assert "COMPLIANCE OVERRIDE NOTICE" in body
            assert "  - Confined Space" in body
            assert f"Reason: {REASON}" in body
            assert event.payload_json["recipient"] == "lee@example.com"

    anyio.run(_run)


def test_existing_active_assignment_is_returned(async_session_maker, seed):
    async def _run():
        company_id = await seed.company()
        worker_id = await seed.compliant_worker(company_id)
        work_order_id = await seed.work_order(company_id)

        async with async_session_maker() as session:
            first = await assign_worker(session, work_order_id, worker_id, DISPATCHER, now=seed.now)
        async with async_session_maker() as session:
            second = await assign_worker(session, work_order_id, worker_id, DISPATCHER, now=seed.now)

        assert second.assignment_id == first.assignment_id
        assert await _assignment_count(async_session_maker) == 1

    anyio.run(_run)


def test_unassign_is_idempotent_and_allows_reassignment(async_session_maker, seed):
    async def _run():
        company_id = await seed.company()
        worker_id = await seed.compliant_worker(company_id)
        work_order_id = await seed.work_order(company_id)

        async with async_session_maker() as session:
            assignment = await assign_worker(session, work_order_id, worker_id, DISPATCHER, now=seed.now)
        async with async_session_maker() as session:
            removed = await unassign_worker(session, assignment.assignment_id, DISPATCHER, now=seed.now)
        async with async_session_maker() as session:
            again = await unassign_worker(session, assignment.assignment_id, DISPATCHER, now=seed.now)

        assert removed.unassigned_at is not None
        assert again.assignment_id == removed.assignment_id
        assert again.unassigned_at is not None

        async with async_session_maker() as session:
            unassigned = await list_activities(
                session, company_id, activity_type=ActivityType.EMPLOYEE_UNASSIGNED
            )
            assert len(unassigned) == 1

        async with async_session_maker() as session:
            fresh = await assign_worker(session, work_order_id, worker_id, DISPATCHER, now=seed.now)
        assert fresh.assignment_id != assignment.assignment_id
        assert await _assignment_count(async_session_maker) == 2

    anyio.run(_run)


def test_locked_work_orders_reject_changes(async_session_maker, seed):
    async def _run():
        company_id = await seed.company()
        worker_id = await seed.compliant_worker(company_id)
        work_order_id = await seed.work_order(company_id, status=WorkOrderStatus.COMPLETED)

        async with async_session_maker() as session:
            with pytest.raises(WorkOrderLocked):
                await assign_worker(session, work_order_id, worker_id, DISPATCHER, now=seed.now)

    anyio.run(_run)


def test_inactive_or_foreign_workers_cannot_be_assigned(async_session_maker, seed):
    async def _run():
        company_id = await seed.company()
        other_company = await seed.company("Beacon Utilities")
        inactive_id = await seed.worker(company_id, employee_code="E-400", email="ina@example.com", active=False)
        foreign_id = await seed.compliant_worker(other_company)
        work_order_id = await seed.work_order(company_id)

        for worker_id in (inactive_id, foreign_id):
            async with async_session_maker() as session:
                with pytest.raises(WorkerNotFound):
                    await assign_worker(session, work_order_id, worker_id, DISPATCHER, now=seed.now)

    anyio.run(_run)


def test_summary_lists_expiring_required_certifications(async_session_maker, seed):
    async def _run():
        company_id = await seed.company()
        worker_id = await seed.worker(company_id)
        await seed.certification(company_id, worker_id, name="Flagger", expires_in_days=10)

        async with async_session_maker() as session:
            summary = await get_worker_compliance_summary(session, worker_id, company_id=company_id, now=seed.now)

        assert summary.status == ComplianceStatus.PASS
        assert summary.missing == []
        assert [gap.reason for gap in summary.expiring] == [GapReason.EXPIRING]
        assert summary.needs_override is True

    anyio.run(_run)


def test_incomplete_worker_is_blocked_without_override(async_session_maker, seed):
    async def _run():
        company_id = await seed.company()
        worker_id = await seed.compliant_worker(company_id)
        await seed.certification(company_id, worker_id, name="Forklift", required=False, proofs=0)
        work_order_id = await seed.work_order(company_id)

        async with async_session_maker() as session:
            summary = await get_worker_compliance_summary(session, worker_id, now=seed.now)
        assert summary.status == ComplianceStatus.INCOMPLETE
        assert summary.missing == []
        assert summary.needs_override is True

        async with async_session_maker() as session:
            with pytest.raises(ComplianceBlocked):
                await assign_worker(session, work_order_id, worker_id, DISPATCHER, now=seed.now)
        assert await _assignment_count(async_session_maker) == 0

        async with async_session_maker() as session:
            assignment = await assign_worker(
                session, work_order_id, worker_id, DISPATCHER, True, REASON, now=seed.now
            )
        assert assignment.compliance_status == ComplianceStatus.INCOMPLETE.value
        assert assignment.override_acknowledged is True
        assert assignment.override_reason == REASON

    anyio.run(_run)
