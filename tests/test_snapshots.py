from datetime import timedelta

import anyio
import pytest
from sqlalchemy import delete, select

from certguard.domain.compliance.activity import list_activities
from certguard.domain.compliance.db_models import (
    CompanyDocumentVersion,
    ProofArtifact,
    Snapshot,
    VerificationToken,
    Worker,
)
from certguard.domain.compliance.hashing import canonical_json, hash_payload
from certguard.domain.compliance.schemas import ActivityType, FailureReasonType, SnapshotSource
from certguard.domain.compliance.snapshots import create_snapshot, list_worker_snapshots
from certguard.domain.errors import MissingVerificationToken, WorkerNotFound
from certguard.infra.metrics import metrics


def _reason_types(snapshot: Snapshot) -> list[str]:
    return [reason["type"] for reason in snapshot.payload["failure_reasons"]]


def test_canonical_json_is_order_independent():
    assert canonical_json({"b": 1, "a": [1, {"d": 2, "c": 3}]}) == '{"a":[1,{"c":3,"d":2}],"b":1}'
    assert hash_payload({"a": 1, "b": 2}) == hash_payload({"b": 2, "a": 1})


def test_passing_snapshot_seals_payload_and_repoints_token(async_session_maker, seed):
    async def _run():
        company_id = await seed.company()
        await seed.company_documents(company_id)
        worker_id = await seed.compliant_worker(company_id)

        async with async_session_maker() as session:
            result = await create_snapshot(session, worker_id, "owner-1", SnapshotSource.INSPECTION, now=seed.now)

        snapshot = result.snapshot
        assert snapshot.status == "PASS"
        assert snapshot.source == "inspection"
        assert snapshot.snapshot_hash == hash_payload(snapshot.payload)
        assert snapshot.payload["schema_version"] == 1
        assert snapshot.payload["failure_reasons"] == []
        assert snapshot.payload["worker"]["company_name"] == "Acme Rail Services"
        assert snapshot.payload["certifications"][0]["proofs"][0]["version"] == 1

        async with async_session_maker() as session:
            token_row = await session.get(VerificationToken, worker_id)
            worker = await session.get(Worker, worker_id)
            assert token_row.snapshot_id == snapshot.snapshot_id
            assert token_row.token == result.token
            assert worker.compliance_hash == snapshot.snapshot_hash
            assert worker.compliance_status == "PASS"
            created = await list_activities(session, company_id, activity_type=ActivityType.SNAPSHOT_CREATED)
            assert len(created) == 1
            assert created[0].metadata_json["hash"] == snapshot.snapshot_hash

    anyio.run(_run)


def test_snapshot_shape_is_stable_between_runs(async_session_maker, seed):
    async def _run():
        company_id = await seed.company()
        await seed.company_documents(company_id)
        worker_id = await seed.compliant_worker(company_id)

        async with async_session_maker() as session:
            first = await create_snapshot(session, worker_id, "owner-1", now=seed.now)
        async with async_session_maker() as session:
            second = await create_snapshot(session, worker_id, "owner-1", now=seed.now + timedelta(hours=1))

        first_payload = dict(first.snapshot.payload)
        second_payload = dict(second.snapshot.payload)
        assert first_payload.pop("generated_at") != second_payload.pop("generated_at")
        assert first_payload == second_payload
        assert first.snapshot.snapshot_hash != second.snapshot.snapshot_hash
        assert first.token == second.token

        async with async_session_maker() as session:
            history = await list_worker_snapshots(session, worker_id)
            assert [item.snapshot_id for item in history] == [
                second.snapshot.snapshot_id,
                first.snapshot.snapshot_id,
            ]

    anyio.run(_run)


def test_failure_reasons_cover_missing_proof_and_documents(async_session_maker, seed):
    async def _run():
        company_id = await seed.company()
        worker_id = await seed.worker(company_id)
        cert_id = await seed.certification(company_id, worker_id, proofs=0)

        async with async_session_maker() as session:
            result = await create_snapshot(session, worker_id, "owner-1", now=seed.now)

        reasons = result.snapshot.payload["failure_reasons"]
        types = _reason_types(result.snapshot)
        assert result.snapshot.status == "FAIL"
        assert types.count(FailureReasonType.MISSING_COMPANY_DOCUMENT) == 4
        assert {"type": "MISSING_CERTIFICATION", "entity_id": cert_id, "label": "Track Safety"} in reasons
        assert {"type": "MISSING_PROOF", "entity_id": cert_id, "label": "Track Safety proof"} in reasons

    anyio.run(_run)


def test_inactive_worker_fails_snapshot(async_session_maker, seed):
    async def _run():
        company_id = await seed.company()
        await seed.company_documents(company_id)
        worker_id = await seed.compliant_worker(company_id, active=False)

        async with async_session_maker() as session:
            result = await create_snapshot(session, worker_id, "owner-1", now=seed.now)

        assert result.snapshot.status == "FAIL"
        assert _reason_types(result.snapshot) == ["EMPLOYEE_INACTIVE"]

    anyio.run(_run)


def test_stale_previous_snapshot_downgrades_to_incomplete(async_session_maker, seed):
    async def _run():
        company_id = await seed.company()
        await seed.company_documents(company_id)
        worker_id = await seed.compliant_worker(company_id)

        async with async_session_maker() as session:
            await create_snapshot(session, worker_id, "owner-1", now=seed.now)
        async with async_session_maker() as session:
            later = await create_snapshot(session, worker_id, "owner-1", now=seed.now + timedelta(days=31))

        assert _reason_types(later.snapshot) == ["SNAPSHOT_STALE"]
        assert later.snapshot.status == "INCOMPLETE"

    anyio.run(_run)


def test_snapshot_records_expiry_transition(async_session_maker, seed):
    async def _run():
        company_id = await seed.company()
        await seed.company_documents(company_id)
        worker_id = await seed.worker(company_id)
        cert_id = await seed.certification(company_id, worker_id, expires_in_days=10)

        async with async_session_maker() as session:
            result = await create_snapshot(session, worker_id, "owner-1", now=seed.now + timedelta(days=11))

        assert result.snapshot.payload["certifications"][0]["status"] == "EXPIRED"
        assert "EXPIRED_CERTIFICATION" in _reason_types(result.snapshot)
        async with async_session_maker() as session:
            expired = await list_activities(session, company_id, activity_type=ActivityType.CERT_EXPIRED)
            assert [row.certification_id for row in expired] == [cert_id]

    anyio.run(_run)


def test_snapshots_are_immutable(async_session_maker, seed):
    async def _run():
        company_id = await seed.company()
        worker_id = await seed.compliant_worker(company_id)
        async with async_session_maker() as session:
            result = await create_snapshot(session, worker_id, "owner-1", now=seed.now)

        async with async_session_maker() as session:
            stored = await session.get(Snapshot, result.snapshot.snapshot_id)
            stored.status = "PASS" if stored.status != "PASS" else "FAIL"
            with pytest.raises(ValueError):
                await session.flush()
            await session.rollback()

        async with async_session_maker() as session:
            stored = await session.scalar(select(Snapshot).where(Snapshot.snapshot_id == result.snapshot.snapshot_id))
            assert stored.status == result.snapshot.status

    anyio.run(_run)


def test_snapshot_requires_provisioned_token(async_session_maker, seed):
    async def _run():
        company_id = await seed.company()
        worker_id = await seed.compliant_worker(company_id)
        async with async_session_maker() as session:
            await session.execute(delete(VerificationToken).where(VerificationToken.worker_id == worker_id))
            await session.commit()

        async with async_session_maker() as session:
            with pytest.raises(MissingVerificationToken):
                await create_snapshot(session, worker_id, "owner-1", now=seed.now)
            existing = await session.scalar(select(Snapshot.snapshot_id).where(Snapshot.worker_id == worker_id))
            assert existing is None

    anyio.run(_run)


def test_snapshot_is_scoped_to_company(async_session_maker, seed):
    async def _run():
        company_id = await seed.company()
        other_company = await seed.company("Other Co")
        worker_id = await seed.compliant_worker(company_id)
        async with async_session_maker() as session:
            with pytest.raises(WorkerNotFound):
                await create_snapshot(session, worker_id, "owner-1", company_id=other_company, now=seed.now)

    anyio.run(_run)


def test_snapshot_in_rolled_back_transaction_is_not_reported(async_session_maker, seed):
    labels = {"source": "manual", "status": "PASS"}

    def _counted() -> float:
        return metrics.registry.get_sample_value("compliance_snapshots_total", labels) or 0

    async def _run():
        company_id = await seed.company()
        await seed.company_documents(company_id)
        worker_id = await seed.compliant_worker(company_id)
        before = _counted()

        async with async_session_maker() as session:
            with pytest.raises(RuntimeError):
                async with session.begin():
                    await create_snapshot(session, worker_id, "owner-1", now=seed.now)
                    raise RuntimeError("dispatch aborted")
        assert _counted() == before
        async with async_session_maker() as session:
            assert (await session.execute(select(Snapshot))).scalars().all() == []

        async with async_session_maker() as session:
            await create_snapshot(session, worker_id, "owner-1", now=seed.now)
        assert _counted() == before + 1

    anyio.run(_run)


def test_proofs_and_document_versions_are_immutable(async_session_maker, seed):
    async def _run():
        company_id = await seed.company()
        await seed.company_documents(company_id)
        await seed.compliant_worker(company_id)

        async with async_session_maker() as session:
            proof = (await session.execute(select(ProofArtifact))).scalars().first()
            proof.sha256 = "0" * 64
            with pytest.raises(ValueError, match="Proof artifacts are immutable"):
                await session.flush()
            await session.rollback()

        async with async_session_maker() as session:
            version = (await session.execute(select(CompanyDocumentVersion))).scalars().first()
            await session.delete(version)
            with pytest.raises(ValueError, match="Company document versions cannot be deleted"):
                await session.flush()
            await session.rollback()

    anyio.run(_run)
