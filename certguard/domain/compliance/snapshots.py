"""Hash-sealed compliance snapshots and the public token that points at them.

A snapshot is written once and never changed. The verification token is the
only mutable pointer: every new snapshot repoints it, so a scanned token always
resolves to the most recently committed snapshot while older snapshots stay
retrievable by id.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from certguard.domain.compliance.activity import ActivityEntry, log_activity
from certguard.domain.compliance.company_documents import (
    MANDATORY_CATEGORIES,
    company_document_categories,
)
from certguard.domain.compliance.db_models import (
    Certification,
    CertificationStatus,
    Company,
    CompanyDocumentCategory,
    ComplianceStatus,
    Snapshot,
    VerificationToken,
    Worker,
)
from certguard.domain.compliance.hashing import hash_payload
from certguard.domain.compliance.schemas import (
    SNAPSHOT_SCHEMA_VERSION,
    ActivityType,
    CertificationEntry,
    FailureReason,
    FailureReasonType,
    ProofDigest,
    SnapshotPayload,
    SnapshotSource,
    WorkerSummary,
)
from certguard.domain.compliance.service import apply_derived_statuses, load_worker
from certguard.domain.compliance.status import ensure_utc, utcnow
from certguard.domain.errors import MissingVerificationToken, SnapshotNotFound, TokenNotFound
from certguard.infra.db import transaction
from certguard.infra.metrics import metrics
from certguard.settings import settings

logger = logging.getLogger(__name__)


@dataclass
class SnapshotResult:
    snapshot: Snapshot
    token: str


@dataclass
class VerificationRecord:
    snapshot: Snapshot
    worker: Worker
    company: Company

    @property
    def integrity_verified(self) -> bool:
        return verify_snapshot_integrity(self.snapshot)


def _ordered_certifications(worker: Worker) -> list[Certification]:
    return sorted(
        worker.certifications,
        key=lambda cert: (ensure_utc(cert.created_at), cert.certification_id),
    )


def collect_failure_reasons(
    worker: Worker,
    certifications: list[Certification],
    document_categories: set[CompanyDocumentCategory],
    previous_snapshot_at: datetime | None,
    now: datetime,
) -> list[FailureReason]:
    """Failure reasons for a worker whose certification statuses are already current."""
    reasons: list[FailureReason] = []
    for cert in certifications:
        if cert.required and cert.status != CertificationStatus.PASS.value:
            reason_type = (
                FailureReasonType.EXPIRED_CERTIFICATION
                if cert.status == CertificationStatus.EXPIRED.value
                else FailureReasonType.MISSING_CERTIFICATION
            )
            reasons.append(FailureReason(type=reason_type, entity_id=cert.certification_id, label=cert.label))
    for cert in certifications:
        if not cert.proofs:
            reasons.append(
                FailureReason(
                    type=FailureReasonType.MISSING_PROOF,
                    entity_id=cert.certification_id,
                    label=f"{cert.label} proof",
                )
            )
    if not worker.active:
        reasons.append(
            FailureReason(
                type=FailureReasonType.EMPLOYEE_INACTIVE,
                entity_id=worker.worker_id,
                label="Employee inactive",
            )
        )
    for category in MANDATORY_CATEGORIES:
        if category not in document_categories:
            reasons.append(
                FailureReason(
                    type=FailureReasonType.MISSING_COMPANY_DOCUMENT,
                    label=f"{category.value.title()} document",
                )
            )
    if previous_snapshot_at is not None:
        freshness = timedelta(days=settings.snapshot_freshness_days)
        if ensure_utc(now) - ensure_utc(previous_snapshot_at) > freshness:
            reasons.append(FailureReason(type=FailureReasonType.SNAPSHOT_STALE, label="Snapshot stale"))
    return reasons


def overall_status(reasons: list[FailureReason]) -> ComplianceStatus:
    if not reasons:
        return ComplianceStatus.PASS
    # Staleness alone only downgrades.
    if all(reason.type == FailureReasonType.SNAPSHOT_STALE for reason in reasons):
        return ComplianceStatus.INCOMPLETE
    return ComplianceStatus.FAIL


def build_payload(
    worker: Worker,
    certifications: list[Certification],
    status: ComplianceStatus,
    reasons: list[FailureReason],
    generated_at: datetime,
) -> dict:
    payload = SnapshotPayload(
        schema_version=SNAPSHOT_SCHEMA_VERSION,
        generated_at=ensure_utc(generated_at),
        worker=WorkerSummary(
            id=worker.worker_id,
            employee_code=worker.employee_code,
            first_name=worker.first_name,
            last_name=worker.last_name,
            title=worker.title,
            role=worker.role,
            company_name=worker.company.name,
            active=worker.active,
            compliance_status=status,
        ),
        certifications=[
            CertificationEntry(
                id=cert.certification_id,
                preset_key=cert.preset_key,
                custom_name=cert.custom_name,
                category=cert.category,
                required=cert.required,
                issue_date=ensure_utc(cert.issue_date),
                expires_at=ensure_utc(cert.expires_at),
                status=CertificationStatus(cert.status),
                proofs=[
                    ProofDigest(
                        id=proof.proof_id,
                        version=proof.version,
                        sha256=proof.sha256,
                        object_key=proof.object_key,
                        file_name=proof.file_name,
                    )
                    for proof in sorted(cert.proofs, key=lambda item: item.version)
                ],
            )
            for cert in certifications
        ],
        failure_reasons=reasons,
    )
    return payload.model_dump(mode="json")


def verify_snapshot_integrity(snapshot: Snapshot) -> bool:
    return hash_payload(snapshot.payload) == snapshot.snapshot_hash


def verification_url(token: str) -> str | None:
    if not settings.public_base_url:
        return None
    return f"{settings.public_base_url.rstrip('/')}/verify/{token}"


async def create_snapshot(
    session: AsyncSession,
    worker_id: str,
    actor_id: str,
    source: SnapshotSource | str = SnapshotSource.MANUAL,
    *,
    company_id: str | None = None,
    now: datetime | None = None,
) -> SnapshotResult:
    source = SnapshotSource(source)
    generated_at = ensure_utc(now) or utcnow()
    owns_transaction = not session.in_transaction()

    async with transaction(session):
        worker = await load_worker(session, worker_id, company_id=company_id)
        token_row = worker.verification_token
        if token_row is None:
            raise MissingVerificationToken()

        await apply_derived_statuses(session, worker, actor_id=actor_id, now=generated_at)
        certifications = _ordered_certifications(worker)
        categories = await company_document_categories(session, worker.company_id)
        previous = await session.get(Snapshot, token_row.snapshot_id) if token_row.snapshot_id else None

        reasons = collect_failure_reasons(
            worker,
            certifications,
            categories,
            previous.created_at if previous is not None else None,
            generated_at,
        )
        status = overall_status(reasons)
        payload = build_payload(worker, certifications, status, reasons, generated_at)
        snapshot_hash = hash_payload(payload)

        snapshot = Snapshot(
            worker_id=worker.worker_id,
            schema_version=SNAPSHOT_SCHEMA_VERSION,
            source=source.value,
            status=status.value,
            payload=payload,
            snapshot_hash=snapshot_hash,
            created_by_id=actor_id,
            created_at=generated_at,
        )
        session.add(snapshot)
        await session.flush()

        token_row.snapshot_id = snapshot.snapshot_id
        token_row.updated_at = generated_at
        worker.compliance_hash = snapshot_hash
        worker.last_verified_at = generated_at
        worker.compliance_status = status.value
        worker.updated_by_id = actor_id

        await log_activity(
            session,
            ActivityEntry(
                company_id=worker.company_id,
                actor_id=actor_id,
                type=ActivityType.SNAPSHOT_CREATED,
                worker_id=worker.worker_id,
                metadata={
                    "snapshot_id": snapshot.snapshot_id,
                    "hash": snapshot_hash,
                    "source": source.value,
                    "status": status.value,
                    "failure_reasons": [reason.model_dump(mode="json") for reason in reasons],
                },
            ),
        )
        await session.flush()
        token = token_row.token

    result = SnapshotResult(snapshot=snapshot, token=token)
    # Nested in a caller's transaction the snapshot is not durable yet; the caller reports it after commit.
    if owns_transaction:
        report_snapshot_created(result)
    return result


def report_snapshot_created(result: SnapshotResult) -> None:
    snapshot = result.snapshot
    metrics.record_snapshot(snapshot.source, snapshot.status)
    logger.info(
        "compliance_snapshot_created",
        extra={
            "extra": {
                "worker_id": snapshot.worker_id,
                "snapshot_id": snapshot.snapshot_id,
                "source": snapshot.source,
                "status": snapshot.status,
                "failures": len(snapshot.payload.get("failure_reasons", [])),
            }
        },
    )


async def get_snapshot(
    session: AsyncSession,
    snapshot_id: str,
    *,
    company_id: str | None = None,
) -> Snapshot:
    stmt = select(Snapshot).where(Snapshot.snapshot_id == snapshot_id)
    if company_id is not None:
        stmt = stmt.join(Worker, Worker.worker_id == Snapshot.worker_id).where(Worker.company_id == company_id)
    snapshot = (await session.execute(stmt)).scalar_one_or_none()
    if snapshot is None:
        raise SnapshotNotFound()
    return snapshot


async def list_worker_snapshots(
    session: AsyncSession,
    worker_id: str,
    *,
    company_id: str | None = None,
    limit: int = 50,
) -> list[Snapshot]:
    await load_worker(session, worker_id, company_id=company_id)
    stmt = (
        select(Snapshot)
        .where(Snapshot.worker_id == worker_id)
        .order_by(Snapshot.created_at.desc())
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def resolve_token(session: AsyncSession, token: str) -> VerificationRecord:
    """Resolve a public token to the sealed snapshot it points at. Never recomputes status."""
    cleaned = (token or "").strip()
    if not cleaned:
        raise TokenNotFound()
    stmt = (
        select(VerificationToken)
        .options(
            selectinload(VerificationToken.snapshot),
            selectinload(VerificationToken.worker).selectinload(Worker.company),
        )
        .where(VerificationToken.token == cleaned)
        .execution_options(populate_existing=True)
    )
    record = (await session.execute(stmt)).scalar_one_or_none()
    if record is None or record.snapshot is None:
        raise TokenNotFound()
    return VerificationRecord(snapshot=record.snapshot, worker=record.worker, company=record.worker.company)
