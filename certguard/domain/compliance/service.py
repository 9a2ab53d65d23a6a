from __future__ import annotations

import csv
import io
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from certguard.domain.compliance.activity import ActivityEntry, log_activities, log_activity
from certguard.domain.compliance.db_models import (
    Certification,
    CertificationStatus,
    Company,
    ProofArtifact,
    VerificationToken,
    Worker,
)
from certguard.domain.compliance.hashing import digest_upload
from certguard.domain.compliance.presets import resolve_company_preset
from certguard.domain.compliance.schemas import (
    ActivityType,
    CertificationCreateRequest,
    ProofUpload,
    WorkerCreateRequest,
)
from certguard.domain.compliance.status import (
    StatusChange,
    days_until,
    derive_worker_status,
    ensure_utc,
    is_expiring,
    recompute_certifications,
    utcnow,
)
from certguard.domain.errors import (
    CertificationNotFound,
    CompanyNotFound,
    DuplicateEmployee,
    ImmutableRecord,
    InvalidCertification,
    WorkerNotFound,
)
from certguard.infra.db import transaction
from certguard.settings import settings

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"
CUSTOM_NAME_MIN_LENGTH = 3
EXPORT_CSV_HEADER = [
    "employee_code",
    "first_name",
    "last_name",
    "certification_name",
    "status",
    "required",
    "issue_date",
    "expires_at",
    "has_proof",
]


@dataclass
class RefreshResult:
    worker: Worker
    certifications: list[Certification]
    missing_required: int
    expiring_soon: int


@dataclass
class ExpiringCertification:
    certification_id: str
    worker_id: str
    worker_name: str
    employee_code: str
    label: str
    expires_at: datetime
    days_left: int


@dataclass
class ComplianceExport:
    content: str
    media_type: str
    filename: str


def new_verification_token() -> str:
    return uuid.uuid4().hex


async def create_company(session: AsyncSession, name: str) -> Company:
    async with transaction(session):
        company = Company(name=name.strip())
        session.add(company)
        await session.flush()
    return company


async def get_company(session: AsyncSession, company_id: str) -> Company:
    company = await session.get(Company, company_id)
    if company is None:
        raise CompanyNotFound()
    return company


async def load_worker(
    session: AsyncSession,
    worker_id: str,
    *,
    company_id: str | None = None,
) -> Worker:
    """Load a worker with certifications, proofs, company and token, fresh from the database."""
    stmt = (
        select(Worker)
        .options(
            selectinload(Worker.certifications).selectinload(Certification.proofs),
            selectinload(Worker.company),
            selectinload(Worker.verification_token),
        )
        .where(Worker.worker_id == worker_id)
        .execution_options(populate_existing=True)
    )
    if company_id is not None:
        stmt = stmt.where(Worker.company_id == company_id)
    worker = (await session.execute(stmt)).scalar_one_or_none()
    if worker is None:
        raise WorkerNotFound()
    return worker


async def list_workers(session: AsyncSession, company_id: str) -> list[Worker]:
    stmt = (
        select(Worker)
        .options(selectinload(Worker.certifications).selectinload(Certification.proofs))
        .where(Worker.company_id == company_id)
        .order_by(Worker.last_name, Worker.first_name)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def apply_derived_statuses(
    session: AsyncSession,
    worker: Worker,
    *,
    actor_id: str | None,
    now: datetime,
) -> list[StatusChange]:
    """Persist derived certification and worker statuses onto a loaded worker.

    Only a transition into EXPIRED is audited.
    """
    changes = recompute_certifications(worker.certifications, now)
    worker.compliance_status = derive_worker_status(
        (cert.required, cert.status) for cert in worker.certifications
    ).value
    expired = [change for change in changes if change.current == CertificationStatus.EXPIRED]
    if expired:
        await log_activities(
            session,
            [
                ActivityEntry(
                    company_id=worker.company_id,
                    actor_id=actor_id or SYSTEM_ACTOR,
                    type=ActivityType.CERT_EXPIRED,
                    worker_id=worker.worker_id,
                    certification_id=change.certification_id,
                    metadata={"previous_status": change.previous},
                )
                for change in expired
            ],
        )
    return changes


async def refresh_worker_status(
    session: AsyncSession,
    worker_id: str,
    *,
    actor_id: str | None = None,
    company_id: str | None = None,
    now: datetime | None = None,
) -> RefreshResult:
    current = ensure_utc(now) or utcnow()
    async with transaction(session):
        worker = await load_worker(session, worker_id, company_id=company_id)
        changes = await apply_derived_statuses(session, worker, actor_id=actor_id, now=current)
        if actor_id and changes:
            worker.updated_by_id = actor_id
        await session.flush()

    certifications = list(worker.certifications)
    missing_required = sum(
        1 for cert in certifications if cert.required and cert.status != CertificationStatus.PASS.value
    )
    expiring_soon = sum(
        1
        for cert in certifications
        if is_expiring(cert, cert.status, current, settings.expiring_window_days)
    )
    logger.info(
        "worker_status_refreshed",
        extra={
            "extra": {
                "worker_id": worker.worker_id,
                "compliance_status": worker.compliance_status,
                "changed": len(changes),
            }
        },
    )
    return RefreshResult(
        worker=worker,
        certifications=certifications,
        missing_required=missing_required,
        expiring_soon=expiring_soon,
    )


async def list_expiring_certifications(
    session: AsyncSession,
    company_id: str,
    window_days: int,
    *,
    now: datetime | None = None,
) -> list[ExpiringCertification]:
    current = ensure_utc(now) or utcnow()
    horizon = current + timedelta(days=window_days)
    stmt = (
        select(Certification, Worker)
        .join(Worker, Worker.worker_id == Certification.worker_id)
        .where(
            Worker.company_id == company_id,
            Worker.active.is_(True),
            Certification.expires_at >= current,
            Certification.expires_at <= horizon,
        )
        .order_by(Certification.expires_at.asc())
    )
    result = await session.execute(stmt)
    return [
        ExpiringCertification(
            certification_id=cert.certification_id,
            worker_id=worker.worker_id,
            worker_name=worker.full_name,
            employee_code=worker.employee_code,
            label=cert.label,
            expires_at=ensure_utc(cert.expires_at),
            days_left=days_until(cert.expires_at, current),
        )
        for cert, worker in result.all()
    ]


async def onboard_worker(
    session: AsyncSession,
    *,
    company_id: str,
    actor_id: str,
    request: WorkerCreateRequest,
) -> Worker:
    async with transaction(session):
        await get_company(session, company_id)
        existing = await session.scalar(
            select(Worker.worker_id).where(
                Worker.company_id == company_id,
                Worker.employee_code == request.employee_code,
            )
        )
        if existing is not None:
            raise DuplicateEmployee()

        worker = Worker(
            company_id=company_id,
            employee_code=request.employee_code,
            first_name=request.first_name,
            last_name=request.last_name,
            title=request.title,
            role=request.role,
            email=str(request.email).strip().lower(),
            active=request.active,
            created_by_id=actor_id,
            updated_by_id=actor_id,
        )
        session.add(worker)
        await session.flush()
        session.add(VerificationToken(worker_id=worker.worker_id, token=new_verification_token()))
        await log_activities(
            session,
            [
                ActivityEntry(
                    company_id=company_id,
                    actor_id=actor_id,
                    type=ActivityType.EMPLOYEE_CREATED,
                    worker_id=worker.worker_id,
                    metadata={
                        "employee_code": request.employee_code,
                        "role": request.role,
                        "title": request.title,
                    },
                ),
                ActivityEntry(
                    company_id=company_id,
                    actor_id=actor_id,
                    type=ActivityType.QR_GENERATED,
                    worker_id=worker.worker_id,
                    metadata={"source": "employee_create"},
                ),
            ],
        )
        await session.flush()

    logger.info(
        "worker_onboarded",
        extra={"extra": {"company_id": company_id, "worker_id": worker.worker_id}},
    )
    return await load_worker(session, worker.worker_id)


async def _resolve_certification_name(
    session: AsyncSession, company_id: str, request: CertificationCreateRequest
) -> tuple[str | None, str | None, str]:
    custom_name = (request.custom_name or "").strip() or None
    if request.preset_key:
        preset = await resolve_company_preset(session, company_id, request.preset_key)
        if preset.is_other and (not custom_name or len(custom_name) < CUSTOM_NAME_MIN_LENGTH):
            raise InvalidCertification(detail="Custom certification name must be at least 3 characters")
        return preset.base_key, custom_name or preset.name, preset.category
    if not custom_name or len(custom_name) < CUSTOM_NAME_MIN_LENGTH:
        raise InvalidCertification(detail="Custom certification name must be at least 3 characters")
    return None, custom_name, request.category.value


def _proof_from_upload(upload: ProofUpload, version: int, actor_id: str) -> ProofArtifact:
    digest = digest_upload(upload.content_base64, upload.sha256, upload.size)
    if digest is None:
        raise InvalidCertification(detail="Proof upload requires content or a sha256 digest and size")
    sha256, size = digest
    return ProofArtifact(
        version=version,
        file_name=upload.file_name,
        mime_type=upload.mime_type,
        size=size,
        sha256=sha256,
        object_key=upload.object_key,
        uploaded_by_id=actor_id,
    )


async def add_certification(
    session: AsyncSession,
    *,
    company_id: str,
    actor_id: str,
    worker_id: str,
    request: CertificationCreateRequest,
    now: datetime | None = None,
) -> Certification:
    issue_date = ensure_utc(request.issue_date)
    expires_at = ensure_utc(request.expires_at)
    if expires_at <= issue_date:
        raise InvalidCertification(detail="Expiration date must be after issue date")
    proofs = [
        _proof_from_upload(upload, index + 1, actor_id) for index, upload in enumerate(request.proofs)
    ]
    current = ensure_utc(now) or utcnow()

    async with transaction(session):
        preset_key, custom_name, category = await _resolve_certification_name(session, company_id, request)
        worker = await load_worker(session, worker_id, company_id=company_id)
        certification = Certification(
            worker_id=worker.worker_id,
            preset_key=preset_key,
            custom_name=custom_name,
            category=category,
            required=bool(request.required),
            issue_date=issue_date,
            expires_at=expires_at,
            status=CertificationStatus.INCOMPLETE.value,
            missing_proof=not proofs,
            proofs=proofs,
        )
        worker.certifications.append(certification)
        await session.flush()
        await log_activity(
            session,
            ActivityEntry(
                company_id=company_id,
                actor_id=actor_id,
                type=ActivityType.CERT_ADDED,
                worker_id=worker.worker_id,
                certification_id=certification.certification_id,
                metadata={
                    "preset_key": preset_key,
                    "custom_name": custom_name,
                    "category": category,
                    "required": certification.required,
                    "proof_count": len(proofs),
                },
            ),
        )
        await apply_derived_statuses(session, worker, actor_id=actor_id, now=current)
        worker.updated_by_id = actor_id
        await session.flush()

    logger.info(
        "certification_added",
        extra={
            "extra": {
                "worker_id": worker_id,
                "certification_id": certification.certification_id,
                "status": certification.status,
            }
        },
    )
    return certification


async def attach_proof(
    session: AsyncSession,
    *,
    company_id: str,
    actor_id: str,
    worker_id: str,
    certification_id: str,
    upload: ProofUpload,
    now: datetime | None = None,
) -> ProofArtifact:
    current = ensure_utc(now) or utcnow()
    async with transaction(session):
        worker = await load_worker(session, worker_id, company_id=company_id)
        certification = next(
            (cert for cert in worker.certifications if cert.certification_id == certification_id),
            None,
        )
        if certification is None:
            raise CertificationNotFound()
        next_version = max((proof.version for proof in certification.proofs), default=0) + 1
        proof = _proof_from_upload(upload, next_version, actor_id)
        certification.proofs.append(proof)
        await session.flush()
        await log_activity(
            session,
            ActivityEntry(
                company_id=company_id,
                actor_id=actor_id,
                type=ActivityType.PROOF_ADDED,
                worker_id=worker.worker_id,
                certification_id=certification.certification_id,
                metadata={"version": next_version, "sha256": proof.sha256, "file_name": proof.file_name},
            ),
        )
        await apply_derived_statuses(session, worker, actor_id=actor_id, now=current)
        worker.updated_by_id = actor_id
        await session.flush()
    return proof


async def update_certification(session: AsyncSession, *, company_id: str, worker_id: str, certification_id: str) -> None:
    await load_worker(session, worker_id, company_id=company_id)
    raise ImmutableRecord(detail="Certifications are immutable; add a new certification instead")


async def set_worker_active(
    session: AsyncSession,
    *,
    company_id: str,
    actor_id: str,
    worker_id: str,
    active: bool,
) -> Worker:
    async with transaction(session):
        worker = await load_worker(session, worker_id, company_id=company_id)
        if worker.active != active:
            worker.active = active
            worker.updated_by_id = actor_id
            await log_activity(
                session,
                ActivityEntry(
                    company_id=company_id,
                    actor_id=actor_id,
                    type=ActivityType.EMPLOYEE_REACTIVATED if active else ActivityType.EMPLOYEE_DEACTIVATED,
                    worker_id=worker.worker_id,
                ),
            )
            await session.flush()
    return worker


def _export_row(worker: Worker, cert: Certification) -> list[str]:
    return [
        worker.employee_code,
        worker.first_name,
        worker.last_name,
        cert.custom_name or cert.preset_key or "",
        cert.status,
        str(cert.required).lower(),
        ensure_utc(cert.issue_date).isoformat(),
        ensure_utc(cert.expires_at).isoformat(),
        str(not cert.missing_proof).lower(),
    ]


def build_export_csv(workers: list[Worker]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_CSV_HEADER)
    for worker in workers:
        for cert in worker.certifications:
            writer.writerow(_export_row(worker, cert))
    return buffer.getvalue()


def build_export_json(workers: list[Worker]) -> str:
    data = {
        "workers": [
            {
                "worker_id": worker.worker_id,
                "employee_code": worker.employee_code,
                "first_name": worker.first_name,
                "last_name": worker.last_name,
                "title": worker.title,
                "role": worker.role,
                "active": worker.active,
                "compliance_status": worker.compliance_status,
                "compliance_hash": worker.compliance_hash,
                "last_verified_at": ensure_utc(worker.last_verified_at).isoformat()
                if worker.last_verified_at
                else None,
                "certifications": [
                    {
                        "certification_id": cert.certification_id,
                        "preset_key": cert.preset_key,
                        "custom_name": cert.custom_name,
                        "category": cert.category,
                        "required": cert.required,
                        "status": cert.status,
                        "issue_date": ensure_utc(cert.issue_date).isoformat(),
                        "expires_at": ensure_utc(cert.expires_at).isoformat(),
                        "has_proof": not cert.missing_proof,
                    }
                    for cert in worker.certifications
                ],
            }
            for worker in workers
        ]
    }
    return json.dumps(data)


async def export_company_compliance(
    session: AsyncSession,
    *,
    company_id: str,
    actor_id: str,
    export_format: str = "json",
) -> ComplianceExport:
    export_format = (export_format or "json").lower()
    if export_format not in {"json", "csv"}:
        export_format = "json"

    async with transaction(session):
        workers = await list_workers(session, company_id)
        await log_activities(
            session,
            [
                ActivityEntry(
                    company_id=company_id,
                    actor_id=actor_id,
                    type=ActivityType.COMPLIANCE_EXPORTED,
                    worker_id=worker.worker_id,
                    metadata={"format": export_format},
                )
                for worker in workers
            ],
        )

    logger.info(
        "compliance_exported",
        extra={"extra": {"company_id": company_id, "format": export_format, "workers": len(workers)}},
    )
    if export_format == "csv":
        return ComplianceExport(
            content=build_export_csv(workers),
            media_type="text/csv",
            filename="compliance-export.csv",
        )
    return ComplianceExport(
        content=build_export_json(workers),
        media_type="application/json",
        filename="compliance-export.json",
    )

