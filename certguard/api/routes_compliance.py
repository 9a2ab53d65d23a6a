from typing import List

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from certguard.api.identity import ActorIdentity, require_compliance_actor, require_owner
from certguard.domain.compliance import company_documents
from certguard.domain.compliance import presets as preset_service
from certguard.domain.compliance import service as compliance_service
from certguard.domain.compliance import snapshots as snapshot_service
from certguard.domain.compliance.activity import list_activities
from certguard.domain.compliance.db_models import ComplianceCategory
from certguard.domain.compliance.schemas import (
    ActivityResponse,
    ActivityType,
    CertificationCreateRequest,
    CertificationResponse,
    CompanyDocumentCreateRequest,
    CompanyDocumentResponse,
    CompanyDocumentVersionRequest,
    CompanyDocumentVersionResponse,
    ExpiringCertificationResponse,
    ExportFormat,
    PresetResponse,
    PresetUpdateRequest,
    ProofResponse,
    ProofUpload,
    RefreshResponse,
    SnapshotCreatedResponse,
    SnapshotCreateRequest,
    SnapshotResponse,
    WorkerActiveRequest,
    WorkerCreateRequest,
    WorkerResponse,
)
from certguard.infra.db import get_db_session
from certguard.settings import settings

router = APIRouter(prefix="/v1/compliance", tags=["compliance"])


@router.get("/presets", response_model=List[PresetResponse])
async def get_presets(
    category: ComplianceCategory | None = Query(default=None),
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_compliance_actor),
) -> List[PresetResponse]:
    presets = await preset_service.list_company_presets(session, identity.company_id, category)
    return [PresetResponse.model_validate(preset) for preset in presets]


@router.patch("/presets/{preset_id}", response_model=PresetResponse)
async def update_preset(
    preset_id: str,
    payload: PresetUpdateRequest,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_owner),
) -> PresetResponse:
    preset = await preset_service.update_company_preset(
        session,
        company_id=identity.company_id,
        actor_id=identity.actor_id,
        preset_id=preset_id,
        request=payload,
    )
    return PresetResponse.model_validate(preset)


@router.get("/workers", response_model=List[WorkerResponse])
async def list_company_workers(
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_compliance_actor),
) -> List[WorkerResponse]:
    workers = await compliance_service.list_workers(session, identity.company_id)
    return [WorkerResponse.model_validate(worker) for worker in workers]


@router.post("/workers", response_model=WorkerResponse, status_code=status.HTTP_201_CREATED)
async def create_worker(
    payload: WorkerCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_compliance_actor),
) -> WorkerResponse:
    worker = await compliance_service.onboard_worker(
        session,
        company_id=identity.company_id,
        actor_id=identity.actor_id,
        request=payload,
    )
    return WorkerResponse.model_validate(worker)


@router.get("/workers/{worker_id}", response_model=WorkerResponse)
async def get_worker(
    worker_id: str,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_compliance_actor),
) -> WorkerResponse:
    worker = await compliance_service.load_worker(session, worker_id, company_id=identity.company_id)
    return WorkerResponse.model_validate(worker)


@router.post("/workers/{worker_id}/refresh", response_model=RefreshResponse)
async def refresh_worker(
    worker_id: str,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_compliance_actor),
) -> RefreshResponse:
    result = await compliance_service.refresh_worker_status(
        session,
        worker_id,
        actor_id=identity.actor_id,
        company_id=identity.company_id,
    )
    return RefreshResponse(
        worker=WorkerResponse.model_validate(result.worker),
        certifications=[CertificationResponse.model_validate(cert) for cert in result.certifications],
        missing_required=result.missing_required,
        expiring_soon=result.expiring_soon,
    )


@router.post("/workers/{worker_id}/active", response_model=WorkerResponse)
async def update_worker_active(
    worker_id: str,
    payload: WorkerActiveRequest,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_compliance_actor),
) -> WorkerResponse:
    worker = await compliance_service.set_worker_active(
        session,
        company_id=identity.company_id,
        actor_id=identity.actor_id,
        worker_id=worker_id,
        active=payload.active,
    )
    return WorkerResponse.model_validate(worker)


@router.post(
    "/workers/{worker_id}/certifications",
    response_model=CertificationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_certification(
    worker_id: str,
    payload: CertificationCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_compliance_actor),
) -> CertificationResponse:
    certification = await compliance_service.add_certification(
        session,
        company_id=identity.company_id,
        actor_id=identity.actor_id,
        worker_id=worker_id,
        request=payload,
    )
    return CertificationResponse.model_validate(certification)


@router.patch("/workers/{worker_id}/certifications/{certification_id}")
async def patch_certification(
    worker_id: str,
    certification_id: str,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_compliance_actor),
) -> None:
    await compliance_service.update_certification(
        session,
        company_id=identity.company_id,
        worker_id=worker_id,
        certification_id=certification_id,
    )


@router.post(
    "/workers/{worker_id}/certifications/{certification_id}/proofs",
    response_model=ProofResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_proof(
    worker_id: str,
    certification_id: str,
    payload: ProofUpload,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_compliance_actor),
) -> ProofResponse:
    proof = await compliance_service.attach_proof(
        session,
        company_id=identity.company_id,
        actor_id=identity.actor_id,
        worker_id=worker_id,
        certification_id=certification_id,
        upload=payload,
    )
    return ProofResponse.model_validate(proof)


@router.post(
    "/workers/{worker_id}/snapshots",
    response_model=SnapshotCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_worker_snapshot(
    worker_id: str,
    payload: SnapshotCreateRequest | None = None,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_compliance_actor),
) -> SnapshotCreatedResponse:
    source = payload.source if payload else SnapshotCreateRequest().source
    result = await snapshot_service.create_snapshot(
        session,
        worker_id,
        identity.actor_id,
        source,
        company_id=identity.company_id,
    )
    return SnapshotCreatedResponse(
        snapshot=SnapshotResponse.model_validate(result.snapshot),
        token=result.token,
        verification_url=snapshot_service.verification_url(result.token),
    )


@router.get("/workers/{worker_id}/snapshots", response_model=List[SnapshotResponse])
async def list_snapshots(
    worker_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_compliance_actor),
) -> List[SnapshotResponse]:
    records = await snapshot_service.list_worker_snapshots(
        session,
        worker_id,
        company_id=identity.company_id,
        limit=limit,
    )
    return [SnapshotResponse.model_validate(record) for record in records]


@router.get("/snapshots/{snapshot_id}", response_model=SnapshotResponse)
async def get_snapshot(
    snapshot_id: str,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_compliance_actor),
) -> SnapshotResponse:
    record = await snapshot_service.get_snapshot(session, snapshot_id, company_id=identity.company_id)
    return SnapshotResponse.model_validate(record)


@router.get("/expiring", response_model=List[ExpiringCertificationResponse])
async def list_expiring(
    window_days: int | None = Query(default=None, ge=1, le=365),
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_compliance_actor),
) -> List[ExpiringCertificationResponse]:
    window = window_days or settings.expiring_window_days
    items = await compliance_service.list_expiring_certifications(session, identity.company_id, window)
    return [
        ExpiringCertificationResponse(
            certification_id=item.certification_id,
            worker_id=item.worker_id,
            worker_name=item.worker_name,
            employee_code=item.employee_code,
            label=item.label,
            expires_at=item.expires_at,
            days_left=item.days_left,
        )
        for item in items
    ]


@router.get("/company-documents", response_model=List[CompanyDocumentResponse])
async def list_documents(
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_compliance_actor),
) -> List[CompanyDocumentResponse]:
    documents = await company_documents.list_company_documents(session, identity.company_id)
    return [CompanyDocumentResponse.model_validate(document) for document in documents]


@router.post(
    "/company-documents",
    response_model=CompanyDocumentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_document(
    payload: CompanyDocumentCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_compliance_actor),
) -> CompanyDocumentResponse:
    document = await company_documents.create_company_document(
        session,
        company_id=identity.company_id,
        actor_id=identity.actor_id,
        category=payload.category,
        title=payload.title,
        upload=payload.file,
    )
    return CompanyDocumentResponse.model_validate(document)


@router.post(
    "/company-documents/{document_id}/versions",
    response_model=CompanyDocumentVersionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_document_version(
    document_id: str,
    payload: CompanyDocumentVersionRequest,
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_compliance_actor),
) -> CompanyDocumentVersionResponse:
    version = await company_documents.add_company_document_version(
        session,
        company_id=identity.company_id,
        actor_id=identity.actor_id,
        document_id=document_id,
        upload=payload.file,
    )
    return CompanyDocumentVersionResponse.model_validate(version)


@router.get("/export")
async def export_compliance(
    export_format: ExportFormat = Query(default="json", alias="format"),
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_compliance_actor),
) -> Response:
    export = await compliance_service.export_company_compliance(
        session,
        company_id=identity.company_id,
        actor_id=identity.actor_id,
        export_format=export_format,
    )
    return Response(
        content=export.content,
        media_type=export.media_type,
        headers={"Content-Disposition": f'attachment; filename="{export.filename}"'},
    )


@router.get("/activities", response_model=List[ActivityResponse])
async def get_activities(
    worker_id: str | None = Query(default=None),
    activity_type: ActivityType | None = Query(default=None, alias="type"),
    limit: int = Query(default=100, ge=1, le=500),
    session: AsyncSession = Depends(get_db_session),
    identity: ActorIdentity = Depends(require_compliance_actor),
) -> List[ActivityResponse]:
    records = await list_activities(
        session,
        identity.company_id,
        worker_id=worker_id,
        activity_type=activity_type,
        limit=limit,
    )
    return [ActivityResponse.model_validate(record) for record in records]
