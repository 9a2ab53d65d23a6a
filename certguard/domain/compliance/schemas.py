from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator

from certguard.domain.compliance.db_models import (
    CertificationStatus,
    CompanyDocumentCategory,
    ComplianceCategory,
    ComplianceStatus,
)

SNAPSHOT_SCHEMA_VERSION = 1


class SnapshotSource(StrEnum):
    MANUAL = "manual"
    INSPECTION = "inspection"
    PRINT = "print"
    EXPORT = "export"
    DISPATCH = "dispatch"


class FailureReasonType(StrEnum):
    MISSING_CERTIFICATION = "MISSING_CERTIFICATION"
    EXPIRED_CERTIFICATION = "EXPIRED_CERTIFICATION"
    MISSING_PROOF = "MISSING_PROOF"
    EMPLOYEE_INACTIVE = "EMPLOYEE_INACTIVE"
    MISSING_COMPANY_DOCUMENT = "MISSING_COMPANY_DOCUMENT"
    SNAPSHOT_STALE = "SNAPSHOT_STALE"


class ActivityType(StrEnum):
    EMPLOYEE_CREATED = "EMPLOYEE_CREATED"
    EMPLOYEE_DEACTIVATED = "EMPLOYEE_DEACTIVATED"
    EMPLOYEE_REACTIVATED = "EMPLOYEE_REACTIVATED"
    QR_GENERATED = "QR_GENERATED"
    CERT_ADDED = "CERT_ADDED"
    PROOF_ADDED = "PROOF_ADDED"
    CERT_EXPIRED = "CERT_EXPIRED"
    DOC_UPLOADED = "DOC_UPLOADED"
    DOC_VERSIONED = "DOC_VERSIONED"
    SNAPSHOT_CREATED = "SNAPSHOT_CREATED"
    COMPLIANCE_EXPORTED = "COMPLIANCE_EXPORTED"
    EMPLOYEE_ASSIGNED = "EMPLOYEE_ASSIGNED"
    EMPLOYEE_UNASSIGNED = "EMPLOYEE_UNASSIGNED"
    COMPLIANCE_OVERRIDE_APPLIED = "COMPLIANCE_OVERRIDE_APPLIED"
    NOTIFICATION_SENT = "NOTIFICATION_SENT"
    NOTIFICATION_FAILED = "NOTIFICATION_FAILED"
    PRESET_UPDATED = "PRESET_UPDATED"


class GapReason(StrEnum):
    MISSING = "missing"
    EXPIRED = "expired"
    EXPIRING = "expiring"


# Sealed payload (schema_version 1). Field names are part of the hash contract.


class FailureReason(BaseModel):
    type: FailureReasonType
    entity_id: str | None = None
    label: str


class ProofDigest(BaseModel):
    id: str
    version: int
    sha256: str
    object_key: str
    file_name: str


class CertificationEntry(BaseModel):
    id: str
    preset_key: str | None
    custom_name: str | None
    category: str
    required: bool
    issue_date: datetime
    expires_at: datetime
    status: CertificationStatus
    proofs: list[ProofDigest]


class WorkerSummary(BaseModel):
    id: str
    employee_code: str
    first_name: str
    last_name: str
    title: str
    role: str
    company_name: str
    active: bool
    compliance_status: ComplianceStatus


class SnapshotPayload(BaseModel):
    schema_version: int = SNAPSHOT_SCHEMA_VERSION
    generated_at: datetime
    worker: WorkerSummary
    certifications: list[CertificationEntry]
    failure_reasons: list[FailureReason]


# Dispatch gate


class ComplianceGap(BaseModel):
    certification_id: str
    label: str
    status: CertificationStatus
    expires_at: datetime
    required: bool
    reason: GapReason


class ComplianceSummary(BaseModel):
    status: ComplianceStatus
    missing: list[ComplianceGap] = Field(default_factory=list)
    expiring: list[ComplianceGap] = Field(default_factory=list)
    needs_override: bool = False


# Requests and responses


class ProofUpload(BaseModel):
    file_name: str = Field(min_length=1, max_length=255)
    mime_type: str = Field(min_length=1, max_length=100)
    object_key: str = Field(min_length=1, max_length=512)
    content_base64: str | None = None
    sha256: str | None = Field(None, min_length=64, max_length=64)
    size: int | None = Field(None, ge=0)


class WorkerCreateRequest(BaseModel):
    employee_code: str = Field(min_length=1, max_length=64)
    first_name: str = Field(min_length=1, max_length=120)
    last_name: str = Field(min_length=1, max_length=120)
    title: str = Field(min_length=1, max_length=120)
    role: str = Field(min_length=1, max_length=120)
    email: EmailStr
    active: bool = True

    @field_validator("employee_code", "first_name", "last_name", "title", "role")
    @classmethod
    def strip_required(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped


class CertificationCreateRequest(BaseModel):
    preset_key: str | None = None
    custom_name: str | None = None
    category: ComplianceCategory = ComplianceCategory.BASE
    required: bool | None = None
    issue_date: datetime
    expires_at: datetime
    proofs: list[ProofUpload] = Field(default_factory=list)


class WorkerActiveRequest(BaseModel):
    active: bool


class SnapshotCreateRequest(BaseModel):
    source: SnapshotSource = SnapshotSource.MANUAL


class CompanyDocumentCreateRequest(BaseModel):
    category: str
    title: str = Field(min_length=1, max_length=255)
    file: ProofUpload


class CompanyDocumentVersionRequest(BaseModel):
    file: ProofUpload


class WorkerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    worker_id: str
    company_id: str
    employee_code: str
    first_name: str
    last_name: str
    title: str
    role: str
    email: str | None = None
    active: bool
    compliance_status: ComplianceStatus
    last_verified_at: datetime | None = None
    compliance_hash: str | None = None


class CertificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    certification_id: str
    worker_id: str
    preset_key: str | None = None
    custom_name: str | None = None
    category: str
    required: bool
    issue_date: datetime
    expires_at: datetime
    status: CertificationStatus
    missing_proof: bool


class ProofResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    proof_id: str
    certification_id: str
    version: int
    file_name: str
    mime_type: str
    size: int
    sha256: str
    object_key: str
    created_at: datetime


class SnapshotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    snapshot_id: str
    worker_id: str
    schema_version: int
    source: str
    status: ComplianceStatus
    snapshot_hash: str
    payload: dict
    created_by_id: str
    created_at: datetime


class SnapshotCreatedResponse(BaseModel):
    snapshot: SnapshotResponse
    token: str
    verification_url: str | None = None


class RefreshResponse(BaseModel):
    worker: WorkerResponse
    certifications: list[CertificationResponse]
    missing_required: int
    expiring_soon: int


class ExpiringCertificationResponse(BaseModel):
    certification_id: str
    worker_id: str
    worker_name: str
    employee_code: str
    label: str
    expires_at: datetime
    days_left: int


class CompanyDocumentVersionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    version_id: str
    version_number: int
    file_name: str
    mime_type: str
    file_hash: str
    file_size: int
    object_key: str
    created_at: datetime


class CompanyDocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    document_id: str
    company_id: str
    category: CompanyDocumentCategory
    title: str
    versions: list[CompanyDocumentVersionResponse]


class ActivityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    activity_id: str
    company_id: str
    actor_id: str
    type: str
    worker_id: str | None = None
    certification_id: str | None = None
    company_document_id: str | None = None
    metadata_json: dict | None = Field(None, serialization_alias="metadata")
    created_at: datetime


class PresetResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    preset_id: str
    key: str = Field(validation_alias=AliasChoices("key", "base_key"))
    name: str
    category: ComplianceCategory
    is_other: bool
    enabled: bool
    sort_order: int


class PresetUpdateRequest(BaseModel):
    name: str | None = Field(None, max_length=255)
    sort_order: int | None = Field(None, ge=0)
    enabled: bool | None = None

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped


class PublicVerificationResponse(BaseModel):
    company_name: str
    snapshot_hash: str
    issued_at: datetime
    status: ComplianceStatus
    integrity_verified: bool
    payload: dict


ExportFormat = Literal["json", "csv"]
