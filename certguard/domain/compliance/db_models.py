import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    func,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from certguard.infra.db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CertificationStatus(str, Enum):
    PASS = "PASS"
    INCOMPLETE = "INCOMPLETE"
    EXPIRED = "EXPIRED"


class ComplianceStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    INCOMPLETE = "INCOMPLETE"


class ComplianceCategory(str, Enum):
    BASE = "BASE"
    RAILROAD = "RAILROAD"
    CONSTRUCTION = "CONSTRUCTION"
    ENVIRONMENTAL = "ENVIRONMENTAL"


class CompanyDocumentCategory(str, Enum):
    INSURANCE = "INSURANCE"
    POLICIES = "POLICIES"
    PROGRAMS = "PROGRAMS"
    RAILROAD = "RAILROAD"


class Company(Base):
    __tablename__ = "companies"

    company_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    workers: Mapped[list["Worker"]] = relationship("Worker", back_populates="company")
    documents: Mapped[list["CompanyDocument"]] = relationship("CompanyDocument", back_populates="company")


class CompanyPreset(Base):
    """A company's copy of a catalogue preset, renamed, reordered or disabled by its owner."""

    __tablename__ = "compliance_company_presets"

    preset_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    company_id: Mapped[str] = mapped_column(
        ForeignKey("companies.company_id", ondelete="CASCADE"), nullable=False
    )
    base_key: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    is_other: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_by_id: Mapped[str | None] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("company_id", "base_key", name="uq_compliance_company_presets_key"),
        Index("ix_compliance_company_presets_company_order", "company_id", "category", "sort_order"),
    )


class Worker(Base):
    __tablename__ = "compliance_workers"

    worker_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    company_id: Mapped[str] = mapped_column(
        ForeignKey("companies.company_id", ondelete="CASCADE"), nullable=False
    )
    employee_code: Mapped[str] = mapped_column(String(64), nullable=False)
    first_name: Mapped[str] = mapped_column(String(120), nullable=False)
    last_name: Mapped[str] = mapped_column(String(120), nullable=False)
    title: Mapped[str] = mapped_column(String(120), nullable=False)
    role: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    compliance_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ComplianceStatus.INCOMPLETE.value
    )
    last_verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    compliance_hash: Mapped[str | None] = mapped_column(String(64))
    created_by_id: Mapped[str | None] = mapped_column(String(128))
    updated_by_id: Mapped[str | None] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow, nullable=False
    )

    company: Mapped["Company"] = relationship("Company", back_populates="workers")
    certifications: Mapped[list["Certification"]] = relationship(
        "Certification",
        back_populates="worker",
        cascade="all, delete-orphan",
        order_by="Certification.created_at",
    )
    verification_token: Mapped["VerificationToken | None"] = relationship(
        "VerificationToken", back_populates="worker", uselist=False
    )

    __table_args__ = (
        UniqueConstraint("company_id", "employee_code", name="uq_compliance_workers_company_code"),
        Index("ix_compliance_workers_company_active", "company_id", "active"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Certification(Base):
    __tablename__ = "compliance_certifications"

    certification_id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    worker_id: Mapped[str] = mapped_column(
        ForeignKey("compliance_workers.worker_id", ondelete="CASCADE"), nullable=False
    )
    preset_key: Mapped[str | None] = mapped_column(String(64))
    custom_name: Mapped[str | None] = mapped_column(String(255))
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    issue_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=CertificationStatus.INCOMPLETE.value
    )
    missing_proof: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    worker: Mapped["Worker"] = relationship("Worker", back_populates="certifications")
    proofs: Mapped[list["ProofArtifact"]] = relationship(
        "ProofArtifact",
        back_populates="certification",
        cascade="all, delete-orphan",
        order_by="ProofArtifact.version",
    )

    __table_args__ = (
        Index("ix_compliance_certifications_worker_id", "worker_id"),
        Index("ix_compliance_certifications_expires_at", "expires_at"),
    )

    @property
    def label(self) -> str:
        return self.custom_name or self.preset_key or "Certification"


class ProofArtifact(Base):
    __tablename__ = "compliance_proof_artifacts"

    proof_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    certification_id: Mapped[str] = mapped_column(
        ForeignKey("compliance_certifications.certification_id", ondelete="CASCADE"), nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    sha256: Mapped[str] = mapped_column(String(64), nullable=False)
    object_key: Mapped[str] = mapped_column(String(512), nullable=False)
    uploaded_by_id: Mapped[str | None] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    certification: Mapped["Certification"] = relationship("Certification", back_populates="proofs")

    __table_args__ = (
        UniqueConstraint("certification_id", "version", name="uq_compliance_proof_version"),
    )


class Snapshot(Base):
    __tablename__ = "compliance_snapshots"

    snapshot_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    worker_id: Mapped[str] = mapped_column(
        ForeignKey("compliance_workers.worker_id", ondelete="RESTRICT"), nullable=False
    )
    schema_version: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    snapshot_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_by_id: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_compliance_snapshots_worker_created", "worker_id", "created_at"),
        Index("ix_compliance_snapshots_hash", "snapshot_hash"),
    )


class VerificationToken(Base):
    __tablename__ = "compliance_verification_tokens"

    worker_id: Mapped[str] = mapped_column(
        ForeignKey("compliance_workers.worker_id", ondelete="CASCADE"), primary_key=True
    )
    token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    snapshot_id: Mapped[str | None] = mapped_column(
        ForeignKey("compliance_snapshots.snapshot_id", ondelete="RESTRICT")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    worker: Mapped["Worker"] = relationship("Worker", back_populates="verification_token")
    snapshot: Mapped["Snapshot | None"] = relationship("Snapshot")


class CompanyDocument(Base):
    __tablename__ = "company_compliance_documents"

    document_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    company_id: Mapped[str] = mapped_column(
        ForeignKey("companies.company_id", ondelete="CASCADE"), nullable=False
    )
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    created_by_id: Mapped[str | None] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    company: Mapped["Company"] = relationship("Company", back_populates="documents")
    versions: Mapped[list["CompanyDocumentVersion"]] = relationship(
        "CompanyDocumentVersion",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="CompanyDocumentVersion.version_number",
    )

    __table_args__ = (Index("ix_company_compliance_documents_company", "company_id", "category"),)


class CompanyDocumentVersion(Base):
    __tablename__ = "company_compliance_document_versions"

    version_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    document_id: Mapped[str] = mapped_column(
        ForeignKey("company_compliance_documents.document_id", ondelete="CASCADE"), nullable=False
    )
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    object_key: Mapped[str] = mapped_column(String(512), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    file_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    uploaded_by_id: Mapped[str | None] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )

    document: Mapped["CompanyDocument"] = relationship("CompanyDocument", back_populates="versions")

    __table_args__ = (
        UniqueConstraint("document_id", "version_number", name="uq_company_document_version"),
    )


class ComplianceActivity(Base):
    __tablename__ = "compliance_activities"

    activity_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    company_id: Mapped[str] = mapped_column(String(36), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(128), nullable=False)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    worker_id: Mapped[str | None] = mapped_column(String(36))
    certification_id: Mapped[str | None] = mapped_column(String(36))
    company_document_id: Mapped[str | None] = mapped_column(String(36))
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSON)
    note: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_compliance_activities_company_created", "company_id", "created_at"),
        Index("ix_compliance_activities_worker", "worker_id"),
        Index("ix_compliance_activities_type", "type"),
    )


def _seal(model: type, label: str) -> None:
    @event.listens_for(model, "before_update", propagate=True)
    def _prevent_update(mapper, connection, target) -> None:  # noqa: ARG001
        raise ValueError(f"{label} are immutable")

    @event.listens_for(model, "before_delete", propagate=True)
    def _prevent_delete(mapper, connection, target) -> None:  # noqa: ARG001
        raise ValueError(f"{label} cannot be deleted")


_seal(Snapshot, "Compliance snapshots")
_seal(ComplianceActivity, "Compliance activity records")
_seal(ProofArtifact, "Proof artifacts")
_seal(CompanyDocumentVersion, "Company document versions")
