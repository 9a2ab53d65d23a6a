from dataclasses import dataclass, field
from typing import ClassVar, List


@dataclass
class DomainError(Exception):
    detail: str
    title: str = "Domain Error"
    type: str = "https://certguard.dev/problems/domain-error"
    errors: List[dict] | None = None

    status_code: ClassVar[int] = 400

    def __str__(self) -> str:
        return self.detail


@dataclass
class WorkerNotFound(DomainError):
    detail: str = "Worker not found"
    title: str = "Worker Not Found"
    type: str = "https://certguard.dev/problems/worker-not-found"

    status_code: ClassVar[int] = 404


@dataclass
class CompanyNotFound(DomainError):
    detail: str = "Company not found"
    title: str = "Company Not Found"
    type: str = "https://certguard.dev/problems/company-not-found"

    status_code: ClassVar[int] = 404


@dataclass
class CertificationNotFound(DomainError):
    detail: str = "Certification not found"
    title: str = "Certification Not Found"
    type: str = "https://certguard.dev/problems/certification-not-found"

    status_code: ClassVar[int] = 404


@dataclass
class DocumentNotFound(DomainError):
    detail: str = "Document not found"
    title: str = "Document Not Found"
    type: str = "https://certguard.dev/problems/document-not-found"

    status_code: ClassVar[int] = 404


@dataclass
class TokenNotFound(DomainError):
    detail: str = "Verification record not found"
    title: str = "Not Found"
    type: str = "https://certguard.dev/problems/token-not-found"

    status_code: ClassVar[int] = 404


@dataclass
class SnapshotNotFound(DomainError):
    detail: str = "Snapshot not found"
    title: str = "Snapshot Not Found"
    type: str = "https://certguard.dev/problems/snapshot-not-found"

    status_code: ClassVar[int] = 404


@dataclass
class WorkOrderNotFound(DomainError):
    detail: str = "Work order not found"
    title: str = "Work Order Not Found"
    type: str = "https://certguard.dev/problems/work-order-not-found"

    status_code: ClassVar[int] = 404


@dataclass
class AssignmentNotFound(DomainError):
    detail: str = "Assignment not found"
    title: str = "Assignment Not Found"
    type: str = "https://certguard.dev/problems/assignment-not-found"

    status_code: ClassVar[int] = 404


@dataclass
class OutboxEventNotFound(DomainError):
    detail: str = "Outbox event not found"
    title: str = "Outbox Event Not Found"
    type: str = "https://certguard.dev/problems/outbox-event-not-found"

    status_code: ClassVar[int] = 404


@dataclass
class MissingVerificationToken(DomainError):
    detail: str = "Worker has no verification token provisioned"
    title: str = "Missing Verification Token"
    type: str = "https://certguard.dev/problems/missing-verification-token"

    status_code: ClassVar[int] = 409


@dataclass
class ComplianceBlocked(DomainError):
    """Gate refusal; ``summary`` carries the gaps the caller must render."""

    detail: str = "Compliance override acknowledgement is required to assign this worker"
    title: str = "Compliance Blocked"
    type: str = "https://certguard.dev/problems/compliance-blocked"
    summary: dict = field(default_factory=dict)

    status_code: ClassVar[int] = 409


@dataclass
class OverrideReasonRequired(DomainError):
    detail: str = "Provide an override reason"
    title: str = "Override Reason Required"
    type: str = "https://certguard.dev/problems/override-reason-required"
    min_length: int = 10

    status_code: ClassVar[int] = 422


@dataclass
class InvalidCategory(DomainError):
    detail: str = "Invalid document category"
    title: str = "Invalid Category"
    type: str = "https://certguard.dev/problems/invalid-category"

    status_code: ClassVar[int] = 422


@dataclass
class InvalidDocument(DomainError):
    detail: str = "Invalid document"
    title: str = "Invalid Document"
    type: str = "https://certguard.dev/problems/invalid-document"

    status_code: ClassVar[int] = 422


@dataclass
class InvalidCertification(DomainError):
    detail: str = "Invalid certification"
    title: str = "Invalid Certification"
    type: str = "https://certguard.dev/problems/invalid-certification"

    status_code: ClassVar[int] = 422


@dataclass
class UnknownPreset(DomainError):
    detail: str = "Unknown certification preset"
    title: str = "Unknown Preset"
    type: str = "https://certguard.dev/problems/unknown-preset"

    status_code: ClassVar[int] = 422


@dataclass
class DuplicateEmployee(DomainError):
    detail: str = "Employee ID already exists"
    title: str = "Duplicate Employee"
    type: str = "https://certguard.dev/problems/duplicate-employee"

    status_code: ClassVar[int] = 409


@dataclass
class WorkOrderLocked(DomainError):
    detail: str = "Work order can no longer be modified"
    title: str = "Work Order Locked"
    type: str = "https://certguard.dev/problems/work-order-locked"

    status_code: ClassVar[int] = 409


@dataclass
class ImmutableRecord(DomainError):
    detail: str = "Record is immutable"
    title: str = "Immutable Record"
    type: str = "https://certguard.dev/problems/immutable-record"

    status_code: ClassVar[int] = 409


@dataclass
class RoleForbidden(DomainError):
    detail: str = "Compliance access restricted to owners/admins"
    title: str = "Forbidden"
    type: str = "https://certguard.dev/problems/role-forbidden"

    status_code: ClassVar[int] = 403


@dataclass
class PresetNotFound(DomainError):
    detail: str = "Preset not found"
    title: str = "Preset Not Found"
    type: str = "https://certguard.dev/problems/preset-not-found"

    status_code: ClassVar[int] = 404


@dataclass
class PresetDisabled(DomainError):
    detail: str = "Preset disabled for this company"
    title: str = "Preset Disabled"
    type: str = "https://certguard.dev/problems/preset-disabled"

    status_code: ClassVar[int] = 422
