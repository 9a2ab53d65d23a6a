"""Pure compliance status rules.

Nothing here touches the database; callers pass the certification rows and
the proof counts they loaded and persist whatever they get back.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Protocol

from certguard.domain.compliance.db_models import CertificationStatus, ComplianceStatus


class CertificationLike(Protocol):
    expires_at: datetime
    required: bool


def ensure_utc(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def derive_certification_status(
    cert: CertificationLike, proof_count: int, now: datetime
) -> CertificationStatus:
    # Expiry wins over proof presence.
    if ensure_utc(cert.expires_at) < ensure_utc(now):
        return CertificationStatus.EXPIRED
    if proof_count == 0:
        return CertificationStatus.INCOMPLETE
    return CertificationStatus.PASS


def derive_worker_status(statuses: Iterable[tuple[bool, CertificationStatus | str]]) -> ComplianceStatus:
    """Aggregate ``(required, status)`` pairs into a worker status.

    A required certification that is not PASS fails the worker. With no such
    failure, the worker passes only when every certification passes; an
    empty set passes.
    """
    entries = [(required, CertificationStatus(status)) for required, status in statuses]
    if any(required and status != CertificationStatus.PASS for required, status in entries):
        return ComplianceStatus.FAIL
    if all(status == CertificationStatus.PASS for _, status in entries):
        return ComplianceStatus.PASS
    return ComplianceStatus.INCOMPLETE


def is_expiring(cert: CertificationLike, status: CertificationStatus | str, now: datetime, window_days: int) -> bool:
    if CertificationStatus(status) != CertificationStatus.PASS:
        return False
    expires_at = ensure_utc(cert.expires_at)
    current = ensure_utc(now)
    return current <= expires_at <= current + timedelta(days=window_days)


def days_until(expires_at: datetime, now: datetime) -> int:
    return (ensure_utc(expires_at) - ensure_utc(now)).days


@dataclass(frozen=True)
class StatusChange:
    certification_id: str
    previous: str | None
    current: CertificationStatus


def recompute_certifications(certifications: Iterable, now: datetime) -> list[StatusChange]:
    """Write derived ``status``/``missing_proof`` onto loaded certification rows.

    Proofs must already be loaded on each row. Returns only the rows whose
    stored status changed.
    """
    changes: list[StatusChange] = []
    for cert in certifications:
        proof_count = len(cert.proofs)
        status = derive_certification_status(cert, proof_count, now)
        cert.missing_proof = proof_count == 0
        if cert.status != status.value:
            changes.append(StatusChange(cert.certification_id, cert.status, status))
            cert.status = status.value
    return changes
