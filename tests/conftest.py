import asyncio
import base64
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("APP_ENV", "dev")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("EMAIL_MODE", "off")
os.environ.setdefault("METRICS_ENABLED", "true")
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("TRUST_PROXY_HEADERS", "true")
os.environ.setdefault("TRUSTED_PROXY_IPS", "testclient")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from certguard.domain.compliance import company_documents
from certguard.domain.compliance import service as compliance_service
from certguard.domain.compliance.db_models import CompanyDocumentCategory, ComplianceCategory
from certguard.domain.compliance.schemas import (
    CertificationCreateRequest,
    ProofUpload,
    WorkerCreateRequest,
)
from certguard.domain.dispatch.db_models import WorkOrderStatus
from certguard.domain.dispatch.schemas import WorkOrderCreateRequest
from certguard.domain.dispatch.work_orders import create_work_order
from certguard.infra import models  # noqa: F401
from certguard.infra.db import Base, get_db_session
from certguard.main import app
from certguard.settings import settings

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
OWNER_ID = "owner-1"
DISPATCHER_ID = "dispatcher-1"


def proof_upload(content: bytes = b"%PDF-1.4 proof", *, file_name: str = "card.pdf") -> ProofUpload:
    return ProofUpload(
        file_name=file_name,
        mime_type="application/pdf",
        object_key=f"uploads/{file_name}",
        content_base64=base64.b64encode(content).decode("ascii"),
    )


def actor_headers(company_id: str, *, role: str = "owner", actor_id: str = OWNER_ID) -> dict[str, str]:
    return {"X-Actor-Id": actor_id, "X-Actor-Role": role, "X-Company-Id": company_id}


@dataclass
class Seeder:
    session_maker: async_sessionmaker
    now: datetime = NOW
    owner_id: str = OWNER_ID

    def headers(self, company_id: str, *, role: str = "owner", actor_id: str = OWNER_ID) -> dict[str, str]:
        return actor_headers(company_id, role=role, actor_id=actor_id)

    def proof(self, content: bytes = b"%PDF-1.4 proof", *, file_name: str = "card.pdf") -> ProofUpload:
        return proof_upload(content, file_name=file_name)

    async def company(self, name: str = "Acme Rail Services") -> str:
        async with self.session_maker() as session:
            company = await compliance_service.create_company(session, name)
            return company.company_id

    async def worker(
        self,
        company_id: str,
        *,
        employee_code: str = "E-100",
        first_name: str = "Dana",
        last_name: str = "Reyes",
        email: str = "dana.reyes@example.com",
        active: bool = True,
    ) -> str:
        async with self.session_maker() as session:
            worker = await compliance_service.onboard_worker(
                session,
                company_id=company_id,
                actor_id=OWNER_ID,
                request=WorkerCreateRequest(
                    employee_code=employee_code,
                    first_name=first_name,
                    last_name=last_name,
                    title="Track Foreman",
                    role="Foreman",
                    email=email,
                    active=active,
                ),
            )
            return worker.worker_id

    async def certification(
        self,
        company_id: str,
        worker_id: str,
        *,
        name: str = "Track Safety",
        required: bool = True,
        expires_in_days: int = 365,
        proofs: int = 1,
        now: datetime = NOW,
    ) -> str:
        issue_date = now - timedelta(days=400)
        expires_at = now + timedelta(days=expires_in_days)
        async with self.session_maker() as session:
            certification = await compliance_service.add_certification(
                session,
                company_id=company_id,
                actor_id=OWNER_ID,
                worker_id=worker_id,
                request=CertificationCreateRequest(
                    custom_name=name,
                    category=ComplianceCategory.BASE,
                    required=required,
                    issue_date=issue_date,
                    expires_at=expires_at,
                    proofs=[proof_upload(f"{name}-{index}".encode()) for index in range(proofs)],
                ),
                now=now,
            )
            return certification.certification_id

    async def company_documents(self, company_id: str) -> None:
        for category in CompanyDocumentCategory:
            async with self.session_maker() as session:
                await company_documents.create_company_document(
                    session,
                    company_id=company_id,
                    actor_id=OWNER_ID,
                    category=category.value,
                    title=f"{category.value.title()} binder",
                    upload=proof_upload(category.value.encode(), file_name=f"{category.value.lower()}.pdf"),
                )

    async def work_order(
        self,
        company_id: str,
        *,
        title: str = "Rail tie replacement",
        status: WorkOrderStatus = WorkOrderStatus.SCHEDULED,
    ) -> str:
        async with self.session_maker() as session:
            work_order = await create_work_order(
                session,
                company_id=company_id,
                request=WorkOrderCreateRequest(
                    title=title,
                    status=status,
                    site_name="North Yard",
                    site_address="100 Depot Rd",
                    scheduled_start=NOW + timedelta(days=2),
                ),
            )
            return work_order.work_order_id

    async def compliant_worker(self, company_id: str, **kwargs) -> str:
        worker_id = await self.worker(company_id, **kwargs)
        await self.certification(company_id, worker_id)
        return worker_id


@pytest.fixture(scope="session")
def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture(scope="session")
def async_session_maker(test_engine):
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest.fixture()
def seed(async_session_maker) -> Seeder:
    return Seeder(async_session_maker)


@pytest.fixture(autouse=True)
def restore_settings():
    original = {
        "metrics_token": settings.metrics_token,
        "trust_proxy_headers": settings.trust_proxy_headers,
        "trusted_proxy_ips": settings.trusted_proxy_ips,
        "public_base_url": settings.public_base_url,
        "outbox_max_attempts": settings.outbox_max_attempts,
        "snapshot_freshness_days": settings.snapshot_freshness_days,
        "expiring_window_days": settings.expiring_window_days,
    }
    yield
    for key, value in original.items():
        setattr(settings, key, value)


@pytest.fixture(autouse=True)
def clean_database(test_engine):
    async def truncate_tables() -> None:
        async with test_engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                await conn.execute(table.delete())

    asyncio.run(truncate_tables())
    yield


@pytest.fixture()
def client(async_session_maker):
    async def override_db_session():
        async with async_session_maker() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    original_factory = getattr(app.state, "db_session_factory", None)
    app.state.db_session_factory = async_session_maker
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.db_session_factory = original_factory
