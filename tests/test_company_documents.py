import hashlib

import anyio
import pytest

from certguard.domain.compliance.activity import list_activities
from certguard.domain.compliance.company_documents import (
    add_company_document_version,
    company_document_categories,
    create_company_document,
    get_company_document,
)
from certguard.domain.compliance.db_models import CompanyDocumentCategory
from certguard.domain.compliance.schemas import ActivityType, ProofUpload
from certguard.domain.errors import DocumentNotFound, InvalidCategory, InvalidDocument


def test_document_versions_increment_and_are_audited(async_session_maker, seed):
    async def _run():
        company_id = await seed.company()
        async with async_session_maker() as session:
            document = await create_company_document(
                session,
                company_id=company_id,
                actor_id=seed.owner_id,
                category=" insurance ",
                title="  General liability  ",
                upload=seed.proof(b"%PDF-1.4 policy v1"),
            )
        assert document.category == CompanyDocumentCategory.INSURANCE.value
        assert document.title == "General liability"
        assert [version.version_number for version in document.versions] == [1]
        assert document.versions[0].file_hash == hashlib.sha256(b"%PDF-1.4 policy v1").hexdigest()

        async with async_session_maker() as session:
            version = await add_company_document_version(
                session,
                company_id=company_id,
                actor_id=seed.owner_id,
                document_id=document.document_id,
                upload=seed.proof(b"%PDF-1.4 policy v2", file_name="policy-v2.pdf"),
            )
        assert version.version_number == 2

        async with async_session_maker() as session:
            reloaded = await get_company_document(session, company_id, document.document_id)
            assert [item.version_number for item in reloaded.versions] == [1, 2]
            assert await company_document_categories(session, company_id) == {CompanyDocumentCategory.INSURANCE}

            uploaded = await list_activities(session, company_id, activity_type=ActivityType.DOC_UPLOADED)
            versioned = await list_activities(session, company_id, activity_type=ActivityType.DOC_VERSIONED)
        assert uploaded[0].company_document_id == document.document_id
        assert versioned[0].metadata_json["version_number"] == 2

    anyio.run(_run)


def test_documents_must_be_pdf_with_content(async_session_maker, seed):
    async def _run():
        company_id = await seed.company()
        image = ProofUpload(file_name="scan.png", mime_type="image/png", object_key="uploads/scan.png", size=10)
        empty = ProofUpload(file_name="blank.pdf", mime_type="application/pdf", object_key="uploads/blank.pdf")

        for upload in (image, empty):
            async with async_session_maker() as session:
                with pytest.raises(InvalidDocument):
                    await create_company_document(
                        session,
                        company_id=company_id,
                        actor_id=seed.owner_id,
                        category="POLICIES",
                        title="Safety policy",
                        upload=upload,
                    )

    anyio.run(_run)


def test_unknown_category_is_rejected(async_session_maker, seed):
    async def _run():
        company_id = await seed.company()
        async with async_session_maker() as session:
            with pytest.raises(InvalidCategory):
                await create_company_document(
                    session,
                    company_id=company_id,
                    actor_id=seed.owner_id,
                    category="PAYROLL",
                    title="Payroll",
                    upload=seed.proof(),
                )

    anyio.run(_run)


def test_versions_are_scoped_to_company(async_session_maker, seed):
    async def _run():
        company_id = await seed.company()
        other_company = await seed.company("Beacon Utilities")
        await seed.company_documents(company_id)
        async with async_session_maker() as session:
            documents = await company_document_categories(session, company_id)
            assert documents == set(CompanyDocumentCategory)
            assert await company_document_categories(session, other_company) == set()

        async with async_session_maker() as session:
            with pytest.raises(DocumentNotFound):
                await add_company_document_version(
                    session,
                    company_id=other_company,
                    actor_id=seed.owner_id,
                    document_id="missing-document",
                    upload=seed.proof(),
                )

    anyio.run(_run)
