from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from certguard.domain.compliance.activity import ActivityEntry, log_activity
from certguard.domain.compliance.db_models import (
    CompanyDocument,
    CompanyDocumentCategory,
    CompanyDocumentVersion,
)
from certguard.domain.compliance.hashing import digest_upload
from certguard.domain.compliance.schemas import ActivityType, ProofUpload
from certguard.domain.errors import DocumentNotFound, InvalidCategory, InvalidDocument
from certguard.infra.db import transaction

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"
MANDATORY_CATEGORIES: tuple[CompanyDocumentCategory, ...] = tuple(CompanyDocumentCategory)


def _parse_category(value: str | None) -> CompanyDocumentCategory:
    try:
        return CompanyDocumentCategory((value or "").strip().upper())
    except ValueError as exc:
        raise InvalidCategory() from exc


def _validate_upload(upload: ProofUpload) -> tuple[str, int]:
    if upload.mime_type != PDF_MIME_TYPE:
        raise InvalidDocument(detail="Documents must be uploaded as PDF")
    digest = digest_upload(upload.content_base64, upload.sha256, upload.size)
    if digest is None:
        raise InvalidDocument(detail="Missing document data")
    return digest


async def company_document_categories(session: AsyncSession, company_id: str) -> set[CompanyDocumentCategory]:
    """Categories with at least one document version on file."""
    stmt = (
        select(CompanyDocument.category)
        .join(CompanyDocumentVersion, CompanyDocumentVersion.document_id == CompanyDocument.document_id)
        .where(CompanyDocument.company_id == company_id)
        .distinct()
    )
    result = await session.execute(stmt)
    return {CompanyDocumentCategory(value) for value in result.scalars().all()}


async def get_company_document(session: AsyncSession, company_id: str, document_id: str) -> CompanyDocument:
    stmt = (
        select(CompanyDocument)
        .options(selectinload(CompanyDocument.versions))
        .where(CompanyDocument.document_id == document_id, CompanyDocument.company_id == company_id)
        .execution_options(populate_existing=True)
    )
    document = (await session.execute(stmt)).scalar_one_or_none()
    if document is None:
        raise DocumentNotFound()
    return document


async def list_company_documents(session: AsyncSession, company_id: str) -> list[CompanyDocument]:
    stmt = (
        select(CompanyDocument)
        .options(selectinload(CompanyDocument.versions))
        .where(CompanyDocument.company_id == company_id)
        .order_by(CompanyDocument.category, CompanyDocument.created_at)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def create_company_document(
    session: AsyncSession,
    *,
    company_id: str,
    actor_id: str,
    category: str,
    title: str,
    upload: ProofUpload,
) -> CompanyDocument:
    parsed_category = _parse_category(category)
    cleaned_title = (title or "").strip()
    if not cleaned_title:
        raise InvalidDocument(detail="Missing document data")
    file_hash, file_size = _validate_upload(upload)

    async with transaction(session):
        document = CompanyDocument(
            company_id=company_id,
            category=parsed_category.value,
            title=cleaned_title,
            created_by_id=actor_id,
        )
        session.add(document)
        await session.flush()
        version = CompanyDocumentVersion(
            document_id=document.document_id,
            version_number=1,
            object_key=upload.object_key,
            file_name=upload.file_name,
            mime_type=upload.mime_type,
            file_hash=file_hash,
            file_size=file_size,
            uploaded_by_id=actor_id,
        )
        session.add(version)
        await session.flush()
        await log_activity(
            session,
            ActivityEntry(
                company_id=company_id,
                actor_id=actor_id,
                type=ActivityType.DOC_UPLOADED,
                company_document_id=document.document_id,
                metadata={
                    "title": cleaned_title,
                    "category": parsed_category.value,
                    "version_number": 1,
                    "version_id": version.version_id,
                },
            ),
        )

    logger.info(
        "company_document_created",
        extra={"extra": {"company_id": company_id, "document_id": document.document_id}},
    )
    return await get_company_document(session, company_id, document.document_id)


async def add_company_document_version(
    session: AsyncSession,
    *,
    company_id: str,
    actor_id: str,
    document_id: str,
    upload: ProofUpload,
) -> CompanyDocumentVersion:
    file_hash, file_size = _validate_upload(upload)

    async with transaction(session):
        document = await get_company_document(session, company_id, document_id)
        current = await session.scalar(
            select(func.max(CompanyDocumentVersion.version_number)).where(
                CompanyDocumentVersion.document_id == document.document_id
            )
        )
        version_number = (current or 0) + 1
        version = CompanyDocumentVersion(
            document_id=document.document_id,
            version_number=version_number,
            object_key=upload.object_key,
            file_name=upload.file_name,
            mime_type=upload.mime_type,
            file_hash=file_hash,
            file_size=file_size,
            uploaded_by_id=actor_id,
        )
        session.add(version)
        await session.flush()
        await log_activity(
            session,
            ActivityEntry(
                company_id=company_id,
                actor_id=actor_id,
                type=ActivityType.DOC_VERSIONED,
                company_document_id=document.document_id,
                metadata={
                    "version_number": version_number,
                    "version_id": version.version_id,
                    "file_name": upload.file_name,
                },
            ),
        )

    logger.info(
        "company_document_versioned",
        extra={
            "extra": {
                "company_id": company_id,
                "document_id": document_id,
                "version_number": version_number,
            }
        },
    )
    return version
