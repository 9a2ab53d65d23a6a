"""compliance core

Revision ID: 0001_compliance_core
Revises:
Create Date: 2026-10-18 00:00:00
"""
from alembic import op
import sqlalchemy as sa

revision = "0001_compliance_core"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "companies",
        sa.Column("company_id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "compliance_workers",
        sa.Column("worker_id", sa.String(length=36), primary_key=True),
        sa.Column(
            "company_id",
            sa.String(length=36),
            sa.ForeignKey("companies.company_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("employee_code", sa.String(length=64), nullable=False),
        sa.Column("first_name", sa.String(length=120), nullable=False),
        sa.Column("last_name", sa.String(length=120), nullable=False),
        sa.Column("title", sa.String(length=120), nullable=False),
        sa.Column("role", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=255)),
        sa.Column("active", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("compliance_status", sa.String(length=16), nullable=False),
        sa.Column("last_verified_at", sa.DateTime(timezone=True)),
        sa.Column("compliance_hash", sa.String(length=64)),
        sa.Column("created_by_id", sa.String(length=128)),
        sa.Column("updated_by_id", sa.String(length=128)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        # ORM-managed updated_at (no database trigger).
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("company_id", "employee_code", name="uq_compliance_workers_company_code"),
    )
    op.create_index(
        "ix_compliance_workers_company_active", "compliance_workers", ["company_id", "active"]
    )
    op.create_table(
        "compliance_certifications",
        sa.Column("certification_id", sa.String(length=36), primary_key=True),
        sa.Column(
            "worker_id",
            sa.String(length=36),
            sa.ForeignKey("compliance_workers.worker_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("preset_key", sa.String(length=64)),
        sa.Column("custom_name", sa.String(length=255)),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("required", sa.Boolean(), nullable=False),
        sa.Column("issue_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("missing_proof", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        "ix_compliance_certifications_worker_id", "compliance_certifications", ["worker_id"]
    )
    op.create_index(
        "ix_compliance_certifications_expires_at", "compliance_certifications", ["expires_at"]
    )
    op.create_table(
        "compliance_proof_artifacts",
        sa.Column("proof_id", sa.String(length=36), primary_key=True),
        sa.Column(
            "certification_id",
            sa.String(length=36),
            sa.ForeignKey("compliance_certifications.certification_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("mime_type", sa.String(length=100), nullable=False),
        sa.Column("size", sa.Integer(), nullable=False),
        sa.Column("sha256", sa.String(length=64), nullable=False),
        sa.Column("object_key", sa.String(length=512), nullable=False),
        sa.Column("uploaded_by_id", sa.String(length=128)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("certification_id", "version", name="uq_compliance_proof_version"),
    )
    op.create_table(
        "compliance_snapshots",
        sa.Column("snapshot_id", sa.String(length=36), primary_key=True),
        sa.Column(
            "worker_id",
            sa.String(length=36),
            sa.ForeignKey("compliance_workers.worker_id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("schema_version", sa.Integer(), nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("snapshot_hash", sa.String(length=64), nullable=False),
        sa.Column("created_by_id", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_compliance_snapshots_worker_created", "compliance_snapshots", ["worker_id", "created_at"]
    )
    op.create_index("ix_compliance_snapshots_hash", "compliance_snapshots", ["snapshot_hash"])
    op.create_table(
        "compliance_verification_tokens",
        sa.Column(
            "worker_id",
            sa.String(length=36),
            sa.ForeignKey("compliance_workers.worker_id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("token", sa.String(length=64), nullable=False, unique=True),
        sa.Column(
            "snapshot_id",
            sa.String(length=36),
            sa.ForeignKey("compliance_snapshots.snapshot_id", ondelete="RESTRICT"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    )
    op.create_table(
        "company_compliance_documents",
        sa.Column("document_id", sa.String(length=36), primary_key=True),
        sa.Column(
            "company_id",
            sa.String(length=36),
            sa.ForeignKey("companies.company_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("created_by_id", sa.String(length=128)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        "ix_company_compliance_documents_company",
        "company_compliance_documents",
        ["company_id", "category"],
    )
    op.create_table(
        "company_compliance_document_versions",
        sa.Column("version_id", sa.String(length=36), primary_key=True),
        sa.Column(
            "document_id",
            sa.String(length=36),
            sa.ForeignKey("company_compliance_documents.document_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("object_key", sa.String(length=512), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("mime_type", sa.String(length=100), nullable=False),
        sa.Column("file_hash", sa.String(length=64), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("uploaded_by_id", sa.String(length=128)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("document_id", "version_number", name="uq_company_document_version"),
    )
    op.create_table(
        "compliance_activities",
        sa.Column("activity_id", sa.String(length=36), primary_key=True),
        sa.Column("company_id", sa.String(length=36), nullable=False),
        sa.Column("actor_id", sa.String(length=128), nullable=False),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("worker_id", sa.String(length=36)),
        sa.Column("certification_id", sa.String(length=36)),
        sa.Column("company_document_id", sa.String(length=36)),
        sa.Column("metadata", sa.JSON()),
        sa.Column("note", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_compliance_activities_company_created", "compliance_activities", ["company_id", "created_at"]
    )
    op.create_index("ix_compliance_activities_worker", "compliance_activities", ["worker_id"])
    op.create_index("ix_compliance_activities_type", "compliance_activities", ["type"])
    op.create_table(
        "work_orders",
        sa.Column("work_order_id", sa.String(length=36), primary_key=True),
        sa.Column(
            "company_id",
            sa.String(length=36),
            sa.ForeignKey("companies.company_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("site_name", sa.String(length=255)),
        sa.Column("site_address", sa.String(length=500)),
        sa.Column("scheduled_start", sa.DateTime(timezone=True)),
        sa.Column("instructions", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_work_orders_company_status", "work_orders", ["company_id", "status"])
    op.create_table(
        "work_order_assignments",
        sa.Column("assignment_id", sa.String(length=36), primary_key=True),
        sa.Column(
            "work_order_id",
            sa.String(length=36),
            sa.ForeignKey("work_orders.work_order_id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "worker_id",
            sa.String(length=36),
            sa.ForeignKey("compliance_workers.worker_id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("assigned_by_id", sa.String(length=128), nullable=False),
        sa.Column("compliance_status", sa.String(length=16), nullable=False),
        sa.Column("gap_summary", sa.JSON()),
        sa.Column("override_acknowledged", sa.Boolean(), nullable=False),
        sa.Column("override_reason", sa.Text()),
        sa.Column("override_actor_id", sa.String(length=128)),
        sa.Column("override_at", sa.DateTime(timezone=True)),
        sa.Column("compliance_snapshot_hash", sa.String(length=64)),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("unassigned_at", sa.DateTime(timezone=True)),
    )
    op.create_index(
        "ix_work_order_assignments_pair", "work_order_assignments", ["work_order_id", "worker_id"]
    )
    op.create_index("ix_work_order_assignments_worker", "work_order_assignments", ["worker_id"])
    op.create_table(
        "work_order_activities",
        sa.Column("activity_id", sa.String(length=36), primary_key=True),
        sa.Column(
            "work_order_id",
            sa.String(length=36),
            sa.ForeignKey("work_orders.work_order_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("actor_id", sa.String(length=128), nullable=False),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("metadata", sa.JSON()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_work_order_activities_order_created", "work_order_activities", ["work_order_id", "created_at"]
    )
    op.create_table(
        "outbox_events",
        sa.Column("event_id", sa.String(length=36), primary_key=True),
        sa.Column("company_id", sa.String(length=36), nullable=False),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("payload_json", sa.JSON(), nullable=False),
        sa.Column("dedupe_key", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True)),
        sa.Column("last_error", sa.String(length=255)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        "ix_outbox_company_status", "outbox_events", ["company_id", "status", "next_attempt_at"]
    )
    op.create_index("ix_outbox_company_dedupe", "outbox_events", ["company_id", "dedupe_key"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_outbox_company_dedupe", table_name="outbox_events")
    op.drop_index("ix_outbox_company_status", table_name="outbox_events")
    op.drop_table("outbox_events")
    op.drop_index("ix_work_order_activities_order_created", table_name="work_order_activities")
    op.drop_table("work_order_activities")
    op.drop_index("ix_work_order_assignments_worker", table_name="work_order_assignments")
    op.drop_index("ix_work_order_assignments_pair", table_name="work_order_assignments")
    op.drop_table("work_order_assignments")
    op.drop_index("ix_work_orders_company_status", table_name="work_orders")
    op.drop_table("work_orders")
    op.drop_index("ix_compliance_activities_type", table_name="compliance_activities")
    op.drop_index("ix_compliance_activities_worker", table_name="compliance_activities")
    op.drop_index("ix_compliance_activities_company_created", table_name="compliance_activities")
    op.drop_table("compliance_activities")
    op.drop_table("company_compliance_document_versions")
    op.drop_index("ix_company_compliance_documents_company", table_name="company_compliance_documents")
    op.drop_table("company_compliance_documents")
    op.drop_table("compliance_verification_tokens")
    op.drop_index("ix_compliance_snapshots_hash", table_name="compliance_snapshots")
    op.drop_index("ix_compliance_snapshots_worker_created", table_name="compliance_snapshots")
    op.drop_table("compliance_snapshots")
    op.drop_table("compliance_proof_artifacts")
    op.drop_index("ix_compliance_certifications_expires_at", table_name="compliance_certifications")
    op.drop_index("ix_compliance_certifications_worker_id", table_name="compliance_certifications")
    op.drop_table("compliance_certifications")
    op.drop_index("ix_compliance_workers_company_active", table_name="compliance_workers")
    op.drop_table("compliance_workers")
    op.drop_table("companies")
