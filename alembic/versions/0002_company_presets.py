"""company presets

Revision ID: 0002_company_presets
Revises: 0001_compliance_core
Create Date: 2026-10-18 00:00:00
"""
from alembic import op
import sqlalchemy as sa

revision = "0002_company_presets"
down_revision = "0001_compliance_core"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "compliance_company_presets",
        sa.Column("preset_id", sa.String(length=36), primary_key=True),
        sa.Column(
            "company_id",
            sa.String(length=36),
            sa.ForeignKey("companies.company_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("base_key", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("is_other", sa.Boolean(), nullable=False),
        sa.Column("enabled", sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False),
        sa.Column("updated_by_id", sa.String(length=128)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("company_id", "base_key", name="uq_compliance_company_presets_key"),
    )
    op.create_index(
        "ix_compliance_company_presets_company_order",
        "compliance_company_presets",
        ["company_id", "category", "sort_order"],
    )


def downgrade() -> None:
    op.drop_index("ix_compliance_company_presets_company_order", table_name="compliance_company_presets")
    op.drop_table("compliance_company_presets")
