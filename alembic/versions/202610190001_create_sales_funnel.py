"""create sales funnel tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 00:01:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "crm_customer",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("company_name", sa.String(length=255), nullable=False),
        sa.Column("industry", sa.String(length=128), nullable=True),
        sa.Column("region", sa.String(length=128), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="PUBLIC_POOL"),
        sa.Column("owner_user_id", sa.String(length=128), nullable=True),
        sa.Column("last_contact_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("source", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint(
            "(status = 'PRIVATE' AND owner_user_id IS NOT NULL) OR (status = 'PUBLIC_POOL' AND owner_user_id IS NULL)",
            name="ck_crm_customer_status_owner",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("company_name"),
    )
    op.create_index("ix_crm_customer_owner_status", "crm_customer", ["owner_user_id", "status"], unique=False)
    op.create_index("ix_crm_customer_status_last_contact", "crm_customer", ["status", "last_contact_at"], unique=False)

    op.create_table(
        "crm_contact",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("customer_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("role", sa.String(length=128), nullable=True),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["crm_customer.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_contact_customer_id", "crm_contact", ["customer_id"], unique=False)

    op.create_table(
        "crm_owner_slot",
        sa.Column("owner_user_id", sa.String(length=128), nullable=False),
        sa.Column("claim_sequence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("owner_user_id"),
    )

    op.create_table(
        "crm_setting",
        sa.Column("key", sa.String(length=64), nullable=False),
        sa.Column("value", sa.String(length=255), nullable=False),
        sa.Column("updated_by", sa.String(length=128), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )

    op.create_table(
        "crm_opportunity",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("customer_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("amount", sa.Numeric(precision=18, scale=6), nullable=False),
        sa.Column("stage", sa.String(length=32), nullable=False, server_default="PROSPECTING"),
        sa.Column("probability", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("expected_close_date", sa.Date(), nullable=True),
        sa.Column("loss_reason", sa.Text(), nullable=True),
        sa.Column("owner_user_id", sa.String(length=128), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint("(stage = 'CLOSED_LOST') OR (loss_reason IS NULL)", name="ck_crm_opportunity_loss_reason"),
        sa.ForeignKeyConstraint(["customer_id"], ["crm_customer.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_opportunity_customer_id", "crm_opportunity", ["customer_id"], unique=False)
    op.create_index("ix_crm_opportunity_owner_user_id", "crm_opportunity", ["owner_user_id"], unique=False)
    op.create_index("ix_crm_opportunity_stage", "crm_opportunity", ["stage"], unique=False)

    op.create_table(
        "crm_follow_up",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("customer_id", sa.Uuid(), nullable=False),
        sa.Column("opportunity_id", sa.Uuid(), nullable=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("follow_up_type", sa.String(length=32), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["customer_id"], ["crm_customer.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["opportunity_id"], ["crm_opportunity.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_follow_up_customer_id", "crm_follow_up", ["customer_id"], unique=False)

    op.create_table(
        "catalog_product",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("sku", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("base_price", sa.Numeric(precision=18, scale=6), nullable=False),
        sa.Column("floor_price", sa.Numeric(precision=18, scale=6), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("base_price >= 0", name="ck_catalog_product_base_price"),
        sa.CheckConstraint("floor_price >= 0", name="ck_catalog_product_floor_price"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku"),
    )

    op.create_table(
        "catalog_pricing_tier",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("min_quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(precision=18, scale=6), nullable=False),
        sa.CheckConstraint("min_quantity >= 1", name="ck_catalog_pricing_tier_min_quantity"),
        sa.ForeignKeyConstraint(["product_id"], ["catalog_product.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("product_id", "min_quantity", name="uq_catalog_pricing_tier_min_quantity"),
    )
    op.create_index("ix_catalog_pricing_tier_product_id", "catalog_pricing_tier", ["product_id"], unique=False)

    op.create_table(
        "revenue_quote",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("quote_number", sa.String(length=64), nullable=False),
        sa.Column("customer_id", sa.Uuid(), nullable=False),
        sa.Column("opportunity_id", sa.Uuid(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="DRAFT"),
        sa.Column("requires_approval", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("total_amount", sa.Numeric(precision=18, scale=6), nullable=False, server_default="0"),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        sa.Column("approved_by", sa.String(length=128), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["customer_id"], ["crm_customer.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["opportunity_id"], ["crm_opportunity.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("quote_number"),
    )
    op.create_index("ix_revenue_quote_customer_id", "revenue_quote", ["customer_id"], unique=False)
    op.create_index("ix_revenue_quote_opportunity_id", "revenue_quote", ["opportunity_id"], unique=False)
    op.create_index("ix_revenue_quote_status", "revenue_quote", ["status"], unique=False)

    op.create_table(
        "revenue_quote_line",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("quote_id", sa.Uuid(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(precision=18, scale=6), nullable=False),
        sa.Column("calculated_price", sa.Numeric(precision=18, scale=6), nullable=False),
        sa.Column("line_total", sa.Numeric(precision=18, scale=6), nullable=False),
        sa.Column("is_manual_price", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.CheckConstraint("quantity > 0", name="ck_revenue_quote_line_quantity"),
        sa.ForeignKeyConstraint(["quote_id"], ["revenue_quote.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["catalog_product.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_revenue_quote_line_quote_id", "revenue_quote_line", ["quote_id"], unique=False)

    op.create_table(
        "revenue_quote_approval",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("quote_id", sa.Uuid(), nullable=False),
        sa.Column("approver_user_id", sa.String(length=128), nullable=False),
        sa.Column("action", sa.String(length=16), nullable=False),
        sa.Column("from_status", sa.String(length=32), nullable=False),
        sa.Column("to_status", sa.String(length=32), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("correlation_id", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_revenue_quote_approval_quote_id", "revenue_quote_approval", ["quote_id"], unique=False)

    op.create_table(
        "revenue_order",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("order_number", sa.String(length=64), nullable=False),
        sa.Column("quote_id", sa.Uuid(), nullable=True),
        sa.Column("opportunity_id", sa.Uuid(), nullable=True),
        sa.Column("customer_id", sa.Uuid(), nullable=False),
        sa.Column("total_amount", sa.Numeric(precision=18, scale=6), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="PENDING"),
        sa.Column("payment_status", sa.String(length=32), nullable=False, server_default="UNPAID"),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["quote_id"], ["revenue_quote.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["opportunity_id"], ["crm_opportunity.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["customer_id"], ["crm_customer.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_number"),
        sa.UniqueConstraint("quote_id", name="uq_revenue_order_quote"),
    )
    op.create_index("ix_revenue_order_customer_id", "revenue_order", ["customer_id"], unique=False)
    op.create_index("ix_revenue_order_opportunity_id", "revenue_order", ["opportunity_id"], unique=False)


def downgrade() -> None:
    op.drop_table("revenue_order")
    op.drop_table("revenue_quote_approval")
    op.drop_table("revenue_quote_line")
    op.drop_table("revenue_quote")
    op.drop_table("catalog_pricing_tier")
    op.drop_table("catalog_product")
    op.drop_table("crm_follow_up")
    op.drop_table("crm_opportunity")
    op.drop_table("crm_setting")
    op.drop_table("crm_owner_slot")
    op.drop_table("crm_contact")
    op.drop_table("crm_customer")
