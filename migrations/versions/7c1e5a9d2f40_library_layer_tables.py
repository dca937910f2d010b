"""library_layer_tables

Create the surgery and library layer tables: tenants, base_items,
tenant_custom_items, tenant_overrides, item_enablements, review_statuses.

Revision ID: 7c1e5a9d2f40
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "7c1e5a9d2f40"
down_revision = None
branch_labels = None
depends_on = None


def _content_columns(nullable_name: bool):
    return [
        sa.Column("name", sa.String(length=200), nullable=nullable_name),
        sa.Column("age_group", sa.String(length=10), nullable=nullable_name),
        sa.Column("brief_instruction", sa.Text(), nullable=True),
        sa.Column("instructions", sa.Text(), nullable=True),
        sa.Column("instructions_json", sa.Text(), nullable=True),
        sa.Column("instructions_html", sa.Text(), nullable=True),
        sa.Column("highlighted_text", sa.Text(), nullable=True),
        sa.Column("link_to_page", sa.String(length=500), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "tenants" not in existing_tables:
        op.create_table(
            "tenants",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("slug", sa.String(length=100), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("requires_clinical_review", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("last_clinical_review_at", sa.DateTime(), nullable=True),
            sa.Column("last_clinical_reviewer_id", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("slug"),
        )

    if "base_items" not in existing_tables:
        op.create_table(
            "base_items",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("slug", sa.String(length=220), nullable=False),
            *_content_columns(nullable_name=False),
            sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("slug"),
        )
        op.create_index("ix_base_items_is_deleted", "base_items", ["is_deleted"])

    if "tenant_custom_items" not in existing_tables:
        op.create_table(
            "tenant_custom_items",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("slug", sa.String(length=220), nullable=False),
            *_content_columns(nullable_name=False),
            sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("promoted_to_id", sa.String(length=36), nullable=True),
            sa.Column("created_by", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["promoted_to_id"], ["base_items.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_tenant_custom_items_tenant_id", "tenant_custom_items", ["tenant_id"])
        op.create_index("ix_tenant_custom_items_is_deleted", "tenant_custom_items", ["is_deleted"])
        op.create_index(
            "uq_tenant_custom_items_tenant_slug", "tenant_custom_items", ["tenant_id", "slug"], unique=True,
        )

    if "tenant_overrides" not in existing_tables:
        op.create_table(
            "tenant_overrides",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("base_item_id", sa.String(length=36), nullable=False),
            sa.Column("is_hidden", sa.Boolean(), nullable=False, server_default=sa.false()),
            *_content_columns(nullable_name=True),
            sa.Column("updated_by", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["base_item_id"], ["base_items.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("tenant_id", "base_item_id", name="uq_override_tenant_base"),
        )
        op.create_index("ix_tenant_overrides_tenant_id", "tenant_overrides", ["tenant_id"])
        op.create_index("ix_tenant_overrides_base_item_id", "tenant_overrides", ["base_item_id"])

    if "item_enablements" not in existing_tables:
        op.create_table(
            "item_enablements",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("base_item_id", sa.String(length=36), nullable=True),
            sa.Column("custom_item_id", sa.String(length=36), nullable=True),
            sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("last_edited_by", sa.String(length=64), nullable=True),
            sa.Column("last_edited_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["base_item_id"], ["base_items.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["custom_item_id"], ["tenant_custom_items.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("tenant_id", "base_item_id", name="uq_enablement_tenant_base"),
            sa.UniqueConstraint("tenant_id", "custom_item_id", name="uq_enablement_tenant_custom"),
            sa.CheckConstraint(
                "(base_item_id IS NULL) <> (custom_item_id IS NULL)", name="ck_enablement_one_target",
            ),
        )
        op.create_index("ix_item_enablements_tenant_id", "item_enablements", ["tenant_id"])

    if "review_statuses" not in existing_tables:
        op.create_table(
            "review_statuses",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("item_id", sa.String(length=36), nullable=False),
            sa.Column("age_group", sa.String(length=10), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
            sa.Column("review_note", sa.String(length=1000), nullable=True),
            sa.Column("last_reviewed_at", sa.DateTime(), nullable=True),
            sa.Column("last_reviewed_by", sa.String(length=64), nullable=True),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_review_statuses_tenant_id", "review_statuses", ["tenant_id"])
        op.create_index("ix_review_statuses_item_id", "review_statuses", ["item_id"])
        op.create_index(
            "uq_review_statuses_tenant_item_id_age_group",
            "review_statuses",
            ["tenant_id", "item_id", "age_group"],
            unique=True,
        )
        op.create_index("ix_review_statuses_tenant_status", "review_statuses", ["tenant_id", "status"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    for table in (
        "review_statuses",
        "item_enablements",
        "tenant_overrides",
        "tenant_custom_items",
        "base_items",
        "tenants",
    ):
        if table in existing_tables:
            op.drop_table(table)
