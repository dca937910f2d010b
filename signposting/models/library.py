"""
Library layer models — the four record families the effective view is
resolved from, plus the per-surgery enablement linkage.

    BaseItem          shared library, superuser-owned, visible to every surgery
    TenantCustomItem  surgery-authored item, visible to its owner only
    TenantOverride    sparse per-(surgery, BaseItem) patch / suppression
    ItemEnablement    per-surgery enable/disable row for a base or custom item
    ReviewStatus      per-(surgery, item, age group) clinical approval state

Item ids are UUID strings so base and custom items share one key space;
ReviewStatus.item_id can therefore point at either family without a
discriminator column.
"""

import uuid
from datetime import datetime, timezone

from signposting.models import db
from signposting.engine.partition import (
    REVIEW_APPROVED,
    REVIEW_CHANGES_REQUIRED,
    REVIEW_PENDING,
    REVIEW_STATES,
)
from signposting.engine.patch import AGE_GROUPS
from signposting.models.base import TenantModel


__all__ = [
    "AGE_GROUPS",
    "REVIEW_PENDING",
    "REVIEW_APPROVED",
    "REVIEW_CHANGES_REQUIRED",
    "REVIEW_STATES",
    "BaseItem",
    "TenantCustomItem",
    "TenantOverride",
    "ItemEnablement",
    "ReviewStatus",
]


# ── Helpers ──────────────────────────────────────────────────────────────────

def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class _ContentColumns:
    """Content shape shared by BaseItem and TenantCustomItem."""

    name = db.Column(db.String(200), nullable=False)
    age_group = db.Column(db.String(10), nullable=False, default="Adult")
    brief_instruction = db.Column(db.Text)
    instructions = db.Column(db.Text)
    instructions_json = db.Column(db.Text, comment="Rich-text document (serialized JSON)")
    instructions_html = db.Column(db.Text)
    highlighted_text = db.Column(db.Text)
    link_to_page = db.Column(db.String(500))

    def content_dict(self):
        return {
            "name": self.name,
            "age_group": self.age_group,
            "brief_instruction": self.brief_instruction,
            "instructions": self.instructions,
            "instructions_json": self.instructions_json,
            "instructions_html": self.instructions_html,
            "highlighted_text": self.highlighted_text,
            "link_to_page": self.link_to_page,
        }


# ═════════════════════════════════════════════════════════════════════════════
# 1. BaseItem: shared library
# ═════════════════════════════════════════════════════════════════════════════

class BaseItem(_ContentColumns, db.Model):
    """Shared-library item. Soft-deleted items drop out of every surgery's view."""

    __tablename__ = "base_items"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    slug = db.Column(db.String(220), unique=True, nullable=False)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False, index=True)
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "slug": self.slug,
            **self.content_dict(),
            "is_deleted": self.is_deleted,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


# ═════════════════════════════════════════════════════════════════════════════
# 2. TenantCustomItem: surgery-authored content
# ═════════════════════════════════════════════════════════════════════════════

class TenantCustomItem(_ContentColumns, TenantModel):
    """
    Surgery-private item. Promotion retires the row (is_deleted=True) and
    records the BaseItem that superseded it in promoted_to_id.
    """

    __tablename__ = "tenant_custom_items"
    __table_args__ = (
        TenantModel.tenant_composite_index("tenant_custom_items", "slug", unique=True),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    slug = db.Column(db.String(220), nullable=False)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False, index=True)
    promoted_to_id = db.Column(
        db.String(36),
        db.ForeignKey("base_items.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_by = db.Column(db.String(64))
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "slug": self.slug,
            **self.content_dict(),
            "is_deleted": self.is_deleted,
            "promoted_to_id": self.promoted_to_id,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


# ═════════════════════════════════════════════════════════════════════════════
# 3. TenantOverride: sparse patch over a BaseItem
# ═════════════════════════════════════════════════════════════════════════════

class TenantOverride(TenantModel):
    """
    At most one row per (surgery, BaseItem). NULL content columns inherit the
    live BaseItem value; the row is deleted once it neither hides nor edits.
    """

    __tablename__ = "tenant_overrides"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "base_item_id", name="uq_override_tenant_base"),
    )

    id = db.Column(db.Integer, primary_key=True)
    base_item_id = db.Column(
        db.String(36),
        db.ForeignKey("base_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    is_hidden = db.Column(db.Boolean, nullable=False, default=False)

    name = db.Column(db.String(200))
    age_group = db.Column(db.String(10))
    brief_instruction = db.Column(db.Text)
    instructions = db.Column(db.Text)
    instructions_json = db.Column(db.Text)
    instructions_html = db.Column(db.Text)
    highlighted_text = db.Column(db.Text)
    link_to_page = db.Column(db.String(500))

    updated_by = db.Column(db.String(64))
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "base_item_id": self.base_item_id,
            "is_hidden": self.is_hidden,
            "name": self.name,
            "age_group": self.age_group,
            "brief_instruction": self.brief_instruction,
            "instructions": self.instructions,
            "instructions_json": self.instructions_json,
            "instructions_html": self.instructions_html,
            "highlighted_text": self.highlighted_text,
            "link_to_page": self.link_to_page,
            "updated_by": self.updated_by,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


# ═════════════════════════════════════════════════════════════════════════════
# 4. ItemEnablement: per-surgery on/off switch
# ═════════════════════════════════════════════════════════════════════════════

class ItemEnablement(TenantModel):
    """Exactly one of base_item_id / custom_item_id is set. No row = enabled."""

    __tablename__ = "item_enablements"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "base_item_id", name="uq_enablement_tenant_base"),
        db.UniqueConstraint("tenant_id", "custom_item_id", name="uq_enablement_tenant_custom"),
        db.CheckConstraint(
            "(base_item_id IS NULL) <> (custom_item_id IS NULL)",
            name="ck_enablement_one_target",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    base_item_id = db.Column(
        db.String(36), db.ForeignKey("base_items.id", ondelete="CASCADE"), nullable=True,
    )
    custom_item_id = db.Column(
        db.String(36), db.ForeignKey("tenant_custom_items.id", ondelete="CASCADE"), nullable=True,
    )
    is_enabled = db.Column(db.Boolean, nullable=False, default=True)
    last_edited_by = db.Column(db.String(64))
    last_edited_at = db.Column(db.DateTime, default=_utcnow)

    @property
    def item_id(self):
        return self.custom_item_id or self.base_item_id

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "item_id": self.item_id,
            "base_item_id": self.base_item_id,
            "custom_item_id": self.custom_item_id,
            "is_enabled": self.is_enabled,
            "last_edited_by": self.last_edited_by,
            "last_edited_at": self.last_edited_at.isoformat() if self.last_edited_at else None,
        }


# ═════════════════════════════════════════════════════════════════════════════
# 5. ReviewStatus: clinical approval state
# ═════════════════════════════════════════════════════════════════════════════

class ReviewStatus(TenantModel):
    """
    Clinical review state per (surgery, item, age group). Missing rows read
    as PENDING. review_note is only retained while CHANGES_REQUIRED.
    """

    __tablename__ = "review_statuses"
    __table_args__ = (
        TenantModel.tenant_composite_index(
            "review_statuses", "item_id", "age_group", unique=True,
        ),
        TenantModel.tenant_composite_index("review_statuses", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.String(36), nullable=False, index=True)
    age_group = db.Column(db.String(10), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=REVIEW_PENDING)
    review_note = db.Column(db.String(1000))
    last_reviewed_at = db.Column(db.DateTime)
    last_reviewed_by = db.Column(db.String(64))

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "item_id": self.item_id,
            "age_group": self.age_group,
            "status": self.status,
            "review_note": self.review_note,
            "last_reviewed_at": self.last_reviewed_at.isoformat() if self.last_reviewed_at else None,
            "last_reviewed_by": self.last_reviewed_by,
        }
