"""
TenantModel — abstract base for surgery-scoped layer tables.

Every layer that belongs to one surgery (custom items, overrides,
enablement rows, review statuses) inherits from TenantModel. This adds:
  - tenant_id FK column with index (CASCADE on tenant delete)
  - query_for_tenant(tenant_id) classmethod
  - tenant_composite_index(...) helper for (tenant_id, ...) indexes
"""

from signposting.models import db


class TenantModel(db.Model):
    """Abstract base for surgery-scoped tables."""
    __abstract__ = True

    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    @classmethod
    def query_for_tenant(cls, tenant_id):
        """Return a query filtered by tenant_id."""
        return cls.query.filter_by(tenant_id=tenant_id)

    @classmethod
    def tenant_composite_index(cls, table_name, *extra_cols, unique=False):
        """Build a (tenant_id, ...) composite index for ``__table_args__``."""
        name = f"{'uq' if unique else 'ix'}_{table_name}_tenant_{'_'.join(extra_cols)}"
        return db.Index(name, "tenant_id", *extra_cols, unique=unique)
