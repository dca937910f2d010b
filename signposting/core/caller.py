"""
Caller identity.

The authentication collaborator resolves a request to an opaque
CallerIdentity before any service runs. The library core only asks two
questions of it: is the caller a superuser, and may it administer a given
surgery.
"""

from __future__ import annotations

from dataclasses import dataclass, field

ROLE_SUPERUSER = "SUPERUSER"
ROLE_USER = "USER"


@dataclass(frozen=True)
class CallerIdentity:
    caller_id: str | None = None
    role: str = ROLE_USER
    admin_tenant_ids: frozenset = field(default_factory=frozenset)
    tenant_id: int | None = None

    @property
    def is_superuser(self) -> bool:
        return self.role == ROLE_SUPERUSER

    def is_tenant_admin(self, tenant_id) -> bool:
        return self.is_superuser or tenant_id in self.admin_tenant_ids

    def can_promote(self, tenant_id) -> bool:
        """Superusers promote anywhere; others only within their own surgery."""
        if self.is_superuser:
            return True
        return tenant_id == self.tenant_id or tenant_id in self.admin_tenant_ids
