"""
Exceptions raised by the library core.

The blueprint registers one handler per type:

    NotFoundError            404
    ValidationError          422  (``details`` in the body)
    ConflictError            409
    ForbiddenError           403
    StorageUnavailableError  503

CacheUnavailableError stays inside the engine. A failing view cache is
logged and the view is recomputed from the layer store.

    raise NotFoundError("BaseItem", item_id)
    raise ValidationError("Invalid item content", details={"name": "is required"})
"""


class LibraryError(Exception):
    """Common base so callers can catch every library failure at once."""


class NotFoundError(LibraryError):
    """No such item or surgery within the caller's scope.

    Another surgery's custom item is reported exactly like a missing one.
    ``tenant_id`` is only used in the message, for logs.
    """

    def __init__(self, resource: str, resource_id=None, tenant_id: int | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        parts = [resource]
        if resource_id is not None:
            parts.append(f"'{resource_id}'")
        parts.append("not found")
        if tenant_id is not None:
            parts.append(f"for tenant {tenant_id}")
        super().__init__(" ".join(parts))


class ValidationError(LibraryError):
    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = dict(details or {})
        super().__init__(message)


class ConflictError(LibraryError):
    """A unique key collided: slug, (tenant, base item) override, or an
    already-promoted custom item."""

    def __init__(self, resource: str, field: str, value=None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource}.{field} conflict on {value!r}")


class ForbiddenError(LibraryError):
    """Raised by the caller-identity layer, never by the core itself."""

    def __init__(self, message: str = "Forbidden", tenant_id: int | None = None) -> None:
        self.tenant_id = tenant_id
        super().__init__(message)


class _BackendError(LibraryError):
    label = "backend"

    def __init__(self, operation: str, cause: Exception | None = None) -> None:
        self.operation = operation
        self.cause = cause
        msg = f"{self.label} unavailable during {operation}"
        if cause is not None:
            msg = f"{msg}: {cause}"
        super().__init__(msg)


class StorageUnavailableError(_BackendError):
    """Layer store unreachable or commit failed. Writes are rolled back
    first; reads may be retried once."""

    label = "Storage"


class CacheUnavailableError(_BackendError):
    label = "View cache"
