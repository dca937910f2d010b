"""
Transaction helpers for the service layer.

Services own their commits. ``commit_or_raise`` replaces the
try/commit/except/rollback block and translates driver errors into the
canonical exceptions the blueprints already know how to render:

    IntegrityError   → ConflictError            (409)
    OperationalError → StorageUnavailableError  (503)

The session is always rolled back before the exception propagates, so a
failed write never leaves partial state behind.

Usage::

    db.session.add(item)
    commit_or_raise("create_custom_item", resource="TenantCustomItem", field="slug", value=slug)
"""

import logging

from sqlalchemy.exc import IntegrityError, OperationalError

from signposting.core.exceptions import ConflictError, StorageUnavailableError
from signposting.models import db

logger = logging.getLogger(__name__)


def commit_or_raise(operation: str, *, resource: str = "Record", field: str = "id", value=None):
    """Commit the current session or roll back and raise.

    Args:
        operation: Short label for logs and StorageUnavailableError.
        resource, field, value: Used to build the ConflictError raised on a
            unique-constraint collision.
    """
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error during %s: %s", operation, exc.orig)
        raise ConflictError(resource, field, value) from exc
    except OperationalError as exc:
        db.session.rollback()
        logger.exception("Database operational error during %s", operation)
        raise StorageUnavailableError(operation, exc) from exc


def flush_or_raise(operation: str, *, resource: str = "Record", field: str = "id", value=None):
    """Flush pending changes mid-transaction with the same error mapping."""
    try:
        db.session.flush()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error during %s: %s", operation, exc.orig)
        raise ConflictError(resource, field, value) from exc
    except OperationalError as exc:
        db.session.rollback()
        logger.exception("Database operational error during %s", operation)
        raise StorageUnavailableError(operation, exc) from exc
