"""Request-scoped tenant and uploader identity.

The tenant middleware fills these from request headers. Import sessions
and their lookup adapters read them back so that a wizard bound to one
studio can never read or write another studio's records.
"""

import contextvars
import uuid
from contextlib import contextmanager
from typing import Iterator

from app.exceptions import TenantContextError

_tenant_id: contextvars.ContextVar[uuid.UUID | None] = contextvars.ContextVar(
    "tenant_id", default=None
)
_uploader_id: contextvars.ContextVar[uuid.UUID | None] = contextvars.ContextVar(
    "uploader_id", default=None
)


def get_tenant_id() -> uuid.UUID:
    """Get the tenant of the current request.

    Raises:
        TenantContextError: If no valid tenant header was sent
    """
    tid = _tenant_id.get()
    if tid is None:
        raise TenantContextError("Tenant context is not set")
    return tid


def set_tenant_id(tid: uuid.UUID | None) -> None:
    _tenant_id.set(tid)


def require_tenant(tenant_id: str | uuid.UUID) -> uuid.UUID:
    """Check a tenant id handed to a lookup or store against the current request."""
    current = get_tenant_id()
    if str(current) != str(tenant_id):
        raise TenantContextError("Lookup tenant does not match the request tenant")
    return current


@contextmanager
def tenant_scope(tid: uuid.UUID) -> Iterator[uuid.UUID]:
    """Run a block as ``tid``, restoring the previous tenant afterwards."""
    token = _tenant_id.set(tid)
    try:
        yield tid
    finally:
        _tenant_id.reset(token)


def get_uploader_id() -> uuid.UUID | None:
    """Get the user who uploaded the current file, when the request named one."""
    return _uploader_id.get()


def set_uploader_id(uid: uuid.UUID | None) -> None:
    _uploader_id.set(uid)


def clear_all_context() -> None:
    """Reset the tenant and uploader at the edges of a request."""
    _tenant_id.set(None)
    _uploader_id.set(None)
