"""Tenant context middleware.

Authentication happens upstream of this service, which only receives the
studio (``X-Tenant-ID``) and optionally the uploading user (``X-User-ID``).
A missing or malformed tenant leaves the context empty, and every import or
enrollment endpoint then answers 400.
"""

import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.utils.tenant_context import clear_all_context, set_tenant_id, set_uploader_id

TENANT_HEADER = "X-Tenant-ID"
UPLOADER_HEADER = "X-User-ID"


def _parse_header(value: str | None) -> uuid.UUID | None:
    if not value:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


class TenantMiddleware(BaseHTTPMiddleware):
    """Binds each request to the studio and uploader named in its headers."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        clear_all_context()
        set_tenant_id(_parse_header(request.headers.get(TENANT_HEADER)))
        set_uploader_id(_parse_header(request.headers.get(UPLOADER_HEADER)))

        try:
            return await call_next(request)
        finally:
            clear_all_context()
