"""Middleware exports."""

from app.middleware.tenant import TenantMiddleware

__all__ = ["TenantMiddleware"]
