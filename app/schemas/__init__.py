"""Pydantic schemas for request/response validation."""

from app.schemas.common import APIResponse, PaginationMeta

__all__ = ["APIResponse", "PaginationMeta"]
