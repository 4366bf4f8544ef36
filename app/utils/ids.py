"""Identifier helpers."""

import uuid

from app.exceptions import ValidationException


def parse_uuid(value, field: str = "id") -> uuid.UUID:
    """Convert a string (or UUID) to a UUID.

    Raises:
        ValidationException: If the value is not a valid UUID
    """
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationException([{"field": field, "message": f"Invalid id '{value}'"}])


def parse_optional_uuid(value, field: str = "id") -> uuid.UUID | None:
    if value is None or value == "":
        return None
    return parse_uuid(value, field)
