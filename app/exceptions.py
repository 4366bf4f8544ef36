"""Custom exception classes and global exception handlers."""

import logging
import traceback

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class RosterlyException(Exception):
    """Base exception for all Rosterly-specific errors."""

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundException(RosterlyException):
    """Resource not found exception."""

    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found", 404)


class ConflictException(RosterlyException):
    """Resource conflict exception."""

    def __init__(self, message: str = "Resource already exists"):
        super().__init__(message, 409)


class ValidationException(RosterlyException):
    """Validation error exception with field-level errors."""

    def __init__(self, errors: list[dict] | str):
        if isinstance(errors, str):
            errors = [{"field": "general", "message": errors}]
        super().__init__("Validation failed", 422)
        self.errors = errors


class TenantContextError(RosterlyException):
    """Tenant context not set error."""

    def __init__(self, message: str = "Tenant context is required"):
        super().__init__(message, 400)


# === Import engine errors ===


class DatasetError(RosterlyException):
    """The uploaded file is empty, unreadable or has no header row."""

    def __init__(self, message: str):
        super().__init__(message, 400)


class ImportConfigurationError(RosterlyException):
    """The import was configured in a way the engine cannot run."""

    def __init__(self, message: str):
        super().__init__(message, 400)


class WizardStateError(RosterlyException):
    """A wizard transition was requested before its gate was satisfied."""

    def __init__(self, message: str):
        super().__init__(message, 409)


class UnsupportedOperationError(RosterlyException):
    """The requested operation exists in the model but is not implemented."""

    def __init__(self, message: str = "Operation is not supported"):
        super().__init__(message, 400)


class AlreadyEnrolledError(ConflictException):
    """The student is already enrolled in the target.

    Carries a stable ``code`` so callers never have to inspect the message.
    """

    code = "already_enrolled"

    def __init__(self, target: str, student_id: str):
        self.target = target
        self.student_id = student_id
        super().__init__(f"Student {student_id} is already enrolled in {target}")


class OperationTimeoutError(RosterlyException):
    """A remote operation did not complete within the configured timeout."""

    def __init__(self, operation: str, timeout: float):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} timed out after {timeout:g}s", 504)


def create_exception_handlers():
    """Create the JSON exception handlers registered on the application."""

    async def rosterly_exception_handler(request: Request, exc: RosterlyException):
        """Handle Rosterly custom exceptions."""
        logger.warning(f"RosterlyException on {request.method} {request.url.path}: {exc.message} (status={exc.status_code})")

        content = {
            "status": "error",
            "message": exc.message,
        }
        if hasattr(exc, "errors"):
            content["errors"] = exc.errors
        if hasattr(exc, "code"):
            content["code"] = exc.code
        return JSONResponse(status_code=exc.status_code, content=content)

    async def validation_exception_handler(request: Request, exc: ValidationException):
        """Handle validation exceptions with field-level errors."""
        logger.warning(f"ValidationException on {request.method} {request.url.path}: {exc.errors}")

        return JSONResponse(
            status_code=exc.status_code,
            content={
                "status": "error",
                "message": exc.message,
                "errors": exc.errors,
            },
        )

    async def generic_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.error(f"Unhandled exception on {request.method} {request.url.path}")
        logger.error(f"Exception: {type(exc).__name__}: {exc}")
        tb_lines = traceback.format_exception(type(exc), exc, exc.__traceback__)
        logger.error("".join(tb_lines))

        return JSONResponse(
            status_code=500,
            content={
                "status": "error",
                "message": "An unexpected error occurred",
            },
        )

    return {
        RosterlyException: rosterly_exception_handler,
        ValidationException: validation_exception_handler,
        Exception: generic_exception_handler,
    }
