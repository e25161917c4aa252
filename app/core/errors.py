"""
Application error taxonomy.

Every error carries an HTTP status and a stable ``code`` so clients can branch
on the code instead of parsing the message. ``app_error_handler`` renders them
in the standard failure envelope.
"""
from typing import Any, Optional

from fastapi import status
from starlette.requests import Request
from starlette.responses import JSONResponse

from app.core.responses import error_response


class AppError(Exception):
    """Base class for errors that map to a specific HTTP response."""
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "BAD_REQUEST"
    message: str = "Bad request"

    def __init__(self, message: Optional[str] = None, details: Any = None):
        self.message = message or self.message
        self.details = details
        super().__init__(self.message)


# Access control

class UnauthorizedError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHORIZED"
    message = "Missing or invalid authorization header"


class MissingOrgContextError(AppError):
    # 403, not 401: the caller is authenticated but has no tenant context
    status_code = status.HTTP_403_FORBIDDEN
    code = "MISSING_ORG_CONTEXT"
    message = "Organization context required. Please join or create an organization."


class ForbiddenError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"
    message = "Insufficient permissions"


class ActionNotAllowedError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "ACTION_NOT_ALLOWED"
    message = "You are not allowed to perform this action"


class NoProjectAccessError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "NO_PROJECT_ACCESS"
    message = "You do not have access to this project"


class BadRequestError(AppError):
    pass


# Role registry

class RoleValidationError(AppError):
    code = "VALIDATION_ERROR"
    message = "Invalid role"


class UnknownPermissionError(AppError):
    code = "UNKNOWN_PERMISSION"
    message = "Unknown permission ids"


class SystemRoleRenameError(AppError):
    code = "SYSTEM_ROLE_RENAME"
    message = "Cannot rename system role"


class SystemRoleDeleteError(AppError):
    code = "SYSTEM_ROLE_DELETE"
    message = "Cannot delete system role"


class RoleHasMembersError(AppError):
    code = "ROLE_HAS_MEMBERS"
    message = "Cannot delete role with assigned members"


# Lookups and uniqueness

class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"
    message = "Resource not found"


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"
    message = "Resource already exists"


async def app_error_handler(_request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.message, exc.code, exc.details),
    )
