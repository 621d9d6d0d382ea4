"""
Authorization error codes and exceptions.

Denials are returned as results, never raised. These exceptions cover the
conditions that must propagate: unknown roles, users or permissions on the
resolution and mutation paths, and malformed arguments at the HTTP edge.
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    NOT_FOUND = "NOT_FOUND"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    ROLE_NOT_FOUND = "ROLE_NOT_FOUND"
    PERMISSION_NOT_FOUND = "PERMISSION_NOT_FOUND"


class AuthorizationError(Exception):
    """Base class for authorization engine errors."""

    code: ErrorCode = ErrorCode.FORBIDDEN

    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"code": self.code.value, "message": self.message}


class NotFoundError(AuthorizationError, LookupError):
    """A referenced role, user or permission does not exist."""

    code = ErrorCode.NOT_FOUND


class InvalidArgumentError(AuthorizationError, ValueError):
    code = ErrorCode.INVALID_ARGUMENT
