"""
Error types for the docstore runtime.

Every ServiceError carries the HTTP-like status the transport should answer
with. Anything that is not a ServiceError is an internal defect and is
reported as a generic server error.
"""

from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    """Base exception for all expected, boundary-recoverable failures."""

    status: int = 400
    default_message: str = "Service Error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize as the error body sent to clients."""
        return {"code": self.status, "message": self.message}


class RequestError(ServiceError):
    """
    Raised for malformed input.

    Examples:
    - Path with too many segments
    - Unparsable WHERE clause
    - Payload the store refused to hold
    """

    status = 400
    default_message = "Request error"


class AuthorizationError(ServiceError):
    """Raised when an action needs an authenticated caller and there is none."""

    status = 401
    default_message = "Unauthorized"


class CredentialError(ServiceError):
    """
    Raised when the caller is known but not permitted.

    Examples:
    - Rule denial
    - Wrong login or password
    - Unknown access token
    """

    status = 403
    default_message = "Forbidden"


class NotFoundError(ServiceError):
    """Raised when a collection or record id does not exist."""

    status = 404
    default_message = "Resource not found"


class ConflictError(ServiceError):
    """Raised when a unique value is already taken."""

    status = 409
    default_message = "Resource conflict"


class RuleConfigError(ValueError):
    """Raised when a rules document cannot be compiled."""

    pass
