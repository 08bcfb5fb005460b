"""
Domain-specific exceptions for the policy control plane.

Every exception carries a status code from the standard RPC set. The HTTP
gateway maps those codes onto HTTP statuses; the RPC layer returns them
as-is.
"""

from enum import Enum
from typing import Any


class StatusCode(str, Enum):
    """Standard RPC status codes surfaced by the control plane."""

    OK = "OK"
    INVALID_ARGUMENT = "InvalidArgument"
    UNAUTHENTICATED = "Unauthenticated"
    PERMISSION_DENIED = "PermissionDenied"
    NOT_FOUND = "NotFound"
    ALREADY_EXISTS = "AlreadyExists"
    FAILED_PRECONDITION = "FailedPrecondition"
    RESOURCE_EXHAUSTED = "ResourceExhausted"
    UNAVAILABLE = "Unavailable"
    INTERNAL = "Internal"
    UNKNOWN = "Unknown"


class ControlPlaneError(Exception):
    """Base exception for all control plane domain errors."""

    code: StatusCode = StatusCode.UNKNOWN
    user_visible: bool = True

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class AuthFailedError(ControlPlaneError):
    """
    Raised when the caller cannot be authenticated.

    Examples:
    - Missing bearer token
    - Bad signature, expired token, wrong issuer or audience

    Status: Unauthenticated
    """

    code = StatusCode.UNAUTHENTICATED


class ForbiddenError(ControlPlaneError):
    """
    Raised when the caller is authenticated but not allowed to act.

    Examples:
    - Project not among the caller's projects
    - Owner-only method called without an admin binding
    - Root-admin method called without the superadmin realm role

    Status: PermissionDenied
    """

    code = StatusCode.PERMISSION_DENIED


class ValidationError(ControlPlaneError):
    """
    Raised when request data fails validation.

    Examples:
    - Malformed project ID
    - Rule reference that does not validate against its rule type
    - Guidance too long or containing markup
    - Backward-incompatible schema update

    Status: InvalidArgument
    """

    code = StatusCode.INVALID_ARGUMENT


class NotFoundError(ControlPlaneError):
    """
    Raised when a requested resource does not exist.

    Status: NotFound
    """

    code = StatusCode.NOT_FOUND


class ConflictError(ControlPlaneError):
    """
    Raised when a resource with the same identity already exists.

    Examples:
    - Duplicate rule type or profile name in a project
    - User already holds the invited role

    Status: AlreadyExists
    """

    code = StatusCode.ALREADY_EXISTS


class PreconditionError(ControlPlaneError):
    """
    Raised when the current state does not allow the operation.

    Examples:
    - Deleting a rule type that profiles still instantiate

    Status: FailedPrecondition
    """

    code = StatusCode.FAILED_PRECONDITION


class ExhaustedError(ControlPlaneError):
    """
    Raised when a bounded retry budget is used up.

    Status: ResourceExhausted
    """

    code = StatusCode.RESOURCE_EXHAUSTED


class UnavailableError(ControlPlaneError):
    """Raised when a dependency (identity provider, store) is unreachable."""

    code = StatusCode.UNAVAILABLE


class InternalError(ControlPlaneError):
    """
    Raised for core-side failures such as a misconfigured method policy.

    The message is a generic sentence; the cause is logged, never returned.

    Status: Internal
    """

    code = StatusCode.INTERNAL
    user_visible = False


class UnknownError(ControlPlaneError):
    """
    Raised for store or peer failures the core cannot classify.

    Status: Unknown
    """

    code = StatusCode.UNKNOWN
    user_visible = False


# Status code -> HTTP status for the gateway
HTTP_STATUS_MAP = {
    StatusCode.OK: 200,
    StatusCode.INVALID_ARGUMENT: 400,
    StatusCode.UNAUTHENTICATED: 401,
    StatusCode.PERMISSION_DENIED: 403,
    StatusCode.NOT_FOUND: 404,
    StatusCode.ALREADY_EXISTS: 409,
    StatusCode.FAILED_PRECONDITION: 412,
    StatusCode.RESOURCE_EXHAUSTED: 429,
    StatusCode.UNAVAILABLE: 503,
    StatusCode.INTERNAL: 500,
    StatusCode.UNKNOWN: 500,
}


def get_status_code(error: Exception) -> StatusCode:
    """
    Get the RPC status code for a given exception.

    Args:
        error: The exception instance

    Returns:
        Status code (defaults to Unknown for exceptions outside the hierarchy)
    """
    if isinstance(error, ControlPlaneError):
        return error.code
    return StatusCode.UNKNOWN


def get_http_status(error: Exception) -> int:
    """Map an exception to the HTTP status the gateway should answer with."""
    return HTTP_STATUS_MAP[get_status_code(error)]


def public_details(error: ControlPlaneError) -> dict[str, Any]:
    """Details safe to hand back to a client.

    Internal and Unknown errors keep a generic outer message; whatever cause
    they wrap stays in the log.
    """
    if error.user_visible:
        return error.details
    return {}
