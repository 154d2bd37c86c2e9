"""
Error taxonomy for EasyPass.

Every error raised by a collaborator carries an explicit ``ErrorKind``. Callers
(including the HTTP layer) switch on the kind, never on the message text.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Classification of errors for HTTP mapping and retry decisions."""

    INVALID_INPUT = "invalid_input"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    USER_NOT_FOUND = "user_not_found"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    PROVIDER_REJECTED = "provider_rejected"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    CONFIGURATION_ERROR = "configuration_error"
    # Internal kinds, recovered or logged before reaching a caller
    DUPLICATE_REFERENCE = "duplicate_reference"
    PROJECTION_UPDATE_FAILED = "projection_update_failed"


HTTP_STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.USER_NOT_FOUND: 404,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 400,
    ErrorKind.PROVIDER_REJECTED: 400,
    ErrorKind.PROVIDER_UNAVAILABLE: 503,
    ErrorKind.CONFIGURATION_ERROR: 500,
    ErrorKind.DUPLICATE_REFERENCE: 500,
    ErrorKind.PROJECTION_UPDATE_FAILED: 500,
}

RETRYABLE_KINDS = frozenset({ErrorKind.PROVIDER_UNAVAILABLE})


class EasyPassError(Exception):
    """
    Base exception for all EasyPass errors.

    Carries:
    - kind (drives HTTP status and retryability)
    - message (safe to show to clients)
    - details (structured context for logs)
    """

    kind: ErrorKind = ErrorKind.INVALID_INPUT

    def __init__(
        self,
        message: str,
        kind: Optional[ErrorKind] = None,
        **details: Any,
    ):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        self.details = details

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API responses."""
        return {
            "success": False,
            "message": self.message,
            "error_code": self.kind.value,
            "retryable": self.retryable,
            "requires_auth": self.kind is ErrorKind.UNAUTHENTICATED,
        }


class InvalidInputError(EasyPassError):
    kind = ErrorKind.INVALID_INPUT


class AuthenticationError(EasyPassError):
    kind = ErrorKind.UNAUTHENTICATED


class ForbiddenError(EasyPassError):
    kind = ErrorKind.FORBIDDEN


class UserNotFoundError(EasyPassError):
    kind = ErrorKind.USER_NOT_FOUND


class NotFoundError(EasyPassError):
    kind = ErrorKind.NOT_FOUND


class ConflictError(EasyPassError):
    kind = ErrorKind.CONFLICT


class ConfigurationError(EasyPassError):
    """Provider credentials or other required settings are missing."""

    kind = ErrorKind.CONFIGURATION_ERROR


class ProviderUnavailableError(EasyPassError):
    """No response from the payment provider (network failure or timeout)."""

    kind = ErrorKind.PROVIDER_UNAVAILABLE


class ProviderRejectedError(EasyPassError):
    """The provider answered, but not with a successful transaction."""

    kind = ErrorKind.PROVIDER_REJECTED

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        provider_message: Optional[str] = None,
        **details: Any,
    ):
        super().__init__(message, **details)
        self.status_code = status_code
        self.provider_message = provider_message


class DuplicateReferenceError(EasyPassError):
    """A concurrent insert already claimed this reference."""

    kind = ErrorKind.DUPLICATE_REFERENCE

    def __init__(self, reference: str):
        super().__init__(f"Payment reference already recorded: {reference}", reference=reference)
        self.reference = reference


class ProjectionUpdateFailedError(EasyPassError):
    """The user's payment-status projection could not be written."""

    kind = ErrorKind.PROJECTION_UPDATE_FAILED
