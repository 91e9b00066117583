"""Exception taxonomy for the identity gateway.

Every error raised by the core carries a stable ``error_code`` and the HTTP
status it maps to. Messages are safe to show to callers; internal details
stay in the logs.
"""

from typing import Optional


class IdentityGatewayError(Exception):
    """Base exception for all identity gateway errors."""

    error_code = "INTERNAL_ERROR"
    status_code = 500
    default_message = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(IdentityGatewayError):
    """Raised when request data is malformed."""

    error_code = "VALIDATION_ERROR"
    status_code = 400
    default_message = "Invalid request data"


class InvalidNationalIdError(ValidationError):
    """Raised when registration carries an unusable national ID.

    The message is deliberately generic: callers never learn which check
    (shape, date or checksum) rejected the number.
    """

    error_code = "INVALID_ID"
    default_message = "Invalid South African ID number"


class ConflictError(IdentityGatewayError):
    """Raised when a user with the same username, email or ID already exists."""

    error_code = "USER_EXISTS"
    status_code = 409
    default_message = "User already exists"


class AuthenticationError(IdentityGatewayError):
    """Raised on bad credentials. The message never says which part was wrong."""

    error_code = "INVALID_CREDENTIALS"
    status_code = 401
    default_message = "Invalid username or password"


class LockedError(IdentityGatewayError):
    """Raised when an account is inside its lockout window."""

    error_code = "ACCOUNT_LOCKED"
    status_code = 423
    default_message = "Account is temporarily locked. Please try again later."


class InvalidTokenError(IdentityGatewayError):
    """Raised when a bearer token fails verification."""

    error_code = "INVALID_TOKEN"
    status_code = 401
    default_message = "Invalid or expired token"

    MALFORMED = "malformed"
    BAD_SIGNATURE = "bad_signature"
    EXPIRED = "expired"
    WRONG_TYPE = "wrong_type"

    def __init__(self, reason: str = MALFORMED, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message)


class DependencyError(IdentityGatewayError):
    """Raised when an external collaborator (identity provider, store, mail) fails."""

    error_code = "SERVICE_UNAVAILABLE"
    status_code = 503
    default_message = "A required service is temporarily unavailable"

    def __init__(self, dependency: str, message: Optional[str] = None):
        self.dependency = dependency
        super().__init__(message)
