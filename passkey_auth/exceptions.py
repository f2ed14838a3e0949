"""
Authentication exceptions.
"""

from enum import Enum
from typing import Optional, Dict, Any


class AuthErrorCode(Enum):
    """Error codes for authentication failures."""
    BAD_REQUEST = "bad_request"
    USER_ALREADY_EXISTS = "user_already_exists"
    USER_NOT_FOUND = "user_not_found"
    CHALLENGE_NOT_FOUND = "challenge_not_found"
    CREDENTIAL_NOT_FOUND = "credential_not_found"
    VERIFICATION_FAILED = "verification_failed"
    REGISTRATION_FAILED = "registration_failed"
    INVALID_CREDENTIALS = "invalid_credentials"
    INTERNAL_ERROR = "internal_error"


class AuthError(Exception):
    """Base authentication exception."""

    def __init__(
        self,
        code: AuthErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        retryable: bool = False
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        self.retryable = retryable
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        body = {
            "error": self.code.value,
            "message": self.message,
            "details": self.details
        }
        if self.retryable:
            body["retryable"] = True
        return body


def store_unavailable(reason: str) -> AuthError:
    """Error raised when the durable store cannot be reached."""
    return AuthError(
        AuthErrorCode.INTERNAL_ERROR,
        "Service temporarily unavailable",
        {"reason": reason}
    )
