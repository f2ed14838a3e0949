"""
Helpers shared by the registration and authentication ceremonies.
"""

import asyncio
import logging
from typing import Callable, Optional, TypeVar

from email_validator import validate_email, EmailNotValidError

from .exceptions import AuthError, AuthErrorCode

logger = logging.getLogger(__name__)

T = TypeVar("T")


def normalize_email(email: Optional[str]) -> str:
    """Trim, validate and lower-case an email address."""
    if not email or not email.strip():
        raise AuthError(AuthErrorCode.BAD_REQUEST, "Email is required")

    email = email.strip()
    if len(email) > 320:  # RFC 5321 limit
        raise AuthError(AuthErrorCode.BAD_REQUEST, "Email address too long")

    try:
        validated = validate_email(email, check_deliverability=False)
    except EmailNotValidError as e:
        raise AuthError(AuthErrorCode.BAD_REQUEST, f"Invalid email format: {e}")
    return validated.normalized.lower()


def counter_advanced(stored: int, reported: int) -> bool:
    """
    Signature counters must strictly increase.

    The one exception is an authenticator that never counts: stored and
    reported both zero. Equal nonzero values are treated as a cloned key.
    """
    if stored == 0 and reported == 0:
        return True
    return reported > stored


async def bounded_call(operation: str, func: Callable[..., T], *args, timeout: float) -> T:
    """
    Run a blocking verification call off the event loop with a deadline.

    Raises a retryable internal_error on timeout; nothing has been written
    at that point so the client can simply retry.
    """
    try:
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout)
    except asyncio.TimeoutError:
        logger.error(f"{operation} timed out after {timeout}s")
        raise AuthError(
            AuthErrorCode.INTERNAL_ERROR,
            "Verification timed out, please retry",
            {"reason": "verification_timeout"},
            retryable=True
        )
