"""
Password fallback using Argon2id.

Shares the identity store with the passkey ceremonies. Argon2 hashing and
verification run in a worker thread so they never hold up the event loop.
"""

import asyncio
import logging
import secrets
from typing import Dict, Any, Optional

from argon2 import PasswordHasher
from argon2.exceptions import VerificationError, InvalidHashError

from .ceremony import normalize_email
from .challenge import ChallengeIssuer
from .exceptions import AuthError, AuthErrorCode
from .models import Identity, generate_user_handle
from .security_logger import SecurityLogger, security_logger as default_security_logger
from .store import StoreProvider

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"


class PasswordFallback:
    """Register and log in with email + password."""

    def __init__(
        self,
        store: StoreProvider,
        hasher: Optional[PasswordHasher] = None,
        audit: Optional[SecurityLogger] = None,
        issuer: Optional[ChallengeIssuer] = None
    ):
        self.store = store
        self.hasher = hasher or PasswordHasher()
        self.audit = audit or default_security_logger
        self.issuer = issuer
        # Verified against when the email is unknown so both failure paths do the same work
        self._dummy_hash = self.hasher.hash(secrets.token_urlsafe(16))

    async def register(
        self,
        email: str,
        display_name: str,
        password: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Create an identity with a password.

        Returns:
            Public identity fields

        Raises:
            AuthError: bad_request or user_already_exists
        """
        email = normalize_email(email)
        display_name = (display_name or "").strip()
        if not display_name or not password:
            raise AuthError(AuthErrorCode.BAD_REQUEST, "Email, name, and password are required")

        existing = self.store.identities.find_by_email(email)
        if existing and not (self.issuer and self.issuer.reclaim_abandoned(existing)):
            self.audit.password_event(
                email, "register", False, ip_address=ip_address, user_agent=user_agent,
                details={"reason": "user_exists"}
            )
            raise AuthError(
                AuthErrorCode.USER_ALREADY_EXISTS,
                "User with this email already exists",
                {"email": email}
            )

        identity = Identity(
            handle=generate_user_handle(),
            email=email,
            display_name=display_name,
            password_hash=await asyncio.to_thread(self.hasher.hash, password),
        )
        self.store.identities.insert(identity)

        self.audit.password_event(email, "register", True, ip_address=ip_address, user_agent=user_agent)
        return identity.to_public_dict()

    async def login(
        self,
        email: str,
        password: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Check a password.

        Unknown email, passkey-only identity and wrong password all raise the
        same invalid_credentials error.
        """
        try:
            email = normalize_email(email)
        except AuthError:
            raise AuthError(AuthErrorCode.INVALID_CREDENTIALS, INVALID_CREDENTIALS)
        if not password:
            raise AuthError(AuthErrorCode.BAD_REQUEST, "Email and password are required")

        identity = self.store.identities.find_by_email(email)
        stored_hash = identity.password_hash if identity else None

        verified = await asyncio.to_thread(self._verify, stored_hash or self._dummy_hash, password)
        if not verified or not stored_hash:
            self.audit.password_event(
                email, "login", False, ip_address=ip_address, user_agent=user_agent,
                details={"reason": "unknown_identity" if not stored_hash else "wrong_password"}
            )
            raise AuthError(AuthErrorCode.INVALID_CREDENTIALS, INVALID_CREDENTIALS)

        if self.hasher.check_needs_rehash(stored_hash):
            new_hash = await asyncio.to_thread(self.hasher.hash, password)
            self.store.identities.update_password_hash(identity.handle, new_hash)
            logger.info(f"Re-hashed password for {identity.handle} with current parameters")

        self.audit.password_event(email, "login", True, ip_address=ip_address, user_agent=user_agent)
        return identity.to_public_dict()

    def _verify(self, password_hash: str, password: str) -> bool:
        try:
            return self.hasher.verify(password_hash, password)
        except (VerificationError, InvalidHashError):
            return False
