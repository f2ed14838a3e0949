"""
Passkey registration ceremony.

begin creates a provisional identity holding the registration challenge;
finish verifies the attestation and either stores the credential or
removes the provisional identity so a failed registration leaves no trace.
"""

import logging
from typing import Dict, Any, Optional

from .challenge import ChallengeIssuer, CeremonyPurpose
from .ceremony import normalize_email, bounded_call
from .config import AuthConfig, config as default_config
from .exceptions import AuthError, AuthErrorCode
from .models import Identity, Credential, generate_user_handle
from .security_logger import SecurityLogger, security_logger as default_security_logger
from .store import StoreProvider
from .webauthn_service import WebAuthnService, Rejected

logger = logging.getLogger(__name__)


class RegistrationVerifier:
    """Begin/finish for creating a new identity with a passkey."""

    def __init__(
        self,
        store: StoreProvider,
        issuer: ChallengeIssuer,
        webauthn_service: WebAuthnService,
        config: Optional[AuthConfig] = None,
        audit: Optional[SecurityLogger] = None
    ):
        self.store = store
        self.issuer = issuer
        self.webauthn = webauthn_service
        self.config = config or default_config
        self.audit = audit or default_security_logger

    def begin(
        self,
        email: str,
        display_name: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Create a provisional identity and return credential creation options.

        Raises:
            AuthError: bad_request for missing fields, user_already_exists
                if the email is taken by anything but an expired
                abandoned registration
        """
        email = normalize_email(email)
        display_name = (display_name or "").strip()
        if not display_name:
            raise AuthError(AuthErrorCode.BAD_REQUEST, "Email and name are required")

        existing = self.store.identities.find_by_email(email)
        if existing and not self.issuer.reclaim_abandoned(existing):
            self.audit.webauthn_event(
                email, "register_begin", False, ip_address=ip_address, user_agent=user_agent,
                details={"reason": "user_exists"}
            )
            raise AuthError(
                AuthErrorCode.USER_ALREADY_EXISTS,
                "User already exists",
                {"email": email}
            )

        challenge = self.issuer.generate(CeremonyPurpose.REGISTRATION)
        identity = Identity(
            handle=generate_user_handle(),
            email=email,
            display_name=display_name,
        )
        self.issuer.attach(identity, challenge)
        # Unique email index turns a concurrent duplicate into user_already_exists
        self.store.identities.insert(identity)

        self.audit.webauthn_event(
            email, "register_begin", True, user_id=identity.handle,
            ip_address=ip_address, user_agent=user_agent
        )
        return self.webauthn.registration_options(
            identity.handle, email, display_name, challenge.raw
        )

    async def finish(
        self,
        email: str,
        response: Dict[str, Any],
        timeout: Optional[float] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Verify the attestation response and persist the new credential.

        Args:
            email: Identity the ceremony was started for
            response: RegistrationResponseJSON from the client
            timeout: Seconds allowed for verification, defaults to config

        Returns:
            {"verified": True}

        Raises:
            AuthError: challenge_not_found, registration_failed, or
                internal_error (retryable on timeout, or credential id collision)
        """
        email = normalize_email(email)
        identity = self.store.identities.find_by_email(email)
        if not identity:
            raise AuthError(
                AuthErrorCode.CHALLENGE_NOT_FOUND,
                "User or challenge not found. Please try again."
            )
        challenge = self.issuer.pending_for(identity)

        unusable = self.issuer.is_usable(challenge, CeremonyPurpose.REGISTRATION)
        if unusable:
            self._fail(identity, challenge, unusable, ip_address, user_agent)

        outcome = await bounded_call(
            "Registration verification",
            self.webauthn.verify_registration,
            response,
            challenge.raw,
            timeout=timeout if timeout is not None else self.config.VERIFICATION_TIMEOUT_SECONDS,
        )
        if isinstance(outcome, Rejected):
            self._fail(identity, challenge, outcome.reason, ip_address, user_agent)

        if not self.issuer.consume(identity, challenge):
            self.audit.security_violation(
                "challenge_replay", email=email, user_id=identity.handle,
                ip_address=ip_address, user_agent=user_agent,
                details={"ceremony": "registration"}
            )
            raise AuthError(
                AuthErrorCode.CHALLENGE_NOT_FOUND,
                "User or challenge not found. Please try again."
            )

        try:
            self.store.credentials.insert(Credential(
                credential_id=outcome.credential_id,
                owner_handle=identity.handle,
                public_key=outcome.public_key,
                sign_count=outcome.sign_count,
                transports=outcome.transports,
            ))
        except AuthError:
            self.store.identities.delete_provisional(identity.handle)
            raise

        self.audit.webauthn_event(
            email, "register_finish", True, user_id=identity.handle,
            ip_address=ip_address, user_agent=user_agent,
            details={"credential_id": outcome.credential_id[:16]}
        )
        return {"verified": True}

    def _fail(self, identity, challenge, reason, ip_address, user_agent):
        """Roll back a provisional identity, or just clear the challenge, then raise."""
        removed = self.store.identities.delete_provisional(identity.handle, challenge.value)
        if not removed:
            self.issuer.consume(identity, challenge)

        self.audit.webauthn_event(
            identity.email, "register_finish", False, user_id=identity.handle,
            ip_address=ip_address, user_agent=user_agent,
            details={"reason": reason, "identity_removed": removed}
        )
        raise AuthError(
            AuthErrorCode.REGISTRATION_FAILED,
            "Registration failed: the credential could not be verified"
        )
