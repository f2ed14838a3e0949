"""
Passkey authentication ceremony.

begin issues a login challenge listing the identity's credentials; finish
verifies the assertion against the stored public key and counter, then
claims the challenge and advances the counter with conditional writes so a
replayed or concurrent finish can never credit the same assertion twice.
"""

import logging
from typing import Dict, Any, NoReturn, Optional

from .challenge import ChallengeIssuer, CeremonyPurpose, PendingChallenge
from .ceremony import normalize_email, bounded_call, counter_advanced
from .config import AuthConfig, config as default_config
from .exceptions import AuthError, AuthErrorCode
from .models import Identity
from .security_logger import SecurityLogger, security_logger as default_security_logger
from .store import StoreProvider
from .webauthn_service import WebAuthnService, Rejected

logger = logging.getLogger(__name__)

GENERIC_FAILURE = "Login failed: the credential could not be verified"


class AuthenticationVerifier:
    """Begin/finish for proving possession of a registered passkey."""

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
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Issue a login challenge and return credential request options.

        An identity without credentials still gets options; the ceremony
        then fails at finish rather than revealing that state here.
        """
        email = normalize_email(email)
        identity = self.store.identities.find_by_email(email)
        if not identity:
            self.audit.webauthn_event(
                email, "login_begin", False, ip_address=ip_address, user_agent=user_agent,
                details={"reason": "user_not_found"}
            )
            raise AuthError(AuthErrorCode.USER_NOT_FOUND, "User not found")

        credentials = self.store.credentials.list_for_owner(identity.handle)
        challenge = self.issuer.issue(identity, CeremonyPurpose.AUTHENTICATION)

        self.audit.webauthn_event(
            email, "login_begin", True, user_id=identity.handle,
            ip_address=ip_address, user_agent=user_agent,
            details={"credential_count": len(credentials)}
        )
        return self.webauthn.authentication_options(credentials, challenge.raw)

    async def finish(
        self,
        email: str,
        response: Dict[str, Any],
        timeout: Optional[float] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Verify an assertion and advance the credential's counter.

        Args:
            email: Identity the ceremony was started for
            response: AuthenticationResponseJSON from the client
            timeout: Seconds allowed for verification, defaults to config

        Returns:
            {"verified": True, "user": {id, email, name}}

        Raises:
            AuthError: challenge_not_found, credential_not_found,
                verification_failed, or internal_error (retryable on timeout)
        """
        email = normalize_email(email)
        credential_id = response.get("id") if isinstance(response, dict) else None
        if not credential_id or not isinstance(credential_id, str):
            raise AuthError(AuthErrorCode.BAD_REQUEST, "Credential id is required")

        identity = self.store.identities.find_by_email(email)
        if not identity:
            raise AuthError(
                AuthErrorCode.CHALLENGE_NOT_FOUND,
                "User or challenge not found. Please try again."
            )
        challenge = self.issuer.pending_for(identity)

        unusable = self.issuer.is_usable(challenge, CeremonyPurpose.AUTHENTICATION)
        if unusable:
            self._fail(identity, challenge, unusable, ip_address, user_agent)

        # Global lookup: the credential id is the key the client hands back
        credential = self.store.credentials.find_by_id(credential_id)
        if not credential:
            self.issuer.consume(identity, challenge)
            self.audit.webauthn_event(
                email, "login_finish", False, user_id=identity.handle,
                ip_address=ip_address, user_agent=user_agent,
                details={"reason": "credential_not_found"}
            )
            raise AuthError(AuthErrorCode.CREDENTIAL_NOT_FOUND, "Authenticator not found.")

        if credential.owner_handle != identity.handle:
            self.audit.security_violation(
                "foreign_credential", email=email, user_id=identity.handle,
                ip_address=ip_address, user_agent=user_agent,
                details={"credential_owner": credential.owner_handle}
            )
            self._fail(identity, challenge, "credential_owner_mismatch", ip_address, user_agent)

        stored_count = credential.sign_count
        outcome = await bounded_call(
            "Authentication verification",
            self.webauthn.verify_authentication,
            response,
            challenge.raw,
            credential,
            timeout=timeout if timeout is not None else self.config.VERIFICATION_TIMEOUT_SECONDS,
        )
        if isinstance(outcome, Rejected):
            self._fail(identity, challenge, outcome.reason, ip_address, user_agent)

        if not counter_advanced(stored_count, outcome.new_sign_count):
            self.audit.security_violation(
                "sign_count_regression", email=email, user_id=identity.handle,
                ip_address=ip_address, user_agent=user_agent,
                details={"stored": stored_count, "reported": outcome.new_sign_count}
            )
            self._fail(identity, challenge, "sign_count_regression", ip_address, user_agent)

        if not self.issuer.consume(identity, challenge):
            self.audit.security_violation(
                "challenge_replay", email=email, user_id=identity.handle,
                ip_address=ip_address, user_agent=user_agent,
                details={"ceremony": "authentication"}
            )
            raise AuthError(
                AuthErrorCode.CHALLENGE_NOT_FOUND,
                "User or challenge not found. Please try again."
            )

        if not self.store.credentials.advance_sign_count(
            credential.credential_id, stored_count, outcome.new_sign_count
        ):
            # Someone else moved the counter after we read it
            self.audit.security_violation(
                "sign_count_race", email=email, user_id=identity.handle,
                ip_address=ip_address, user_agent=user_agent,
                details={"stored": stored_count, "reported": outcome.new_sign_count}
            )
            raise AuthError(AuthErrorCode.VERIFICATION_FAILED, GENERIC_FAILURE)

        self.audit.webauthn_event(
            email, "login_finish", True, user_id=identity.handle,
            ip_address=ip_address, user_agent=user_agent,
            details={"sign_count": outcome.new_sign_count}
        )
        return {"verified": True, "user": identity.to_public_dict()}

    def _fail(
        self,
        identity: Identity,
        challenge: PendingChallenge,
        reason: str,
        ip_address: Optional[str],
        user_agent: Optional[str]
    ) -> NoReturn:
        """Clear the challenge so it cannot be replayed, log the reason, raise generically."""
        self.issuer.consume(identity, challenge)
        self.audit.webauthn_event(
            identity.email, "login_finish", False, user_id=identity.handle,
            ip_address=ip_address, user_agent=user_agent,
            details={"reason": reason}
        )
        raise AuthError(AuthErrorCode.VERIFICATION_FAILED, GENERIC_FAILURE)
