"""
WebAuthn library boundary.

Options are built from challenges we generate ourselves; responses are
verified by py_webauthn and decoded straight into tagged outcomes so no
untyped library objects travel further into the service.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Sequence, Union

from webauthn import (
    generate_registration_options,
    verify_registration_response,
    generate_authentication_options,
    verify_authentication_response,
    options_to_json,
)
from webauthn.helpers import bytes_to_base64url, base64url_to_bytes
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorAttachment,
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from .config import AuthConfig, config as default_config
from .models import Credential

logger = logging.getLogger(__name__)

KNOWN_TRANSPORTS = {t.value for t in AuthenticatorTransport}


@dataclass(frozen=True)
class RegistrationVerified:
    credential_id: str  # base64url
    public_key: bytes
    sign_count: int
    transports: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class AssertionVerified:
    credential_id: str  # base64url
    new_sign_count: int


@dataclass(frozen=True)
class Rejected:
    reason: str


RegistrationOutcome = Union[RegistrationVerified, Rejected]
AssertionOutcome = Union[AssertionVerified, Rejected]


def filter_transports(transports: Any) -> List[str]:
    """Keep only the transport hints the library knows about."""
    if not isinstance(transports, (list, tuple)):
        return []
    return [t for t in transports if isinstance(t, str) and t in KNOWN_TRANSPORTS]


class WebAuthnService:
    """Handle WebAuthn option generation and response verification."""

    def __init__(self, config: Optional[AuthConfig] = None):
        self.config = config or default_config

    def registration_options(
        self,
        user_handle: str,
        email: str,
        display_name: str,
        challenge: bytes
    ) -> Dict[str, Any]:
        """
        Build credential creation options for the client.

        Args:
            user_handle: Opaque server-generated handle
            email: Used as the WebAuthn user name
            display_name: Shown by the authenticator
            challenge: Raw challenge bytes already bound to the identity

        Returns:
            JSON-ready options dict
        """
        attachment = self.config.WEBAUTHN_AUTHENTICATOR_ATTACHMENT
        options = generate_registration_options(
            rp_id=self.config.WEBAUTHN_RP_ID,
            rp_name=self.config.WEBAUTHN_RP_NAME,
            user_id=user_handle.encode("utf-8"),
            user_name=email,
            user_display_name=display_name,
            challenge=challenge,
            timeout=self.config.WEBAUTHN_TIMEOUT_MS,
            attestation=AttestationConveyancePreference.NONE,
            authenticator_selection=AuthenticatorSelectionCriteria(
                authenticator_attachment=AuthenticatorAttachment(attachment) if attachment else None,
                resident_key=ResidentKeyRequirement(self.config.WEBAUTHN_RESIDENT_KEY),
                user_verification=UserVerificationRequirement.REQUIRED,
            ),
        )
        return json.loads(options_to_json(options))

    def authentication_options(
        self,
        credentials: Sequence[Credential],
        challenge: bytes
    ) -> Dict[str, Any]:
        """Build credential request options listing the identity's credentials."""
        allow_credentials = [
            PublicKeyCredentialDescriptor(
                id=base64url_to_bytes(cred.credential_id),
                transports=[AuthenticatorTransport(t) for t in filter_transports(cred.transports)] or None,
            )
            for cred in credentials
        ]
        options = generate_authentication_options(
            rp_id=self.config.WEBAUTHN_RP_ID,
            challenge=challenge,
            timeout=self.config.WEBAUTHN_TIMEOUT_MS,
            allow_credentials=allow_credentials,
            user_verification=UserVerificationRequirement.REQUIRED,
        )
        return json.loads(options_to_json(options))

    def verify_registration(
        self,
        response: Dict[str, Any],
        expected_challenge: bytes
    ) -> RegistrationOutcome:
        """
        Verify an attestation response.

        Args:
            response: RegistrationResponseJSON from the client
            expected_challenge: The identity's pending challenge

        Returns:
            RegistrationVerified, or Rejected with the library's reason
        """
        try:
            verification = verify_registration_response(
                credential=response,
                expected_challenge=expected_challenge,
                expected_origin=self.config.WEBAUTHN_ORIGIN,
                expected_rp_id=self.config.WEBAUTHN_RP_ID,
                require_user_verification=True,
            )
        except Exception as e:
            logger.warning(f"WebAuthn registration verification failed: {e}")
            return Rejected(reason=f"{type(e).__name__}: {e}")

        raw_response = response.get("response") or {}
        return RegistrationVerified(
            credential_id=bytes_to_base64url(verification.credential_id),
            public_key=verification.credential_public_key,
            sign_count=verification.sign_count,
            transports=filter_transports(raw_response.get("transports")),
        )

    def verify_authentication(
        self,
        response: Dict[str, Any],
        expected_challenge: bytes,
        stored_credential: Credential
    ) -> AssertionOutcome:
        """
        Verify an assertion response against a stored credential.

        Args:
            response: AuthenticationResponseJSON from the client
            expected_challenge: The identity's pending challenge
            stored_credential: Credential whose public key and counter to check against

        Returns:
            AssertionVerified, or Rejected with the library's reason
        """
        try:
            verification = verify_authentication_response(
                credential=response,
                expected_challenge=expected_challenge,
                expected_origin=self.config.WEBAUTHN_ORIGIN,
                expected_rp_id=self.config.WEBAUTHN_RP_ID,
                credential_public_key=stored_credential.public_key,
                credential_current_sign_count=stored_credential.sign_count,
                require_user_verification=True,
            )
        except Exception as e:
            logger.warning(f"WebAuthn authentication verification failed: {e}")
            return Rejected(reason=f"{type(e).__name__}: {e}")

        return AssertionVerified(
            credential_id=bytes_to_base64url(verification.credential_id),
            new_sign_count=verification.new_sign_count,
        )
