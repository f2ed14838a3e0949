"""
Single-use WebAuthn challenges bound to an identity.

Each identity is either idle or holds exactly one pending challenge for one
ceremony purpose. Issuing a new challenge supersedes the old one; finishing
a ceremony claims it with a conditional clear.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Union

from webauthn.helpers import bytes_to_base64url, base64url_to_bytes

from .config import AuthConfig, config as default_config
from .exceptions import AuthError, AuthErrorCode
from .models import Identity, as_utc, utc_now
from .store import StoreProvider

logger = logging.getLogger(__name__)


class CeremonyPurpose(str, Enum):
    REGISTRATION = "registration"
    AUTHENTICATION = "authentication"


@dataclass(frozen=True)
class Idle:
    """No ceremony outstanding."""


@dataclass(frozen=True)
class PendingChallenge:
    value: str  # base64url, as sent to the client
    purpose: CeremonyPurpose
    issued_at: datetime

    @property
    def raw(self) -> bytes:
        return base64url_to_bytes(self.value)

    def expired(self, ttl_seconds: int, now: Optional[datetime] = None) -> bool:
        if ttl_seconds <= 0:
            return False
        now = now or utc_now()
        return now - self.issued_at > timedelta(seconds=ttl_seconds)


ChallengeState = Union[Idle, PendingChallenge]


def challenge_state(identity: Identity) -> ChallengeState:
    """Decode the identity's pending-challenge columns."""
    if not identity.pending_challenge:
        return Idle()
    try:
        purpose = CeremonyPurpose(identity.pending_purpose)
    except ValueError:
        logger.warning(f"Identity {identity.handle} has unknown ceremony purpose {identity.pending_purpose!r}")
        return Idle()
    return PendingChallenge(
        value=identity.pending_challenge,
        purpose=purpose,
        issued_at=as_utc(identity.challenge_issued_at) or utc_now(),
    )


class ChallengeIssuer:
    """Generates challenges and binds them to identities."""

    def __init__(self, store: StoreProvider, config: Optional[AuthConfig] = None):
        self.store = store
        self.config = config or default_config

    def generate(self, purpose: CeremonyPurpose) -> PendingChallenge:
        """Create a fresh challenge without binding it to anyone yet."""
        raw = secrets.token_bytes(self.config.CHALLENGE_LENGTH_BYTES)
        return PendingChallenge(
            value=bytes_to_base64url(raw),
            purpose=purpose,
            issued_at=utc_now(),
        )

    @staticmethod
    def attach(identity: Identity, challenge: PendingChallenge) -> Identity:
        """Set the challenge on an identity that has not been stored yet."""
        identity.pending_challenge = challenge.value
        identity.pending_purpose = challenge.purpose.value
        identity.challenge_issued_at = challenge.issued_at
        return identity

    def issue(self, identity: Identity, purpose: CeremonyPurpose) -> PendingChallenge:
        """Generate a challenge and store it, superseding any previous one."""
        challenge = self.generate(purpose)
        if not self.store.identities.set_pending_challenge(
            identity.handle, challenge.value, challenge.purpose.value, challenge.issued_at
        ):
            raise AuthError(
                AuthErrorCode.USER_NOT_FOUND,
                "User not found"
            )
        self.attach(identity, challenge)
        logger.debug(f"Issued {purpose.value} challenge {challenge.value[:8]}... for {identity.handle}")
        return challenge

    def pending_for(self, identity: Identity) -> PendingChallenge:
        """
        Return the outstanding challenge or raise challenge_not_found.
        """
        state = challenge_state(identity)
        if isinstance(state, Idle):
            raise AuthError(
                AuthErrorCode.CHALLENGE_NOT_FOUND,
                "User or challenge not found. Please try again."
            )
        return state

    def is_usable(self, challenge: PendingChallenge, purpose: CeremonyPurpose) -> Optional[str]:
        """Return a failure reason, or None if the challenge may be verified against."""
        if challenge.purpose is not purpose:
            return f"challenge_purpose_mismatch:{challenge.purpose.value}"
        if challenge.expired(self.config.CHALLENGE_TTL_SECONDS):
            return "challenge_expired"
        return None

    def reclaim_abandoned(self, identity: Identity) -> bool:
        """
        Delete a provisional identity whose registration challenge expired.

        Returns True if the identity is gone and its email is free again.
        """
        state = challenge_state(identity)
        if not isinstance(state, PendingChallenge) or state.purpose is not CeremonyPurpose.REGISTRATION:
            return False
        if identity.password_hash is not None or not state.expired(self.config.CHALLENGE_TTL_SECONDS):
            return False
        removed = self.store.identities.delete_provisional(identity.handle, state.value)
        if removed:
            logger.info(f"Reclaimed abandoned registration for {identity.handle}")
        return removed

    def consume(self, identity: Identity, challenge: PendingChallenge) -> bool:
        """Claim the challenge; only one caller can ever win."""
        return self.store.identities.clear_pending_challenge(identity.handle, challenge.value)
