"""
Passwordless authentication with WebAuthn passkeys and a password fallback.
"""

from .config import AuthConfig, config
from .exceptions import AuthError, AuthErrorCode
from .models import Identity, Credential
from .store import StoreProvider
from .challenge import ChallengeIssuer, CeremonyPurpose, PendingChallenge, Idle
from .webauthn_service import WebAuthnService, RegistrationVerified, AssertionVerified, Rejected
from .registration import RegistrationVerifier
from .authentication import AuthenticationVerifier
from .password import PasswordFallback
from .startup import AuthServices, build_services
from .api import router as auth_router
from .app import create_app

__version__ = "1.0.0"

__all__ = [
    'AuthConfig',
    'config',
    'AuthError',
    'AuthErrorCode',
    'Identity',
    'Credential',
    'StoreProvider',
    'ChallengeIssuer',
    'CeremonyPurpose',
    'PendingChallenge',
    'Idle',
    'WebAuthnService',
    'RegistrationVerified',
    'AssertionVerified',
    'Rejected',
    'RegistrationVerifier',
    'AuthenticationVerifier',
    'PasswordFallback',
    'AuthServices',
    'build_services',
    'auth_router',
    'create_app',
]
