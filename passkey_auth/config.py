"""
Configuration for the passkey authentication service.
"""

import os
from typing import Optional


class AuthConfig:
    """Simple configuration using environment variables."""

    # Database
    DATABASE_URL: str = os.getenv("AUTH_DATABASE_URL", "sqlite:///./passkey_auth.db")

    # WebAuthn relying party
    WEBAUTHN_RP_ID: str = os.getenv("WEBAUTHN_RP_ID", "localhost")
    WEBAUTHN_RP_NAME: str = os.getenv("WEBAUTHN_RP_NAME", "Passkey Auth Demo")
    WEBAUTHN_ORIGIN: str = os.getenv("WEBAUTHN_ORIGIN", f"http://{WEBAUTHN_RP_ID}:3000")
    WEBAUTHN_RESIDENT_KEY: str = os.getenv("WEBAUTHN_RESIDENT_KEY", "required")
    WEBAUTHN_AUTHENTICATOR_ATTACHMENT: Optional[str] = (
        os.getenv("WEBAUTHN_AUTHENTICATOR_ATTACHMENT", "platform") or None
    )
    WEBAUTHN_TIMEOUT_MS: int = int(os.getenv("WEBAUTHN_TIMEOUT_MS", "60000"))

    # Ceremony state
    CHALLENGE_LENGTH_BYTES: int = 32
    CHALLENGE_TTL_SECONDS: int = int(os.getenv("CHALLENGE_TTL_SECONDS", "300"))  # 0 disables expiry
    VERIFICATION_TIMEOUT_SECONDS: float = float(os.getenv("VERIFICATION_TIMEOUT_SECONDS", "5.0"))

    # Application
    API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("API_PORT", "8080"))
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    RESIDENT_KEY_POLICIES = ("required", "preferred", "discouraged")
    AUTHENTICATOR_ATTACHMENTS = ("platform", "cross-platform")

    def validate(self):
        """Validate settings, reporting every problem at once."""
        problems = []

        if not self.DATABASE_URL:
            problems.append("AUTH_DATABASE_URL is empty")
        if not self.WEBAUTHN_RP_ID:
            problems.append("WEBAUTHN_RP_ID is empty")
        if not self.WEBAUTHN_RP_NAME:
            problems.append("WEBAUTHN_RP_NAME is empty")
        if not self.WEBAUTHN_ORIGIN.startswith(("http://", "https://")):
            problems.append(f"WEBAUTHN_ORIGIN must be an http(s) origin, got {self.WEBAUTHN_ORIGIN!r}")
        if self.WEBAUTHN_RESIDENT_KEY not in self.RESIDENT_KEY_POLICIES:
            problems.append(f"WEBAUTHN_RESIDENT_KEY must be one of {', '.join(self.RESIDENT_KEY_POLICIES)}")
        if (self.WEBAUTHN_AUTHENTICATOR_ATTACHMENT is not None
                and self.WEBAUTHN_AUTHENTICATOR_ATTACHMENT not in self.AUTHENTICATOR_ATTACHMENTS):
            problems.append(
                f"WEBAUTHN_AUTHENTICATOR_ATTACHMENT must be one of {', '.join(self.AUTHENTICATOR_ATTACHMENTS)}"
            )
        if self.CHALLENGE_TTL_SECONDS < 0:
            problems.append("CHALLENGE_TTL_SECONDS must not be negative")
        if self.VERIFICATION_TIMEOUT_SECONDS <= 0:
            problems.append("VERIFICATION_TIMEOUT_SECONDS must be positive")

        if problems:
            raise ValueError(f"Invalid auth configuration: {'; '.join(problems)}")


# Create instance
config = AuthConfig()
