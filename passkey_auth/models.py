"""
Database models for passkey authentication.
"""

import secrets
from datetime import datetime, timezone
from typing import Dict, Any, Optional

from sqlalchemy import Column, String, DateTime, LargeBinary, BigInteger, JSON
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def generate_user_handle() -> str:
    """Opaque WebAuthn user handle, unrelated to anything the user typed."""
    return secrets.token_urlsafe(32)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo on the way back; treat naive values as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Identity(Base):
    """A registered (or provisionally registered) user."""
    __tablename__ = "identities"

    handle = Column(String(64), primary_key=True)  # WebAuthn user handle, never derived from email
    email = Column(String(320), unique=True, nullable=False, index=True)  # RFC 5321 max length
    display_name = Column(String(255), nullable=False)
    password_hash = Column(String(255), nullable=True)

    # Outstanding ceremony, all three set together or all NULL
    pending_challenge = Column(String(128), nullable=True)
    pending_purpose = Column(String(16), nullable=True)
    challenge_issued_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    def to_public_dict(self) -> Dict[str, Any]:
        """Fields that are safe to return to the client."""
        return {
            "id": self.handle,
            "email": self.email,
            "name": self.display_name
        }

    def __repr__(self):
        return f"<Identity(handle={self.handle}, email={self.email})>"


class Credential(Base):
    """A public-key credential registered to an identity."""
    __tablename__ = "credentials"

    # base64url, the form the client sends back in assertions
    credential_id = Column(String(1024), primary_key=True)
    # Weak reference: deleting credentials never touches the identity
    owner_handle = Column(String(64), nullable=False, index=True)
    public_key = Column(LargeBinary, nullable=False)
    sign_count = Column(BigInteger, nullable=False, default=0)
    transports = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Credential(id={self.credential_id[:16]}..., owner={self.owner_handle}, count={self.sign_count})>"
