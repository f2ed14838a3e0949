"""
Shared fixtures for passkey_auth tests.

The store is an in-memory SQLite database per test. SoftAuthenticator
produces real attestation and assertion responses (P-256 keys, "none"
attestation) so verification goes through py_webauthn unmodified.
"""

import hashlib
import json
import secrets
import struct
from typing import Any, Dict, Optional

import cbor2
import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from webauthn.helpers import bytes_to_base64url

from passkey_auth.config import AuthConfig
from passkey_auth.startup import build_services
from passkey_auth.store import StoreProvider
from passkey_auth.security_logger import SecurityLogger

RP_ID = "localhost"
ORIGIN = "http://localhost:3000"

# authenticator data flags
FLAG_UP = 0x01
FLAG_UV = 0x04
FLAG_AT = 0x40


class SoftAuthenticator:
    """A software passkey: one EC P-256 key, one credential id, one counter."""

    def __init__(self, rp_id: str = RP_ID, origin: str = ORIGIN, sign_count: int = 0):
        self.rp_id = rp_id
        self.origin = origin
        self.sign_count = sign_count
        self.private_key = ec.generate_private_key(ec.SECP256R1())
        self.credential_id = secrets.token_bytes(32)

    @property
    def credential_id_b64(self) -> str:
        return bytes_to_base64url(self.credential_id)

    def _rp_id_hash(self) -> bytes:
        return hashlib.sha256(self.rp_id.encode()).digest()

    def _cose_public_key(self) -> bytes:
        numbers = self.private_key.public_key().public_numbers()
        return cbor2.dumps({
            1: 2,    # kty: EC2
            3: -7,   # alg: ES256
            -1: 1,   # crv: P-256
            -2: numbers.x.to_bytes(32, "big"),
            -3: numbers.y.to_bytes(32, "big"),
        })

    def _client_data(self, ceremony: str, challenge: str, origin: Optional[str]) -> bytes:
        return json.dumps({
            "type": ceremony,
            "challenge": challenge,
            "origin": origin or self.origin,
            "crossOrigin": False,
        }).encode()

    def create(
        self,
        options: Dict[str, Any],
        challenge: Optional[str] = None,
        origin: Optional[str] = None
    ) -> Dict[str, Any]:
        """Answer credential creation options with a "none" attestation."""
        client_data = self._client_data("webauthn.create", challenge or options["challenge"], origin)
        auth_data = (
            self._rp_id_hash()
            + bytes([FLAG_UP | FLAG_UV | FLAG_AT])
            + struct.pack(">I", self.sign_count)
            + b"\x00" * 16  # aaguid
            + struct.pack(">H", len(self.credential_id))
            + self.credential_id
            + self._cose_public_key()
        )
        attestation_object = cbor2.dumps({"fmt": "none", "attStmt": {}, "authData": auth_data})
        return {
            "id": self.credential_id_b64,
            "rawId": self.credential_id_b64,
            "response": {
                "clientDataJSON": bytes_to_base64url(client_data),
                "attestationObject": bytes_to_base64url(attestation_object),
                "transports": ["internal", "hybrid"],
            },
            "type": "public-key",
            "clientExtensionResults": {},
        }

    def get(
        self,
        options: Dict[str, Any],
        sign_count: Optional[int] = None,
        challenge: Optional[str] = None,
        origin: Optional[str] = None
    ) -> Dict[str, Any]:
        """Answer credential request options; bumps the counter unless told otherwise."""
        self.sign_count = self.sign_count + 1 if sign_count is None else sign_count
        client_data = self._client_data("webauthn.get", challenge or options["challenge"], origin)
        auth_data = (
            self._rp_id_hash()
            + bytes([FLAG_UP | FLAG_UV])
            + struct.pack(">I", self.sign_count)
        )
        signature = self.private_key.sign(
            auth_data + hashlib.sha256(client_data).digest(),
            ec.ECDSA(hashes.SHA256())
        )
        return {
            "id": self.credential_id_b64,
            "rawId": self.credential_id_b64,
            "response": {
                "clientDataJSON": bytes_to_base64url(client_data),
                "authenticatorData": bytes_to_base64url(auth_data),
                "signature": bytes_to_base64url(signature),
            },
            "type": "public-key",
            "clientExtensionResults": {},
        }


@pytest.fixture
def auth_config():
    """Config pointing at an in-memory database and a localhost relying party."""
    cfg = AuthConfig()
    cfg.DATABASE_URL = "sqlite://"
    cfg.WEBAUTHN_RP_ID = RP_ID
    cfg.WEBAUTHN_RP_NAME = "Passkey Auth Test"
    cfg.WEBAUTHN_ORIGIN = ORIGIN
    cfg.WEBAUTHN_RESIDENT_KEY = "required"
    cfg.WEBAUTHN_AUTHENTICATOR_ATTACHMENT = "platform"
    cfg.CHALLENGE_TTL_SECONDS = 300
    cfg.VERIFICATION_TIMEOUT_SECONDS = 5.0
    cfg.ENVIRONMENT = "development"
    return cfg


@pytest.fixture
def store(auth_config):
    """Fresh in-memory store with tables created."""
    provider = StoreProvider.from_url(auth_config.DATABASE_URL)
    provider.create_all()
    yield provider
    provider.dispose()


@pytest.fixture
def audit():
    return SecurityLogger("passkey_auth.security.test")


@pytest.fixture
def services(auth_config, store, audit):
    return build_services(auth_config, store, audit)


@pytest.fixture
def authenticator():
    return SoftAuthenticator()
