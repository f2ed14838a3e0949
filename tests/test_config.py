"""
Tests for configuration validation.
"""

import pytest

from passkey_auth.config import AuthConfig


def test_defaults_are_valid():
    AuthConfig().validate()


def test_all_problems_are_reported_together(auth_config):
    auth_config.WEBAUTHN_RP_ID = ""
    auth_config.WEBAUTHN_ORIGIN = "localhost:3000"
    auth_config.VERIFICATION_TIMEOUT_SECONDS = 0

    with pytest.raises(ValueError) as exc_info:
        auth_config.validate()

    message = str(exc_info.value)
    assert "WEBAUTHN_RP_ID" in message
    assert "WEBAUTHN_ORIGIN" in message
    assert "VERIFICATION_TIMEOUT_SECONDS" in message


def test_unknown_resident_key_policy_is_rejected(auth_config):
    auth_config.WEBAUTHN_RESIDENT_KEY = "always"
    with pytest.raises(ValueError, match="WEBAUTHN_RESIDENT_KEY"):
        auth_config.validate()


def test_attachment_may_be_disabled(auth_config):
    auth_config.WEBAUTHN_AUTHENTICATOR_ATTACHMENT = None
    auth_config.validate()


def test_negative_challenge_ttl_is_rejected(auth_config):
    auth_config.CHALLENGE_TTL_SECONDS = -1
    with pytest.raises(ValueError, match="CHALLENGE_TTL_SECONDS"):
        auth_config.validate()


def test_zero_challenge_ttl_disables_expiry(auth_config):
    auth_config.CHALLENGE_TTL_SECONDS = 0
    auth_config.validate()
