"""
Service wiring plus startup and shutdown handlers.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .authentication import AuthenticationVerifier
from .challenge import ChallengeIssuer
from .config import AuthConfig, config as default_config
from .password import PasswordFallback
from .registration import RegistrationVerifier
from .security_logger import SecurityLogger, security_logger
from .store import StoreProvider
from .webauthn_service import WebAuthnService

logger = logging.getLogger(__name__)


@dataclass
class AuthServices:
    """Everything the HTTP layer needs, built once per process."""
    config: AuthConfig
    store: StoreProvider
    registration: RegistrationVerifier
    authentication: AuthenticationVerifier
    password: PasswordFallback


def build_services(
    config: Optional[AuthConfig] = None,
    store: Optional[StoreProvider] = None,
    audit: Optional[SecurityLogger] = None
) -> AuthServices:
    """Construct the store provider (unless given) and every verifier around it."""
    config = config or default_config
    store = store or StoreProvider.from_url(config.DATABASE_URL)
    audit = audit or security_logger

    issuer = ChallengeIssuer(store, config)
    webauthn_service = WebAuthnService(config)
    return AuthServices(
        config=config,
        store=store,
        registration=RegistrationVerifier(store, issuer, webauthn_service, config, audit),
        authentication=AuthenticationVerifier(store, issuer, webauthn_service, config, audit),
        password=PasswordFallback(store, audit=audit, issuer=issuer),
    )


def startup_auth_system(services: AuthServices):
    """Validate configuration and make sure the schema exists."""
    try:
        # Fail fast on bad settings
        services.config.validate()
        logger.info("Auth configuration validated")

        services.store.create_all()
        logger.info(
            f"Auth system initialized (rp_id={services.config.WEBAUTHN_RP_ID}, "
            f"origin={services.config.WEBAUTHN_ORIGIN})"
        )
    except ValueError as e:
        logger.error(f"Auth configuration validation failed: {e}")
        raise
    except Exception as e:
        logger.error(f"Failed to initialize auth system: {e}")
        raise


def shutdown_auth_system(services: AuthServices):
    """Release database connections."""
    try:
        services.store.dispose()
        logger.info("Auth system shutdown complete")
    except Exception as e:
        logger.error(f"Error during auth system shutdown: {e}")
