"""
Durable storage for identities and credentials.

Every operation is one short transaction against a single row, so the
database's own row-level atomicity is all the ceremonies rely on. State
transitions that can race (claiming a challenge, advancing a counter) are
written as conditional UPDATEs and report whether they won.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .exceptions import AuthError, AuthErrorCode, store_unavailable
from .models import Base, Identity, Credential, utc_now

logger = logging.getLogger(__name__)


def create_store_engine(database_url: str) -> Engine:
    """Create an engine with pooling suited to the backend."""
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every session sees an empty database
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)

    return create_engine(
        database_url,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True  # Verify connections before use
    )


class StoreProvider:
    """Owns the engine and session factory; built once at startup."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._session_factory = sessionmaker(
            bind=engine, autoflush=False, expire_on_commit=False
        )
        self.identities = IdentityStore(self)
        self.credentials = CredentialStore(self)

    @classmethod
    def from_url(cls, database_url: str) -> "StoreProvider":
        return cls(create_store_engine(database_url))

    def create_all(self):
        Base.metadata.create_all(bind=self.engine)
        logger.info("Auth store tables ensured")

    def dispose(self):
        self.engine.dispose()

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Store health check failed: {e}")
            return False

    @contextmanager
    def session(self) -> Iterator[Session]:
        """
        Yield a session that commits on success.

        IntegrityError propagates unchanged so callers can translate it;
        any other database error becomes an internal_error AuthError.
        """
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except IntegrityError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Database error: {e}")
            raise store_unavailable("database_error") from e
        finally:
            db.close()


class IdentityStore:
    """Identity records keyed by handle, looked up by email."""

    def __init__(self, provider: StoreProvider):
        self._provider = provider

    def insert(self, identity: Identity) -> Identity:
        try:
            with self._provider.session() as db:
                db.add(identity)
        except IntegrityError:
            raise AuthError(
                AuthErrorCode.USER_ALREADY_EXISTS,
                "User with this email already exists",
                {"email": identity.email}
            )
        return identity

    def find_by_email(self, email: str) -> Optional[Identity]:
        with self._provider.session() as db:
            return db.query(Identity).filter_by(email=email).first()

    def find_by_handle(self, handle: str) -> Optional[Identity]:
        with self._provider.session() as db:
            return db.query(Identity).filter_by(handle=handle).first()

    def set_pending_challenge(
        self,
        handle: str,
        challenge: str,
        purpose: str,
        issued_at: datetime
    ) -> bool:
        """Overwrite whatever challenge was outstanding for this identity."""
        with self._provider.session() as db:
            updated = db.query(Identity).filter(Identity.handle == handle).update(
                {
                    Identity.pending_challenge: challenge,
                    Identity.pending_purpose: purpose,
                    Identity.challenge_issued_at: issued_at,
                },
                synchronize_session=False
            )
        return updated == 1

    def clear_pending_challenge(self, handle: str, challenge: str) -> bool:
        """
        Clear the pending challenge only if it is still `challenge`.

        Returns False when another request already consumed it or a newer
        challenge superseded it.
        """
        with self._provider.session() as db:
            updated = db.query(Identity).filter(
                Identity.handle == handle,
                Identity.pending_challenge == challenge
            ).update(
                {
                    Identity.pending_challenge: None,
                    Identity.pending_purpose: None,
                    Identity.challenge_issued_at: None,
                },
                synchronize_session=False
            )
        return updated == 1

    def update_password_hash(self, handle: str, password_hash: str) -> bool:
        with self._provider.session() as db:
            updated = db.query(Identity).filter(Identity.handle == handle).update(
                {Identity.password_hash: password_hash},
                synchronize_session=False
            )
        return updated == 1

    def delete_provisional(self, handle: str, challenge: Optional[str] = None) -> bool:
        """
        Delete an identity that has neither a password nor any credential.

        With `challenge`, the delete only happens while that challenge is
        still pending; once another request has claimed it the identity
        belongs to that request and is left alone.
        """
        with self._provider.session() as db:
            if db.query(Credential).filter_by(owner_handle=handle).count():
                return False
            query = db.query(Identity).filter(
                Identity.handle == handle,
                Identity.password_hash.is_(None)
            )
            if challenge is not None:
                query = query.filter(Identity.pending_challenge == challenge)
            deleted = query.delete(synchronize_session=False)
        return deleted == 1


class CredentialStore:
    """Credentials keyed globally by credential id."""

    def __init__(self, provider: StoreProvider):
        self._provider = provider

    def insert(self, credential: Credential) -> Credential:
        try:
            with self._provider.session() as db:
                db.add(credential)
        except IntegrityError as e:
            logger.error(f"Credential id collision for owner {credential.owner_handle}: {e}")
            raise AuthError(
                AuthErrorCode.INTERNAL_ERROR,
                "Credential could not be stored",
                {"reason": "credential_id_collision"}
            )
        return credential

    def find_by_id(self, credential_id: str) -> Optional[Credential]:
        with self._provider.session() as db:
            return db.query(Credential).filter_by(credential_id=credential_id).first()

    def list_for_owner(self, owner_handle: str) -> List[Credential]:
        with self._provider.session() as db:
            return (
                db.query(Credential)
                .filter_by(owner_handle=owner_handle)
                .order_by(Credential.created_at)
                .all()
            )

    def count_for_owner(self, owner_handle: str) -> int:
        with self._provider.session() as db:
            return db.query(Credential).filter_by(owner_handle=owner_handle).count()

    def advance_sign_count(self, credential_id: str, expected_current: int, new_count: int) -> bool:
        """
        Move the counter from `expected_current` to `new_count`.

        Refuses to lower the counter and returns False if another request
        changed it since it was read.
        """
        if new_count < expected_current:
            return False
        with self._provider.session() as db:
            updated = db.query(Credential).filter(
                Credential.credential_id == credential_id,
                Credential.sign_count == expected_current
            ).update(
                {
                    Credential.sign_count: new_count,
                    Credential.last_used_at: utc_now(),
                },
                synchronize_session=False
            )
        return updated == 1
