"""
Tests for the password fallback.
"""

import asyncio
import threading
from datetime import timedelta

import pytest
from argon2 import PasswordHasher

from passkey_auth.exceptions import AuthError, AuthErrorCode
from passkey_auth.models import utc_now
from passkey_auth.password import PasswordFallback


def register(fallback, email, name, password):
    return asyncio.run(fallback.register(email, name, password))


def login(fallback, email, password):
    return asyncio.run(fallback.login(email, password))


class ThreadRecordingHasher(PasswordHasher):
    """Remembers which threads did the Argon2 work."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.threads = []

    def hash(self, password, *args, **kwargs):
        self.threads.append(threading.get_ident())
        return super().hash(password, *args, **kwargs)

    def verify(self, hash, password):
        self.threads.append(threading.get_ident())
        return super().verify(hash, password)


class TestPasswordRegistration:

    def test_register_stores_argon2_hash(self, services, store):
        user = register(services.password, "a@x.com", "A", "correct horse")

        identity = store.identities.find_by_email("a@x.com")
        assert user == {"id": identity.handle, "email": "a@x.com", "name": "A"}
        assert identity.password_hash.startswith("$argon2id$")
        assert "correct horse" not in identity.password_hash

    def test_same_password_hashes_differently(self, services, store):
        register(services.password, "a@x.com", "A", "same password")
        register(services.password, "b@x.com", "B", "same password")

        a = store.identities.find_by_email("a@x.com").password_hash
        b = store.identities.find_by_email("b@x.com").password_hash
        assert a != b

    def test_duplicate_email_conflicts(self, services):
        register(services.password, "a@x.com", "A", "pw1")
        with pytest.raises(AuthError) as exc_info:
            register(services.password, "A@x.com", "A2", "pw2")
        assert exc_info.value.code is AuthErrorCode.USER_ALREADY_EXISTS

    def test_email_taken_by_passkey_identity_conflicts(self, services):
        services.registration.begin("a@x.com", "A")
        with pytest.raises(AuthError) as exc_info:
            register(services.password, "a@x.com", "A", "pw")
        assert exc_info.value.code is AuthErrorCode.USER_ALREADY_EXISTS

    def test_abandoned_passkey_registration_frees_the_email(self, services, store, auth_config):
        services.registration.begin("a@x.com", "A")
        auth_config.CHALLENGE_TTL_SECONDS = 60
        abandoned = store.identities.find_by_email("a@x.com")
        store.identities.set_pending_challenge(
            abandoned.handle, abandoned.pending_challenge, abandoned.pending_purpose,
            utc_now() - timedelta(seconds=120)
        )

        user = register(services.password, "a@x.com", "A", "pw")

        assert user["id"] != abandoned.handle
        assert store.identities.find_by_handle(abandoned.handle) is None

    def test_missing_password_is_bad_request(self, services):
        with pytest.raises(AuthError) as exc_info:
            register(services.password, "a@x.com", "A", "")
        assert exc_info.value.code is AuthErrorCode.BAD_REQUEST


class TestPasswordLogin:

    def test_correct_password_logs_in(self, services):
        register(services.password, "a@x.com", "A", "s3cret!")
        user = login(services.password, "A@X.com", "s3cret!")
        assert user["email"] == "a@x.com"
        assert "password_hash" not in user

    def test_unknown_email_and_wrong_password_are_indistinguishable(self, services):
        register(services.password, "a@x.com", "A", "s3cret!")

        with pytest.raises(AuthError) as unknown:
            login(services.password, "nobody@x.com", "s3cret!")
        with pytest.raises(AuthError) as wrong:
            login(services.password, "a@x.com", "wrong")

        assert unknown.value.code is wrong.value.code is AuthErrorCode.INVALID_CREDENTIALS
        assert unknown.value.message == wrong.value.message
        assert unknown.value.details == wrong.value.details

    def test_passkey_only_identity_cannot_password_login(self, services):
        services.registration.begin("a@x.com", "A")
        with pytest.raises(AuthError) as exc_info:
            login(services.password, "a@x.com", "anything")
        assert exc_info.value.code is AuthErrorCode.INVALID_CREDENTIALS

    def test_outdated_hash_is_upgraded_on_login(self, store, audit):
        weak = PasswordFallback(store, PasswordHasher(time_cost=1, memory_cost=8, parallelism=1), audit)
        register(weak, "a@x.com", "A", "pw")
        old_hash = store.identities.find_by_email("a@x.com").password_hash

        strong = PasswordFallback(store, PasswordHasher(), audit)
        login(strong, "a@x.com", "pw")

        new_hash = store.identities.find_by_email("a@x.com").password_hash
        assert new_hash != old_hash
        assert not strong.hasher.check_needs_rehash(new_hash)


class TestHashingOffTheEventLoop:

    def test_hash_and_verify_run_in_worker_threads(self, store, audit):
        hasher = ThreadRecordingHasher(time_cost=1, memory_cost=8, parallelism=1)
        fallback = PasswordFallback(store, hasher, audit)
        hasher.threads.clear()  # drop the dummy hash made in __init__

        async def run():
            loop_thread = threading.get_ident()
            await fallback.register("a@x.com", "A", "pw")
            await fallback.login("a@x.com", "pw")
            with pytest.raises(AuthError):
                await fallback.login("nobody@x.com", "pw")
            return loop_thread

        loop_thread = asyncio.run(run())

        assert len(hasher.threads) == 3
        assert loop_thread not in hasher.threads

    def test_other_coroutines_keep_running_during_login(self, store, audit):
        fallback = PasswordFallback(store, audit=audit)
        asyncio.run(fallback.register("a@x.com", "A", "pw"))

        async def run():
            ticks = 0
            done = asyncio.Event()

            async def ticker():
                nonlocal ticks
                while not done.is_set():
                    ticks += 1
                    await asyncio.sleep(0)

            task = asyncio.create_task(ticker())
            await fallback.login("a@x.com", "pw")
            done.set()
            await task
            return ticks

        assert asyncio.run(run()) > 1
