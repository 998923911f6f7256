"""ABOUTME: Unit tests for password hashing and session token utilities
ABOUTME: Tests werkzeug hashes and the JWT issued after a login passes 2FA"""

from datetime import UTC, datetime, timedelta

import jwt
import pytest
import time_machine

from storeguard.service_layer.security import (
    decode_session_token,
    hash_password,
    issue_session_credential,
    verify_password,
)
from tests.data import TEST_PASSWORD, TEST_SESSION_SECRET, make_user


class TestPasswordHashing:
    def test_hash_is_not_the_password(self):
        assert TEST_PASSWORD not in hash_password(TEST_PASSWORD)

    def test_verify_password(self):
        password_hash = hash_password(TEST_PASSWORD)

        assert verify_password(TEST_PASSWORD, password_hash)
        assert not verify_password("wrong password", password_hash)

    def test_hashes_are_salted(self):
        assert hash_password(TEST_PASSWORD) != hash_password(TEST_PASSWORD)


class TestSessionCredential:
    """Test the session token issued after a successful second factor."""

    def test_token_claims(self):
        user = make_user()

        credential = issue_session_credential(user, TEST_SESSION_SECRET, timedelta(hours=1))
        claims = decode_session_token(credential.token, TEST_SESSION_SECRET)

        assert credential.user_id == user.id
        assert credential.email == user.email
        assert claims["sub"] == str(user.id)
        assert claims["email"] == "shopper@example.com"
        assert claims["roles"] == ["customer"]
        assert claims["2fa_verified"] is True

    def test_expiry_follows_lifetime(self):
        with time_machine.travel(datetime(2026, 10, 19, 12, 0, tzinfo=UTC), tick=False):
            credential = issue_session_credential(make_user(), TEST_SESSION_SECRET, timedelta(hours=168))

        assert credential.expires_at == datetime(2026, 10, 26, 12, 0, tzinfo=UTC)

    def test_each_token_is_unique(self):
        user = make_user()

        first = issue_session_credential(user, TEST_SESSION_SECRET, timedelta(hours=1))
        second = issue_session_credential(user, TEST_SESSION_SECRET, timedelta(hours=1))

        assert first.token != second.token

    def test_expired_token_rejected(self):
        with time_machine.travel(datetime(2026, 10, 19, 12, 0, tzinfo=UTC), tick=False) as traveller:
            credential = issue_session_credential(make_user(), TEST_SESSION_SECRET, timedelta(hours=1))
            traveller.shift(timedelta(hours=2))

            with pytest.raises(jwt.ExpiredSignatureError):
                decode_session_token(credential.token, TEST_SESSION_SECRET)

    def test_wrong_secret_rejected(self):
        credential = issue_session_credential(make_user(), TEST_SESSION_SECRET, timedelta(hours=1))

        with pytest.raises(jwt.InvalidSignatureError):
            decode_session_token(credential.token, "another-secret-that-is-long-enough")

    def test_token_without_subject_rejected(self):
        token = jwt.encode(
            {"exp": datetime.now(UTC) + timedelta(hours=1)}, TEST_SESSION_SECRET, algorithm="HS256"
        )

        with pytest.raises(jwt.MissingRequiredClaimError):
            decode_session_token(token, TEST_SESSION_SECRET)

    def test_unsigned_token_rejected(self):
        token = jwt.encode({"sub": "someone", "exp": datetime.now(UTC) + timedelta(hours=1)}, None, algorithm="none")

        with pytest.raises(jwt.InvalidTokenError):
            decode_session_token(token, TEST_SESSION_SECRET)
