"""Unit tests for auth/tokens.py -- session tokens and password hashing.

Covers:
- issue() returns a token and an expiry validity_seconds ahead
- is_valid() flips to False exactly at expiry (strict comparison)
- malformed, tampered, empty and foreign-key tokens are invalid, never raise
- check() distinguishes TokenExpired from TokenInvalid
- unverified_expiry() reads exp without the signing key
- bcrypt hash/verify round trip and the wrong-password case
"""

from datetime import timedelta

import pytest
from jose import jwt

from auth.errors import TokenExpired, TokenInvalid
from auth.tokens import TokenIssuer, hash_password, unverified_expiry, verify_password
from core.clock import FrozenClock

SECRET = "unit-test-secret-key-with-32-plus-characters"


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def issuer(clock):
    return TokenIssuer(SECRET, 3600, clock=clock)


class TestIssue:
    def test_expiry_is_validity_ahead(self, issuer, clock):
        token, expiry = issuer.issue("acct-1", "device-1")
        assert isinstance(token, str) and token
        assert expiry == clock.now() + timedelta(seconds=3600)

    def test_claims_round_trip(self, issuer, clock):
        token, expiry = issuer.issue("acct-1", "device-1")
        claims = issuer.decode(token)
        assert claims.account_id == "acct-1"
        assert claims.device_id == "device-1"
        assert claims.issued_at == clock.now()
        assert claims.expires_at == expiry

    def test_each_token_is_unique(self, issuer):
        first, _ = issuer.issue("acct-1", "device-1")
        second, _ = issuer.issue("acct-1", "device-1")
        assert first != second


class TestValidity:
    def test_fresh_token_is_valid(self, issuer):
        token, _ = issuer.issue("acct-1", "device-1")
        assert issuer.is_valid(token) is True

    def test_valid_one_second_before_expiry(self, issuer, clock):
        token, _ = issuer.issue("acct-1", "device-1")
        clock.advance(seconds=3599)
        assert issuer.is_valid(token) is True

    def test_invalid_exactly_at_expiry(self, issuer, clock):
        """exp == now is already expired."""
        token, expiry = issuer.issue("acct-1", "device-1")
        clock.set(expiry)
        assert issuer.is_valid(token) is False

    def test_check_raises_token_expired(self, issuer, clock):
        token, _ = issuer.issue("acct-1", "device-1")
        clock.advance(hours=2)
        with pytest.raises(TokenExpired):
            issuer.check(token)

    @pytest.mark.parametrize("token", [None, "", "not-a-jwt", "a.b.c", 12345])
    def test_malformed_tokens_are_invalid(self, issuer, token):
        assert issuer.is_valid(token) is False

    def test_malformed_token_check_raises_invalid_not_expired(self, issuer):
        with pytest.raises(TokenInvalid) as exc_info:
            issuer.check("not-a-jwt")
        assert not isinstance(exc_info.value, TokenExpired)

    def test_tampered_payload_is_invalid(self, issuer):
        """Swapping in another account's claims breaks the signature."""
        token, _ = issuer.issue("acct-1", "device-1")
        forged, _ = issuer.issue("acct-2", "device-1")
        head, _, sig = token.split(".")
        tampered = ".".join([head, forged.split(".")[1], sig])
        assert issuer.is_valid(tampered) is False

    def test_token_from_other_key_is_invalid(self, issuer, clock):
        other = TokenIssuer("another-secret-key-of-sufficient-length!", 3600, clock=clock)
        token, _ = other.issue("acct-1", "device-1")
        assert issuer.is_valid(token) is False

    def test_token_missing_claims_is_invalid(self, issuer):
        token = jwt.encode({"sub": "acct-1"}, SECRET, algorithm="HS256")
        assert issuer.is_valid(token) is False


class TestUnverifiedExpiry:
    def test_reads_exp_without_key(self, issuer):
        token, expiry = issuer.issue("acct-1", "device-1")
        assert unverified_expiry(token) == expiry

    @pytest.mark.parametrize("token", [None, "", "garbage"])
    def test_malformed_returns_none(self, token):
        assert unverified_expiry(token) is None

    def test_missing_exp_returns_none(self):
        token = jwt.encode({"sub": "x"}, "k" * 32, algorithm="HS256")
        assert unverified_expiry(token) is None


class TestPasswordHashing:
    def test_hash_round_trip(self):
        hashed = hash_password("Abcdef1!")
        assert hashed != "Abcdef1!"
        assert verify_password("Abcdef1!", hashed) is True

    def test_wrong_password(self):
        assert verify_password("Wrong1!x", hash_password("Abcdef1!")) is False

    def test_garbage_hash_returns_false(self):
        assert verify_password("Abcdef1!", "not-a-bcrypt-hash") is False
