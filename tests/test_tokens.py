"""
Test suite for the token service

Uses an injected clock so expiry can be tested without sleeping.
"""

import pytest
import jwt
from datetime import timedelta

from mobile_bank.errors import ErrorKind, TokenError
from mobile_bank.tokens import TokenService, TokenPair, parse_duration, ACCESS, REFRESH


ACCESS_SECRET = "access-secret-for-tests-0123456789"
REFRESH_SECRET = "refresh-secret-for-tests-012345678"
OTHER_SECRET = "another-secret-for-tests-012345678"


class FakeClock:

    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TestParseDuration:

    @pytest.mark.parametrize("text,expected", [
        ("30s", timedelta(seconds=30)),
        ("15m", timedelta(minutes=15)),
        ("2h", timedelta(hours=2)),
        ("7d", timedelta(days=7)),
    ])
    def test_units(self, text, expected):
        assert parse_duration(text) == expected

    @pytest.mark.parametrize("text", ["", "15", "1w", "abc", None])
    def test_unknown_falls_back_to_fifteen_minutes(self, text):
        assert parse_duration(text) == timedelta(minutes=15)


class TestTokenService:
    """Test TokenService issuing and verification"""

    def setup_method(self):
        self.clock = FakeClock()
        self.service = TokenService(
            ACCESS_SECRET, REFRESH_SECRET,
            access_ttl=timedelta(minutes=15), refresh_ttl=timedelta(days=7),
            clock=self.clock,
        )

    def test_access_token_round_trip(self):
        token = self.service.issue_access("user-1", "ada@example.com")
        payload = self.service.verify_access(token)
        assert payload.user_id == "user-1"
        assert payload.email == "ada@example.com"
        assert payload.token_type == ACCESS
        assert payload.expires_at - payload.issued_at == timedelta(minutes=15)

    def test_tokens_are_unique(self):
        first = self.service.issue_access("user-1", "ada@example.com")
        second = self.service.issue_access("user-1", "ada@example.com")
        assert first != second

    def test_expired_at_exact_expiry(self):
        token = self.service.issue_access("user-1", "ada@example.com")
        self.clock.advance(15 * 60 - 1)
        self.service.verify_access(token)

        self.clock.advance(1)
        with pytest.raises(TokenError) as exc:
            self.service.verify_access(token)
        assert exc.value.kind == ErrorKind.TOKEN_EXPIRED
        assert exc.value.status_code == 401

    def test_wrong_secret_is_invalid_signature(self):
        token = self.service.issue_access("user-1", "ada@example.com")
        other = TokenService(OTHER_SECRET, REFRESH_SECRET, clock=self.clock)
        with pytest.raises(TokenError) as exc:
            other.verify_access(token)
        assert exc.value.kind == ErrorKind.INVALID_SIGNATURE

    def test_signature_is_checked_before_expiry(self):
        token = self.service.issue_access("user-1", "ada@example.com")
        self.clock.advance(3600)
        other = TokenService(OTHER_SECRET, REFRESH_SECRET, clock=self.clock)
        with pytest.raises(TokenError) as exc:
            other.verify_access(token)
        assert exc.value.kind == ErrorKind.INVALID_SIGNATURE

    def test_tampered_payload_is_rejected(self):
        token = self.service.issue_access("user-1", "ada@example.com")
        header, _, signature = token.split(".")
        forged_body = jwt.encode({"sub": "user-2", "iat": 1, "exp": 2 ** 40}, OTHER_SECRET).split(".")[1]
        with pytest.raises(TokenError) as exc:
            self.service.verify_access(".".join([header, forged_body, signature]))
        assert exc.value.kind == ErrorKind.INVALID_SIGNATURE

    @pytest.mark.parametrize("token", ["", "abc", "a.b", "a.b.c.d", "not.a.jwt", None])
    def test_malformed_tokens(self, token):
        with pytest.raises(TokenError) as exc:
            self.service.verify_access(token)
        assert exc.value.kind == ErrorKind.MALFORMED_TOKEN

    def test_missing_claims_are_malformed(self):
        token = jwt.encode({"sub": "user-1"}, ACCESS_SECRET, algorithm="HS256")
        with pytest.raises(TokenError) as exc:
            self.service.verify_access(token)
        assert exc.value.kind == ErrorKind.MALFORMED_TOKEN

    def test_refresh_token_is_not_an_access_token(self):
        refresh = self.service.issue_refresh("user-1", "ada@example.com")
        with pytest.raises(TokenError) as exc:
            self.service.verify_access(refresh)
        # Different secret, so the signature check fails first
        assert exc.value.kind == ErrorKind.INVALID_SIGNATURE

    def test_token_type_is_enforced_with_shared_secret(self):
        shared = TokenService(ACCESS_SECRET, ACCESS_SECRET, clock=self.clock)
        refresh = shared.issue_refresh("user-1", "ada@example.com")
        with pytest.raises(TokenError) as exc:
            shared.verify_access(refresh)
        assert exc.value.kind == ErrorKind.UNAUTHORIZED

    def test_refresh_issues_new_pair(self):
        pair = self.service.issue_pair("user-1", "ada@example.com")
        assert isinstance(pair, TokenPair)
        self.clock.advance(20 * 60)

        with pytest.raises(TokenError):
            self.service.verify_access(pair.access_token)

        fresh = self.service.refresh(pair.refresh_token)
        assert self.service.verify_access(fresh.access_token).user_id == "user-1"
        assert self.service.verify_refresh(fresh.refresh_token).token_type == REFRESH
        assert fresh.to_api() == {"accessToken": fresh.access_token, "refreshToken": fresh.refresh_token}

    def test_expired_refresh_token(self):
        refresh = self.service.issue_refresh("user-1", "ada@example.com")
        self.clock.advance(7 * 24 * 3600)
        with pytest.raises(TokenError) as exc:
            self.service.refresh(refresh)
        assert exc.value.kind == ErrorKind.TOKEN_EXPIRED

    def test_empty_secret_is_rejected(self):
        with pytest.raises(ValueError):
            TokenService("", REFRESH_SECRET)
