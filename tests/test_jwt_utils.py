"""
Tests for access/refresh token issuing and verification.
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from src.config import INSECURE_DEFAULT_SECRET, AuthSettings
from src.identity_gateway.exceptions import InvalidTokenError
from src.identity_gateway.utils.jwt_utils import (
    JWT_ALGORITHM,
    TokenService,
    generate_secret_key,
)


class TestTokenRoundTrip:
    def test_access_token_round_trip(self, token_service):
        token = token_service.issue_access_token("thandi", ["USER"])
        claims = token_service.verify(token)

        assert claims.subject == "thandi"
        assert claims.roles == ["USER"]
        assert claims.token_type == "access"
        assert claims.token_id

    def test_access_token_lifetime_is_15_minutes(self, token_service, clock):
        claims = token_service.verify(token_service.issue_access_token("thandi", ["USER"]))
        assert claims.expires_at - claims.issued_at == timedelta(minutes=15)
        assert token_service.access_token_ttl_seconds == 900

    def test_refresh_token_lifetime_is_7_days(self, token_service):
        claims = token_service.verify_refresh(
            token_service.issue_refresh_token("thandi", ["USER", "ADMIN"])
        )
        assert claims.token_type == "refresh"
        assert claims.roles == ["USER", "ADMIN"]
        assert claims.expires_at - claims.issued_at == timedelta(days=7)

    def test_tokens_are_unique(self, token_service):
        first = token_service.issue_access_token("thandi", ["USER"])
        second = token_service.issue_access_token("thandi", ["USER"])
        assert first != second

    def test_signed_with_hs512(self, token_service):
        token = token_service.issue_access_token("thandi", ["USER"])
        assert jwt.get_unverified_header(token)["alg"] == JWT_ALGORITHM == "HS512"

    def test_empty_subject_rejected(self, token_service):
        with pytest.raises(ValueError):
            token_service.issue_access_token("", ["USER"])


class TestTokenTypeSeparation:
    def test_refresh_token_fails_access_check(self, token_service):
        refresh = token_service.issue_refresh_token("thandi", ["USER"])
        with pytest.raises(InvalidTokenError) as exc_info:
            token_service.verify_access(refresh)
        assert exc_info.value.reason == InvalidTokenError.WRONG_TYPE
        assert token_service.verify_refresh(refresh).subject == "thandi"

    def test_access_token_fails_refresh_check(self, token_service):
        access = token_service.issue_access_token("thandi", ["USER"])
        with pytest.raises(InvalidTokenError) as exc_info:
            token_service.verify_refresh(access)
        assert exc_info.value.reason == InvalidTokenError.WRONG_TYPE


class TestTokenRejection:
    def test_expired_access_token(self, token_service, clock):
        token = token_service.issue_access_token("thandi", ["USER"])
        clock.advance(minutes=15, seconds=1)
        with pytest.raises(InvalidTokenError) as exc_info:
            token_service.verify(token)
        assert exc_info.value.reason == InvalidTokenError.EXPIRED

    def test_access_token_valid_just_before_expiry(self, token_service, clock):
        token = token_service.issue_access_token("thandi", ["USER"])
        clock.advance(minutes=14, seconds=59)
        assert token_service.verify_access(token).subject == "thandi"

    def test_tampered_token(self, token_service):
        token = token_service.issue_access_token("thandi", ["USER"])
        header, payload, signature = token.split(".")
        forged = jwt.encode(
            {
                "sub": "admin",
                "roles": ["ADMIN"],
                "type": "access",
                "iat": datetime.now(timezone.utc),
                "exp": datetime.now(timezone.utc) + timedelta(hours=1),
                "iss": "kyc-identity-gateway",
            },
            "not-the-secret-" + "y" * 64,
            algorithm=JWT_ALGORITHM,
        )
        with pytest.raises(InvalidTokenError) as exc_info:
            token_service.verify(forged)
        assert exc_info.value.reason == InvalidTokenError.BAD_SIGNATURE

        spliced = ".".join([header, forged.split(".")[1], signature])
        with pytest.raises(InvalidTokenError) as exc_info:
            token_service.verify(spliced)
        assert exc_info.value.reason == InvalidTokenError.BAD_SIGNATURE

    def test_token_from_another_secret(self, token_service):
        other = TokenService(AuthSettings(signing_secret=generate_secret_key()))
        token = other.issue_access_token("thandi", ["USER"])
        with pytest.raises(InvalidTokenError) as exc_info:
            token_service.verify(token)
        assert exc_info.value.reason == InvalidTokenError.BAD_SIGNATURE

    @pytest.mark.parametrize("token", ["", "   ", "not-a-jwt", "a.b.c", None])
    def test_malformed_tokens(self, token_service, token):
        with pytest.raises(InvalidTokenError) as exc_info:
            token_service.verify(token)
        assert exc_info.value.reason == InvalidTokenError.MALFORMED

    def test_missing_type_claim_is_malformed(self, auth_settings, token_service):
        token = jwt.encode(
            {
                "sub": "thandi",
                "iat": datetime.now(timezone.utc),
                "exp": datetime.now(timezone.utc) + timedelta(hours=1),
                "iss": auth_settings.token_issuer,
            },
            auth_settings.signing_secret,
            algorithm=JWT_ALGORITHM,
        )
        with pytest.raises(InvalidTokenError) as exc_info:
            token_service.verify(token)
        assert exc_info.value.reason == InvalidTokenError.MALFORMED

    def test_invalid_token_error_maps_to_401(self):
        error = InvalidTokenError(InvalidTokenError.EXPIRED)
        assert error.status_code == 401
        assert error.error_code == "INVALID_TOKEN"


class TestSubjectOf:
    def test_subject_of_expired_token(self, token_service, clock):
        token = token_service.issue_refresh_token("thandi", ["USER"])
        clock.advance(days=8)
        assert token_service.subject_of(token) == "thandi"

    def test_subject_of_forged_token_is_none(self, token_service):
        other = TokenService(AuthSettings(signing_secret=generate_secret_key()))
        assert token_service.subject_of(other.issue_refresh_token("thandi", [])) is None
        assert token_service.subject_of("garbage") is None
        assert token_service.subject_of(None) is None


class TestSecretHandling:
    def test_generate_secret_key_is_512_bits(self):
        key = generate_secret_key()
        assert len(key) == 128
        assert key != generate_secret_key()

    def test_production_rejects_default_secret(self):
        with pytest.raises(ValueError, match="JWT_SECRET_KEY"):
            AuthSettings(environment="production", signing_secret=INSECURE_DEFAULT_SECRET)

    def test_production_accepts_real_secret(self):
        settings = AuthSettings(environment="production", signing_secret=generate_secret_key())
        assert settings.environment == "production"

    def test_settings_are_immutable(self, auth_settings):
        with pytest.raises(Exception):
            auth_settings.max_login_attempts = 100

    def test_bcrypt_rounds_clamped(self):
        assert AuthSettings(bcrypt_rounds=4).bcrypt_rounds == 10

    def test_settings_from_environment(self, monkeypatch):
        monkeypatch.setenv("MAX_LOGIN_ATTEMPTS", "3")
        monkeypatch.setenv("LOCKOUT_DURATION_MINUTES", "10")
        monkeypatch.setenv("ALLOWED_ORIGINS", "https://a.example, https://b.example")
        settings = AuthSettings.from_config()
        assert settings.max_login_attempts == 3
        assert settings.lockout_duration_minutes == 10
        assert settings.allowed_origins == ("https://a.example", "https://b.example")
