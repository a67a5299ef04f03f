"""Tests for OAuth2Token cache validity and TokenInfo."""

from datetime import UTC, datetime, timedelta

import pytest

from usersync_auth.oauth2.models import OAuth2Token
from usersync_auth.types import TokenSource

BASE_TIME = datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)


def _token(lifetime=3600, refreshed_ago=0, now=BASE_TIME):
    return OAuth2Token(
        access_token="opaque-value-123",
        token_type="Bearer",
        issued_at=now - timedelta(seconds=refreshed_ago),
        expires_at=now + timedelta(seconds=lifetime),
        last_refresh_at=now - timedelta(seconds=refreshed_ago),
        source=TokenSource.CLIENT_CREDENTIALS,
    )


class TestOAuth2TokenConstruction:
    def test_empty_token_rejected(self):
        with pytest.raises(ValueError, match="access_token"):
            OAuth2Token(
                access_token="",
                token_type="Bearer",
                issued_at=BASE_TIME,
                expires_at=BASE_TIME + timedelta(hours=1),
                last_refresh_at=BASE_TIME,
                source=TokenSource.BROKER,
            )

    def test_expiry_must_follow_issue(self):
        with pytest.raises(ValueError, match="later than issued_at"):
            OAuth2Token(
                access_token="opaque-value-123",
                token_type="Bearer",
                issued_at=BASE_TIME,
                expires_at=BASE_TIME,
                last_refresh_at=BASE_TIME,
                source=TokenSource.BROKER,
            )

    def test_from_response(self):
        token = OAuth2Token.from_response(
            {"access_token": "tok-A", "expires_in": 3600, "token_type": "Bearer"},
            source=TokenSource.CLIENT_CREDENTIALS,
            now=BASE_TIME,
        )
        assert token.access_token == "tok-A"
        assert token.expires_at == BASE_TIME + timedelta(seconds=3600)
        assert token.issued_at == BASE_TIME
        assert token.last_refresh_at == BASE_TIME

    def test_from_response_defaults(self):
        token = OAuth2Token.from_response(
            {"access_token": "tok"}, source=TokenSource.CLIENT_CREDENTIALS, now=BASE_TIME
        )
        assert token.token_type == "Bearer"
        assert token.expires_at == BASE_TIME + timedelta(hours=1)

    def test_from_response_zero_lifetime_is_not_defaulted(self):
        with pytest.raises(ValueError, match="expires_at"):
            OAuth2Token.from_response(
                {"access_token": "tok", "expires_in": 0},
                source=TokenSource.CLIENT_CREDENTIALS,
                now=BASE_TIME,
            )

    def test_repr_hides_token(self):
        assert "opaque-value-123" not in repr(_token())


class TestIsUsable:
    """Usable iff now + buffer < expires_at and now - last_refresh < max_age."""

    def test_fresh_token_usable(self):
        assert _token(lifetime=3600).is_usable(300, 3600, BASE_TIME) is True

    def test_inside_safety_buffer_not_usable(self):
        assert _token(lifetime=60).is_usable(300, 3600, BASE_TIME) is False

    def test_exactly_at_buffer_not_usable(self):
        assert _token(lifetime=300).is_usable(300, 3600, BASE_TIME) is False

    def test_just_outside_buffer_usable(self):
        assert _token(lifetime=301).is_usable(300, 3600, BASE_TIME) is True

    def test_max_age_ceiling(self):
        # Provider says valid for another day, but it was fetched an hour ago
        token = _token(lifetime=86400, refreshed_ago=3600)
        assert token.is_usable(300, 3600, BASE_TIME) is False
        assert token.is_usable(300, 7200, BASE_TIME) is True

    def test_remaining_lifetime_negative_after_expiry(self):
        token = _token(lifetime=60)
        assert token.remaining_lifetime(BASE_TIME + timedelta(seconds=90)) == timedelta(seconds=-30)


class TestTokenInfo:
    def test_info_fields(self):
        info = _token(lifetime=3600).info(300, 3600, BASE_TIME)

        assert info.is_valid is True
        assert info.expires_in == 3600
        assert info.source == TokenSource.CLIENT_CREDENTIALS

    def test_to_dict_has_no_token(self):
        data = _token().info(300, 3600, BASE_TIME).to_dict()

        assert data["tokenType"] == "Bearer"
        assert data["expiresIn"] == 3600
        assert data["isValid"] is True
        assert data["source"] == "client_credentials"
        assert "opaque-value-123" not in data.values()
