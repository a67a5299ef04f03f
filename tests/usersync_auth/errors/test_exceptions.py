"""Tests for the exception hierarchy and HTTP status classification."""

import pytest

from usersync_auth.errors import (
    AuthSyncError,
    ConfigurationError,
    RenewalError,
    TerminalAcquisitionError,
    TokenValidationError,
    TransientAcquisitionError,
    classify_http_status,
)
from usersync_auth.types import ErrorCategory


class TestAuthSyncError:
    def test_basic_attributes(self):
        err = AuthSyncError("boom")
        assert err.message == "boom"
        assert err.cause is None
        assert err.context == {}
        assert err.category == ErrorCategory.UNKNOWN

    def test_str_includes_cause(self):
        cause = RuntimeError("socket closed")
        err = AuthSyncError("exchange failed", cause=cause)
        assert str(err) == "exchange failed | Caused by: socket closed"

    def test_str_without_cause(self):
        assert str(AuthSyncError("plain")) == "plain"

    def test_context_is_kept(self):
        err = AuthSyncError("x", context={"url": "https://broker"})
        assert err.context["url"] == "https://broker"


class TestCategories:
    @pytest.mark.parametrize(
        "error,category,retryable",
        [
            (ConfigurationError("missing"), ErrorCategory.PERMANENT, False),
            (TransientAcquisitionError("timeout"), ErrorCategory.TRANSIENT, True),
            (TerminalAcquisitionError("all failed"), ErrorCategory.AUTH, False),
            (TokenValidationError("bad token"), ErrorCategory.PERMANENT, False),
            (RenewalError("renewal failed"), ErrorCategory.TRANSIENT, True),
            (AuthSyncError("unknown"), ErrorCategory.UNKNOWN, True),
        ],
    )
    def test_category_and_retryability(self, error, category, retryable):
        assert error.category == category
        assert error.is_retryable is retryable

    def test_all_inherit_from_base(self):
        for cls in (
            ConfigurationError,
            TransientAcquisitionError,
            TerminalAcquisitionError,
            TokenValidationError,
            RenewalError,
        ):
            assert issubclass(cls, AuthSyncError)


class TestTransientAcquisitionError:
    def test_strategy_and_status(self):
        err = TransientAcquisitionError("HTTP 503", strategy="broker", status_code=503)
        assert err.strategy == "broker"
        assert err.status_code == 503

    def test_defaults(self):
        err = TransientAcquisitionError("x")
        assert err.strategy is None
        assert err.status_code is None


class TestTerminalAcquisitionError:
    def test_attempts_recorded(self):
        cause = TransientAcquisitionError("HTTP 401", strategy="client_credentials")
        err = TerminalAcquisitionError(
            "All strategies failed", attempts=["broker", "client_credentials"], cause=cause
        )
        assert err.attempts == ["broker", "client_credentials"]
        assert err.cause is cause

    def test_attempts_default_empty(self):
        assert TerminalAcquisitionError("x").attempts == []


class TestClassifyHttpStatus:
    @pytest.mark.parametrize(
        "status,expected",
        [
            (200, ErrorCategory.UNKNOWN),
            (400, ErrorCategory.PERMANENT),
            (401, ErrorCategory.PERMANENT),
            (403, ErrorCategory.PERMANENT),
            (404, ErrorCategory.PERMANENT),
            (429, ErrorCategory.TRANSIENT),
            (500, ErrorCategory.TRANSIENT),
            (503, ErrorCategory.TRANSIENT),
        ],
    )
    def test_classification(self, status, expected):
        assert classify_http_status(status) == expected
