"""Tests for the usersync_auth command line entry point."""

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

import usersync_auth.__main__ as cli
from usersync_auth.config import AuthSettings
from usersync_auth.credentials.store import CredentialStore
from usersync_auth.errors import ConfigurationError, TransientAcquisitionError
from usersync_auth.oauth2.models import CredentialCheckResult


@pytest.fixture
def quiet_logging(monkeypatch):
    """Keep main() from installing file handlers."""
    setup = MagicMock()
    monkeypatch.setattr(cli, "setup_logging", setup)
    monkeypatch.setattr(cli, "load_dotenv", MagicMock())
    monkeypatch.setattr(cli, "load_settings", MagicMock(return_value=AuthSettings()))
    return setup


def _mock_coordinator(token="tok-cli", info=None):
    coordinator = MagicMock()
    coordinator.store = CredentialStore()
    coordinator.get_token = AsyncMock(return_value=token)
    coordinator.get_token_info = MagicMock(return_value=info)
    coordinator.validate_credentials = AsyncMock(
        return_value=CredentialCheckResult(success=True, message="Credentials are valid")
    )
    coordinator.close = AsyncMock()
    return coordinator


class TestParseArgs:
    def test_token_defaults(self):
        args = cli.parse_args(["token"])
        assert args.command == "token"
        assert args.show_token is False
        assert args.client_id is None
        assert args.config is None
        assert args.log_to_stdout is False

    def test_global_and_credential_flags(self):
        args = cli.parse_args(
            ["--config", "auth.yaml", "--log-level", "DEBUG", "validate",
             "--client-id", "abc", "--tenant-id", "t1", "--region", "EU"]
        )
        assert args.config == Path("auth.yaml")
        assert args.log_level == "DEBUG"
        assert (args.client_id, args.tenant_id, args.region) == ("abc", "t1", "EU")

    def test_monitor_duration(self):
        assert cli.parse_args(["monitor", "--duration", "2.5"]).duration == 2.5

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.parse_args([])

    def test_no_secret_flag(self):
        with pytest.raises(SystemExit):
            cli.parse_args(["token", "--client-secret", "x"])


class TestCredentialsFromArgs:
    def test_none_without_flags(self):
        assert cli._credentials_from_args(cli.parse_args(["token"]), AuthSettings()) is None

    def test_flags_merged_with_environment(self, monkeypatch):
        monkeypatch.setenv("IDP_CLIENT_SECRET", "env-secret")
        monkeypatch.setenv("IDP_TENANT_ID", "env-tenant")
        args = cli.parse_args(["token", "--client-id", "flag-client"])

        creds = cli._credentials_from_args(args, AuthSettings(default_region="AP"))

        assert creds.client_id == "flag-client"
        assert creds.client_secret.get_secret_value() == "env-secret"
        assert creds.tenant_id == "env-tenant"
        assert creds.region == "AP"


class TestMain:
    def test_config_error_exit_code(self, monkeypatch, capsys):
        monkeypatch.setattr(cli, "load_dotenv", MagicMock())
        monkeypatch.setattr(
            cli, "load_settings", MagicMock(side_effect=ConfigurationError("missing 'auth:'"))
        )

        assert cli.main(["token"]) == cli.EXIT_CONFIGURATION_ERROR
        assert "missing 'auth:'" in capsys.readouterr().err

    def test_token_prints_info(self, quiet_logging, monkeypatch, capsys):
        coordinator = _mock_coordinator(info=None)
        monkeypatch.setattr(cli, "build_coordinator", MagicMock(return_value=coordinator))

        assert cli.main(["token", "--show-token"]) == cli.EXIT_OK

        output = json.loads(capsys.readouterr().out)
        assert output == {"accessToken": "tok-cli"}
        coordinator.close.assert_awaited_once()
        assert quiet_logging.call_args.kwargs["component"] == "token"

    def test_token_reports_region_api_base(self, quiet_logging, monkeypatch, capsys, credentials):
        coordinator = _mock_coordinator(info=None)
        coordinator.store.save(credentials)
        monkeypatch.setattr(cli, "build_coordinator", MagicMock(return_value=coordinator))

        assert cli.main(["token"]) == cli.EXIT_OK

        output = json.loads(capsys.readouterr().out)
        assert output == {"region": "NA", "apiBaseUrl": "https://api.pingone.com/v1"}

    def test_acquisition_failure_exit_code(self, quiet_logging, monkeypatch):
        coordinator = _mock_coordinator()
        coordinator.get_token = AsyncMock(
            side_effect=TransientAcquisitionError("HTTP 503", strategy="client_credentials")
        )
        monkeypatch.setattr(cli, "build_coordinator", MagicMock(return_value=coordinator))

        assert cli.main(["token"]) == cli.EXIT_ACQUISITION_FAILED
        coordinator.close.assert_awaited_once()

    def test_validate_without_credentials(self, quiet_logging, monkeypatch):
        monkeypatch.setattr(
            cli, "build_coordinator", MagicMock(return_value=_mock_coordinator())
        )

        assert cli.main(["validate"]) == cli.EXIT_CONFIGURATION_ERROR

    def test_validate_with_flags(self, quiet_logging, monkeypatch, capsys):
        monkeypatch.setenv("IDP_CLIENT_SECRET", "env-secret")
        coordinator = _mock_coordinator()
        monkeypatch.setattr(cli, "build_coordinator", MagicMock(return_value=coordinator))

        code = cli.main(["validate", "--client-id", "abc", "--tenant-id", "t1"])

        assert code == cli.EXIT_OK
        output = json.loads(capsys.readouterr().out)
        assert output["success"] is True
        assert "env-secret" not in json.dumps(output)
        checked = coordinator.validate_credentials.await_args.args[0]
        assert checked.client_id == "abc"

    def test_failed_validation_exit_code(self, quiet_logging, monkeypatch):
        monkeypatch.setenv("IDP_CLIENT_SECRET", "env-secret")
        coordinator = _mock_coordinator()
        coordinator.validate_credentials = AsyncMock(
            return_value=CredentialCheckResult(success=False, message="HTTP 401")
        )
        monkeypatch.setattr(cli, "build_coordinator", MagicMock(return_value=coordinator))

        assert cli.main(["validate", "--client-id", "abc", "--tenant-id", "t1"]) == 1
