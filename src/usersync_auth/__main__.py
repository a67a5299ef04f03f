"""Token lifecycle command line. Use --help for usage."""

import argparse
import asyncio
import getpass
import json
import logging
import os
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

from usersync_auth.config import AuthSettings, load_settings
from usersync_auth.credentials.models import ENV_CLIENT_SECRET, CredentialSet
from usersync_auth.errors.exceptions import AuthSyncError, ConfigurationError
from usersync_auth.logging.setup import setup_logging
from usersync_auth.oauth2.coordinator import build_coordinator
from usersync_auth.renewal.manager import ProactiveRenewalManager
from usersync_auth.renewal.status import TokenStatusProjection, TokenStatusView
from usersync_auth.utils.json_serializers import json_serializer

# Placeholder logger until setup_logging() is called in main()
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ACQUISITION_FAILED = 1
EXIT_CONFIGURATION_ERROR = 2


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m usersync_auth",
        description="Acquire, validate and monitor identity-provider access tokens",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Acquire a token once using IDP_* environment variables
    python -m usersync_auth token

    # Test a credential set without caching anything
    python -m usersync_auth validate --client-id abc --tenant-id t1 --region EU

    # Keep a token warm and print status changes until interrupted
    python -m usersync_auth monitor --log-to-stdout
        """,
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.yaml (default: packaged config)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: from config)",
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Log directory path (default: from config)",
    )
    parser.add_argument(
        "--log-to-stdout",
        action="store_true",
        help="Send all log output to stdout only, skipping file handlers",
    )

    credential_args = argparse.ArgumentParser(add_help=False)
    credential_args.add_argument("--client-id", help="Client ID (default: IDP_CLIENT_ID)")
    credential_args.add_argument("--tenant-id", help="Tenant ID (default: IDP_TENANT_ID)")
    credential_args.add_argument("--region", help="Region code (default: IDP_REGION or config)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    token_parser = subparsers.add_parser(
        "token", parents=[credential_args], help="Acquire a token and print its details"
    )
    token_parser.add_argument(
        "--show-token",
        action="store_true",
        help="Include the raw access token in the output",
    )

    subparsers.add_parser(
        "validate", parents=[credential_args], help="Test credentials with one direct exchange"
    )

    monitor_parser = subparsers.add_parser(
        "monitor", parents=[credential_args], help="Run proactive renewal and print status"
    )
    monitor_parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds (default: run until interrupted)",
    )

    return parser.parse_args(argv)


def _credentials_from_args(args: argparse.Namespace, settings: AuthSettings) -> CredentialSet | None:
    """Credential set from flags, with unset parts taken from IDP_* variables."""
    if not (args.client_id or args.tenant_id or args.region):
        return None

    secret = os.getenv(ENV_CLIENT_SECRET) or ""
    if not secret and sys.stdin.isatty():
        secret = getpass.getpass("Client secret: ")

    return CredentialSet(
        client_id=args.client_id or os.getenv("IDP_CLIENT_ID", ""),
        client_secret=secret,
        tenant_id=args.tenant_id or os.getenv("IDP_TENANT_ID", ""),
        region=args.region or os.getenv("IDP_REGION") or settings.default_region,
    )


def _print_json(data: dict) -> None:
    print(json.dumps(data, indent=2, default=json_serializer))


async def run_token(args: argparse.Namespace, settings: AuthSettings) -> int:
    coordinator = build_coordinator(settings)
    try:
        credentials = _credentials_from_args(args, settings)
        if credentials is not None:
            coordinator.save_credentials(credentials)

        token = await coordinator.get_token()
        info = coordinator.get_token_info()
        output = info.to_dict() if info else {}
        stored = coordinator.store.get() if coordinator.store else None
        if stored is not None:
            output["region"] = stored.resolved_region.code
            output["apiBaseUrl"] = stored.resolved_region.api_base_url
        if args.show_token:
            output["accessToken"] = token
        _print_json(output)
        return EXIT_OK
    finally:
        await coordinator.close()


async def run_validate(args: argparse.Namespace, settings: AuthSettings) -> int:
    coordinator = build_coordinator(settings)
    try:
        credentials = _credentials_from_args(args, settings)
        if credentials is None:
            credentials = coordinator.store.get() if coordinator.store else None
        if credentials is None:
            raise ConfigurationError("No credentials given and none configured in IDP_* variables")

        result = await coordinator.validate_credentials(credentials)
        _print_json({"success": result.success, "message": result.message,
                     "credentials": credentials.masked()})
        return EXIT_OK if result.success else EXIT_ACQUISITION_FAILED
    finally:
        await coordinator.close()


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, shutdown_event: asyncio.Event) -> None:
    if sys.platform == "win32":
        logger.debug("Signal handlers not supported on Windows, using KeyboardInterrupt")
        return

    def handle_signal(sig: signal.Signals) -> None:
        logger.info("Received signal, shutting down", extra={"signal": sig.name})
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))


async def run_monitor(args: argparse.Namespace, settings: AuthSettings) -> int:
    coordinator = build_coordinator(settings)
    manager = ProactiveRenewalManager(
        coordinator,
        renewal_buffer_seconds=settings.renewal_buffer_seconds,
        health_check_interval_seconds=settings.health_check_interval_seconds,
        retry_delay_seconds=settings.renewal_retry_delay_seconds,
    )
    projection = TokenStatusProjection(
        coordinator,
        manager,
        poll_interval_seconds=settings.status_poll_interval_seconds,
        warning_threshold_seconds=settings.status_warning_threshold_seconds,
    )

    last_status: tuple | None = None

    def print_status(view: TokenStatusView) -> None:
        nonlocal last_status
        if (view.status, view.severity) == last_status:
            return
        last_status = (view.status, view.severity)
        print(f"[{view.severity.value.upper()}] {view.status.value}: {view.status_text}", flush=True)

    projection.updates.subscribe(print_status)

    shutdown_event = asyncio.Event()
    _install_signal_handlers(asyncio.get_running_loop(), shutdown_event)

    try:
        credentials = _credentials_from_args(args, settings)
        if credentials is not None:
            coordinator.save_credentials(credentials)

        await manager.start()
        projection.start()

        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=args.duration)
        except asyncio.TimeoutError:
            pass

        _print_json(manager.get_health_snapshot().to_dict())
        return EXIT_OK
    finally:
        await projection.stop()
        await manager.stop()
        await coordinator.close()


COMMANDS = {
    "token": run_token,
    "validate": run_validate,
    "monitor": run_monitor,
}


def main(argv: list[str] | None = None) -> int:
    global logger

    load_dotenv()
    args = parse_args(argv)

    try:
        settings = load_settings(args.config)
    except AuthSyncError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIGURATION_ERROR

    log_level = getattr(logging, args.log_level) if args.log_level else settings.log_level_number
    setup_logging(
        name="usersync_auth",
        component=args.command,
        log_dir=Path(args.log_dir or settings.log_dir),
        json_format=settings.json_logs,
        console_level=log_level,
        log_to_stdout=args.log_to_stdout,
    )
    logger = logging.getLogger(__name__)

    try:
        return asyncio.run(COMMANDS[args.command](args, settings))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIGURATION_ERROR
    except AuthSyncError as e:
        logger.error(f"Token acquisition failed: {e}")
        return EXIT_ACQUISITION_FAILED
    except ValueError as e:
        # pydantic validation of credential flags
        logger.error(f"Invalid credentials: {e}")
        return EXIT_CONFIGURATION_ERROR
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
