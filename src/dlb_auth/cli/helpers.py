"""Shared helpers for CLI commands: config loading and broker setup."""

from __future__ import annotations

import sys
from pathlib import Path

import click

from dlb_auth.config import AppConfig
from dlb_auth.exceptions import AuthenticationError
from dlb_auth.security.broker import AuthenticationBroker, create_authentication_broker
from dlb_auth.telemetry.audit.auth_logger import create_auth_logger
from dlb_auth.telemetry.system.system_logger import configure_system_logging
from dlb_auth.utils.config import get_config_path


def load_config(ctx: click.Context) -> AppConfig:
    """Load configuration from --config or the default path.

    Also attaches log handlers as configured.

    Raises:
        click.ClickException: If config not found or invalid.
    """
    config_path: Path = (ctx.obj or {}).get("config_path") or get_config_path()

    if not config_path.exists():
        raise click.ClickException(
            f"Configuration not found at {config_path}\nPass --config PATH or create the file."
        )

    try:
        config = AppConfig.load_from_files(config_path)
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Failed to load configuration: {e}") from e

    log_dir = Path(config.logging.log_dir).expanduser() if config.logging.log_dir else None
    configure_system_logging(log_dir, level=config.logging.log_level)
    return config


def build_broker(config: AppConfig) -> AuthenticationBroker:
    """Create the broker for config, with audit logging when log_dir is set.

    Raises:
        click.ClickException: If the broker cannot be built (e.g. corrupt
            service-users.xml).
    """
    auth_logger = None
    if config.logging.log_dir:
        auth_logger = create_auth_logger(Path(config.logging.log_dir).expanduser() / "audit" / "auth.jsonl")
    try:
        return create_authentication_broker(config.auth, auth_logger)
    except AuthenticationError as e:
        raise click.ClickException(f"{e.error_code}: {e}") from e


def fail_with(error: AuthenticationError) -> None:
    """Print an authentication failure to stderr and exit with status 1."""
    click.echo(f"{error.error_code}: {error.public_message}", err=True)
    click.echo(f"  detail: {error}", err=True)
    sys.exit(1)
