"""Main CLI entry point for dlb-auth.

Defines the CLI group and registers all subcommands.

Commands:
    login          - Log in and print a token
    validate       - Validate a token and print the identity
    keys list      - Show the Keycloak realm's signing keys
    users check    - Validate a service-users.xml file
    secret generate - Generate a base64 HMAC secret

Usage:
    dlb-auth -h, --help                 Show help message
    dlb-auth -v, --version              Show version
    dlb-auth --config PATH COMMAND      Use a specific config file
    dlb-auth login USER                 Log in (password is prompted)
    dlb-auth validate TOKEN             Validate a token
    dlb-auth keys list                  List Keycloak signing keys
    dlb-auth users check [FILE]         Check a service-users file
    dlb-auth secret generate            Print a new signing secret

Subcommand help:
    dlb-auth COMMAND -h                 Show help for a specific command
"""

import sys
from pathlib import Path

import click

from dlb_auth import __version__

from .commands.keys import keys
from .commands.secret import secret
from .commands.token import login, validate
from .commands.users import users


class ReorderedGroup(click.Group):
    """Custom group that shows commands before custom help text."""

    def format_epilog(self, ctx: click.Context, formatter: click.HelpFormatter) -> None:
        """Add extra help after commands section."""
        formatter.write(
            """
Quick Start:
  dlb-auth secret generate                  Create auth.local.jwt_secret_key
  dlb-auth users check service-users.xml    Verify the credential file
  dlb-auth login svc-wool                   Get a token for a service user
  dlb-auth validate <token>                 Show who a token belongs to

Token Expiration (login --expires):
  MINUTES   Token lifetime in minutes
  never     Token does not expire (same as 0)
"""
        )


@click.group(
    cls=ReorderedGroup,
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.option("--version", "-v", is_flag=True, help="Show version")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: OS config dir)",
)
@click.pass_context
def cli(ctx: click.Context, version: bool, config_path: Path | None) -> None:
    """dlb-auth: Service-user and Keycloak authentication for Dialogue Branch."""
    if version:
        click.echo(f"dlb-auth {__version__}")
        sys.exit(0)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# Register commands
cli.add_command(login)
cli.add_command(validate)
cli.add_command(keys)
cli.add_command(users)
cli.add_command(secret)


def main() -> None:
    """CLI entry point."""
    cli()
