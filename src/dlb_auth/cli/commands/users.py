"""Service-user commands for dlb-auth CLI.

Commands:
    users check - Validate a service-users.xml file
"""

from __future__ import annotations

from pathlib import Path

import click

from dlb_auth.exceptions import CredentialStoreCorrupt
from dlb_auth.security.auth.service_users import ServiceUserStore

from ..helpers import load_config


@click.group()
def users() -> None:
    """Service-user file commands."""
    pass


@users.command()
@click.argument("file", required=False, type=click.Path(dir_okay=False, path_type=Path))
@click.pass_context
def check(ctx: click.Context, file: Path | None) -> None:
    """Validate FILE (default: auth.local.service_users_file).

    Lists the users and roles found. Passwords are never printed.
    """
    if file is None:
        config = load_config(ctx)
        if config.auth.local is None:
            raise click.ClickException("No FILE given and auth.local is not configured")
        file = config.auth.local.service_users_path

    store = ServiceUserStore(file)
    try:
        count = store.load()
    except CredentialStoreCorrupt as e:
        detail = f" (attribute: {e.attribute})" if e.attribute else ""
        raise click.ClickException(f"{file} is invalid{detail}: {e}") from e

    click.echo(f"{file}: {count} service user(s)")
    for credential in store.users():
        roles = ", ".join(credential.roles) if credential.roles else "-"
        click.echo(f"  {credential.username}  roles: {roles}")
