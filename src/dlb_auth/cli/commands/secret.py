"""Secret commands for dlb-auth CLI.

Commands:
    secret generate - Print a new base64 HMAC secret for jwt_secret_key
"""

from __future__ import annotations

import base64
import secrets

import click

from dlb_auth.constants import MIN_SECRET_KEY_BYTES
from dlb_auth.security.auth.local_tokens import hmac_algorithm_for_key


@click.group()
def secret() -> None:
    """Signing secret commands."""
    pass


@secret.command()
@click.option(
    "--bytes",
    "num_bytes",
    type=click.IntRange(min=MIN_SECRET_KEY_BYTES, max=1024),
    default=64,
    show_default=True,
    help="Secret length in bytes (64 selects HS512)",
)
def generate(num_bytes: int) -> None:
    """Print a random secret suitable for auth.local.jwt_secret_key."""
    key = secrets.token_bytes(num_bytes)
    click.echo(base64.b64encode(key).decode("ascii"))
    click.echo(f"Signing algorithm: {hmac_algorithm_for_key(key)}", err=True)
