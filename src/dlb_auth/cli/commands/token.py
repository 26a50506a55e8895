"""Token commands for dlb-auth CLI.

Commands:
    login     - Log in with a username/password and print the token
    validate  - Validate a token and print the identity it carries
"""

from __future__ import annotations

import asyncio
import json

import click

from dlb_auth.config import AppConfig
from dlb_auth.exceptions import AuthenticationError
from dlb_auth.security.identity import Identity, IssuedToken

from ..helpers import build_broker, fail_with, load_config


class ExpirationParamType(click.ParamType):
    """Token expiration in minutes, or "never"."""

    name = "MINUTES|never"

    def convert(self, value: object, param: click.Parameter | None, ctx: click.Context | None) -> int:
        if isinstance(value, int):
            return value
        text = str(value).strip().lower()
        if text == "never":
            return 0
        try:
            return int(text)
        except ValueError:
            self.fail(f"'{value}' is not a number of minutes or 'never'", param, ctx)


async def _login(config: AppConfig, user: str, password: str, expires: int | None) -> IssuedToken:
    broker = build_broker(config)
    try:
        return await broker.login(user, password, expires)
    finally:
        await broker.aclose()


async def _validate(config: AppConfig, token: str) -> Identity:
    broker = build_broker(config)
    try:
        return await broker.authenticate(token)
    finally:
        await broker.aclose()


@click.command()
@click.argument("user")
@click.option("--password", prompt=True, hide_input=True, help="Password (prompted if omitted)")
@click.option(
    "--expires",
    type=ExpirationParamType(),
    default=None,
    help="Token lifetime in minutes, or 'never' (local mode; default 24h)",
)
@click.option("--json", "as_json", is_flag=True, help="Print {user, token} as JSON")
@click.pass_context
def login(ctx: click.Context, user: str, password: str, expires: int | None, as_json: bool) -> None:
    """Log in as USER and print the issued token.

    In local mode the token is signed here; in keycloak mode it comes from
    Keycloak's token endpoint.
    """
    config = load_config(ctx)
    try:
        issued = asyncio.run(_login(config, user, password, expires))
    except AuthenticationError as e:
        fail_with(e)
        return

    if as_json:
        click.echo(json.dumps(issued.to_payload()))
    else:
        click.echo(issued.token)


@click.command()
@click.argument("token")
@click.pass_context
def validate(ctx: click.Context, token: str) -> None:
    """Validate TOKEN and print the identity as JSON.

    Exits with status 1 and prints the error code if the token is rejected.
    """
    config = load_config(ctx)
    try:
        identity = asyncio.run(_validate(config, token))
    except AuthenticationError as e:
        fail_with(e)
        return

    click.echo(json.dumps(identity.to_payload(), indent=2))
