"""Keycloak signing-key commands for dlb-auth CLI.

Commands:
    keys list - Fetch the realm's JWKS and show the usable keys
"""

from __future__ import annotations

import asyncio
import json

import click

from dlb_auth.config import KeycloakConfig
from dlb_auth.exceptions import ProviderUnreachable
from dlb_auth.security.auth.jwks_cache import FederatedKeyCache, KeySetSnapshot

from ..helpers import load_config


async def _fetch_keys(config: KeycloakConfig) -> KeySetSnapshot:
    async with FederatedKeyCache(config) as cache:
        return await cache.refresh()


@click.group()
def keys() -> None:
    """Keycloak signing-key commands."""
    pass


@keys.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def list_keys(ctx: click.Context, as_json: bool) -> None:
    """Show kid, alg and use of every usable signing key.

    Keys the validator would skip (non-RSA, encryption keys, unsupported
    algorithms) are not listed.
    """
    config = load_config(ctx)
    if config.auth.mode != "keycloak" or config.auth.keycloak is None:
        raise click.ClickException("keys list requires auth.mode 'keycloak'")

    keycloak = config.auth.keycloak
    try:
        snapshot = asyncio.run(_fetch_keys(keycloak))
    except ProviderUnreachable as e:
        raise click.ClickException(f"{e.error_code}: {e}") from e

    rows = [
        {"kid": key.key_id, "alg": key.algorithm, "use": key.usage or "-"}
        for key in sorted(snapshot.keys.values(), key=lambda k: k.key_id)
    ]

    if as_json:
        click.echo(json.dumps({"certs_url": keycloak.certs_url, "keys": rows}, indent=2))
        return

    click.echo(f"Keys from {keycloak.certs_url}:")
    for row in rows:
        click.echo(f"  {row['kid']}  {row['alg']}  {row['use']}")
