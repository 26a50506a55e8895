"""Keycloak login with the resource-owner password grant.

In keycloak mode the service does not issue tokens itself: the caller's
username and password are forwarded to the realm's token endpoint and the
returned access token is handed back unchanged.

Requires client_id (and client_secret for confidential clients) in
KeycloakConfig; without a client, login is not supported.
"""

from __future__ import annotations

__all__ = ["KeycloakPasswordLogin"]

from typing import TYPE_CHECKING

import httpx

from dlb_auth.exceptions import InvalidCredentials, LoginNotSupported, ProviderUnreachable
from dlb_auth.security.identity import IssuedToken
from dlb_auth.telemetry.system.system_logger import get_system_logger

if TYPE_CHECKING:
    from dlb_auth.config import KeycloakConfig


class KeycloakPasswordLogin:
    """Exchange a username/password pair for a Keycloak access token."""

    def __init__(self, config: "KeycloakConfig", *, http_client: httpx.AsyncClient | None = None) -> None:
        """Initialize login client.

        Args:
            config: Keycloak settings (token URL, client credentials).
            http_client: Client to use; one is created and owned if None.
        """
        self._config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=config.http_timeout_seconds)
        self._logger = get_system_logger()

    @property
    def enabled(self) -> bool:
        return self._config.login_enabled

    async def login(self, username: str, password: str) -> IssuedToken:
        """Request an access token for username.

        Raises:
            LoginNotSupported: No client is configured.
            InvalidCredentials: Keycloak rejected the credentials.
            ProviderUnreachable: Network error, 5xx or unusable response.
        """
        if not self._config.login_enabled:
            raise LoginNotSupported("Keycloak login requires keycloak.client_id")

        form = {
            "grant_type": "password",
            "client_id": self._config.client_id or "",
            "username": username,
            "password": password,
        }
        if self._config.client_secret:
            form["client_secret"] = self._config.client_secret

        url = self._config.token_url
        try:
            response = await self._client.post(url, data=form, timeout=self._config.http_timeout_seconds)
        except httpx.HTTPError as e:
            self._logger.error(
                {
                    "event": "keycloak_login_unreachable",
                    "url": url,
                    "error": f"{type(e).__name__}: {e}",
                }
            )
            raise ProviderUnreachable(f"Token endpoint {url} unreachable: {e}") from e

        if response.status_code in (400, 401):
            raise InvalidCredentials(f"Keycloak rejected credentials for '{username}' (HTTP {response.status_code})")

        if response.status_code != 200:
            self._logger.error(
                {
                    "event": "keycloak_login_failed",
                    "url": url,
                    "status_code": response.status_code,
                }
            )
            raise ProviderUnreachable(f"Token endpoint {url} returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderUnreachable(f"Token endpoint {url} returned invalid JSON") from e

        access_token = body.get("access_token") if isinstance(body, dict) else None
        if not isinstance(access_token, str) or not access_token:
            raise ProviderUnreachable(f"Token endpoint {url} returned no access_token")

        return IssuedToken(user=username, token=access_token)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
