"""Shared fixtures for dlb-auth tests.

Provides:
- Fixed, adjustable clocks for token timing
- Service-user files
- Local and Keycloak configurations
- RSA test keys, JWK rendering and a mock JWKS endpoint
"""

from __future__ import annotations

import base64
import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from dlb_auth.config import AuthConfig, KeycloakConfig, LocalAuthConfig
from dlb_auth.telemetry.system.system_logger import SYSTEM_LOGGER_NAME

# 64 bytes: selects HS512
SECRET_KEY = bytes(range(64))
SECRET_KEY_B64 = base64.b64encode(SECRET_KEY).decode("ascii")

KEYCLOAK_BASE_URL = "https://keycloak.example.com"
KEYCLOAK_REALM = "dialogue-branch"
CERTS_URL = f"{KEYCLOAK_BASE_URL}/realms/{KEYCLOAK_REALM}/protocol/openid-connect/certs"
TOKEN_URL = f"{KEYCLOAK_BASE_URL}/realms/{KEYCLOAK_REALM}/protocol/openid-connect/token"

SERVICE_USERS_XML = """<?xml version="1.0" encoding="UTF-8"?>
<service-users>
    <service-user username="svc-wool" password="wool-secret" roles="client"/>
    <service-user username="Alice" password="alice-pw" roles="editor, client"/>
    <service-user username="admin" password="admin-pw" roles="admin"/>
</service-users>
"""


# ============================================================================
# Clocks
# ============================================================================


class FixedClock:
    """Wall clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class MonotonicClock:
    """Monotonic clock for cache age checks."""

    def __init__(self, start: float = 1000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def clock() -> FixedClock:
    """Clock fixed at 2024-05-01 12:00:00.250 UTC (sub-second part on purpose)."""
    return FixedClock(datetime(2024, 5, 1, 12, 0, 0, 250000, tzinfo=timezone.utc))


@pytest.fixture
def monotonic() -> MonotonicClock:
    return MonotonicClock()


@pytest.fixture(autouse=True)
def reset_system_logger() -> Iterator[None]:
    """Undo configure_system_logging() so caplog sees records in every test."""
    yield
    logger = logging.getLogger(SYSTEM_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


# ============================================================================
# Local mode
# ============================================================================


@pytest.fixture
def service_users_file(tmp_path: Path) -> Path:
    path = tmp_path / "service-users.xml"
    path.write_text(SERVICE_USERS_XML, encoding="utf-8")
    return path


@pytest.fixture
def local_config(service_users_file: Path) -> LocalAuthConfig:
    return LocalAuthConfig(
        jwt_secret_key=SECRET_KEY_B64,
        service_users_file=str(service_users_file),
    )


@pytest.fixture
def local_auth_config(local_config: LocalAuthConfig) -> AuthConfig:
    return AuthConfig(mode="local", local=local_config)


# ============================================================================
# Keycloak mode
# ============================================================================


@pytest.fixture
def keycloak_config() -> KeycloakConfig:
    return KeycloakConfig(
        base_url=KEYCLOAK_BASE_URL,
        realm=KEYCLOAK_REALM,
        client_id="dlb-web",
        client_secret="client-secret",
        fetch_backoff_seconds=0.01,
    )


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    """RSA key pair for signing federated tokens (generated once)."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_rsa_private_key() -> rsa.RSAPrivateKey:
    """Second key pair, for rotation and wrong-key tests."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _b64url_uint(value: int) -> str:
    raw = value.to_bytes((value.bit_length() + 7) // 8, "big")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def rsa_jwk(private_key: rsa.RSAPrivateKey, kid: str, alg: str | None = "RS256", use: str = "sig") -> dict[str, Any]:
    """Render the public half of private_key as a Keycloak-style JWK."""
    numbers = private_key.public_key().public_numbers()
    jwk: dict[str, Any] = {
        "kid": kid,
        "kty": "RSA",
        "use": use,
        "n": _b64url_uint(numbers.n),
        "e": _b64url_uint(numbers.e),
        "x5c": ["MIIC...base64-cert..."],
        "x5t": "thumb-sha1",
        "x5t#S256": "thumb-sha256",
    }
    if alg is not None:
        jwk["alg"] = alg
    return jwk


def federated_token(
    private_key: rsa.RSAPrivateKey,
    *,
    kid: str,
    issued_at: datetime,
    lifetime: timedelta | None = timedelta(minutes=5),
    alg: str = "RS256",
    username: str = "jane.doe",
    roles: list[str] | None = None,
    extra: dict[str, Any] | None = None,
) -> str:
    """Sign a Keycloak-shaped access token."""
    claims: dict[str, Any] = {
        "sub": "f3b4c8de-0000-4000-8000-000000000001",
        "preferred_username": username,
        "iss": f"{KEYCLOAK_BASE_URL}/realms/{KEYCLOAK_REALM}",
        "aud": "account",
        "iat": int(issued_at.timestamp()),
        "realm_access": {"roles": roles if roles is not None else ["client"]},
    }
    if lifetime is not None:
        claims["exp"] = int((issued_at + lifetime).timestamp())
    if extra:
        claims.update(extra)
    return jwt.encode(claims, private_key, algorithm=alg, headers={"kid": kid})


@dataclass
class JwksEndpoint:
    """Mock certs endpoint: serves `keys`, or fails with queued responses."""

    keys: list[dict[str, Any]]
    failures: list[Callable[[httpx.Request], httpx.Response]] = field(default_factory=list)
    requests: int = 0

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests += 1
        if self.failures:
            return self.failures.pop(0)(request)
        return httpx.Response(200, json={"keys": self.keys})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


def http_status(status_code: int) -> Callable[[httpx.Request], httpx.Response]:
    return lambda request: httpx.Response(status_code, json={"error": "unavailable"})


def connect_error(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


async def no_sleep(delay: float) -> None:
    return None
