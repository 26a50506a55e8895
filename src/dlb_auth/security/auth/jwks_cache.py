"""Keycloak signing-key cache (JWKS).

Fetches the realm's public keys from
{base_url}/realms/{realm}/protocol/openid-connect/certs and serves them by kid.

State machine:
    UNINITIALIZED -> FETCHING -> READY
    READY -> REFRESHING            (kid miss or TTL expiry)
    FETCHING/REFRESHING -> ERROR   (all attempts failed)
    ERROR -> REFRESHING -> READY   (after the error cooldown)

Single-flight: at most one fetch runs per cache. Concurrent callers that need
fresh keys await the same asyncio.Task through asyncio.shield, so a caller
that is cancelled stops waiting without cancelling the fetch for the others.

Snapshots are immutable and replaced by reference. Readers never lock.

On failure the previous snapshot keeps being served (degraded) and a warning
is logged. Without a previous snapshot, lookups raise ProviderUnreachable.
"""

from __future__ import annotations

__all__ = [
    "FederatedKeyCache",
    "JsonWebKey",
    "JsonWebKeySet",
    "KeyCacheState",
    "KeySetSnapshot",
    "SigningKey",
    "signing_key_from_jwk",
]

import asyncio
import base64
import binascii
import random
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Awaitable

import httpx
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey, RSAPublicNumbers
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from dlb_auth.constants import (
    DEFAULT_FEDERATED_ALGORITHM,
    JWKS_BACKOFF_JITTER_RATIO,
    JWKS_BACKOFF_MAX_SECONDS,
    SUPPORTED_RSA_ALGORITHMS,
)
from dlb_auth.exceptions import ProviderUnreachable, UnknownSigningKey
from dlb_auth.telemetry.system.system_logger import get_system_logger

if TYPE_CHECKING:
    from dlb_auth.config import KeycloakConfig


class KeyCacheState(Enum):
    UNINITIALIZED = "uninitialized"
    FETCHING = "fetching"
    READY = "ready"
    REFRESHING = "refreshing"
    ERROR = "error"


# =============================================================================
# Wire models
# =============================================================================


class JsonWebKey(BaseModel):
    """One entry of the JWKS "keys" array, as published by Keycloak."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    key_id: str | None = Field(default=None, alias="kid")
    key_type: str | None = Field(default=None, alias="kty")
    algorithm: str | None = Field(default=None, alias="alg")
    usage: str | None = Field(default=None, alias="use")
    certificate_chain: list[str] = Field(default_factory=list, alias="x5c")
    thumbprint: str | None = Field(default=None, alias="x5t")
    thumbprint_s256: str | None = Field(default=None, alias="x5t#S256")
    modulus: str | None = Field(default=None, alias="n")
    exponent: str | None = Field(default=None, alias="e")


class JsonWebKeySet(BaseModel):
    """JWKS document. Entries stay raw so one bad key cannot reject the set."""

    model_config = ConfigDict(extra="ignore")

    keys: list[Any]


@dataclass(frozen=True)
class SigningKey:
    """Verified-usable RSA signing key.

    algorithm is the only algorithm a token signed with this key may use.
    """

    key_id: str
    key_type: str
    algorithm: str
    usage: str | None
    modulus: str
    exponent: str
    certificate_chain: tuple[str, ...] = ()
    thumbprint: str | None = None
    thumbprint_s256: str | None = None
    public_key: RSAPublicKey = field(default=None, repr=False, compare=False)  # type: ignore[assignment]


def _b64url_uint(value: str) -> int:
    padded = value + "=" * (-len(value) % 4)
    raw = base64.urlsafe_b64decode(padded.encode("ascii"))
    if not raw:
        raise ValueError("empty integer")
    return int.from_bytes(raw, "big")


def signing_key_from_jwk(jwk: JsonWebKey) -> SigningKey:
    """Convert a JWKS entry into a SigningKey.

    Raises:
        ValueError: If the entry is not a usable RSA signature key.
    """
    if not jwk.key_id:
        raise ValueError("missing kid")
    if jwk.usage is not None and jwk.usage != "sig":
        raise ValueError(f"use is '{jwk.usage}', not 'sig'")
    if jwk.key_type != "RSA":
        raise ValueError(f"kty is '{jwk.key_type}', not 'RSA'")
    algorithm = jwk.algorithm or DEFAULT_FEDERATED_ALGORITHM
    if algorithm not in SUPPORTED_RSA_ALGORITHMS:
        raise ValueError(f"alg '{algorithm}' is not a supported RSA algorithm")
    if not jwk.modulus or not jwk.exponent:
        raise ValueError("missing modulus or exponent")

    try:
        public_key = RSAPublicNumbers(_b64url_uint(jwk.exponent), _b64url_uint(jwk.modulus)).public_key()
    except (binascii.Error, UnicodeEncodeError, ValueError) as e:
        raise ValueError(f"invalid modulus/exponent: {e}") from e

    return SigningKey(
        key_id=jwk.key_id,
        key_type=jwk.key_type,
        algorithm=algorithm,
        usage=jwk.usage,
        modulus=jwk.modulus,
        exponent=jwk.exponent,
        certificate_chain=tuple(jwk.certificate_chain),
        thumbprint=jwk.thumbprint,
        thumbprint_s256=jwk.thumbprint_s256,
        public_key=public_key,
    )


@dataclass(frozen=True)
class KeySetSnapshot:
    """Immutable set of signing keys from one successful fetch.

    Attributes:
        keys: kid -> SigningKey (read-only mapping).
        fetched_monotonic: time.monotonic() value at fetch, for age checks.
        fetched_at: Wall-clock fetch time, for diagnostics.
    """

    keys: Mapping[str, SigningKey]
    fetched_monotonic: float
    fetched_at: datetime

    def get(self, key_id: str) -> SigningKey | None:
        return self.keys.get(key_id)

    def age(self, now_monotonic: float) -> float:
        return now_monotonic - self.fetched_monotonic

    def __len__(self) -> int:
        return len(self.keys)


class _FetchFailed(Exception):
    """One failed fetch attempt."""

    def __init__(self, message: str, *, retryable: bool) -> None:
        super().__init__(message)
        self.retryable = retryable


# =============================================================================
# Cache
# =============================================================================


class FederatedKeyCache:
    """Single-flight JWKS cache for one Keycloak realm.

    Usage:
        async with FederatedKeyCache(keycloak_config) as cache:
            key = await cache.get_key(kid)

    The httpx client, clock, sleep and random source are injectable for tests.
    """

    def __init__(
        self,
        config: "KeycloakConfig",
        *,
        http_client: httpx.AsyncClient | None = None,
        monotonic: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize cache. No network traffic happens until the first lookup.

        Args:
            config: Keycloak settings (certs URL, TTL, retry bounds).
            http_client: Client to use; the cache creates and owns one if None.
            monotonic: Monotonic clock in seconds.
            sleep: Awaitable sleep used between retry attempts.
            rng: Random source for backoff jitter.
        """
        self._config = config
        self._url = config.certs_url
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=config.http_timeout_seconds)
        self._monotonic = monotonic
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._logger = get_system_logger()

        self._state = KeyCacheState.UNINITIALIZED
        self._snapshot: KeySetSnapshot | None = None
        self._refresh_task: asyncio.Task[KeySetSnapshot] | None = None
        self._last_error: str | None = None
        self._error_at: float | None = None
        self._fetch_count = 0

    async def __aenter__(self) -> "FederatedKeyCache":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # --- diagnostics ---

    @property
    def certs_url(self) -> str:
        return self._url

    @property
    def state(self) -> KeyCacheState:
        return self._state

    @property
    def snapshot(self) -> KeySetSnapshot | None:
        return self._snapshot

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def fetch_count(self) -> int:
        """Number of fetch attempts sent so far (each retry counts)."""
        return self._fetch_count

    # --- lookup ---

    async def get_key(self, key_id: str) -> SigningKey:
        """Resolve a signing key by kid.

        Raises:
            UnknownSigningKey: kid is not published, even after a refresh.
            ProviderUnreachable: Keys could not be fetched and none are cached.
        """
        now = self._monotonic()
        snapshot = self._snapshot

        if snapshot is not None and snapshot.age(now) < self._config.cache_ttl_seconds:
            key = snapshot.get(key_id)
            if key is not None:
                return key
            if snapshot.age(now) < self._config.min_refresh_interval_seconds:
                self._logger.debug(
                    {
                        "event": "jwks_refresh_throttled",
                        "kid": key_id,
                        "snapshot_age_seconds": round(snapshot.age(now), 3),
                    }
                )
                raise UnknownSigningKey(key_id)

        if self._in_error_cooldown(now):
            return self._serve_degraded(key_id)

        try:
            snapshot = await self._refresh()
        except ProviderUnreachable:
            return self._serve_degraded(key_id)

        key = snapshot.get(key_id)
        if key is None:
            raise UnknownSigningKey(key_id)
        return key

    async def refresh(self) -> KeySetSnapshot:
        """Force a fetch (joins one already in flight).

        Raises:
            ProviderUnreachable: If every attempt failed.
        """
        return await self._refresh()

    async def aclose(self) -> None:
        """Cancel an in-flight fetch and close an owned HTTP client."""
        task = self._refresh_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except (asyncio.CancelledError, ProviderUnreachable):
                pass
        if self._owns_client:
            await self._client.aclose()

    # --- internals ---

    def _in_error_cooldown(self, now: float) -> bool:
        return (
            self._state is KeyCacheState.ERROR
            and self._error_at is not None
            and now - self._error_at < self._config.error_cooldown_seconds
        )

    def _serve_degraded(self, key_id: str) -> SigningKey:
        snapshot = self._snapshot
        if snapshot is None:
            raise ProviderUnreachable(f"Signing keys unavailable from {self._url}: {self._last_error}")
        self._logger.warning(
            {
                "event": "jwks_degraded_fallback",
                "kid": key_id,
                "snapshot_fetched_at": snapshot.fetched_at.isoformat(),
                "error": self._last_error,
            }
        )
        key = snapshot.get(key_id)
        if key is None:
            raise UnknownSigningKey(key_id)
        return key

    async def _refresh(self) -> KeySetSnapshot:
        # No await between the check and the assignment: atomic on the event loop
        task = self._refresh_task
        if task is None or task.done():
            self._state = KeyCacheState.FETCHING if self._snapshot is None else KeyCacheState.REFRESHING
            task = asyncio.get_running_loop().create_task(self._fetch_with_retry())
            task.add_done_callback(_consume_task_result)
            self._refresh_task = task
        return await asyncio.shield(task)

    def _backoff_delay(self, attempt: int) -> float:
        delay = self._config.fetch_backoff_seconds * (2 ** (attempt - 1))
        delay = min(delay, JWKS_BACKOFF_MAX_SECONDS)
        jitter_amount = delay * JWKS_BACKOFF_JITTER_RATIO
        delay += self._rng.uniform(-jitter_amount, jitter_amount)
        return max(0.0, delay)

    async def _fetch_with_retry(self) -> KeySetSnapshot:
        max_attempts = self._config.max_fetch_attempts
        failure: _FetchFailed | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                snapshot = await self._fetch_once()
            except _FetchFailed as e:
                failure = e
                if not e.retryable or attempt == max_attempts:
                    break
                delay = self._backoff_delay(attempt)
                self._logger.warning(
                    {
                        "event": "jwks_fetch_retry",
                        "url": self._url,
                        "attempt": attempt,
                        "max_attempts": max_attempts,
                        "delay_seconds": round(delay, 3),
                        "error": str(e),
                    }
                )
                await self._sleep(delay)
            else:
                self._publish(snapshot)
                return snapshot

        assert failure is not None
        self._state = KeyCacheState.ERROR
        self._last_error = str(failure)
        self._error_at = self._monotonic()
        self._logger.error(
            {
                "event": "jwks_fetch_failed",
                "url": self._url,
                "error": self._last_error,
                "has_fallback": self._snapshot is not None,
            }
        )
        raise ProviderUnreachable(f"Failed to fetch signing keys from {self._url}: {failure}") from failure

    def _publish(self, snapshot: KeySetSnapshot) -> None:
        previous = self._snapshot
        self._snapshot = snapshot
        self._state = KeyCacheState.READY
        self._last_error = None
        self._error_at = None
        self._logger.info(
            {
                "event": "jwks_refreshed",
                "url": self._url,
                "key_count": len(snapshot),
                "kids": sorted(snapshot.keys),
                "replaced_kids": sorted(previous.keys) if previous is not None else None,
            }
        )

    async def _fetch_once(self) -> KeySetSnapshot:
        self._fetch_count += 1
        try:
            response = await self._client.get(
                self._url,
                headers={"Accept": "application/json"},
                timeout=self._config.http_timeout_seconds,
            )
        except httpx.TimeoutException as e:
            raise _FetchFailed(f"timed out after {self._config.http_timeout_seconds}s", retryable=True) from e
        except httpx.HTTPError as e:
            raise _FetchFailed(f"{type(e).__name__}: {e}", retryable=True) from e

        if response.status_code >= 500:
            raise _FetchFailed(f"HTTP {response.status_code}", retryable=True)
        if response.status_code != 200:
            raise _FetchFailed(f"HTTP {response.status_code}", retryable=False)

        try:
            document = JsonWebKeySet.model_validate_json(response.content)
        except ValidationError as e:
            raise _FetchFailed(f"invalid JWKS document: {e.error_count()} error(s)", retryable=False) from e

        keys = self._parse_keys(document)
        if not keys:
            raise _FetchFailed("JWKS document contains no usable signing keys", retryable=False)

        return KeySetSnapshot(
            keys=MappingProxyType(keys),
            fetched_monotonic=self._monotonic(),
            fetched_at=datetime.now(timezone.utc),
        )

    def _parse_keys(self, document: JsonWebKeySet) -> dict[str, SigningKey]:
        keys: dict[str, SigningKey] = {}
        for index, raw in enumerate(document.keys):
            try:
                key = signing_key_from_jwk(JsonWebKey.model_validate(raw))
            except (ValidationError, ValueError) as e:
                self._logger.warning(
                    {
                        "event": "jwks_key_skipped",
                        "index": index,
                        "kid": raw.get("kid") if isinstance(raw, dict) else None,
                        "reason": str(e),
                    }
                )
                continue
            if key.key_id in keys:
                self._logger.warning(
                    {
                        "event": "jwks_duplicate_kid",
                        "kid": key.key_id,
                        "message": "Duplicate kid ignored; first entry wins",
                    }
                )
                continue
            keys[key.key_id] = key
        return keys


def _consume_task_result(task: asyncio.Task[Any]) -> None:
    # Waiters may all have been cancelled; retrieve the exception so asyncio
    # does not report it as never retrieved
    if not task.cancelled():
        task.exception()
