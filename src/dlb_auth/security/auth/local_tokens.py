"""Locally issued HMAC tokens for service users.

The issuer and validator share one secret (LocalAuthConfig.jwt_secret_key).
The HMAC variant follows from the secret length, so both sides always agree
on the algorithm without configuring it separately.

Claims:
    sub    service user name
    iat    issue time (whole seconds)
    exp    expiry (whole seconds); absent for non-expiring tokens
    roles  role list; absent when the user has no roles

Both classes are stateless apart from the injected clock.
"""

from __future__ import annotations

__all__ = [
    "LocalTokenIssuer",
    "LocalTokenValidator",
    "hmac_algorithm_for_key",
]

from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from dlb_auth.constants import HMAC_ALGORITHMS_BY_KEY_LENGTH, MIN_SECRET_KEY_BYTES
from dlb_auth.exceptions import MalformedToken, SignatureInvalid
from dlb_auth.security.identity import (
    Identity,
    check_not_expired,
    identity_from_claims,
    truncate_to_seconds,
)

LOCAL_ROLES_CLAIM = "roles"

# Sentinel: "use the configured lifetime" (None means non-expiring)
DEFAULT_LIFETIME: Any = object()

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def hmac_algorithm_for_key(key: bytes) -> str:
    """Pick HS512/HS384/HS256 from the key length.

    Raises:
        ValueError: If the key is shorter than 256 bits.
    """
    for min_length, algorithm in HMAC_ALGORITHMS_BY_KEY_LENGTH:
        if len(key) >= min_length:
            return algorithm
    raise ValueError(
        f"HMAC secret is {len(key) * 8} bits; at least {MIN_SECRET_KEY_BYTES * 8} bits are required"
    )


class LocalTokenIssuer:
    """Sign tokens for service users.

    Usage:
        issuer = LocalTokenIssuer(config.secret_key_bytes)
        token = issuer.issue("svc-wool", roles=["client"])
    """

    def __init__(
        self,
        secret_key: bytes,
        *,
        lifetime: timedelta | None = timedelta(days=1),
        clock: Clock = utc_now,
    ) -> None:
        """Initialize issuer.

        Args:
            secret_key: Decoded HMAC secret (at least 32 bytes).
            lifetime: Default token lifetime; None issues non-expiring tokens.
            clock: Returns the current UTC time (tests inject a fixed one).

        Raises:
            ValueError: If the secret is too short.
        """
        self._key = secret_key
        self._algorithm = hmac_algorithm_for_key(secret_key)
        self._lifetime = lifetime
        self._clock = clock

    @property
    def algorithm(self) -> str:
        return self._algorithm

    def issue_identity(
        self,
        subject: str,
        roles: Sequence[str] = (),
        lifetime: timedelta | None = DEFAULT_LIFETIME,
    ) -> tuple[str, Identity]:
        """Sign a token and return it with the Identity it encodes.

        Args:
            subject: Service user name.
            roles: Roles to embed (order kept, duplicates dropped).
            lifetime: Overrides the default lifetime; None = never expires.

        Returns:
            (compact JWS, Identity carried by it)

        Raises:
            ValueError: If subject is blank.
            TypeError: If roles is a single str instead of a sequence.
        """
        if lifetime is DEFAULT_LIFETIME:
            lifetime = self._lifetime
        issued_at = truncate_to_seconds(self._clock())
        expiration = issued_at + lifetime if lifetime is not None else None
        identity = Identity(subject=subject, issued_at=issued_at, expiration=expiration, roles=roles)  # type: ignore[arg-type]

        claims: dict[str, Any] = {
            "sub": identity.subject,
            "iat": int(identity.issued_at.timestamp()),
        }
        if identity.expiration is not None:
            claims["exp"] = int(identity.expiration.timestamp())
        if identity.roles:
            claims[LOCAL_ROLES_CLAIM] = list(identity.roles)

        token = jwt.encode(claims, self._key, algorithm=self._algorithm)
        return token, identity

    def issue(
        self,
        subject: str,
        roles: Sequence[str] = (),
        lifetime: timedelta | None = DEFAULT_LIFETIME,
    ) -> str:
        """Sign a token for subject. See issue_identity()."""
        token, _ = self.issue_identity(subject, roles, lifetime)
        return token


class LocalTokenValidator:
    """Verify tokens produced by LocalTokenIssuer.

    Only the HMAC algorithm derived from the secret is accepted; a token whose
    header names anything else fails as SignatureInvalid.
    """

    def __init__(self, secret_key: bytes, *, clock: Clock = utc_now) -> None:
        self._key = secret_key
        self._algorithm = hmac_algorithm_for_key(secret_key)
        self._clock = clock

    @property
    def algorithm(self) -> str:
        return self._algorithm

    def verify(self, token: str) -> Identity:
        """Verify token and return the identity it carries.

        Raises:
            MalformedToken: Token cannot be parsed or claims have wrong types.
            SignatureInvalid: Signature mismatch or foreign algorithm.
            ExpiredToken: exp lies before now.
        """
        try:
            claims = jwt.decode(
                token,
                self._key,
                algorithms=[self._algorithm],
                options={
                    # Time claims are checked below at second precision
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                    "require": ["sub", "iat"],
                },
            )
        except jwt.InvalidSignatureError as e:
            raise SignatureInvalid(f"Local token signature mismatch: {e}") from e
        except jwt.InvalidAlgorithmError as e:
            raise SignatureInvalid(f"Local token algorithm not accepted: {e}") from e
        except jwt.InvalidTokenError as e:
            # DecodeError, MissingRequiredClaimError, InvalidSubjectError, ...
            raise MalformedToken(f"Local token malformed: {e}") from e

        identity = identity_from_claims(
            claims,
            subject=claims.get("sub"),
            roles=claims.get(LOCAL_ROLES_CLAIM),
            roles_claim=LOCAL_ROLES_CLAIM,
        )
        return check_not_expired(identity, self._clock())

    async def validate(self, token: str) -> Identity:
        """TokenValidator entry point; verification itself is synchronous."""
        return self.verify(token)
