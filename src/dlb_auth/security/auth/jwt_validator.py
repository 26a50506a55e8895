"""Keycloak access-token validation.

Validates RS*/PS*-signed JWTs against the realm's published keys:
- kid from the unverified header selects the key (nothing else in the header is trusted)
- the key's bound algorithm is the only one accepted (alg-confusion defence)
- signature, then optional audience and issuer
- exp / nbf checked at second precision against the injected clock

Subject comes from the configured claim (preferred_username by default) with
"sub" as fallback; roles from a dotted claim path (realm_access.roles).
"""

from __future__ import annotations

__all__ = ["FederatedTokenValidator"]

from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import jwt

from dlb_auth.exceptions import InvalidTokenClaims, MalformedToken, SignatureInvalid
from dlb_auth.security.identity import (
    Identity,
    check_not_expired,
    claim_time,
    identity_from_claims,
)
from dlb_auth.telemetry.system.system_logger import get_system_logger

if TYPE_CHECKING:
    from dlb_auth.config import KeycloakConfig
    from dlb_auth.security.auth.jwks_cache import FederatedKeyCache


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_claim_path(claims: Mapping[str, Any], path: str) -> Any:
    """Follow a dotted path ("realm_access.roles") through nested claims.

    Returns None if any segment is absent.

    Raises:
        MalformedToken: If an intermediate segment is not an object.
    """
    value: Any = claims
    for part in path.split("."):
        if value is None:
            return None
        if not isinstance(value, Mapping):
            raise MalformedToken(f"Claim path '{path}' crosses a non-object value at '{part}'")
        value = value.get(part)
    return value


class FederatedTokenValidator:
    """Verify Keycloak-issued bearer tokens.

    Usage:
        validator = FederatedTokenValidator(keycloak_config, key_cache)
        identity = await validator.validate(token)
    """

    def __init__(
        self,
        config: "KeycloakConfig",
        key_cache: "FederatedKeyCache",
        *,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._config = config
        self._keys = key_cache
        self._clock = clock
        self._logger = get_system_logger()

    async def validate(self, token: str) -> Identity:
        """Validate a federated token.

        Raises:
            MalformedToken: Unparseable token, no kid, bad claim types.
            UnknownSigningKey: kid not published by the realm.
            SignatureInvalid: Algorithm mismatch or bad signature.
            InvalidTokenClaims: Audience, issuer or nbf rejected.
            ExpiredToken: exp lies before now.
            ProviderUnreachable: Keys could not be fetched.
        """
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError as e:
            raise MalformedToken(f"Token header unreadable: {e}") from e

        key_id = header.get("kid")
        if not isinstance(key_id, str) or not key_id:
            raise MalformedToken("Token header has no 'kid'")
        declared_alg = header.get("alg")

        key = await self._keys.get_key(key_id)

        if declared_alg != key.algorithm:
            self._logger.warning(
                {
                    "event": "token_algorithm_mismatch",
                    "kid": key_id,
                    "declared_alg": str(declared_alg),
                    "key_alg": key.algorithm,
                }
            )
            raise SignatureInvalid(
                f"Token declares alg '{declared_alg}' but key '{key_id}' is bound to '{key.algorithm}'"
            )

        claims = self._decode(token, key.public_key, key.algorithm)

        now = self._clock()
        not_before = claim_time(claims, "nbf")
        if not_before is not None and not_before > now:
            raise InvalidTokenClaims(f"Token not valid before {not_before.isoformat()}")

        subject = claims.get(self._config.subject_claim)
        if subject is None:
            subject = claims.get("sub")

        identity = identity_from_claims(
            claims,
            subject=subject,
            roles=resolve_claim_path(claims, self._config.roles_claim),
            roles_claim=self._config.roles_claim,
        )
        return check_not_expired(identity, now)

    def _decode(self, token: str, public_key: Any, algorithm: str) -> dict[str, Any]:
        audience = self._config.audience
        try:
            return jwt.decode(
                token,
                public_key,
                algorithms=[algorithm],
                audience=audience,
                issuer=self._config.issuer,
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                    # Keycloak always sets aud; only compare when one is configured
                    "verify_aud": audience is not None,
                    "require": ["iat"],
                },
            )
        except jwt.InvalidSignatureError as e:
            raise SignatureInvalid(f"Token signature mismatch: {e}") from e
        except jwt.InvalidAlgorithmError as e:
            raise SignatureInvalid(f"Token algorithm not accepted: {e}") from e
        except (jwt.InvalidAudienceError, jwt.InvalidIssuerError) as e:
            raise InvalidTokenClaims(str(e)) from e
        except jwt.InvalidTokenError as e:
            raise MalformedToken(f"Token malformed: {e}") from e
