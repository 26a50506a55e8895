"""Authentication primitives.

This module provides:
- Service-user credential store (service-users.xml)
- Local HMAC token issuing and validation
- Keycloak signing-key cache (JWKS, single-flight refresh)
- Keycloak token validation and password-grant login

The AuthenticationBroker (security.broker) combines these per deployment mode.
"""

from dlb_auth.security.auth.jwks_cache import (
    FederatedKeyCache,
    JsonWebKey,
    JsonWebKeySet,
    KeyCacheState,
    KeySetSnapshot,
    SigningKey,
    signing_key_from_jwk,
)
from dlb_auth.security.auth.jwt_validator import FederatedTokenValidator
from dlb_auth.security.auth.local_tokens import (
    LocalTokenIssuer,
    LocalTokenValidator,
    hmac_algorithm_for_key,
)
from dlb_auth.security.auth.password_grant import KeycloakPasswordLogin
from dlb_auth.security.auth.service_users import (
    ServiceCredential,
    ServiceUserStore,
    parse_service_users,
)

__all__ = [
    # Service users
    "ServiceCredential",
    "ServiceUserStore",
    "parse_service_users",
    # Local tokens
    "LocalTokenIssuer",
    "LocalTokenValidator",
    "hmac_algorithm_for_key",
    # Keycloak keys
    "FederatedKeyCache",
    "JsonWebKey",
    "JsonWebKeySet",
    "KeyCacheState",
    "KeySetSnapshot",
    "SigningKey",
    "signing_key_from_jwk",
    # Keycloak tokens
    "FederatedTokenValidator",
    "KeycloakPasswordLogin",
]
