"""Security module for identity and authentication.

This module provides:
- Authentication primitives: service users, local and Keycloak tokens (security/auth/)
- Identity records shared by both modes
- The AuthenticationBroker used by the request layer

Note: Authentication exceptions are defined in dlb_auth.exceptions
"""

from dlb_auth.security.auth import (
    FederatedKeyCache,
    FederatedTokenValidator,
    KeycloakPasswordLogin,
    LocalTokenIssuer,
    LocalTokenValidator,
    ServiceCredential,
    ServiceUserStore,
    SigningKey,
)
from dlb_auth.security.broker import AuthenticationBroker, create_authentication_broker
from dlb_auth.security.identity import Identity, IssuedToken, TokenValidator

__all__ = [
    # Identity
    "Identity",
    "IssuedToken",
    "TokenValidator",
    # Broker
    "AuthenticationBroker",
    "create_authentication_broker",
    # Authentication (security/auth/)
    "ServiceCredential",
    "ServiceUserStore",
    "LocalTokenIssuer",
    "LocalTokenValidator",
    "FederatedKeyCache",
    "SigningKey",
    "FederatedTokenValidator",
    "KeycloakPasswordLogin",
]
