"""Exception taxonomy for dlb-auth.

Every failure the core can report derives from AuthenticationError. Each class
carries a stable error_code and a status_code for the request layer, plus a
public_message that is safe to show to clients. The exception text itself
(str(exc)) holds internal detail for logs only.

Hierarchy:
    AuthenticationError
    ├── TokenNotFound
    ├── TokenRejected                 AUTH_TOKEN_INVALID
    │   ├── MalformedToken
    │   ├── SignatureInvalid
    │   ├── UnknownSigningKey
    │   ├── InvalidTokenClaims
    │   └── UnknownSubject
    ├── ExpiredToken                  AUTH_TOKEN_EXPIRED
    ├── LoginFailed                   INVALID_CREDENTIALS
    │   ├── UserNotFound
    │   └── InvalidCredentials
    ├── InvalidLoginParameters
    ├── LoginNotSupported
    ├── InsufficientPrivileges
    ├── ProviderUnreachable
    └── CredentialStoreCorrupt

All failures are fail-closed: callers must treat any AuthenticationError as
"not authenticated".
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "AuthenticationError",
    "CredentialStoreCorrupt",
    "ExpiredToken",
    "InsufficientPrivileges",
    "InvalidCredentials",
    "InvalidLoginParameters",
    "InvalidTokenClaims",
    "LoginFailed",
    "LoginNotSupported",
    "MalformedToken",
    "ProviderUnreachable",
    "SignatureInvalid",
    "TokenNotFound",
    "TokenRejected",
    "UnknownSigningKey",
    "UnknownSubject",
    "UserNotFound",
]


class AuthenticationError(Exception):
    """Base class for all authentication failures."""

    error_code: str = "UNAUTHORIZED"
    status_code: int = 401
    public_message: str = "Unauthorized"

    def to_error_payload(self) -> dict[str, Any]:
        """Client-facing error body.

        Only the category is exposed; internal detail stays in the log.
        """
        return {"code": self.error_code, "message": self.public_message}


# =============================================================================
# Bearer token failures
# =============================================================================


class TokenNotFound(AuthenticationError):
    """No token was presented."""

    error_code = "AUTH_TOKEN_NOT_FOUND"
    public_message = "Authentication token not found"


class TokenRejected(AuthenticationError):
    """Token failed verification.

    Subclasses keep the reason apart for logging, but all of them share one
    code and message so clients cannot tell a structural failure from a
    cryptographic one.
    """

    error_code = "AUTH_TOKEN_INVALID"
    public_message = "Authentication token invalid"


class MalformedToken(TokenRejected):
    """Token could not be parsed (segments, base64, JSON, claim types)."""


class SignatureInvalid(TokenRejected):
    """Signature mismatch or algorithm not bound to the signing key."""


class UnknownSigningKey(TokenRejected):
    """Token names a kid the identity provider does not publish."""

    def __init__(self, key_id: str) -> None:
        super().__init__(f"No signing key with kid '{key_id}'")
        self.key_id = key_id


class InvalidTokenClaims(TokenRejected):
    """Signature is valid but audience, issuer or nbf do not match."""


class UnknownSubject(TokenRejected):
    """Signature is valid but the subject is no longer a known service user."""


class ExpiredToken(AuthenticationError):
    """Token expiration lies before the validation time."""

    error_code = "AUTH_TOKEN_EXPIRED"
    public_message = "Authentication token expired"


# =============================================================================
# Login failures
# =============================================================================


class LoginFailed(AuthenticationError):
    """Credential check failed.

    UserNotFound and InvalidCredentials share one public message so that
    usernames cannot be enumerated.
    """

    error_code = "INVALID_CREDENTIALS"
    public_message = "Username or password is invalid"


class UserNotFound(LoginFailed):
    """No service user with this name."""


class InvalidCredentials(LoginFailed):
    """User exists but the password does not match."""


class InvalidLoginParameters(AuthenticationError):
    """Login request is missing fields or has an invalid expiration."""

    error_code = "INVALID_INPUT"
    status_code = 400
    public_message = "One or more login parameters were not correctly provided."

    def __init__(self, message: str, field_errors: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.field_errors = field_errors or {}

    def to_error_payload(self) -> dict[str, Any]:
        payload = super().to_error_payload()
        if self.field_errors:
            payload["fieldErrors"] = self.field_errors
        return payload


class LoginNotSupported(AuthenticationError):
    """Login is not available for this deployment (e.g. no Keycloak client)."""

    error_code = "LOGIN_NOT_SUPPORTED"
    status_code = 400
    public_message = "Login is not supported by this service"


class InsufficientPrivileges(AuthenticationError):
    """Authenticated user may not act for the requested delegate user."""

    error_code = "INSUFFICIENT_PRIVILEGES"
    status_code = 403
    public_message = "Insufficient privileges"


# =============================================================================
# Infrastructure failures
# =============================================================================


class ProviderUnreachable(AuthenticationError):
    """Identity provider could not be reached and no usable keys are cached."""

    error_code = "AUTH_PROVIDER_UNAVAILABLE"
    status_code = 503
    public_message = "Authentication service unavailable"


class CredentialStoreCorrupt(AuthenticationError):
    """service-users.xml could not be loaded; no credentials are usable."""

    error_code = "AUTH_STORE_UNAVAILABLE"
    status_code = 503
    public_message = "Authentication service unavailable"

    def __init__(self, message: str, attribute: str | None = None) -> None:
        super().__init__(message)
        self.attribute = attribute
