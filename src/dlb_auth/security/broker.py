"""Authentication broker: the single entry point for the request layer.

A deployment runs in one mode, fixed when the broker is built:

    local     service users from service-users.xml, HMAC tokens issued here
    keycloak  bearer tokens verified against the realm's JWKS; login is
              forwarded to Keycloak's token endpoint

The broker returns an Identity or IssuedToken, or raises an
AuthenticationError subclass. Every outcome is written to the audit log when
an AuthLogger is configured.
"""

from __future__ import annotations

__all__ = [
    "AuthMode",
    "AuthenticationBroker",
    "create_authentication_broker",
]

import hmac
import secrets
from datetime import timedelta
from typing import TYPE_CHECKING, Literal

import httpx
import jwt

from dlb_auth.constants import BEARER_PREFIX, USER_ROLE_ADMIN
from dlb_auth.exceptions import (
    AuthenticationError,
    InsufficientPrivileges,
    InvalidCredentials,
    InvalidLoginParameters,
    LoginNotSupported,
    MalformedToken,
    TokenNotFound,
    UnknownSubject,
    UserNotFound,
)
from dlb_auth.security.auth.jwks_cache import FederatedKeyCache
from dlb_auth.security.auth.jwt_validator import FederatedTokenValidator
from dlb_auth.security.auth.local_tokens import LocalTokenIssuer, LocalTokenValidator
from dlb_auth.security.auth.password_grant import KeycloakPasswordLogin
from dlb_auth.security.auth.service_users import ServiceUserStore
from dlb_auth.security.identity import Identity, IssuedToken, TokenValidator
from dlb_auth.telemetry.models.audit import SubjectIdentity, TokenInfo
from dlb_auth.telemetry.system.system_logger import get_system_logger

if TYPE_CHECKING:
    from dlb_auth.config import AuthConfig
    from dlb_auth.telemetry.audit.auth_logger import AuthLogger

AuthMode = Literal["local", "keycloak"]

# Compared against when the user does not exist, so unknown and known users
# take the same time to reject
_DUMMY_PASSWORD = secrets.token_urlsafe(32)


def _extract_token(bearer: str | None) -> str:
    if bearer is None:
        raise TokenNotFound("No authentication token presented")
    token = bearer.strip()
    if token.lower().startswith(BEARER_PREFIX):
        token = token[len(BEARER_PREFIX) :].strip()
    if not token:
        raise MalformedToken("Authentication token is empty")
    return token


def _peek_key_id(token: str) -> str | None:
    """kid from the unverified header, for audit records only."""
    try:
        key_id = jwt.get_unverified_header(token).get("kid")
    except jwt.InvalidTokenError:
        return None
    return key_id if isinstance(key_id, str) else None


class AuthenticationBroker:
    """Login and bearer-token authentication for one deployment mode.

    Use create_authentication_broker() to build one from configuration.
    """

    def __init__(
        self,
        mode: AuthMode,
        validator: TokenValidator,
        *,
        user_store: ServiceUserStore | None = None,
        issuer: LocalTokenIssuer | None = None,
        password_login: KeycloakPasswordLogin | None = None,
        key_cache: FederatedKeyCache | None = None,
        require_known_subject: bool = True,
        auth_logger: "AuthLogger | None" = None,
    ) -> None:
        """Initialize broker.

        Args:
            mode: "local" or "keycloak".
            validator: LocalTokenValidator or FederatedTokenValidator.
            user_store: Service users (local mode, required).
            issuer: Token issuer (local mode, required).
            password_login: Keycloak login (keycloak mode, optional).
            key_cache: Key cache to close in aclose() (keycloak mode).
            require_known_subject: Local mode: reject tokens of removed users.
            auth_logger: Audit logger; None disables audit records.

        Raises:
            ValueError: If a component required by the mode is missing.
        """
        if mode == "local" and (user_store is None or issuer is None):
            raise ValueError("local mode requires user_store and issuer")
        self._mode: AuthMode = mode
        self._validator = validator
        self._users = user_store
        self._issuer = issuer
        self._password_login = password_login
        self._key_cache = key_cache
        self._require_known_subject = require_known_subject
        self._audit = auth_logger
        self._logger = get_system_logger()

    @property
    def mode(self) -> AuthMode:
        return self._mode

    @property
    def key_cache(self) -> FederatedKeyCache | None:
        return self._key_cache

    # =========================================================================
    # Login
    # =========================================================================

    async def login(
        self,
        username: str | None,
        password: str | None,
        expiration_minutes: int | None = None,
    ) -> IssuedToken:
        """Authenticate a credential pair and hand out a token.

        Args:
            username: User name (case-insensitive in local mode).
            password: Password.
            expiration_minutes: Local mode only. None = configured lifetime
                (24h by default), 0 = never expires, >0 = that many minutes.

        Returns:
            IssuedToken with the user name and compact JWT.

        Raises:
            InvalidLoginParameters: Blank fields or negative expiration.
            UserNotFound / InvalidCredentials: Credentials rejected.
            LoginNotSupported: Keycloak mode without a configured client.
            CredentialStoreCorrupt: service-users.xml unusable.
            ProviderUnreachable: Keycloak token endpoint unreachable.
        """
        try:
            username, password = self._check_login_parameters(username, password)
            if self._mode == "local":
                issued, identity = self._login_local(username, password, expiration_minutes)
            else:
                issued, identity = await self._login_keycloak(username, password), None
        except AuthenticationError as e:
            if self._audit is not None:
                self._audit.log_login_failed(
                    username=username,
                    error_type=type(e).__name__,
                    error_code=e.error_code,
                    error_message=str(e),
                )
            raise

        if self._audit is not None:
            self._audit.log_login_succeeded(
                username=username,
                subject=SubjectIdentity(subject_id=identity.subject, roles=list(identity.roles)) if identity else None,
                token=self._token_info(identity, key_id=None),
            )
        return issued

    @staticmethod
    def _check_login_parameters(username: str | None, password: str | None) -> tuple[str, str]:
        field_errors: dict[str, str] = {}
        if username is None or not username.strip():
            field_errors["user"] = "Value not set"
        if password is None or not password:
            field_errors["password"] = "Value not set"
        if field_errors:
            raise InvalidLoginParameters(
                f"Missing login parameters: {', '.join(sorted(field_errors))}",
                field_errors=field_errors,
            )
        return username.strip(), password  # type: ignore[union-attr,return-value]

    def _login_local(
        self, username: str, password: str, expiration_minutes: int | None
    ) -> tuple[IssuedToken, Identity]:
        assert self._users is not None and self._issuer is not None
        if expiration_minutes is not None and expiration_minutes < 0:
            raise InvalidLoginParameters(
                f"Invalid token expiration: {expiration_minutes}",
                field_errors={"tokenExpiration": "Invalid value"},
            )

        credential = self._users.find_user(username)
        expected = credential.password if credential is not None and credential.password else _DUMMY_PASSWORD
        password_ok = hmac.compare_digest(password.encode("utf-8"), expected.encode("utf-8"))

        if credential is None:
            raise UserNotFound(f"User not found: {username}")
        if not password_ok:
            raise InvalidCredentials(f"Invalid password for user: {credential.username}")

        if expiration_minutes is None:
            token, identity = self._issuer.issue_identity(credential.username, credential.roles)
        elif expiration_minutes == 0:
            token, identity = self._issuer.issue_identity(credential.username, credential.roles, lifetime=None)
        else:
            token, identity = self._issuer.issue_identity(
                credential.username, credential.roles, lifetime=timedelta(minutes=expiration_minutes)
            )
        return IssuedToken(user=credential.username, token=token), identity

    async def _login_keycloak(self, username: str, password: str) -> IssuedToken:
        if self._password_login is None:
            raise LoginNotSupported("Login is not configured for keycloak mode")
        return await self._password_login.login(username, password)

    # =========================================================================
    # Bearer tokens
    # =========================================================================

    async def authenticate(self, bearer: str | None) -> Identity:
        """Validate a bearer string.

        Args:
            bearer: Raw token, optionally prefixed with "Bearer ".

        Returns:
            Identity of the caller.

        Raises:
            TokenNotFound: bearer is None.
            TokenRejected subclasses: Malformed, bad signature, unknown kid,
                rejected claims, or (local mode) removed user.
            ExpiredToken: Token has expired.
            ProviderUnreachable: Keycloak keys unavailable.
            CredentialStoreCorrupt: service-users.xml unusable.
        """
        key_id: str | None = None
        try:
            token = _extract_token(bearer)
            if self._mode == "keycloak":
                key_id = _peek_key_id(token)
            identity = await self._validator.validate(token)
            if self._mode == "local" and self._require_known_subject:
                self._check_known_subject(identity)
        except AuthenticationError as e:
            self._logger.debug(
                {
                    "event": "token_rejected",
                    "auth_mode": self._mode,
                    "error_type": type(e).__name__,
                    "error": str(e),
                }
            )
            if self._audit is not None:
                self._audit.log_token_invalid(
                    token=TokenInfo(auth_mode=self._mode, key_id=key_id),
                    error_type=type(e).__name__,
                    error_code=e.error_code,
                    error_message=str(e),
                )
            raise

        if self._audit is not None:
            self._audit.log_token_validated(
                subject=SubjectIdentity(subject_id=identity.subject, roles=list(identity.roles)),
                token=self._token_info(identity, key_id=key_id),
            )
        return identity

    def _check_known_subject(self, identity: Identity) -> None:
        assert self._users is not None
        if self._users.find_user(identity.subject) is None:
            raise UnknownSubject(f"Token subject '{identity.subject}' is not a known service user")

    def _token_info(self, identity: Identity | None, key_id: str | None) -> TokenInfo:
        if identity is None:
            return TokenInfo(auth_mode=self._mode, key_id=key_id)
        return TokenInfo(
            auth_mode=self._mode,
            key_id=key_id,
            token_iat=identity.issued_at,
            token_exp=identity.expiration,
        )

    # =========================================================================
    # Delegation
    # =========================================================================

    def authorize_delegate(self, identity: Identity, delegate_user: str | None) -> str:
        """Resolve the user a request acts for.

        Callers act for themselves unless they name another user, which only
        admins may do.

        Returns:
            The effective user name.

        Raises:
            InsufficientPrivileges: Non-admin caller names another user.
        """
        if not delegate_user or not delegate_user.strip():
            return identity.subject
        delegate_user = delegate_user.strip()
        if delegate_user.lower() == identity.subject.lower():
            return identity.subject
        if identity.has_role(USER_ROLE_ADMIN):
            return delegate_user
        raise InsufficientPrivileges(f"User '{identity.subject}' may not act for '{delegate_user}'")

    async def aclose(self) -> None:
        """Release network clients (keycloak mode)."""
        if self._key_cache is not None:
            await self._key_cache.aclose()
        if self._password_login is not None:
            await self._password_login.aclose()


def create_authentication_broker(
    config: "AuthConfig",
    auth_logger: "AuthLogger | None" = None,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> AuthenticationBroker:
    """Build the broker for the configured mode.

    Local mode loads service-users.xml immediately, so a corrupt file is
    reported at startup.

    Args:
        config: Authentication configuration.
        auth_logger: Audit logger (optional).
        http_client: Shared client for Keycloak calls (tests inject one).

    Returns:
        Ready-to-use AuthenticationBroker.

    Raises:
        CredentialStoreCorrupt: service-users.xml could not be loaded.
    """
    logger = get_system_logger()

    if config.mode == "local":
        local = config.local
        assert local is not None
        store = ServiceUserStore(local.service_users_path)
        store.load()
        secret = local.secret_key_bytes
        issuer = LocalTokenIssuer(secret, lifetime=timedelta(seconds=local.token_lifetime_seconds))
        validator = LocalTokenValidator(secret)
        logger.info(
            {
                "event": "auth_broker_created",
                "auth_mode": "local",
                "algorithm": issuer.algorithm,
                "service_users_file": str(store.path),
            }
        )
        return AuthenticationBroker(
            "local",
            validator,
            user_store=store,
            issuer=issuer,
            require_known_subject=local.require_known_subject,
            auth_logger=auth_logger,
        )

    keycloak = config.keycloak
    assert keycloak is not None
    key_cache = FederatedKeyCache(keycloak, http_client=http_client)
    password_login = KeycloakPasswordLogin(keycloak, http_client=http_client) if keycloak.login_enabled else None
    logger.info(
        {
            "event": "auth_broker_created",
            "auth_mode": "keycloak",
            "certs_url": keycloak.certs_url,
            "login_enabled": password_login is not None,
        }
    )
    return AuthenticationBroker(
        "keycloak",
        FederatedTokenValidator(keycloak, key_cache),
        password_login=password_login,
        key_cache=key_cache,
        auth_logger=auth_logger,
    )
