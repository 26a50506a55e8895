"""Application configuration for dlb-auth.

Defines configuration models for the two authentication modes and logging.
Config is stored as JSON at the OS-appropriate location (see utils/config.py)
or at any path passed explicitly.

Components receive the section they need in their constructor; nothing reads
a process-wide configuration singleton.

Example usage:
    # Load from config file
    config = AppConfig.load_from_files(config_path)

    # Save new configuration
    config.save_to_file(config_path)
"""

import base64
import binascii
import json
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from dlb_auth.constants import (
    DEFAULT_JWKS_BACKOFF_SECONDS,
    DEFAULT_JWKS_FETCH_ATTEMPTS,
    DEFAULT_PROVIDER_TIMEOUT_SECONDS,
    DEFAULT_ROLES_CLAIM,
    DEFAULT_SUBJECT_CLAIM,
    DEFAULT_TOKEN_LIFETIME_SECONDS,
    JWKS_CACHE_TTL_SECONDS,
    JWKS_ERROR_COOLDOWN_SECONDS,
    JWKS_MIN_REFRESH_INTERVAL_SECONDS,
    KEYCLOAK_CERTS_PATH,
    KEYCLOAK_TOKEN_PATH,
    MAX_JWKS_FETCH_ATTEMPTS,
    MAX_PROVIDER_TIMEOUT_SECONDS,
    MIN_PROVIDER_TIMEOUT_SECONDS,
    MIN_SECRET_KEY_BYTES,
    MIN_TOKEN_LIFETIME_SECONDS,
)
from dlb_auth.utils.file_helpers import load_validated_json, require_file_exists


def decode_secret_key(value: str) -> bytes:
    """Decode a base64 secret (standard alphabet, whitespace ignored).

    Raises:
        ValueError: If the value is not valid base64 or decodes to a weak key.
    """
    try:
        key = base64.b64decode("".join(value.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("jwt_secret_key must be base64-encoded") from e
    if len(key) < MIN_SECRET_KEY_BYTES:
        raise ValueError(
            f"jwt_secret_key decodes to {len(key)} bytes; "
            f"at least {MIN_SECRET_KEY_BYTES} bytes (256 bits) are required"
        )
    return key


# =============================================================================
# Authentication Configuration
# =============================================================================


class LocalAuthConfig(BaseModel):
    """Service-user authentication with locally issued tokens.

    Attributes:
        jwt_secret_key: Base64-encoded HMAC secret shared by issuer and validator.
        service_users_file: Path to service-users.xml.
        token_lifetime_seconds: Lifetime of issued tokens (default 24h).
        require_known_subject: Reject valid tokens whose subject has been
            removed from service-users.xml.
    """

    jwt_secret_key: str = Field(repr=False)
    service_users_file: str
    token_lifetime_seconds: int = Field(
        default=DEFAULT_TOKEN_LIFETIME_SECONDS,
        ge=MIN_TOKEN_LIFETIME_SECONDS,
    )
    require_known_subject: bool = True

    @field_validator("jwt_secret_key")
    @classmethod
    def _check_secret_key(cls, value: str) -> str:
        decode_secret_key(value)
        return value

    @property
    def secret_key_bytes(self) -> bytes:
        """Decoded HMAC secret."""
        return decode_secret_key(self.jwt_secret_key)

    @property
    def service_users_path(self) -> Path:
        return Path(self.service_users_file).expanduser()


class KeycloakConfig(BaseModel):
    """Keycloak (OIDC) bearer-token verification.

    Attributes:
        base_url: Keycloak base URL (e.g., "https://auth.example.com").
        realm: Realm that issues the tokens.
        client_id: Client used for password-grant login (optional).
        client_secret: Secret of that client (optional).
        audience: Expected "aud" claim; not checked when unset.
        issuer: Expected "iss" claim; not checked when unset.
        subject_claim: Claim holding the user name (falls back to "sub").
        roles_claim: Dotted path to the role list.
        http_timeout_seconds: Per-request timeout for Keycloak calls.
        cache_ttl_seconds: How long a fetched key set is served without refetching.
        min_refresh_interval_seconds: Misses on a younger key set do not refetch.
        error_cooldown_seconds: Pause between fetch attempts after a failure.
        max_fetch_attempts: Attempts per refresh (bounded retry).
        fetch_backoff_seconds: Initial backoff between attempts (doubles each time).
    """

    base_url: str
    realm: str = Field(min_length=1)
    client_id: str | None = None
    client_secret: str | None = Field(default=None, repr=False)
    audience: str | None = None
    issuer: str | None = None
    subject_claim: str = DEFAULT_SUBJECT_CLAIM
    roles_claim: str = DEFAULT_ROLES_CLAIM
    http_timeout_seconds: float = Field(
        default=DEFAULT_PROVIDER_TIMEOUT_SECONDS,
        ge=MIN_PROVIDER_TIMEOUT_SECONDS,
        le=MAX_PROVIDER_TIMEOUT_SECONDS,
    )
    cache_ttl_seconds: float = Field(default=JWKS_CACHE_TTL_SECONDS, gt=0)
    min_refresh_interval_seconds: float = Field(default=JWKS_MIN_REFRESH_INTERVAL_SECONDS, ge=0)
    error_cooldown_seconds: float = Field(default=JWKS_ERROR_COOLDOWN_SECONDS, ge=0)
    max_fetch_attempts: int = Field(default=DEFAULT_JWKS_FETCH_ATTEMPTS, ge=1, le=MAX_JWKS_FETCH_ATTEMPTS)
    fetch_backoff_seconds: float = Field(default=DEFAULT_JWKS_BACKOFF_SECONDS, ge=0)

    @field_validator("base_url")
    @classmethod
    def _check_base_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return value

    def _realm_url(self, path_template: str) -> str:
        base = self.base_url if self.base_url.endswith("/") else self.base_url + "/"
        return base + path_template.format(realm=self.realm)

    @property
    def certs_url(self) -> str:
        """JWKS endpoint: {base_url}/realms/{realm}/protocol/openid-connect/certs."""
        return self._realm_url(KEYCLOAK_CERTS_PATH)

    @property
    def token_url(self) -> str:
        """Token endpoint used for password-grant login."""
        return self._realm_url(KEYCLOAK_TOKEN_PATH)

    @property
    def login_enabled(self) -> bool:
        return bool(self.client_id)


class AuthConfig(BaseModel):
    """Authentication mode for this deployment.

    A service instance runs in exactly one mode, chosen at startup.

    Attributes:
        mode: "local" (service users, HMAC tokens) or "keycloak" (JWKS-verified tokens).
        local: Local mode settings (required when mode is "local").
        keycloak: Keycloak settings (required when mode is "keycloak").
    """

    mode: Literal["local", "keycloak"]
    local: LocalAuthConfig | None = None
    keycloak: KeycloakConfig | None = None

    @model_validator(mode="after")
    def _check_mode_section(self) -> "AuthConfig":
        if self.mode == "local" and self.local is None:
            raise ValueError("auth.mode is 'local' but the 'local' section is missing")
        if self.mode == "keycloak" and self.keycloak is None:
            raise ValueError("auth.mode is 'keycloak' but the 'keycloak' section is missing")
        return self


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseModel):
    """Logging configuration settings.

    When log_dir is set, logs are written below it:
        <log_dir>/
        ├── system/
        │   └── system.jsonl
        └── audit/
            └── auth.jsonl

    Attributes:
        log_dir: Base directory for log files (None logs to stderr only).
        log_level: Level for the system logger.
    """

    log_dir: str | None = None
    log_level: Literal["DEBUG", "INFO", "WARNING"] = "INFO"


class AppConfig(BaseModel):
    """Main application configuration for dlb-auth.

    Attributes:
        auth: Authentication mode and its settings.
        logging: Logging configuration.
    """

    auth: AuthConfig
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def save_to_file(self, config_path: Path) -> None:
        """Save configuration to JSON file.

        Creates parent directories if they don't exist. The file holds the
        signing secret, so it is written with owner-only permissions.

        Args:
            config_path: Path where dlb_auth_config.json should be saved.
        """
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(self.model_dump(), f, indent=2)

        config_path.chmod(0o600)

    @classmethod
    def load_from_files(cls, config_path: Path) -> "AppConfig":
        """Load configuration from JSON file.

        Args:
            config_path: Path to the config file (dlb_auth_config.json).

        Returns:
            AppConfig instance with loaded configuration.

        Raises:
            FileNotFoundError: If config file doesn't exist.
            ValueError: If config file is invalid or missing required fields.
        """
        require_file_exists(config_path, file_type="configuration")
        return load_validated_json(
            config_path,
            cls,
            file_type="config",
            recovery_hint="Check the 'auth' section against the documented settings.",
            encoding="utf-8",
        )
