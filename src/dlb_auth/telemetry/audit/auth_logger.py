"""Authentication audit logger.

Logs authentication events to audit/auth.jsonl:
- Login attempts (success/failure)
- Bearer token validation (success/failure)

Tokens, passwords and secrets are never written. Failures carry the error
class and code so operators can tell an expired token from a forged one even
though clients only see the category.
"""

from __future__ import annotations

import logging
from pathlib import Path

from dlb_auth.telemetry.models.audit import AuthEvent, SubjectIdentity, TokenInfo
from dlb_auth.telemetry.system.system_logger import JsonlFormatter

AUTH_LOGGER_NAME = "dlb-auth.audit.auth"


class AuthLogger:
    """Audit logger for authentication events.

    Provides typed methods for logging auth events.

    Usage:
        logger = create_auth_logger(log_path=log_dir / "audit" / "auth.jsonl")
        logger.log_token_validated(subject=..., token=...)
    """

    def __init__(self, logger: logging.Logger) -> None:
        """Initialize auth logger.

        Args:
            logger: Logger whose handlers write JSON lines.
        """
        self._logger = logger

    def _log_event(self, event: AuthEvent) -> None:
        event_data = event.model_dump(mode="json", exclude={"time"}, exclude_none=True)
        self._logger.info(event_data)

    def log_login_succeeded(
        self,
        *,
        username: str,
        subject: SubjectIdentity | None = None,
        token: TokenInfo | None = None,
        message: str | None = None,
    ) -> None:
        """Log a successful login.

        Args:
            username: Name as submitted by the caller.
            subject: Identity the issued token carries (local mode).
            token: Issued token details.
            message: Optional human-readable message.
        """
        self._log_event(
            AuthEvent(
                event_type="login_succeeded",
                status="Success",
                username=username,
                subject=subject,
                token=token,
                message=message,
            )
        )

    def log_login_failed(
        self,
        *,
        username: str | None,
        error_type: str,
        error_code: str,
        error_message: str | None = None,
        message: str | None = None,
    ) -> None:
        """Log a failed login.

        Args:
            username: Name as submitted (may be empty).
            error_type: Exception class name (e.g., "InvalidCredentials").
            error_code: Client-facing error code.
            error_message: Internal error description.
            message: Optional human-readable message.
        """
        self._log_event(
            AuthEvent(
                event_type="login_failed",
                status="Failure",
                username=username,
                error_type=error_type,
                error_code=error_code,
                error_message=error_message,
                message=message,
            )
        )

    def log_token_validated(
        self,
        *,
        subject: SubjectIdentity,
        token: TokenInfo,
        message: str | None = None,
    ) -> None:
        """Log successful token validation."""
        self._log_event(
            AuthEvent(
                event_type="token_validated",
                status="Success",
                subject=subject,
                token=token,
                message=message,
            )
        )

    def log_token_invalid(
        self,
        *,
        token: TokenInfo,
        error_type: str,
        error_code: str,
        error_message: str | None = None,
        message: str | None = None,
    ) -> None:
        """Log failed token validation.

        Args:
            token: What is known about the token (mode at least).
            error_type: Exception class name (e.g., "SignatureInvalid").
            error_code: Client-facing error code.
            error_message: Internal error description.
            message: Optional human-readable message.
        """
        self._log_event(
            AuthEvent(
                event_type="token_invalid",
                status="Failure",
                token=token,
                error_type=error_type,
                error_code=error_code,
                error_message=error_message,
                message=message,
            )
        )


def create_auth_logger(log_path: Path, *, name: str = AUTH_LOGGER_NAME) -> AuthLogger:
    """Create an auth logger writing JSON lines to log_path.

    Args:
        log_path: Path to auth.jsonl. Parent directories are created.
        name: Logger name (tests pass a unique name).

    Returns:
        AuthLogger: Configured logger for authentication events.
    """
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setFormatter(JsonlFormatter())
    logger.addHandler(handler)
    logger.propagate = False

    return AuthLogger(logger)
