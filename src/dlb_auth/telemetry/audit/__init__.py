"""Audit logging for authentication."""

from dlb_auth.telemetry.audit.auth_logger import (
    AuthLogger,
    create_auth_logger,
)

__all__ = [
    "AuthLogger",
    "create_auth_logger",
]
