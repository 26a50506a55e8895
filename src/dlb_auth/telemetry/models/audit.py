"""Audit log models (audit/auth.jsonl)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class SubjectIdentity(BaseModel):
    """Identity of the caller as recorded in the audit log."""

    subject_id: str
    roles: list[str] | None = None


class TokenInfo(BaseModel):
    """Token details for authentication logs (never the token itself)."""

    auth_mode: Literal["local", "keycloak"]
    key_id: str | None = None  # kid, federated tokens only
    token_iat: datetime | None = None
    token_exp: datetime | None = None  # None = non-expiring


class AuthEvent(BaseModel):
    """One authentication log entry.

    Records:
    - Login attempts (success/failure)
    - Bearer token validation (success/failure)
    """

    model_config = ConfigDict(extra="forbid")

    # --- core ---
    time: str | None = Field(
        None,
        description="ISO 8601 timestamp, added by formatter during serialization",
    )
    event_type: Literal[
        "login_succeeded",
        "login_failed",
        "token_validated",
        "token_invalid",
    ]
    status: Literal["Success", "Failure"]

    # --- identity ---
    subject: SubjectIdentity | None = None  # None if token couldn't be parsed
    username: str | None = None  # login attempts: name as submitted

    # --- token details ---
    token: TokenInfo | None = None

    # --- context ---
    message: str | None = None

    # --- errors (for failure events) ---
    error_type: str | None = None  # e.g. "ExpiredToken"
    error_code: str | None = None  # e.g. "AUTH_TOKEN_EXPIRED"
    error_message: str | None = None

    details: dict[str, Any] | None = None
