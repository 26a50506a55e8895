"""Identity records produced by authentication.

Identity is the single result type of every successful validation, whichever
mode produced it. Timestamps are truncated to whole seconds on construction so
that an identity compares equal before and after a trip through a JWT (which
only carries whole seconds).

The TokenValidator protocol lets the broker treat the local and federated
validators alike.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

from dlb_auth.exceptions import ExpiredToken, MalformedToken


def truncate_to_seconds(value: datetime) -> datetime:
    """Drop sub-second precision and normalize to UTC.

    Naive datetimes are taken to be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(microsecond=0)


def _ordered_roles(roles: Iterable[str]) -> tuple[str, ...]:
    # De-duplicate while keeping first-seen order
    return tuple(dict.fromkeys(roles))


@dataclass(frozen=True)
class Identity:
    """Authenticated caller.

    Attributes:
        subject: User name (service user or Keycloak preferred_username).
        roles: Ordered, de-duplicated role names (may be empty).
        issued_at: Token issue time, whole seconds, UTC.
        expiration: Token expiry, whole seconds, UTC; None = never expires.

    Raises:
        ValueError: If subject is blank or expiration precedes issued_at.
        TypeError: If roles is a single str.
    """

    subject: str
    issued_at: datetime
    expiration: datetime | None = None
    roles: tuple[str, ...] = field(default=())

    def __post_init__(self) -> None:
        if not self.subject or not self.subject.strip():
            raise ValueError("Identity subject must not be empty")
        if isinstance(self.roles, str):
            raise TypeError("Identity roles must be a sequence of role names, not a str")
        issued_at = truncate_to_seconds(self.issued_at)
        expiration = truncate_to_seconds(self.expiration) if self.expiration is not None else None
        if expiration is not None and issued_at > expiration:
            raise ValueError(f"Identity expiration {expiration.isoformat()} precedes issued_at {issued_at.isoformat()}")
        # Frozen dataclass: normalized values are written through object.__setattr__
        object.__setattr__(self, "issued_at", issued_at)
        object.__setattr__(self, "expiration", expiration)
        object.__setattr__(self, "roles", _ordered_roles(self.roles))

    @property
    def never_expires(self) -> bool:
        return self.expiration is None

    def is_expired(self, now: datetime) -> bool:
        """True if expiration lies strictly before now.

        An expiration equal to now is still valid. A missing expiration never
        expires.
        """
        if self.expiration is None:
            return False
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return self.expiration < now

    def has_role(self, role: str) -> bool:
        wanted = role.lower()
        return any(r.lower() == wanted for r in self.roles)

    def to_payload(self) -> dict[str, Any]:
        """Wire representation for the request layer."""
        return {
            "user": self.subject,
            "roles": list(self.roles),
            "issuedAt": self.issued_at.isoformat(),
            "expiration": self.expiration.isoformat() if self.expiration is not None else None,
        }


@dataclass(frozen=True)
class IssuedToken:
    """Result of a successful login."""

    user: str
    token: str = field(repr=False)

    def to_payload(self) -> dict[str, str]:
        return {"user": self.user, "token": self.token}


@runtime_checkable
class TokenValidator(Protocol):
    """Anything that turns a bearer string into an Identity.

    Implementations raise an AuthenticationError subclass on failure.
    """

    async def validate(self, token: str) -> Identity: ...


# =============================================================================
# Claim helpers shared by the local and federated validators
# =============================================================================


def claim_time(claims: Mapping[str, Any], name: str) -> datetime | None:
    value = claims.get(name)
    if value is None:
        return None
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedToken(f"Claim '{name}' must be a numeric date")
    try:
        if not math.isfinite(value):
            raise MalformedToken(f"Claim '{name}' must be a numeric date")
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise MalformedToken(f"Claim '{name}' is out of range") from e


def _claim_roles(value: Any, claim_name: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(r, str) for r in value):
        raise MalformedToken(f"Claim '{claim_name}' must be a list of strings")
    return tuple(value)


def identity_from_claims(
    claims: Mapping[str, Any],
    *,
    subject: Any,
    roles: Any = None,
    roles_claim: str = "roles",
) -> Identity:
    """Build an Identity from verified claims.

    Args:
        claims: Verified JWT payload.
        subject: Subject value already selected by the caller.
        roles: Raw role value (list of strings or None).
        roles_claim: Claim name, for error messages.

    Raises:
        MalformedToken: If any claim has the wrong type or the timestamps
            are inconsistent.
    """
    if not isinstance(subject, str) or not subject.strip():
        raise MalformedToken("Token has no usable subject")
    issued_at = claim_time(claims, "iat")
    if issued_at is None:
        raise MalformedToken("Token has no 'iat' claim")
    expiration = claim_time(claims, "exp")
    try:
        return Identity(
            subject=subject,
            issued_at=issued_at,
            expiration=expiration,
            roles=_claim_roles(roles, roles_claim),
        )
    except ValueError as e:
        raise MalformedToken(str(e)) from e


def check_not_expired(identity: Identity, now: datetime) -> Identity:
    """Raise ExpiredToken if identity has expired at now."""
    if identity.is_expired(now):
        raise ExpiredToken(
            f"Token for '{identity.subject}' expired at {identity.expiration.isoformat()}"  # type: ignore[union-attr]
        )
    return identity
