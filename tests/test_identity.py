"""Tests for the Identity record and claim helpers.

Tests cover:
- Normalization (whole seconds, role order)
- Rejection of blank subjects and str roles
- Numeric date claims
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from dlb_auth.exceptions import MalformedToken
from dlb_auth.security.identity import Identity, claim_time, identity_from_claims

ISSUED_AT = datetime(2024, 5, 1, 12, 0, 0, 750000, tzinfo=timezone.utc)


class TestIdentity:
    """Tests for Identity construction."""

    def test_normalizes_times_and_roles(self):
        """Given sub-second times and repeated roles, stores whole seconds and first-seen order."""
        # Act
        identity = Identity(
            subject="svc-wool",
            issued_at=ISSUED_AT,
            expiration=ISSUED_AT + timedelta(hours=1),
            roles=["editor", "client", "editor"],
        )

        # Assert
        assert identity.issued_at.microsecond == 0
        assert identity.expiration == ISSUED_AT.replace(microsecond=0) + timedelta(hours=1)
        assert identity.roles == ("editor", "client")

    @pytest.mark.parametrize("subject", ["", "   ", "\t"])
    def test_blank_subject_is_rejected(self, subject: str):
        """Given a blank subject, raises ValueError."""
        # Act & Assert
        with pytest.raises(ValueError):
            Identity(subject=subject, issued_at=ISSUED_AT)

    def test_string_roles_are_rejected(self):
        """Given roles as a single str, raises TypeError."""
        # Act & Assert
        with pytest.raises(TypeError):
            Identity(subject="svc-wool", issued_at=ISSUED_AT, roles="admin")  # type: ignore[arg-type]

    def test_expiration_before_issue_is_rejected(self):
        """Given expiration earlier than issued_at, raises ValueError."""
        # Act & Assert
        with pytest.raises(ValueError):
            Identity(subject="svc-wool", issued_at=ISSUED_AT, expiration=ISSUED_AT - timedelta(seconds=2))


class TestClaimTime:
    """Tests for claim_time."""

    def test_absent_claim(self):
        """Given no claim, returns None."""
        # Act & Assert
        assert claim_time({}, "exp") is None

    def test_numeric_claim(self):
        """Given epoch seconds, returns a UTC datetime."""
        # Act & Assert
        assert claim_time({"exp": 0}, "exp") == datetime(1970, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [10**400, float("inf"), float("nan"), True, "1714564800", 1e300])
    def test_unusable_value_is_malformed(self, value: object):
        """Given a value that is not a representable numeric date, raises MalformedToken."""
        # Act & Assert
        with pytest.raises(MalformedToken):
            claim_time({"exp": value}, "exp")


class TestIdentityFromClaims:
    """Tests for identity_from_claims."""

    def test_whitespace_subject_is_malformed(self):
        """Given a whitespace subject, raises MalformedToken (the same rule Identity applies)."""
        # Act & Assert
        with pytest.raises(MalformedToken):
            identity_from_claims({"iat": 0}, subject="   ")

    def test_huge_expiration_is_malformed(self):
        """Given exp=10**400, raises MalformedToken instead of OverflowError."""
        # Act & Assert
        with pytest.raises(MalformedToken):
            identity_from_claims({"iat": 0, "exp": 10**400}, subject="svc-wool")
