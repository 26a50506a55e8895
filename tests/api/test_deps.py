"""Unit tests for API authentication dependencies.

Tests header handling, error translation and broker availability.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import SECRET_KEY, FixedClock
from dlb_auth.api.deps import IdentityDep, auth_http_exception
from dlb_auth.exceptions import ExpiredToken, InsufficientPrivileges, ProviderUnreachable
from dlb_auth.security.auth.local_tokens import LocalTokenIssuer, LocalTokenValidator
from dlb_auth.security.auth.service_users import ServiceUserStore
from dlb_auth.security.broker import AuthenticationBroker


@pytest.fixture
def issuer(clock: FixedClock) -> LocalTokenIssuer:
    return LocalTokenIssuer(SECRET_KEY, clock=clock)


@pytest.fixture
def app(service_users_file: Path, issuer: LocalTokenIssuer, clock: FixedClock) -> FastAPI:
    app = FastAPI()
    app.state.auth_broker = AuthenticationBroker(
        "local",
        LocalTokenValidator(SECRET_KEY, clock=clock),
        user_store=ServiceUserStore(service_users_file),
        issuer=issuer,
    )

    @app.get("/whoami")
    async def whoami(identity: IdentityDep) -> dict:
        return identity.to_payload()

    return app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)


class TestRequireIdentity:
    """Tests for the require_identity dependency."""

    def test_x_auth_token_header(self, client: TestClient, issuer: LocalTokenIssuer):
        """Given a token in X-Auth-Token, returns the caller."""
        # Act
        response = client.get("/whoami", headers={"X-Auth-Token": issuer.issue("svc-wool", ["client"])})

        # Assert
        assert response.status_code == 200
        assert response.json()["user"] == "svc-wool"
        assert response.json()["roles"] == ["client"]

    def test_authorization_bearer_header(self, client: TestClient, issuer: LocalTokenIssuer):
        """Given "Authorization: Bearer <token>", returns the caller."""
        # Act
        response = client.get("/whoami", headers={"Authorization": f"Bearer {issuer.issue('admin')}"})

        # Assert
        assert response.status_code == 200
        assert response.json()["user"] == "admin"

    def test_x_auth_token_wins(self, client: TestClient, issuer: LocalTokenIssuer):
        """Given both headers, X-Auth-Token is used."""
        # Act
        response = client.get(
            "/whoami",
            headers={"X-Auth-Token": issuer.issue("admin"), "Authorization": f"Bearer {issuer.issue('svc-wool')}"},
        )

        # Assert
        assert response.json()["user"] == "admin"

    def test_missing_token(self, client: TestClient):
        """Given no token, returns 401 with WWW-Authenticate."""
        # Act
        response = client.get("/whoami")

        # Assert
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert response.json()["detail"] == {
            "code": "AUTH_TOKEN_NOT_FOUND",
            "message": "Authentication token not found",
        }

    def test_other_authorization_scheme_is_ignored(self, client: TestClient):
        """Given "Authorization: Basic ...", the request counts as unauthenticated."""
        # Act
        response = client.get("/whoami", headers={"Authorization": "Basic c3ZjOnB3"})

        # Assert
        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "AUTH_TOKEN_NOT_FOUND"

    def test_invalid_token_hides_reason(self, client: TestClient):
        """Given a garbage token, returns only the invalid-token category."""
        # Act
        response = client.get("/whoami", headers={"X-Auth-Token": "not-a-jwt"})

        # Assert
        assert response.status_code == 401
        assert response.json()["detail"] == {
            "code": "AUTH_TOKEN_INVALID",
            "message": "Authentication token invalid",
        }

    def test_broker_not_ready(self):
        """Given no broker on app.state, returns 503."""
        # Arrange
        app = FastAPI()

        @app.get("/whoami")
        async def whoami(identity: IdentityDep) -> dict:
            return identity.to_payload()

        # Act
        response = TestClient(app).get("/whoami", headers={"X-Auth-Token": "x"})

        # Assert
        assert response.status_code == 503


class TestAuthHttpException:
    """Tests for auth_http_exception."""

    def test_expired_is_401_with_challenge(self):
        """Given ExpiredToken, returns 401 with WWW-Authenticate."""
        # Act
        exc = auth_http_exception(ExpiredToken("exp 12:00 < now 12:01"))

        # Assert
        assert exc.status_code == 401
        assert exc.headers == {"WWW-Authenticate": "Bearer"}
        assert exc.detail["code"] == "AUTH_TOKEN_EXPIRED"

    def test_forbidden_has_no_challenge(self):
        """Given InsufficientPrivileges, returns 403 without WWW-Authenticate."""
        # Act
        exc = auth_http_exception(InsufficientPrivileges("svc may not act for admin"))

        # Assert
        assert exc.status_code == 403
        assert exc.headers is None

    def test_provider_down_is_503(self):
        """Given ProviderUnreachable, returns 503 without internal detail."""
        # Act
        exc = auth_http_exception(ProviderUnreachable("connect to 10.0.0.5 refused"))

        # Assert
        assert exc.status_code == 503
        assert "10.0.0.5" not in str(exc.detail)
