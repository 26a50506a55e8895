"""FastAPI dependencies for authenticated routes.

FastAPI convention: deps.py contains reusable request dependencies. The
application stores its broker on app.state.auth_broker at startup; routes then
declare the caller's identity as a parameter.

Usage with Annotated (recommended):
    from dlb_auth.api.deps import IdentityDep

    @router.get("/dialogues")
    async def list_dialogues(identity: IdentityDep) -> DialogueList:
        ...

Tokens are read from X-Auth-Token first, then from "Authorization: Bearer".
Failures become HTTPException with the client-safe error payload as detail.
"""

from __future__ import annotations

__all__ = [
    # Dependency functions
    "auth_http_exception",
    "get_auth_broker",
    "require_identity",
    # Type aliases for Annotated pattern
    "AuthBrokerDep",
    "IdentityDep",
]

from typing import Annotated, cast

from fastapi import Depends, Header, HTTPException, Request

from dlb_auth.constants import BEARER_PREFIX
from dlb_auth.exceptions import AuthenticationError
from dlb_auth.security.broker import AuthenticationBroker
from dlb_auth.security.identity import Identity

# =============================================================================
# Dependency Functions
# =============================================================================


def auth_http_exception(exc: AuthenticationError) -> HTTPException:
    """Convert an authentication failure to an HTTPException.

    Only the error code and category message are exposed. 401 responses carry
    WWW-Authenticate: Bearer.
    """
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return HTTPException(
        status_code=exc.status_code,
        detail=exc.to_error_payload(),
        headers=headers,
    )


def get_auth_broker(request: Request) -> AuthenticationBroker:
    """Get AuthenticationBroker from app.state.

    Args:
        request: FastAPI request object.

    Returns:
        AuthenticationBroker instance.

    Raises:
        HTTPException: 503 if the broker is not available.
    """
    broker = getattr(request.app.state, "auth_broker", None)
    if broker is None:
        raise HTTPException(
            status_code=503,
            detail="Authentication not available. Service may still be starting.",
        )
    return cast(AuthenticationBroker, broker)


AuthBrokerDep = Annotated[AuthenticationBroker, Depends(get_auth_broker)]


async def require_identity(
    broker: AuthBrokerDep,
    x_auth_token: Annotated[str | None, Header()] = None,
    authorization: Annotated[str | None, Header()] = None,
) -> Identity:
    """Authenticate the request.

    Returns:
        Identity of the caller.

    Raises:
        HTTPException: 401/403/503 from the underlying AuthenticationError.
    """
    bearer = x_auth_token
    if bearer is None and authorization is not None and authorization.lower().startswith(BEARER_PREFIX):
        bearer = authorization
    try:
        return await broker.authenticate(bearer)
    except AuthenticationError as e:
        raise auth_http_exception(e) from e


# =============================================================================
# Type Aliases for Annotated Pattern
# =============================================================================
# These allow clean route signatures:
#     async def endpoint(identity: IdentityDep) -> Response:
# Instead of:
#     async def endpoint(identity: Identity = Depends(require_identity)) -> Response:


IdentityDep = Annotated[Identity, Depends(require_identity)]
