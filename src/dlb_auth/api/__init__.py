"""FastAPI integration: request dependencies for authenticated routes."""

from dlb_auth.api.deps import (
    AuthBrokerDep,
    IdentityDep,
    auth_http_exception,
    get_auth_broker,
    require_identity,
)

__all__ = [
    "AuthBrokerDep",
    "IdentityDep",
    "auth_http_exception",
    "get_auth_broker",
    "require_identity",
]
