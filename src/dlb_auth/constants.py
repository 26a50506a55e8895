"""Application-wide constants for dlb-auth.

Constants that define authentication behavior.
For user-configurable settings per deployment, see config.py.
"""

# ============================================================================
# Local Tokens (service users)
# ============================================================================

# Default lifetime of a locally issued token (seconds)
# Fixed 24h policy, overridable per deployment via token_lifetime_seconds
DEFAULT_TOKEN_LIFETIME_SECONDS: int = 86400

# Shortest lifetime accepted in configuration (seconds)
MIN_TOKEN_LIFETIME_SECONDS: int = 60

# HMAC algorithm selection by decoded secret length (bytes).
# Checked in order; the first threshold the key meets wins.
HMAC_ALGORITHMS_BY_KEY_LENGTH: tuple[tuple[int, str], ...] = (
    (64, "HS512"),
    (48, "HS384"),
    (32, "HS256"),
)

# Secrets shorter than this are rejected as weak keys (256 bits)
MIN_SECRET_KEY_BYTES: int = 32

# ============================================================================
# Service Users
# ============================================================================

SERVICE_USERS_FILENAME: str = "service-users.xml"
SERVICE_USERS_ROOT_ELEMENT: str = "service-users"
SERVICE_USER_ELEMENT: str = "service-user"

USER_ROLE_CLIENT: str = "client"
USER_ROLE_EDITOR: str = "editor"
USER_ROLE_ADMIN: str = "admin"

KNOWN_USER_ROLES: frozenset[str] = frozenset({USER_ROLE_CLIENT, USER_ROLE_EDITOR, USER_ROLE_ADMIN})

# ============================================================================
# Keycloak / JWKS
# ============================================================================

# Path segments below the Keycloak base URL
KEYCLOAK_CERTS_PATH: str = "realms/{realm}/protocol/openid-connect/certs"
KEYCLOAK_TOKEN_PATH: str = "realms/{realm}/protocol/openid-connect/token"

# JWKS (JSON Web Key Set) cache TTL (seconds)
# Shorter TTL reduces window for revoked key acceptance while still avoiding
# excessive requests to the JWKS endpoint (10 minutes)
JWKS_CACHE_TTL_SECONDS: int = 600

# Per-attempt HTTP timeout for JWKS and token endpoint requests (seconds)
DEFAULT_PROVIDER_TIMEOUT_SECONDS: float = 5.0
MIN_PROVIDER_TIMEOUT_SECONDS: float = 1.0
MAX_PROVIDER_TIMEOUT_SECONDS: float = 60.0

# Bounded retry for JWKS fetches
DEFAULT_JWKS_FETCH_ATTEMPTS: int = 3
MAX_JWKS_FETCH_ATTEMPTS: int = 10
DEFAULT_JWKS_BACKOFF_SECONDS: float = 0.5
JWKS_BACKOFF_MAX_SECONDS: float = 4.0
JWKS_BACKOFF_JITTER_RATIO: float = 0.1

# A miss on a snapshot younger than this is answered without refetching.
# Stops tokens carrying random kids from driving requests to Keycloak.
JWKS_MIN_REFRESH_INTERVAL_SECONDS: float = 10.0

# After a failed fetch, callers are served from the retained snapshot
# (or fail fast) for this long before another fetch is attempted
JWKS_ERROR_COOLDOWN_SECONDS: float = 10.0

# Signature algorithms accepted for federated tokens.
# HMAC is never accepted on the federated path.
SUPPORTED_RSA_ALGORITHMS: frozenset[str] = frozenset(
    {"RS256", "RS384", "RS512", "PS256", "PS384", "PS512"}
)

# Bound to keys whose JWK carries no "alg" (Keycloak's realm default)
DEFAULT_FEDERATED_ALGORITHM: str = "RS256"

# Claim holding the user name in Keycloak access tokens
DEFAULT_SUBJECT_CLAIM: str = "preferred_username"

# Dotted path to the realm role list in Keycloak access tokens
DEFAULT_ROLES_CLAIM: str = "realm_access.roles"

# ============================================================================
# Request Layer
# ============================================================================

# Header carrying the raw token (Dialogue Branch clients)
AUTH_TOKEN_HEADER: str = "X-Auth-Token"

BEARER_PREFIX: str = "bearer "

# ============================================================================
# Configuration
# ============================================================================

APP_NAME: str = "dlb-auth"
CONFIG_FILENAME: str = "dlb_auth_config.json"
