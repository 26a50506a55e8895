"""dlb-auth: authentication core for the Dialogue Branch web services.

Two deployment modes are supported:
- local: service users from service-users.xml, HMAC-signed tokens issued here
- keycloak: bearer tokens issued by Keycloak, verified against its JWKS

The request layer talks to AuthenticationBroker only.
"""

__version__ = "1.2.0"
