"""Command-line interface for dlb-auth.

Provides commands for logging in, validating tokens, inspecting Keycloak keys,
checking service-user files and generating signing secrets.
"""

from .main import cli, main

__all__ = ["cli", "main"]
