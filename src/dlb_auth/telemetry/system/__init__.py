"""Operational (system) logging."""

from dlb_auth.telemetry.system.system_logger import (
    JsonlFormatter,
    configure_system_logging,
    get_system_logger,
)

__all__ = [
    "JsonlFormatter",
    "configure_system_logging",
    "get_system_logger",
]
