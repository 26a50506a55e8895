"""Logging for dlb-auth: operational system log and authentication audit log."""
