"""
GTA - error types

Every error the tool raises on purpose derives from GTAError, so the CLI can
turn it into a log line and a non-zero exit code.
"""

from __future__ import annotations


class GTAError(Exception):
    """Base class for gta failures."""


class ConfigError(GTAError):
    """The config file is missing or malformed."""


class IdentityError(GTAError):
    """The current user could not be resolved from the active credentials."""


class GrantError(GTAError):
    """No role could be granted."""
