"""Ruleset manager exceptions.

Every error carries a human-readable message that names what failed plus an
optional context dict for callers that want structured details.
"""


class ArmError(Exception):
    """Base exception for ruleset manager operations."""

    def __init__(self, message: str, context: dict | None = None):
        """Initialize with message and optional context.

        Args:
            message: Human-readable error message
            context: Optional dict with additional context (registry, ruleset, paths, etc.)
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}


class InvalidRequestError(ArmError):
    """Install request is missing required data (caller-fixable, never retried)."""


class NotFoundError(ArmError):
    """Named channel or registry is absent from configuration."""


class InstallIOError(ArmError):
    """Filesystem operation failed (directory creation, copy, removal, lock persistence)."""


class FetchError(ArmError):
    """Downloading or extracting ruleset content from a registry failed."""


class ConfigError(ArmError):
    """Configuration file could not be read or validated."""


class InstallCancelledError(ArmError):
    """Install was cancelled before it started."""


class VersionResolutionError(ArmError):
    """Version constraint could not be resolved to a concrete version."""
