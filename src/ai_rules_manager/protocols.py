"""Protocols for the collaborators the installer depends on.

Registry clients, glob matching and semver resolution live outside this package.
Apps provide any implementation satisfying these interfaces.
"""

from pathlib import Path
from typing import Protocol
from typing import runtime_checkable


@runtime_checkable
class Registry(Protocol):
    """Source of rulesets (Git repo, S3 bucket, HTTPS API, local directory)."""

    def download_ruleset(self, name: str, version: str, dest_dir: Path) -> None:
        """Download ruleset content into dest_dir.

        Args:
            name: Ruleset name
            version: Concrete version to download
            dest_dir: Existing scratch directory to write into

        Raises:
            Exception: If the download fails
        """
        ...

    def close(self) -> None:
        """Release connections, temporary clones, etc."""
        ...


@runtime_checkable
class PatternAwareRegistry(Registry, Protocol):
    """Registry that can restrict a download to files matching glob patterns."""

    def download_ruleset_with_patterns(self, name: str, version: str, dest_dir: Path, patterns: list[str]) -> None:
        """Download only files matching patterns into dest_dir."""
        ...


@runtime_checkable
class PathFilter(Protocol):
    """Glob matcher used to narrow files after a download."""

    def filter_paths(self, patterns: list[str], paths: list[str]) -> list[str]:
        """Return the subset of paths (relative, POSIX separators) matching any pattern."""
        ...


@runtime_checkable
class VersionResolver(Protocol):
    """Resolves a version constraint (^1.0.0, ~2.1, latest, ...) to a concrete version."""

    def resolve_version(self, ruleset: str, constraint: str) -> str:
        """Return the concrete version satisfying constraint.

        Raises:
            Exception: If no version satisfies the constraint
        """
        ...
