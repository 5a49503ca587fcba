"""Installed ruleset discovery - presence-only scan of arm/ namespace directories.

Scanning answers "which rulesets have files here". It never infers versions; the
lock file is the only record of what version is installed.
"""

import logging
from pathlib import Path

from .utils import namespace_dir

logger = logging.getLogger(__name__)


def _subdirectories(path: Path) -> list[Path]:
    try:
        return sorted(p for p in path.iterdir() if p.is_dir())
    except OSError:
        return []


def discover_installed_rulesets(channel_dir: Path) -> dict[str, list[str]]:
    """
    List rulesets present in one channel directory.

    Convention:
    - <channel_dir>/arm/<registry>/ → registry directories
    - <channel_dir>/arm/<registry>/<ruleset>/ → ruleset directories

    Args:
        channel_dir: Expanded channel directory

    Returns:
        Mapping of registry name → sorted ruleset names. Missing or unreadable
        directories contribute nothing.

    Example:
        >>> discover_installed_rulesets(Path(".cursor/rules"))
        {'acme': ['py-rules', 'ts-rules']}
    """
    found: dict[str, list[str]] = {}
    for registry_path in _subdirectories(namespace_dir(channel_dir)):
        rulesets = [p.name for p in _subdirectories(registry_path)]
        if rulesets:
            found[registry_path.name] = rulesets

    logger.debug(f"Discovered {sum(len(r) for r in found.values())} rulesets in {channel_dir}")
    return found
