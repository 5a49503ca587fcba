"""Path utilities shared by the deployer, discovery and installer.

On-disk layout of a channel directory:
    <channel-dir>/arm/<registry>/<ruleset>/<version>/<relative-source-path>
"""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

NAMESPACE_DIR = "arm"
SCRATCH_PREFIX = "arm-install-"


def expand_path(path: str | Path) -> Path:
    """Expand ~ and environment variables in a configured directory.

    Examples:
        >>> expand_path("~/.cursor/rules")  # doctest: +SKIP
        PosixPath('/home/user/.cursor/rules')
        >>> expand_path("$PROJECT/rules")  # doctest: +SKIP
        PosixPath('/work/project/rules')
    """
    return Path(os.path.expandvars(os.path.expanduser(str(path))))


def namespace_dir(channel_dir: Path) -> Path:
    return channel_dir / NAMESPACE_DIR


def ruleset_dir(channel_dir: Path, registry: str, ruleset: str) -> Path:
    return channel_dir / NAMESPACE_DIR / registry / ruleset


def version_dir(channel_dir: Path, registry: str, ruleset: str, version: str) -> Path:
    return ruleset_dir(channel_dir, registry, ruleset) / version


def installed_path(registry: str, ruleset: str, version: str) -> str:
    """Channel-relative install location reported back to callers."""
    return f"{NAMESPACE_DIR}/{registry}/{ruleset}/{version}"


def relative_source_path(source_file: Path, source_root: Path | None = None) -> Path:
    """Path a source file should occupy below the version directory.

    Resolution order:
    1. Relative to source_root, when given and source_file lies under it
    2. Everything after a scratch directory component (arm-install-*)
    3. Basename only

    Args:
        source_file: File produced by the fetch step
        source_root: Download root the file was staged under

    Returns:
        Relative path preserving the ruleset's directory structure

    Example:
        >>> relative_source_path(Path("/tmp/arm-install-x1/rules/python.md"))
        PosixPath('rules/python.md')
    """
    if source_root is not None:
        try:
            return source_file.relative_to(source_root)
        except ValueError:
            logger.debug(f"{source_file} is not under source root {source_root}")

    parts = source_file.parts
    for index, part in enumerate(parts[:-1]):
        if part.startswith(SCRATCH_PREFIX):
            return Path(*parts[index + 1 :])

    return Path(source_file.name)
