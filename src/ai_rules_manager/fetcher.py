"""Content fetching - boundary to the Registry collaborator.

Downloads a resolved ruleset version into a scratch directory, narrows it to the
requested patterns and enumerates the files to hand to the installer. The scratch
directory is removed on every exit path.
"""

import logging
import tarfile
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path

from .exceptions import ArmError
from .exceptions import FetchError
from .protocols import PathFilter
from .protocols import PatternAwareRegistry
from .protocols import Registry
from .protocols import VersionResolver
from .utils import SCRATCH_PREFIX

logger = logging.getLogger(__name__)

ARCHIVE_NAME = "ruleset.tar.gz"
EXTRACT_DIR = "extracted"


@dataclass(frozen=True)
class RegistryHandle:
    """A registry plus its capabilities, determined once when the handle is built."""

    name: str
    registry: Registry
    supports_patterns: bool
    resolver: VersionResolver | None = None

    @classmethod
    def wrap(cls, name: str, registry: Registry, resolver: VersionResolver | None = None) -> "RegistryHandle":
        if resolver is None and isinstance(registry, VersionResolver):
            resolver = registry
        return cls(
            name=name,
            registry=registry,
            supports_patterns=isinstance(registry, PatternAwareRegistry),
            resolver=resolver,
        )


@dataclass(frozen=True)
class FetchedContent:
    """Working set produced by a fetch: files under a download root."""

    root: Path
    files: list[Path] = field(default_factory=list)


class ContentFetcher:
    """Stages registry downloads into scratch directories."""

    def __init__(self, path_filter: PathFilter | None = None):
        """Initialize fetcher.

        Args:
            path_filter: Optional glob matcher applied after downloads from registries
                that cannot filter by pattern themselves
        """
        self.path_filter = path_filter

    @contextmanager
    def fetch(
        self,
        handle: RegistryHandle,
        ruleset: str,
        version: str,
        patterns: list[str] | None = None,
    ) -> Iterator[FetchedContent]:
        """
        Download a ruleset version and yield its files; the scratch directory is
        removed when the block exits, successfully or not.

        Args:
            handle: Registry to download from
            ruleset: Ruleset name
            version: Concrete version
            patterns: Optional glob patterns restricting which files are kept

        Yields:
            FetchedContent with the download root and the files beneath it

        Raises:
            FetchError: If the download, extraction or filtering fails

        Example:
            >>> with fetcher.fetch(handle, "py-rules", "1.2.0", ["rules/*.md"]) as content:
            ...     installer.install(request.model_copy(update={
            ...         "source_files": content.files, "source_root": content.root}))
        """
        patterns = list(patterns or [])
        with tempfile.TemporaryDirectory(prefix=SCRATCH_PREFIX) as scratch:
            scratch_dir = Path(scratch)
            try:
                content = self._download(handle, ruleset, version, patterns, scratch_dir)
            except ArmError:
                raise
            except Exception as e:
                raise FetchError(
                    f"Failed to download {handle.name}/{ruleset}@{version}: {e}",
                    context={"registry": handle.name, "ruleset": ruleset, "version": version},
                ) from e

            logger.debug(f"Fetched {len(content.files)} files for {handle.name}/{ruleset}@{version}")
            yield content

    def _download(
        self,
        handle: RegistryHandle,
        ruleset: str,
        version: str,
        patterns: list[str],
        scratch_dir: Path,
    ) -> FetchedContent:
        if patterns and handle.supports_patterns:
            logger.info(f"Downloading {handle.name}/{ruleset}@{version} (patterns: {', '.join(patterns)})")
            handle.registry.download_ruleset_with_patterns(ruleset, version, scratch_dir, patterns)  # type: ignore[attr-defined]
        else:
            logger.info(f"Downloading {handle.name}/{ruleset}@{version}")
            handle.registry.download_ruleset(ruleset, version, scratch_dir)

        root = scratch_dir
        archive = scratch_dir / ARCHIVE_NAME
        if archive.is_file():
            root = self._extract(archive, scratch_dir / EXTRACT_DIR)

        files = sorted(p for p in root.rglob("*") if p.is_file())

        if patterns and not handle.supports_patterns and self.path_filter is not None:
            relative = [p.relative_to(root).as_posix() for p in files]
            keep = set(self.path_filter.filter_paths(patterns, relative))
            files = [p for p, rel in zip(files, relative, strict=True) if rel in keep]

        if not files:
            raise FetchError(
                f"No files found for {handle.name}/{ruleset}@{version}",
                context={"registry": handle.name, "ruleset": ruleset, "patterns": patterns},
            )

        return FetchedContent(root=root, files=files)

    @staticmethod
    def _extract(archive: Path, extract_dir: Path) -> Path:
        extract_dir.mkdir(parents=True, exist_ok=True)
        with tarfile.open(archive, "r:gz") as tar:
            tar.extractall(extract_dir, filter="data")
        archive.unlink()
        logger.debug(f"Extracted {archive.name} into {extract_dir}")
        return extract_dir
