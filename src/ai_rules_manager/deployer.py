"""File deployment into channel directories.

Deployment is two-phase so a multi-channel install either lands everywhere or
leaves the previously installed version untouched:

1. stage(): copy the working set into <dir>/arm/<registry>/<ruleset>/<version>/,
   or into a hidden sibling when that version directory already exists
2. commit(): swap a staged reinstall into place, then remove every other version
   directory of that ruleset (best effort)
   or rollback(): remove everything this install created
"""

import logging
import os
import shutil
from dataclasses import dataclass
from dataclasses import replace
from pathlib import Path

from .exceptions import InstallIOError
from .utils import namespace_dir
from .utils import relative_source_path
from .utils import ruleset_dir
from .utils import version_dir

logger = logging.getLogger(__name__)

# rw-r--r--, never executable regardless of source permissions
FILE_MODE = 0o644

STAGING_SUFFIX = ".staging"
PREVIOUS_SUFFIX = ".previous"


@dataclass(frozen=True)
class StagedDeployment:
    """Files copied into one channel directory, awaiting commit or rollback."""

    channel: str
    channel_dir: Path
    ruleset_dir: Path
    version_dir: Path
    # False when the same version was already installed before this call
    created: bool
    files_count: int
    # Set when reinstalling an existing version; swapped in by commit()
    staging_dir: Path | None = None
    # Namespace ancestors this stage created, deepest first
    created_parents: tuple[Path, ...] = ()


def _hidden_sibling(path: Path, suffix: str) -> Path:
    return path.with_name(f".{path.name}{suffix}")


class FileDeployer:
    """Copies ruleset files into namespaced channel directories."""

    def stage(
        self,
        *,
        channel: str,
        channel_dir: Path,
        registry: str,
        ruleset: str,
        version: str,
        source_files: list[Path],
        source_root: Path | None = None,
    ) -> StagedDeployment:
        """
        Copy source files into the version directory for one channel directory.

        Relative structure below the download root is preserved (rules/python.md stays
        rules/python.md) so multi-file rulesets never collide on basenames. Reinstalling
        a version that is already present writes to a hidden staging directory instead,
        so the installed files stay untouched until commit().

        Args:
            channel: Channel name (for error messages)
            channel_dir: Expanded channel directory
            registry: Registry name
            ruleset: Ruleset name
            version: Version used for the directory name
            source_files: Files to copy
            source_root: Download root the files were staged under

        Returns:
            StagedDeployment describing what was written

        Raises:
            InstallIOError: If a directory cannot be created or a file cannot be copied
        """
        target_ruleset_dir = ruleset_dir(channel_dir, registry, ruleset)
        target_version_dir = version_dir(channel_dir, registry, ruleset, version)
        created = not target_version_dir.exists()
        staging_dir = None if created else _hidden_sibling(target_version_dir, STAGING_SUFFIX)
        write_dir = staging_dir or target_version_dir

        candidates = (target_ruleset_dir, target_ruleset_dir.parent, namespace_dir(channel_dir))
        created_parents = tuple(p for p in candidates if not p.exists())

        staged = StagedDeployment(
            channel=channel,
            channel_dir=channel_dir,
            ruleset_dir=target_ruleset_dir,
            version_dir=target_version_dir,
            created=created,
            files_count=0,
            staging_dir=staging_dir,
            created_parents=created_parents,
        )

        try:
            if staging_dir is not None and staging_dir.exists():
                shutil.rmtree(staging_dir)
            write_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self.rollback(staged)
            raise InstallIOError(
                f"Failed to create version directory {write_dir} for channel '{channel}': {e}",
                context={"channel": channel, "path": str(write_dir), "operation": "mkdir"},
            ) from e

        files_count = 0
        for source_file in source_files:
            dest_path = write_dir / relative_source_path(Path(source_file), source_root)
            try:
                self._copy_file(Path(source_file), dest_path)
            except OSError as e:
                self.rollback(staged)
                raise InstallIOError(
                    f"Failed to copy file '{source_file}' to channel '{channel}' directory '{channel_dir}': {e}",
                    context={
                        "channel": channel,
                        "source": str(source_file),
                        "destination": str(dest_path),
                        "operation": "copy",
                    },
                ) from e
            files_count += 1
            logger.debug(f"Copied {source_file} -> {dest_path}")

        return replace(staged, files_count=files_count)

    def commit(self, staged: StagedDeployment) -> list[str]:
        """Swap in a staged reinstall, then remove every other version directory.

        Failures are not fatal: a stale old version left behind is reported as a
        warning instead of failing an otherwise complete install.

        Returns:
            Warnings for directories that could not be replaced or removed
        """
        warnings: list[str] = []
        if staged.staging_dir is not None:
            warnings.extend(self._swap_in(staged.staging_dir, staged.version_dir))

        try:
            entries = list(staged.ruleset_dir.iterdir())
        except OSError as e:
            message = f"Could not scan {staged.ruleset_dir} for previous versions: {e}"
            logger.warning(message)
            return [*warnings, message]

        for entry in entries:
            if not entry.is_dir() or entry.name == staged.version_dir.name:
                continue
            try:
                shutil.rmtree(entry)
                logger.debug(f"Removed previous version {entry}")
            except OSError as e:
                message = f"Could not remove previous version {entry}: {e}"
                logger.warning(message)
                warnings.append(message)

        return warnings

    def rollback(self, staged: StagedDeployment) -> list[str]:
        """Undo a staged deployment by removing the directories it created."""
        warnings: list[str] = []
        if staged.staging_dir is not None:
            target = staged.staging_dir
        elif staged.created:
            target = staged.version_dir
        else:
            return warnings

        try:
            if target.exists():
                shutil.rmtree(target)
                logger.debug(f"Rolled back {target}")
        except OSError as e:
            message = f"Could not roll back {target}: {e}"
            logger.warning(message)
            warnings.append(message)

        for parent in staged.created_parents:
            try:
                parent.rmdir()
            except OSError:
                # Missing, or another install has put content there since
                break

        return warnings

    @staticmethod
    def _swap_in(staging_dir: Path, target_dir: Path) -> list[str]:
        """Replace target_dir with staging_dir, keeping the old content until the swap succeeds."""
        previous_dir = _hidden_sibling(target_dir, PREVIOUS_SUFFIX)
        try:
            if previous_dir.exists():
                shutil.rmtree(previous_dir)
            target_dir.rename(previous_dir)
        except OSError as e:
            shutil.rmtree(staging_dir, ignore_errors=True)
            message = f"Could not replace {target_dir}; previous files kept: {e}"
            logger.warning(message)
            return [message]

        try:
            staging_dir.rename(target_dir)
        except OSError as e:
            previous_dir.rename(target_dir)
            shutil.rmtree(staging_dir, ignore_errors=True)
            message = f"Could not replace {target_dir}; previous files kept: {e}"
            logger.warning(message)
            return [message]

        logger.debug(f"Replaced {target_dir} with freshly staged files")
        # The commit scan removes the .previous directory with the other stale versions
        return []

    @staticmethod
    def _copy_file(source: Path, destination: Path) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, destination)
        os.chmod(destination, FILE_MODE)
