"""Lock file management.

The lock file is the single source of truth for which version of each
(registry, ruleset) is installed. Directory scans only ever answer "is something
there", never "which version".

Every write is a full replace: serialize to a .tmp sibling, then rename it over
the lock file, so readers never see a half-written document.
"""

import json
import logging
import os
import threading
from datetime import UTC
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from .config import ArmConfig
from .config import RulesetSpec
from .exceptions import InstallIOError
from .models import LockEntry
from .models import LockFile

logger = logging.getLogger(__name__)


class LockStore:
    """
    Lock file store (with injected lock path).

    Reads and writes share one mutex; mutations hold it across the whole
    read-modify-write cycle.
    """

    def __init__(self, lock_path: Path):
        """Initialize store with app-provided lock path.

        Args:
            lock_path: Path to lock file (app determines location)

        Example:
            >>> store = LockStore(lock_path=Path("arm.lock"))
        """
        self.lock_path = Path(lock_path)
        self._mutex = threading.Lock()

    def load(self) -> LockFile:
        """Read the lock file. Missing or corrupt files yield an empty LockFile."""
        with self._mutex:
            return self._load()

    def _load(self) -> LockFile:
        """Read without locking. Caller holds the mutex."""
        if not self.lock_path.exists():
            return LockFile()

        try:
            with open(self.lock_path, encoding="utf-8") as f:
                data = json.load(f)
            lock_file = LockFile.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable lock file {self.lock_path}: {e}")
            return LockFile()

        logger.debug(f"Loaded lock file with {len(lock_file.rulesets)} registries")
        return lock_file

    def get(self, registry: str, ruleset: str) -> LockEntry | None:
        return self.load().get(registry, ruleset)

    def update(self, registry: str, ruleset: str, entry: LockEntry) -> None:
        """Add or replace the entry for (registry, ruleset).

        Raises:
            InstallIOError: If the lock file cannot be written
        """
        with self._mutex:
            lock_file = self._load()
            lock_file.rulesets.setdefault(registry, {})[ruleset] = entry
            self._save(lock_file)
        logger.debug(f"Locked {registry}/{ruleset} at {entry.version}")

    def remove(self, registry: str, ruleset: str) -> None:
        """Remove the entry for (registry, ruleset); drops the registry key when it empties.

        Raises:
            InstallIOError: If the lock file cannot be written
        """
        with self._mutex:
            lock_file = self._load()
            registry_entries = lock_file.rulesets.get(registry)
            if registry_entries is not None:
                registry_entries.pop(ruleset, None)
                if not registry_entries:
                    del lock_file.rulesets[registry]
            self._save(lock_file)
        logger.debug(f"Removed {registry}/{ruleset} from lock file")

    def sync(self, manifest: dict[str, dict[str, RulesetSpec]], config: ArmConfig | None = None) -> LockFile:
        """
        Rebuild the whole lock file from the manifest.

        Each entry records the version constraint as a placeholder until a real
        install resolves it. Used to reconcile configuration drift, not by installs.

        Args:
            manifest: registry -> ruleset -> RulesetSpec (arm.json rulesets)
            config: Optional configuration supplying registry URL/type/region

        Returns:
            The LockFile that was written
        """
        stamp = datetime.now(UTC).isoformat()
        lock_file = LockFile()

        for registry, rulesets in manifest.items():
            if not rulesets:
                continue
            registry_type = config.registry_type(registry) if config else ""
            registry_config = config.registry_configs.get(registry) if config else None
            lock_file.rulesets[registry] = {
                ruleset: LockEntry(
                    version=spec.version,
                    resolved=stamp,
                    registry=config.registry_url(registry) if config else "",
                    type=registry_type,
                    region=registry_config.region if registry_config else None,
                    patterns=list(spec.patterns) if registry_type == "git" and spec.patterns else None,
                )
                for ruleset, spec in rulesets.items()
            }

        with self._mutex:
            self._save(lock_file)

        logger.info(f"Synced lock file from manifest: {len(lock_file.rulesets)} registries")
        return lock_file

    def _save(self, lock_file: LockFile) -> None:
        """Atomically replace the lock file. Caller holds the mutex."""
        tmp_path = self.lock_path.with_name(self.lock_path.name + ".tmp")
        payload = lock_file.model_dump(mode="json", exclude_none=True)

        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
                f.write("\n")
            # os.replace overwrites an existing target on every platform
            os.replace(tmp_path, self.lock_path)
        except OSError as e:
            try:
                tmp_path.unlink()
            except OSError:
                pass
            raise InstallIOError(
                f"Failed to write lock file {self.lock_path}: {e}",
                context={"lock_path": str(self.lock_path), "operation": "write"},
            ) from e

        logger.debug(f"Saved lock file {self.lock_path}")
