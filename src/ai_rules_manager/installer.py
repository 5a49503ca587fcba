"""Ruleset installation - single-request orchestration.

Install flow for one request:
1. Validate the request and resolve target channels (no side effects before this passes)
2. Stage files into every (channel, directory) pair
3. Record the install in the lock file
4. Remove superseded version directories (best effort, reported as warnings)

If staging or the lock write fails, every version directory created by the call is
removed again, so the previously installed version and its lock entry stay intact.
"""

import logging
import shutil

from .config import ArmConfig
from .deployer import FileDeployer
from .deployer import StagedDeployment
from .discovery import discover_installed_rulesets
from .exceptions import ArmError
from .exceptions import InstallIOError
from .exceptions import InvalidRequestError
from .exceptions import NotFoundError
from .fetcher import ContentFetcher
from .fetcher import RegistryHandle
from .lock import LockStore
from .models import InstallRequest
from .models import InstallResult
from .models import LockEntry
from .models import LockFile
from .resolver import resolve_request
from .utils import expand_path
from .utils import installed_path
from .utils import ruleset_dir

logger = logging.getLogger(__name__)


class Installer:
    """
    Installs rulesets into channel directories and keeps the lock file in step.

    Apps inject configuration (channels, registries) and optionally the lock store
    and deployer; defaults are built from configuration.
    """

    def __init__(
        self,
        config: ArmConfig,
        lock_store: LockStore | None = None,
        deployer: FileDeployer | None = None,
    ):
        """Initialize installer.

        Args:
            config: Merged configuration
            lock_store: Lock store (defaults to one at config.lock_path)
            deployer: File deployer (defaults to FileDeployer())
        """
        self.config = config
        self.lock_store = lock_store or LockStore(config.lock_path)
        self.deployer = deployer or FileDeployer()

    def _target_channels(self, channels: list[str]) -> list[str]:
        return list(channels) if channels else list(self.config.channels)

    def _validate(self, request: InstallRequest, require_files: bool = True) -> list[str]:
        if not request.registry or not request.ruleset or not request.version:
            raise InvalidRequestError(
                f"registry, ruleset, and version are required (got {request.registry or '?'}/"
                f"{request.ruleset or '?'}@{request.version or '?'})",
                context={"registry": request.registry, "ruleset": request.ruleset},
            )

        if require_files and not request.source_files:
            raise InvalidRequestError(
                f"{request.describe()}: no source files provided",
                context={"registry": request.registry, "ruleset": request.ruleset},
            )

        channels = self._target_channels(request.channels)
        if not channels:
            raise InvalidRequestError(
                f"{request.describe()}: no channels configured",
                context={"registry": request.registry, "ruleset": request.ruleset},
            )

        for channel in channels:
            if channel not in self.config.channels:
                raise NotFoundError(
                    f"{request.describe()}: channel '{channel}' not configured",
                    context={"registry": request.registry, "ruleset": request.ruleset, "channel": channel},
                )

        return channels

    def install(self, request: InstallRequest) -> InstallResult:
        """
        Install a ruleset into its target channels.

        Args:
            request: Install request with source files already fetched

        Returns:
            InstallResult (files_count counts every copy across all channel directories)

        Raises:
            InvalidRequestError: Missing fields, no source files or no channels
            NotFoundError: A named channel is not configured
            InstallIOError: A directory, copy or lock file write failed

        Example:
            >>> installer = Installer(config)
            >>> result = installer.install(InstallRequest(
            ...     registry="acme", ruleset="py-rules", version="1.2.0",
            ...     source_files=[Path("tmp/rules/python.md")], source_root=Path("tmp"),
            ...     channels=["cursor"]))
            >>> result.files_count
            1
        """
        channels = self._validate(request)
        version = request.effective_version
        logger.info(f"Installing {request.describe()} to channels: {', '.join(channels)}")

        staged: list[StagedDeployment] = []
        try:
            for channel in channels:
                for directory in self.config.channels[channel].directories:
                    channel_dir = expand_path(directory)
                    try:
                        staged.append(
                            self.deployer.stage(
                                channel=channel,
                                channel_dir=channel_dir,
                                registry=request.registry,
                                ruleset=request.ruleset,
                                version=version,
                                source_files=request.source_files,
                                source_root=request.source_root,
                            )
                        )
                    except ArmError as e:
                        raise InstallIOError(
                            f"Failed to install {request.describe()} to channel '{channel}' "
                            f"directory '{channel_dir}': {e.message}",
                            context={
                                **e.context,
                                "registry": request.registry,
                                "ruleset": request.ruleset,
                                "channel": channel,
                                "directory": str(channel_dir),
                            },
                        ) from e

            self._update_lock(request, version)

        except ArmError:
            for deployment in reversed(staged):
                self.deployer.rollback(deployment)
            raise

        warnings: list[str] = []
        for deployment in staged:
            warnings.extend(self.deployer.commit(deployment))

        files_count = sum(d.files_count for d in staged)
        logger.info(f"Successfully installed {request.describe()} ({files_count} files)")

        return InstallResult(
            registry=request.registry,
            ruleset=request.ruleset,
            version=request.version,
            installed_path=installed_path(request.registry, request.ruleset, version),
            files_count=files_count,
            channels=channels,
            warnings=warnings,
        )

    def install_from_registry(
        self,
        request: InstallRequest,
        handle: RegistryHandle,
        fetcher: ContentFetcher | None = None,
    ) -> InstallResult:
        """
        Resolve, download and install a request whose content is not fetched yet.

        Args:
            request: Install request (source_files ignored)
            handle: Registry to download from
            fetcher: Content fetcher (defaults to ContentFetcher())

        Returns:
            InstallResult

        Raises:
            VersionResolutionError: If the constraint cannot be resolved
            FetchError: If the download fails
            ArmError: Any install failure (see install)
        """
        self._validate(request, require_files=False)
        fetcher = fetcher or ContentFetcher()
        resolved = resolve_request(request, handle.resolver)

        with fetcher.fetch(handle, resolved.ruleset, resolved.effective_version, resolved.patterns) as content:
            return self.install(
                resolved.model_copy(update={"source_files": content.files, "source_root": content.root})
            )

    def _update_lock(self, request: InstallRequest, version: str) -> None:
        registry_type = self.config.registry_type(request.registry)
        registry_config = self.config.registry_configs.get(request.registry)

        entry = LockEntry(
            version=request.version,
            resolved=version,
            registry=self.config.registry_url(request.registry),
            type=registry_type,
            region=registry_config.region if registry_config else None,
            # Updates must reuse the original file selection, not "all files"
            patterns=list(request.patterns) if registry_type == "git" and request.patterns else None,
        )

        try:
            self.lock_store.update(request.registry, request.ruleset, entry)
        except InstallIOError as e:
            raise InstallIOError(
                f"Failed to update lock file for {request.describe()}: {e.message}",
                context={**e.context, "registry": request.registry, "ruleset": request.ruleset},
            ) from e

    def uninstall(self, registry: str, ruleset: str, channels: list[str] | None = None) -> None:
        """
        Remove a ruleset from channel directories and from the lock file.

        Channels that are not configured are skipped. A failed removal aborts before the
        lock file is touched, so the lock never records an uninstall that did not happen.

        Args:
            registry: Registry name
            ruleset: Ruleset name
            channels: Target channels (None or empty means all configured channels)

        Raises:
            InvalidRequestError: If registry or ruleset is empty
            InstallIOError: If a directory cannot be removed or the lock file cannot be written
        """
        if not registry or not ruleset:
            raise InvalidRequestError(
                "registry and ruleset are required",
                context={"registry": registry, "ruleset": ruleset},
            )

        logger.info(f"Uninstalling {registry}/{ruleset}")

        for channel in self._target_channels(channels or []):
            channel_config = self.config.channels.get(channel)
            if channel_config is None:
                logger.debug(f"Skipping unconfigured channel '{channel}'")
                continue

            for directory in channel_config.directories:
                target = ruleset_dir(expand_path(directory), registry, ruleset)
                if not target.exists():
                    continue
                try:
                    shutil.rmtree(target)
                except OSError as e:
                    raise InstallIOError(
                        f"Failed to remove {registry}/{ruleset} from channel '{channel}': {e}",
                        context={"registry": registry, "ruleset": ruleset, "channel": channel, "path": str(target)},
                    ) from e
                logger.debug(f"Removed {target}")

        self.lock_store.remove(registry, ruleset)
        logger.info(f"Successfully uninstalled: {registry}/{ruleset}")

    def list_installed(self, channels: list[str] | None = None) -> dict[str, dict[str, list[str]]]:
        """
        List rulesets present on disk, per channel.

        Presence only; versions come from the lock file (see get_lock_file).

        Args:
            channels: Channels to scan (None or empty means all configured channels)

        Returns:
            channel → registry → sorted ruleset names
        """
        installed: dict[str, dict[str, list[str]]] = {}

        for channel in self._target_channels(channels or []):
            channel_config = self.config.channels.get(channel)
            if channel_config is None:
                continue

            merged: dict[str, set[str]] = {}
            for directory in channel_config.directories:
                for registry, rulesets in discover_installed_rulesets(expand_path(directory)).items():
                    merged.setdefault(registry, set()).update(rulesets)

            installed[channel] = {registry: sorted(names) for registry, names in sorted(merged.items())}

        return installed

    def get_lock_file(self) -> LockFile:
        """Current lock file content."""
        return self.lock_store.load()

    def sync_lock_file(self) -> LockFile:
        """Regenerate the lock file from the configured manifest."""
        return self.lock_store.sync(self.config.rulesets, self.config)

