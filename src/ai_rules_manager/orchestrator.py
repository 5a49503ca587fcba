"""Parallel multi-ruleset installation with per-registry concurrency and rate limits.

Requests are grouped by registry. Every registry group runs in its own bounded
worker pool (its concurrency ceiling) and every unit of work first takes a token
from that registry's bucket, so a registry with 5 slots and a 2/second limit still
averages 2 installs per second. Different registries proceed fully in parallel.

A failing request never cancels its siblings: failures are captured as
InstallFailure records and returned alongside the successes.
"""

import logging
import threading
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import as_completed

from .exceptions import InstallCancelledError
from .exceptions import InvalidRequestError
from .fetcher import ContentFetcher
from .fetcher import RegistryHandle
from .installer import Installer
from .models import InstallFailure
from .models import InstallRequest
from .models import InstallResult
from .models import MultiInstallRequest
from .models import MultiInstallResult
from .models import ProgressCallback
from .protocols import Registry
from .ratelimit import POLL_INTERVAL
from .ratelimit import RateLimiterRegistry
from .ratelimit import TokenBucket

logger = logging.getLogger(__name__)


class _Progress:
    """Thread-safe completed counter feeding the optional progress callback."""

    def __init__(self, total: int, callback: ProgressCallback | None):
        self.total = total
        self.callback = callback
        self.completed = 0
        self._lock = threading.Lock()

    def advance(self, description: str) -> None:
        with self._lock:
            self.completed += 1
            current = self.completed
            if self.callback is None:
                return
            # Called under the lock so callers observe counts in increasing order
            try:
                self.callback(current, self.total, description)
            except Exception:
                logger.exception(f"Progress callback failed at {current}/{self.total}")


class InstallOrchestrator:
    """
    Coordinates batches of installs across registries.

    Rate limiters are created lazily per registry and live as long as the
    orchestrator, so consecutive batches share the same token budget.
    """

    def __init__(
        self,
        installer: Installer,
        registries: Mapping[str, Registry | RegistryHandle] | None = None,
        fetcher: ContentFetcher | None = None,
        poll_interval: float = POLL_INTERVAL,
    ):
        """Initialize orchestrator.

        Args:
            installer: Installer performing each single install
            registries: Optional registry clients by name; requests without source files
                for these registries are fetched inside their worker slot
            fetcher: Content fetcher used for those downloads
            poll_interval: Backoff between rate-limit token attempts (seconds)
        """
        self.installer = installer
        self.fetcher = fetcher or ContentFetcher()
        self.poll_interval = poll_interval
        self.rate_limiters = RateLimiterRegistry(installer.config.rate_limit_for)
        self._handles: dict[str, RegistryHandle] = {
            name: registry if isinstance(registry, RegistryHandle) else RegistryHandle.wrap(name, registry)
            for name, registry in (registries or {}).items()
        }

    def __enter__(self) -> "InstallOrchestrator":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Close every registry client handed to the orchestrator."""
        for handle in self._handles.values():
            try:
                handle.registry.close()
            except Exception:
                logger.exception(f"Failed to close registry '{handle.name}'")

    def concurrency_for(self, registry: str) -> int:
        return self.installer.config.concurrency_for(registry)

    def install_multiple(
        self,
        request: MultiInstallRequest,
        cancel_event: threading.Event | None = None,
    ) -> MultiInstallResult:
        """
        Install many rulesets in parallel.

        Args:
            request: Requests plus optional progress callback(completed, total, description)
            cancel_event: Optional event; once set, units that have not started are
                reported as cancelled failures and token waits stop

        Returns:
            MultiInstallResult; total always equals len(request.requests)

        Raises:
            InvalidRequestError: If the batch itself is malformed (per-request problems
                are reported in MultiInstallResult.failed instead)
        """
        requests = list(request.requests)
        for item in requests:
            if not isinstance(item, InstallRequest):
                raise InvalidRequestError(
                    f"Batch contains a non-InstallRequest item: {item!r}",
                    context={"item_type": type(item).__name__},
                )

        # Two installs of one ruleset would each delete the other's version directory
        seen: set[tuple[str, str]] = set()
        for item in requests:
            key = (item.registry, item.ruleset)
            if key in seen:
                raise InvalidRequestError(
                    f"Batch contains {item.registry}/{item.ruleset} more than once",
                    context={"registry": item.registry, "ruleset": item.ruleset},
                )
            seen.add(key)

        total = len(requests)
        if total == 0:
            return MultiInstallResult(total=0)

        groups = self._group_by_registry(requests)
        for registry in groups:
            self.rate_limiters.get(registry)

        progress = _Progress(total, request.progress)
        result = MultiInstallResult(total=total)

        logger.info(f"Installing {total} rulesets from {len(groups)} registries")

        with ThreadPoolExecutor(max_workers=len(groups), thread_name_prefix="arm-registry") as executor:
            futures = [
                executor.submit(self._process_registry_group, registry, group, progress, cancel_event)
                for registry, group in groups.items()
            ]
            for future in as_completed(futures):
                successes, failures = future.result()
                result.successful.extend(successes)
                result.failed.extend(failures)

        logger.info(f"Batch install finished: {len(result.successful)} succeeded, {len(result.failed)} failed")
        for failure in result.failed:
            logger.warning(f"Install failed: {failure}")

        return result

    @staticmethod
    def _group_by_registry(requests: list[InstallRequest]) -> dict[str, list[InstallRequest]]:
        groups: dict[str, list[InstallRequest]] = {}
        for request in requests:
            groups.setdefault(request.registry, []).append(request)
        return groups

    def _process_registry_group(
        self,
        registry: str,
        requests: list[InstallRequest],
        progress: _Progress,
        cancel_event: threading.Event | None,
    ) -> tuple[list[InstallResult], list[InstallFailure]]:
        """Run one registry's requests through a pool sized to its concurrency ceiling."""
        concurrency = self.concurrency_for(registry)
        bucket = self.rate_limiters.get(registry)
        logger.debug(f"Registry '{registry}': {len(requests)} requests, concurrency {concurrency}")

        successes: list[InstallResult] = []
        failures: list[InstallFailure] = []

        with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix=f"arm-{registry or 'default'}") as pool:
            futures = [pool.submit(self._run_unit, request, bucket, cancel_event) for request in requests]
            for future in as_completed(futures):
                outcome = future.result()
                if isinstance(outcome, InstallFailure):
                    failures.append(outcome)
                    progress.advance(f"Failed {outcome.registry}/{outcome.ruleset}")
                else:
                    successes.append(outcome)
                    progress.advance(f"Installed {outcome.registry}/{outcome.ruleset}")

        return successes, failures

    def _run_unit(
        self,
        request: InstallRequest,
        bucket: TokenBucket,
        cancel_event: threading.Event | None,
    ) -> InstallResult | InstallFailure:
        """Install one request; every exception is captured into an InstallFailure."""
        if cancel_event is not None and cancel_event.is_set():
            return self._cancelled(request)

        if not bucket.wait_for_token(cancel_event, self.poll_interval):
            return self._cancelled(request)

        try:
            handle = self._handles.get(request.registry)
            if handle is not None and not request.source_files:
                return self.installer.install_from_registry(request, handle, self.fetcher)
            return self.installer.install(request)
        except Exception as e:
            logger.debug(f"Install of {request.describe()} failed: {e}")
            return InstallFailure(registry=request.registry, ruleset=request.ruleset, cause=e)

    @staticmethod
    def _cancelled(request: InstallRequest) -> InstallFailure:
        return InstallFailure(
            registry=request.registry,
            ruleset=request.ruleset,
            cause=InstallCancelledError(
                f"Install of {request.describe()} cancelled",
                context={"registry": request.registry, "ruleset": request.ruleset},
            ),
        )
