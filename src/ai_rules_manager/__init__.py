"""ai-rules-manager - Install and orchestration core for AI coding-assistant rulesets.

Public API: resolve, fetch and deploy rulesets into channel directories, with
per-registry concurrency and rate limits and a crash-safe lock file.

Registry clients, glob matching and semver parsing are injected by apps through
the protocols in ai_rules_manager.protocols.
"""

from .config import ArmConfig
from .config import ChannelConfig
from .config import RegistryConfig
from .config import RulesetSpec
from .config import TypeDefaults
from .config import load_config
from .deployer import FileDeployer
from .discovery import discover_installed_rulesets
from .exceptions import ArmError
from .exceptions import ConfigError
from .exceptions import FetchError
from .exceptions import InstallCancelledError
from .exceptions import InstallIOError
from .exceptions import InvalidRequestError
from .exceptions import NotFoundError
from .exceptions import VersionResolutionError
from .fetcher import ContentFetcher
from .fetcher import FetchedContent
from .fetcher import RegistryHandle
from .installer import Installer
from .lock import LockStore
from .models import InstallFailure
from .models import InstallRequest
from .models import InstallResult
from .models import LockEntry
from .models import LockFile
from .models import MultiInstallRequest
from .models import MultiInstallResult
from .orchestrator import InstallOrchestrator
from .protocols import PathFilter
from .protocols import PatternAwareRegistry
from .protocols import Registry
from .protocols import VersionResolver
from .ratelimit import RateLimiterRegistry
from .ratelimit import TokenBucket
from .ratelimit import parse_rate_limit
from .resolver import resolve_request

__all__ = [
    # Configuration
    "ArmConfig",
    "ChannelConfig",
    "RegistryConfig",
    "RulesetSpec",
    "TypeDefaults",
    "load_config",
    # Requests and results
    "InstallRequest",
    "InstallResult",
    "InstallFailure",
    "MultiInstallRequest",
    "MultiInstallResult",
    # Installation
    "Installer",
    "InstallOrchestrator",
    "FileDeployer",
    "discover_installed_rulesets",
    "resolve_request",
    # Fetching
    "ContentFetcher",
    "FetchedContent",
    "RegistryHandle",
    "Registry",
    "PatternAwareRegistry",
    "PathFilter",
    "VersionResolver",
    # Rate limiting
    "TokenBucket",
    "RateLimiterRegistry",
    "parse_rate_limit",
    # Lock file
    "LockStore",
    "LockEntry",
    "LockFile",
    # Exceptions
    "ArmError",
    "ConfigError",
    "FetchError",
    "InstallCancelledError",
    "InstallIOError",
    "InvalidRequestError",
    "NotFoundError",
    "VersionResolutionError",
]

__version__ = "0.1.0"
