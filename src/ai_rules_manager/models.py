"""Install request/result records and the persisted lock file schema.

Requests and results are immutable; workers receive their own copies and never
share mutable state.
"""

from collections.abc import Callable
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

ProgressCallback = Callable[[int, int, str], None]


class InstallRequest(BaseModel):
    """One desired install outcome for a (registry, ruleset) pair."""

    model_config = ConfigDict(frozen=True)

    registry: str
    ruleset: str
    # Version constraint as declared (concrete version for non-Git registries)
    version: str
    resolved_version: str | None = None
    source_files: list[Path] = Field(default_factory=list)
    # Download root the source files live under; their paths below it are preserved
    source_root: Path | None = None
    # Empty means every configured channel
    channels: list[str] = Field(default_factory=list)
    patterns: list[str] = Field(default_factory=list)

    @property
    def effective_version(self) -> str:
        """Version used for directory naming: resolved when known, else as requested."""
        return self.resolved_version or self.version

    def describe(self) -> str:
        return f"{self.registry}/{self.ruleset}@{self.version}"


class InstallResult(BaseModel):
    """Outcome of one successful install."""

    model_config = ConfigDict(frozen=True)

    registry: str
    ruleset: str
    version: str
    installed_path: str
    # Individual copy operations: len(source_files) x channel directories
    files_count: int
    channels: list[str] = Field(default_factory=list)
    # Non-fatal problems (e.g. stale version directories that could not be removed)
    warnings: list[str] = Field(default_factory=list)


@dataclass(frozen=True)
class InstallFailure:
    """Failed install captured for batch reporting."""

    registry: str
    ruleset: str
    cause: Exception

    def __str__(self) -> str:
        return f"{self.registry}/{self.ruleset}: {self.cause}"


@dataclass
class MultiInstallRequest:
    """Batch of install requests with optional progress reporting."""

    requests: list[InstallRequest]
    progress: ProgressCallback | None = None


@dataclass
class MultiInstallResult:
    """Aggregate of a batch; total always equals the number of requests submitted."""

    successful: list[InstallResult] = field(default_factory=list)
    failed: list[InstallFailure] = field(default_factory=list)
    total: int = 0


class LockEntry(BaseModel):
    """Lock file entry for one installed ruleset."""

    model_config = ConfigDict(frozen=True)

    version: str
    resolved: str
    registry: str = ""
    type: str = ""
    region: str | None = None
    # Only recorded for git registries so updates reuse the same file selection
    patterns: list[str] | None = None


class LockFile(BaseModel):
    """
    Lock file document (arm.lock).

    Format (JSON):
    {
      "rulesets": {
        "acme": {
          "py-rules": {
            "version": "1.2.0",
            "resolved": "1.2.0",
            "registry": "https://github.com/acme/rules",
            "type": "git",
            "patterns": ["rules/*.md"]
          }
        }
      }
    }
    """

    rulesets: dict[str, dict[str, LockEntry]] = Field(default_factory=dict)

    def get(self, registry: str, ruleset: str) -> LockEntry | None:
        return self.rulesets.get(registry, {}).get(ruleset)
