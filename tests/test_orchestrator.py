"""Tests for parallel multi-ruleset installation."""

import threading
import time
from pathlib import Path

import pytest
from ai_rules_manager import ArmConfig
from ai_rules_manager import InstallCancelledError
from ai_rules_manager import InstallOrchestrator
from ai_rules_manager import InstallRequest
from ai_rules_manager import Installer
from ai_rules_manager import InvalidRequestError
from ai_rules_manager import MultiInstallRequest


def make_config(tmp_path: Path, registry_configs: dict | None = None, type_defaults: dict | None = None) -> ArmConfig:
    return ArmConfig(
        registries={"registry1": "https://github.com/test/repo1", "registry2": "s3://test-bucket"},
        registry_configs=registry_configs
        or {
            "registry1": {"type": "git", "concurrency": "2", "rateLimit": "50/second"},
            "registry2": {"type": "s3", "concurrency": "1", "rateLimit": "50/second"},
        },
        type_defaults=type_defaults or {},
        channels={"cursor": {"directories": [str(tmp_path / ".cursor" / "rules")]}},
        lock_path=tmp_path / "arm.lock",
    )


def make_requests(tmp_path: Path, registries: list[str]) -> list[InstallRequest]:
    source_dir = tmp_path / "source"
    source_dir.mkdir(exist_ok=True)
    requests = []
    for index, registry in enumerate(registries):
        source = source_dir / f"rule{index}.md"
        source.write_text(f"# Test Rule {index}")
        requests.append(
            InstallRequest(
                registry=registry,
                ruleset=f"ruleset{index}",
                version="1.0.0",
                source_files=[source],
                source_root=source_dir,
                channels=["cursor"],
            )
        )
    return requests


class InstrumentedInstaller(Installer):
    """Installer tracking how many installs per registry are in flight at once."""

    def __init__(self, config: ArmConfig, delay: float = 0.05):
        super().__init__(config)
        self.delay = delay
        self._lock = threading.Lock()
        self.in_flight: dict[str, int] = {}
        self.max_in_flight: dict[str, int] = {}

    def install(self, request):
        with self._lock:
            current = self.in_flight.get(request.registry, 0) + 1
            self.in_flight[request.registry] = current
            self.max_in_flight[request.registry] = max(self.max_in_flight.get(request.registry, 0), current)
        try:
            time.sleep(self.delay)
            return super().install(request)
        finally:
            with self._lock:
                self.in_flight[request.registry] -= 1


def test_install_multiple(tmp_path):
    """Test a mixed batch installs everything and reports progress."""
    installer = Installer(make_config(tmp_path))
    orchestrator = InstallOrchestrator(installer)
    requests = make_requests(tmp_path, ["registry1", "registry1", "registry2"])

    progress_calls = []
    progress_lock = threading.Lock()

    def on_progress(current: int, total: int, operation: str) -> None:
        with progress_lock:
            progress_calls.append((current, total, operation))

    result = orchestrator.install_multiple(MultiInstallRequest(requests=requests, progress=on_progress))

    assert result.total == 3
    assert len(result.successful) == 3
    assert result.failed == []
    assert [call[0] for call in progress_calls] == [1, 2, 3]
    assert all(call[1] == 3 for call in progress_calls)
    assert all(call[2].startswith("Installed ") for call in progress_calls)

    lock_file = installer.get_lock_file()
    assert set(lock_file.rulesets["registry1"]) == {"ruleset0", "ruleset1"}
    assert set(lock_file.rulesets["registry2"]) == {"ruleset2"}
    for index in range(3):
        registry = "registry2" if index == 2 else "registry1"
        path = tmp_path / ".cursor" / "rules" / "arm" / registry / f"ruleset{index}" / "1.0.0" / f"rule{index}.md"
        assert path.read_text() == f"# Test Rule {index}"


def test_empty_batch(tmp_path):
    """Test an empty batch returns immediately."""
    orchestrator = InstallOrchestrator(Installer(make_config(tmp_path)))

    result = orchestrator.install_multiple(MultiInstallRequest(requests=[]))

    assert result.total == 0
    assert result.successful == []
    assert result.failed == []


def test_failure_isolated_from_siblings(tmp_path):
    """Test one malformed request fails alone while the rest succeed."""
    orchestrator = InstallOrchestrator(Installer(make_config(tmp_path)))
    requests = make_requests(tmp_path, ["registry1", "registry1", "registry2", "registry2"])
    requests[1] = requests[1].model_copy(update={"ruleset": ""})

    progress_calls = []
    result = orchestrator.install_multiple(
        MultiInstallRequest(requests=requests, progress=lambda c, t, op: progress_calls.append(op))
    )

    assert result.total == 4
    assert len(result.successful) == 3
    assert len(result.failed) == 1

    failure = result.failed[0]
    assert failure.registry == "registry1"
    assert failure.ruleset == ""
    assert isinstance(failure.cause, InvalidRequestError)
    assert "registry1" in str(failure)
    assert len(progress_calls) == 4
    assert sum(1 for op in progress_calls if op.startswith("Failed ")) == 1


def test_unknown_channel_reported_as_failure(tmp_path):
    """Test per-request errors never escape install_multiple."""
    orchestrator = InstallOrchestrator(Installer(make_config(tmp_path)))
    requests = make_requests(tmp_path, ["registry1", "registry2"])
    requests[0] = requests[0].model_copy(update={"channels": ["nonexistent"]})

    result = orchestrator.install_multiple(MultiInstallRequest(requests=requests))

    assert len(result.successful) == 1
    assert len(result.failed) == 1
    assert result.failed[0].ruleset == "ruleset0"


def test_malformed_batch_raises(tmp_path):
    """Test a batch containing non-request items is a setup error."""
    orchestrator = InstallOrchestrator(Installer(make_config(tmp_path)))

    with pytest.raises(InvalidRequestError, match="non-InstallRequest"):
        orchestrator.install_multiple(MultiInstallRequest(requests=[{"registry": "registry1"}]))  # type: ignore[list-item]


def test_per_registry_concurrency_isolation(tmp_path):
    """Test ceilings of 1 and 3 hold per registry while both complete."""
    config = make_config(
        tmp_path,
        registry_configs={
            "registry1": {"type": "git", "concurrency": 1, "rateLimit": "100/second"},
            "registry2": {"type": "s3", "concurrency": 3, "rateLimit": "100/second"},
        },
    )
    installer = InstrumentedInstaller(config, delay=0.1)
    orchestrator = InstallOrchestrator(installer, poll_interval=0.01)
    requests = make_requests(tmp_path, ["registry1"] * 3 + ["registry2"] * 3)

    result = orchestrator.install_multiple(MultiInstallRequest(requests=requests))

    assert len(result.successful) == 6
    assert result.failed == []
    assert installer.max_in_flight["registry1"] == 1
    assert installer.max_in_flight["registry2"] <= 3


def test_concurrency_lookup_chain(tmp_path):
    """Test registry override, then type default, then 1."""
    config = make_config(
        tmp_path,
        registry_configs={
            "registry1": {"type": "git", "concurrency": "4"},
            "registry2": {"type": "s3"},
            "registry3": {"type": "https", "concurrency": "not-a-number"},
        },
        type_defaults={"s3": {"concurrency": 6}},
    )
    orchestrator = InstallOrchestrator(Installer(config))

    assert orchestrator.concurrency_for("registry1") == 4
    assert orchestrator.concurrency_for("registry2") == 6
    assert orchestrator.concurrency_for("registry3") == 1
    assert orchestrator.concurrency_for("unknown") == 1


def test_rate_limiters_created_per_registry_and_reused(tmp_path):
    """Test buckets are created lazily and survive across batches."""
    config = make_config(
        tmp_path,
        registry_configs={"registry1": {"type": "git"}, "registry2": {"type": "s3", "rateLimit": "20/second"}},
        type_defaults={"git": {"rateLimit": "30/minute"}},
    )
    orchestrator = InstallOrchestrator(Installer(config))
    assert len(orchestrator.rate_limiters) == 0

    orchestrator.install_multiple(MultiInstallRequest(requests=make_requests(tmp_path, ["registry1", "registry2"])))

    first = orchestrator.rate_limiters.get("registry1")
    assert first.capacity == 30
    assert first.refill_interval == pytest.approx(2.0)
    assert orchestrator.rate_limiters.get("registry2").capacity == 20

    orchestrator.install_multiple(MultiInstallRequest(requests=make_requests(tmp_path, ["registry1"])))
    assert orchestrator.rate_limiters.get("registry1") is first


@pytest.mark.integration
def test_rate_limit_throttles_throughput(tmp_path):
    """Test a 2/second limit spaces installs even with free concurrency slots."""
    config = make_config(
        tmp_path,
        registry_configs={"registry1": {"type": "git", "concurrency": 5, "rateLimit": "2/second"}},
    )
    orchestrator = InstallOrchestrator(Installer(config), poll_interval=0.02)
    requests = make_requests(tmp_path, ["registry1"] * 4)

    start = time.monotonic()
    result = orchestrator.install_multiple(MultiInstallRequest(requests=requests))
    elapsed = time.monotonic() - start

    assert len(result.successful) == 4
    # Two tokens up front, then one every 0.5s for the remaining two
    assert elapsed >= 0.9


def test_cancelled_batch_reports_failures(tmp_path):
    """Test units not yet started are reported as cancelled."""
    orchestrator = InstallOrchestrator(Installer(make_config(tmp_path)))
    requests = make_requests(tmp_path, ["registry1", "registry2"])
    cancel = threading.Event()
    cancel.set()

    result = orchestrator.install_multiple(MultiInstallRequest(requests=requests), cancel_event=cancel)

    assert result.total == 2
    assert result.successful == []
    assert len(result.failed) == 2
    assert all(isinstance(f.cause, InstallCancelledError) for f in result.failed)


def test_cancel_interrupts_token_wait(tmp_path):
    """Test cancellation stops units waiting on an exhausted bucket."""
    config = make_config(
        tmp_path,
        registry_configs={"registry1": {"type": "git", "concurrency": 1, "rateLimit": "1/hour"}},
    )
    orchestrator = InstallOrchestrator(Installer(config), poll_interval=0.01)
    requests = make_requests(tmp_path, ["registry1", "registry1"])
    cancel = threading.Event()

    def cancel_after_first(current: int, total: int, operation: str) -> None:
        cancel.set()

    result = orchestrator.install_multiple(
        MultiInstallRequest(requests=requests, progress=cancel_after_first), cancel_event=cancel
    )

    assert len(result.successful) == 1
    assert len(result.failed) == 1
    assert isinstance(result.failed[0].cause, InstallCancelledError)


def test_fetches_requests_without_source_files(tmp_path):
    """Test requests for known registries are downloaded inside their slot."""

    class PatternRegistry:
        def __init__(self):
            self.calls = []
            self.closed = False

        def download_ruleset(self, name, version, dest_dir):
            raise AssertionError("pattern-aware download expected")

        def download_ruleset_with_patterns(self, name, version, dest_dir, patterns):
            self.calls.append((name, version, tuple(patterns)))
            (dest_dir / "rules").mkdir()
            (dest_dir / "rules" / "python.md").write_text(f"{name}@{version}")

        def close(self):
            self.closed = True

    registry = PatternRegistry()
    installer = Installer(make_config(tmp_path))
    requests = [
        InstallRequest(registry="registry1", ruleset="py-rules", version="1.2.0", patterns=["rules/*.md"]),
        *make_requests(tmp_path, ["registry2"]),
    ]

    with InstallOrchestrator(installer, registries={"registry1": registry}) as orchestrator:
        result = orchestrator.install_multiple(MultiInstallRequest(requests=requests))

    assert len(result.successful) == 2
    assert registry.calls == [("py-rules", "1.2.0", ("rules/*.md",))]
    assert registry.closed
    installed = tmp_path / ".cursor" / "rules" / "arm" / "registry1" / "py-rules" / "1.2.0" / "rules" / "python.md"
    assert installed.read_text() == "py-rules@1.2.0"

    entry = installer.get_lock_file().get("registry1", "py-rules")
    assert entry is not None
    assert entry.patterns == ["rules/*.md"]


def test_duplicate_ruleset_in_batch_raises(tmp_path):
    """Test two requests for one ruleset are rejected before anything is installed."""
    installer = Installer(make_config(tmp_path))
    orchestrator = InstallOrchestrator(installer)
    first, second = make_requests(tmp_path, ["registry1", "registry1"])
    second = second.model_copy(update={"ruleset": first.ruleset, "version": "2.0.0"})

    with pytest.raises(InvalidRequestError, match="more than once") as exc_info:
        orchestrator.install_multiple(MultiInstallRequest(requests=[first, second]))

    assert exc_info.value.context == {"registry": "registry1", "ruleset": "ruleset0"}
    assert installer.get_lock_file().rulesets == {}
    assert not (tmp_path / ".cursor").exists()
