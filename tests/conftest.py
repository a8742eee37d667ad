"""Shared fixtures: sample environment, in-memory store and a scriptable provider."""

import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
import pytest
from converge.config import EngineSettings
from converge.ingest.config_loader import load_environment_file
from converge.provider.base import Provider
from converge.state.store import MemoryStateStore
from converge.utils.errors import RetryableProviderError

FIXTURES_DIR = Path(__file__).parent / "fixtures"


class FakeProvider(Provider):
    """
    In-memory provider that records every call.

    fail: resource type -> exception raised on every create/update of that type
    flaky: resource type -> number of RetryableProviderErrors before success
    computed: resource type -> extra attributes returned on create
    delay: seconds each call sleeps, to make overlap observable
    """

    name = "fake"

    def __init__(
        self,
        fail: Optional[Dict[str, Exception]] = None,
        flaky: Optional[Dict[str, int]] = None,
        computed: Optional[Dict[str, Dict[str, Any]]] = None,
        delay: float = 0.0
    ):
        self.fail = dict(fail or {})
        self.flaky = dict(flaky or {})
        self.computed = dict(computed or {})
        self.delay = delay
        self.calls: List[Tuple[str, str, Any]] = []
        self.live: Dict[str, Dict[str, Any]] = {}
        self.active = 0
        self.max_active = 0
        self._counter = 0
        self._guard = threading.Lock()

    def _enter(self, operation: str, resource_type: str, detail: Any) -> None:
        with self._guard:
            self.calls.append((operation, resource_type, detail))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        if self.delay:
            time.sleep(self.delay)

    def _leave(self) -> None:
        with self._guard:
            self.active -= 1

    def _check(self, resource_type: str) -> None:
        if resource_type in self.fail:
            raise self.fail[resource_type]
        with self._guard:
            remaining = self.flaky.get(resource_type, 0)
            if remaining:
                self.flaky[resource_type] = remaining - 1
                raise RetryableProviderError(f"throttled creating {resource_type}")

    def create(self, resource_type, attributes):
        self._enter("create", resource_type, attributes)
        try:
            self._check(resource_type)
            with self._guard:
                self._counter += 1
                identity = f"{resource_type}-{self._counter}"
            applied = {**attributes, **self.computed.get(resource_type, {})}
            self.live[identity] = applied
            return identity, applied
        finally:
            self._leave()

    def update(self, resource_type, identity, attributes):
        self._enter("update", resource_type, identity)
        try:
            self._check(resource_type)
            self.live[identity] = dict(attributes)
            return dict(attributes)
        finally:
            self._leave()

    def destroy(self, resource_type, identity):
        self._enter("destroy", resource_type, identity)
        try:
            self.live.pop(identity, None)
        finally:
            self._leave()

    def created_types(self) -> List[str]:
        return [resource_type for operation, resource_type, _ in self.calls if operation == "create"]


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep user/project config and CONVERGE_* variables out of every test."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("CONVERGE_ENV", raising=False)
    monkeypatch.setenv("CONVERGE_ASCII", "1")
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def fixtures_dir():
    return FIXTURES_DIR


@pytest.fixture
def sandbox_config():
    """Path to the sandbox environment (network + cluster, database disabled)."""
    return str(FIXTURES_DIR / "environments" / "sandbox.yaml")


@pytest.fixture
def sandbox_spec(sandbox_config):
    return load_environment_file(sandbox_config)


@pytest.fixture
def settings():
    """Engine settings tuned for fast tests."""
    return EngineSettings(
        state={"backend": "memory"},
        lock={"timeout_seconds": 0.5, "poll_interval_seconds": 0.05},
        retry={"max_attempts": 3, "base_delay_seconds": 0.0, "max_delay_seconds": 0.0},
    )


@pytest.fixture
def store():
    return MemoryStateStore(default_lock_timeout=0.5, poll_interval=0.05)


@pytest.fixture
def make_provider():
    """Factory for FakeProvider instances."""
    return FakeProvider


@pytest.fixture
def provider():
    return FakeProvider(computed={"aws_eks_cluster": {"endpoint": "https://eks.example.internal"}})
