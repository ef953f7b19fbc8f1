"""
Test configuration and fixtures for pytest.

Provides an in-memory Supabase query double, fake Kubernetes API objects and a
clock that only advances when the code under test sleeps.
"""

import os
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest


def pytest_configure(config):
    """
    Pytest hook called before test collection.
    Sets up test environment variables and registers custom markers.
    """
    # Set before any app import so the settings singleton picks them up
    os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
    os.environ.setdefault("SUPABASE_KEY", "test-anon-key")
    os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
    os.environ.setdefault("REGISTRY_URL", "registry.test")
    os.environ.setdefault("REGISTRY_USER", "launchpad")
    os.environ.setdefault("REGISTRY_PASSWORD", "secret")
    os.environ.setdefault("GITHUB_APP_NAME", "launchpad-test")

    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "kubernetes: mark test as exercising the Kubernetes layer")


# =============================================================================
# SUPABASE
# =============================================================================

class FakeQuery:
    """Records the builder chain; every builder method returns self."""

    def __init__(self, table: str, data: Any = None, count: Optional[int] = None):
        self.table = table
        self.result = SimpleNamespace(data=data, count=count)
        self.calls: List[tuple] = []

    def __getattr__(self, name):
        if name.startswith("__"):
            raise AttributeError(name)

        def method(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            return self
        return method

    def execute(self):
        return self.result

    def called(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]


class FakeSupabase:
    """Hands out queued results per table in order; unqueued queries return no data."""

    def __init__(self):
        self._queued: Dict[str, List[FakeQuery]] = {}
        self.queries: List[FakeQuery] = []

    def queue(self, table: str, data: Any = None, count: Optional[int] = None) -> FakeQuery:
        query = FakeQuery(table, data, count)
        self._queued.setdefault(table, []).append(query)
        return query

    def table(self, name: str) -> FakeQuery:
        pending = self._queued.get(name)
        query = pending.pop(0) if pending else FakeQuery(name)
        self.queries.append(query)
        return query


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


# =============================================================================
# KUBERNETES
# =============================================================================

class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


def make_deployment_row(**overrides) -> Dict[str, Any]:
    row = {
        "id": "dep-1111-2222",
        "user_id": "abcdef0123456789",
        "project": "octocat/hello-world",
        "project_name": "Hello World",
        "branch": "main",
        "port": 8080,
        "namespace": None,
        "url": None,
        "status": "provisioning",
        "error_message": None,
        "created_at": "2026-01-01T10:00:00+00:00",
    }
    row.update(overrides)
    return row


def make_build_row(**overrides) -> Dict[str, Any]:
    row = {
        "id": "build-aaaa-bbbb",
        "user_id": "abcdef0123456789",
        "deployment_id": "dep-1111-2222",
        "repo_name": "octocat/hello-world",
        "branch": "main",
        "status": "queued",
        "image_uri": None,
        "logs": None,
        "created_at": "2026-01-01T10:00:00+00:00",
    }
    row.update(overrides)
    return row


@pytest.fixture
def deployment_row():
    return make_deployment_row


@pytest.fixture
def build_row():
    return make_build_row
