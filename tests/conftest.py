"""
Shared pytest fixtures for the CipherGuard test suite.

Engines are built with a tiny PBKDF2 iteration count so the suite runs in
seconds.

Autouse fixtures below isolate tests from the developer's environment:
  - CIPHERGUARD_* variables -> removed  (a real vault dir is never touched)
"""

from datetime import datetime, timedelta, timezone

import pytest

TEST_ITERATIONS = 1_000
MASTER_PASSWORD = "Correct-Horse-Battery-9!"


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch):
    """Strip CIPHERGUARD_* variables so tests never pick up a real config."""
    import os

    for name in list(os.environ):
        if name.startswith("CIPHERGUARD_"):
            monkeypatch.delenv(name, raising=False)
    yield


class FakeClock:
    """Deterministic clock that advances one second per reading."""

    def __init__(self, start=None):
        self.current = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        value = self.current
        self.current = self.current + timedelta(seconds=1)
        return value


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    from cipherguard.vault.store import MemoryStore

    return MemoryStore()


@pytest.fixture
def make_engine(store, clock):
    """Factory for engines sharing one store (simulates app restarts)."""
    from cipherguard.vault.vault_engine import VaultEngine

    def _make(**kwargs):
        kwargs.setdefault("iterations", TEST_ITERATIONS)
        kwargs.setdefault("clock", clock)
        return VaultEngine(kwargs.pop("store", store), **kwargs)

    return _make


@pytest.fixture
def engine(make_engine):
    """Bootstrapped engine in SETUP."""
    eng = make_engine()
    eng.bootstrap()
    return eng


@pytest.fixture
def unlocked(engine):
    """Freshly initialized (unlocked, empty) engine."""
    engine.initialize(MASTER_PASSWORD)
    return engine
