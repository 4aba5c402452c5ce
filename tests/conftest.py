"""Pytest configuration and shared fixtures."""
import threading

import pytest

from sessionbus import HandlerSet, KeyedRegistry, RegistryConfig


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "slow: mark test as slow running")
    config.addinivalue_line("markers", "benchmark: mark test as benchmark")


class Recorder:
    """Callable that remembers every payload it was given."""

    def __init__(self, name="recorder"):
        self.__qualname__ = name
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, payload):
        with self._lock:
            self.calls.append(payload)

    @property
    def count(self):
        return len(self.calls)


@pytest.fixture
def recorder():
    return Recorder


@pytest.fixture
def keyed():
    return KeyedRegistry(RegistryConfig(name="test.keyed"))


@pytest.fixture
def handler_set():
    return HandlerSet(RegistryConfig(name="test.set"))
