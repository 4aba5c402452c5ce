"""Benchmark fixtures and configuration."""
import pytest

from sessionbus import HandlerSet, KeyedRegistry


@pytest.fixture
def populated_keyed():
    """Keyed registry with 1000 no-op handlers."""
    registry = KeyedRegistry()
    for i in range(1000):
        registry.register(i, lambda payload: None)
    return registry


@pytest.fixture
def populated_set():
    """Handler set with 1000 distinct no-op handlers."""
    handlers = HandlerSet()
    for i in range(1000):
        handlers.register(lambda payload, i=i: None)
    return handlers
