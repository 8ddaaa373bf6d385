"""Pytest configuration for all tests."""

import pytest
from prometheus_client import CollectorRegistry

from src.content_pipeline.status.memory import InMemoryItemStore


@pytest.fixture
def store() -> InMemoryItemStore:
    """Empty in-memory item store."""
    return InMemoryItemStore()


@pytest.fixture
def registry() -> CollectorRegistry:
    """Isolated Prometheus registry, so metrics never collide between tests."""
    return CollectorRegistry()
