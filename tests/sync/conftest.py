"""Fixtures for the sync tests."""

import pytest

from src.hillstone.api.cache import InMemoryCache
from tests.sync.fakes import FakeClock, InMemoryObjectRepository, InMemorySyncRunRepository


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def objects():
    return InMemoryObjectRepository()


@pytest.fixture
def runs(clock):
    return InMemorySyncRunRepository(clock)


@pytest.fixture
def cache():
    return InMemoryCache()
