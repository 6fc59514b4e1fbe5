"""
Shared pytest fixtures and configuration for all tests.
"""
import os

import pytest
from unittest.mock import AsyncMock, MagicMock

# Hypothesis configuration for property-based testing
from hypothesis import settings, Verbosity, Phase

# Default profile: balanced for local development
settings.register_profile(
    "default",
    max_examples=100,
    verbosity=Verbosity.normal,
    deadline=None,
    print_blob=True,
)

# CI profile: more thorough testing for continuous integration
settings.register_profile(
    "ci",
    max_examples=200,
    verbosity=Verbosity.verbose,
    deadline=None,
    print_blob=True,
    derandomize=True,
)

# Debug profile: minimal examples for quick debugging
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
    print_blob=True,
    phases=[Phase.explicit, Phase.reuse, Phase.generate],
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "default"))


from session.backend import NotFound, Stored  # noqa: E402
from session.couchbase_store import CouchbaseSessionStore  # noqa: E402
from session.memory_backend import InMemoryBackend  # noqa: E402

FIXED_NOW = 1_700_000_000.0


class FakeClock:
    """Manually advanced clock shared by the store and the memory backend."""

    def __init__(self, now: float = FIXED_NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_backend(clock) -> InMemoryBackend:
    return InMemoryBackend(clock=clock)


@pytest.fixture
def store(memory_backend, clock) -> CouchbaseSessionStore:
    """Session store over the in-memory backend with a fixed clock."""
    return CouchbaseSessionStore(memory_backend, "MyAppsess:", clock=clock)


@pytest.fixture
def mock_backend() -> MagicMock:
    """Create a mock document backend reporting empty, successful results."""
    mock = MagicMock()
    mock.get = AsyncMock(side_effect=lambda key: NotFound(key))
    mock.get_and_touch = AsyncMock(side_effect=lambda key, expiry: NotFound(key))
    mock.upsert = AsyncMock(side_effect=lambda key, content, expiry: Stored(key, 1))
    mock.insert = AsyncMock(side_effect=lambda key, content, expiry: Stored(key, 1))
    mock.replace = AsyncMock(side_effect=lambda key, content, cas, expiry: Stored(key, cas + 1))
    mock.remove = AsyncMock(side_effect=lambda key: Stored(key, 1))
    mock.ping = AsyncMock(return_value=True)
    mock.close = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def mock_collection() -> MagicMock:
    """Create a mock acouchbase collection for unit tests."""
    result = MagicMock()
    result.value = {"session": "blob"}
    result.cas = 42
    mock = MagicMock()
    mock.get = AsyncMock(return_value=result)
    mock.get_and_touch = AsyncMock(return_value=result)
    mock.upsert = AsyncMock(return_value=result)
    mock.insert = AsyncMock(return_value=result)
    mock.replace = AsyncMock(return_value=result)
    mock.remove = AsyncMock(return_value=result)
    return mock
