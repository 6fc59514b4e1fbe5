"""
Document backend interface for the session store.

Backends report outcomes as typed results instead of raising or returning
error strings, so a missing document is told apart from a real failure
without inspecting error text:

- reads return ``Found``, ``NotFound`` or ``Failure``
- writes return ``Stored``, ``Conflict``, ``NotFound`` or ``Failure``
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional, Union


@dataclass(frozen=True)
class Found:
    """The document exists; ``content`` is its decoded body."""
    key: str
    content: Any
    cas: Optional[int] = None


@dataclass(frozen=True)
class NotFound:
    """The backend reported that the key does not exist."""
    key: str


@dataclass(frozen=True)
class Failure:
    """Any other backend failure, with the backend's error text."""
    key: str
    detail: str
    cause: Optional[BaseException] = None


@dataclass(frozen=True)
class Stored:
    """A write succeeded; ``cas`` is the new version token."""
    key: str
    cas: Optional[int] = None


@dataclass(frozen=True)
class Conflict:
    """A conditional write lost to a concurrent writer."""
    key: str


FetchResult = Union[Found, NotFound, Failure]
MutationResult = Union[Stored, Conflict, NotFound, Failure]


class DocumentBackend(ABC):
    """
    Abstract key-value document store used by the session store.

    Implementations must be safe to share between concurrent requests;
    the session store holds a single instance for the application lifetime.
    Expiry values are relative time-to-live durations.
    """

    @abstractmethod
    async def get(self, key: str) -> FetchResult:
        """Read a document without touching its expiry."""

    @abstractmethod
    async def get_and_touch(self, key: str, expiry: timedelta) -> FetchResult:
        """Read a document and reset its time-to-live to ``expiry``."""

    @abstractmethod
    async def upsert(self, key: str, content: dict[str, Any],
                     expiry: timedelta) -> MutationResult:
        """Insert or replace a document unconditionally."""

    @abstractmethod
    async def insert(self, key: str, content: dict[str, Any],
                     expiry: timedelta) -> MutationResult:
        """Create a document; ``Conflict`` if the key already exists."""

    @abstractmethod
    async def replace(self, key: str, content: dict[str, Any], cas: int,
                      expiry: timedelta) -> MutationResult:
        """Replace a document only if its version still matches ``cas``."""

    @abstractmethod
    async def remove(self, key: str) -> MutationResult:
        """Remove a document."""

    @abstractmethod
    async def ping(self) -> bool:
        """
        Check connectivity to the backend.

        Note:
            This method should not raise exceptions - connectivity issues
            should result in a False return value.
        """

    async def close(self) -> None:
        """Release the backend connection."""
