"""
Session store abstraction for external session storage.

This module defines the interface a host web framework calls to persist
session data outside the process. Keys are composite ``type:id`` strings;
values are blobs the host has already serialized.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional, Union


class SessionStore(ABC):
    """
    Abstract base class for session storage implementations.

    All methods are async to support non-blocking I/O operations with
    external storage systems.
    """

    @abstractmethod
    async def get_session_data(self, key: str) -> Optional[Any]:
        """
        Retrieve one session attribute.

        Args:
            key: Composite key of the form ``type:id``.

        Returns:
            The stored blob, or None if the session or the attribute does
            not exist.

        Raises:
            InvalidKeyError: If the key is empty or malformed.
            BackendError: If the store fails for any reason other than
                the session not existing.
        """

    @abstractmethod
    async def store_session_data(
        self,
        key: str,
        value: Any,
        expires_at: Optional[Union[float, datetime]] = None
    ) -> bool:
        """
        Store one session attribute.

        Args:
            key: Composite key of the form ``type:id``.
            value: Serialized blob (str or bytes).
            expires_at: Absolute session expiration time. When missing or
                not in the future, a default lifetime is applied.

        Returns:
            True once the value is stored.

        Raises:
            InvalidKeyError: If the key is empty or malformed.
            BackendError: If the write fails.
        """

    @abstractmethod
    async def delete_session_data(self, key: str) -> bool:
        """
        Delete a session.

        This operation is idempotent - deleting a non-existent session
        does not raise an error, and backend failures are ignored.

        Raises:
            InvalidKeyError: If the key is empty or malformed.
        """

    async def delete_expired_sessions(self) -> None:
        """Remove expired sessions; a no-op for stores with native expiry."""

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check connectivity and health of the session store.

        Returns:
            True if the store is healthy and accessible, False otherwise.

        Note:
            This method should not raise exceptions - connectivity issues
            should be caught and result in a False return value.
        """
