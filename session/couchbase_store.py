"""
Couchbase-backed session store implementation.

Every session is one document stored under ``<app_name>sess:<id>``. The
document is a JSON object keyed by attribute type, so ``session:abc`` and
``flash:abc`` are two fields of the document ``MyAppsess:abc``. Expiry is
left to Couchbase: documents carry a time-to-live that is reset whenever
the session is read, and nothing is ever swept by the store itself.

Writes are a read-modify-write of that document. By default the write is
an unconditional upsert, so two requests storing different attributes of
the same session at the same moment can lose one of the updates. With
``atomic_merge`` enabled the write uses the document's CAS value instead
and re-runs the merge when another writer got there first.
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from config.settings import CouchbaseConfig, Settings
from errors.codes import ErrorCode
from errors.exceptions import BackendError, CasConflictError
from resilience.retry import RetryConfig, RetryExhaustedException, retry_async
from session.backend import (
    Conflict,
    DocumentBackend,
    Failure,
    Found,
    MutationResult,
    NotFound,
    Stored,
)
from session.connection import ConnectionDescriptor, build_connection_descriptor
from session.document import SessionDocument, check_value
from session.keys import SessionKey, build_key_prefix, decompose, to_storage_key
from session.store import SessionStore

logger = logging.getLogger(__name__)

# Applied when the host supplies no usable session expiration
DEFAULT_SESSION_EXPIRY = 3600

DEFAULT_CAS_MAX_ATTEMPTS = 5

_VALUE_PREVIEW_LENGTH = 64

Connector = Callable[[ConnectionDescriptor], Awaitable[DocumentBackend]]


def _preview(value: Any) -> str:
    text = repr(value)
    if len(text) > _VALUE_PREVIEW_LENGTH:
        return text[:_VALUE_PREVIEW_LENGTH] + "..."
    return text


class CouchbaseSessionStore(SessionStore):
    """
    Session store adapter over a document backend.

    Instances are created once per application (usually through
    ``setup``) and shared by all requests; the backend handle and key
    prefix never change afterwards.

    Attributes:
        backend: The document backend holding session documents
        key_prefix: Namespace prepended to every session id
        session_expires: Lifetime in seconds a read extends the session to
        atomic_merge: Whether writes use compare-and-swap
    """

    def __init__(
        self,
        backend: DocumentBackend,
        key_prefix: str,
        session_expires: int = DEFAULT_SESSION_EXPIRY,
        atomic_merge: bool = False,
        cas_max_attempts: int = DEFAULT_CAS_MAX_ATTEMPTS,
        clock: Callable[[], float] = time.time
    ):
        self._backend = backend
        self._key_prefix = key_prefix
        self._session_expires = session_expires or DEFAULT_SESSION_EXPIRY
        self._atomic_merge = atomic_merge
        self._cas_retry = RetryConfig(
            max_attempts=cas_max_attempts,
            retryable_exceptions=(CasConflictError,),
        )
        self._clock = clock

    @property
    def backend(self) -> DocumentBackend:
        return self._backend

    @property
    def key_prefix(self) -> str:
        return self._key_prefix

    @property
    def session_expires(self) -> int:
        return self._session_expires

    @property
    def atomic_merge(self) -> bool:
        return self._atomic_merge

    @classmethod
    async def setup(
        cls,
        config: Union[CouchbaseConfig, Mapping[str, Any]],
        app_name: str,
        session_expires: int = DEFAULT_SESSION_EXPIRY,
        atomic_merge: bool = False,
        cas_max_attempts: int = DEFAULT_CAS_MAX_ATTEMPTS,
        connect: Optional[Connector] = None
    ) -> "CouchbaseSessionStore":
        """
        Connect to Couchbase and build the store.

        Args:
            config: The Couchbase connection options.
            app_name: Application identity; session keys are prefixed
                with ``<app_name>sess:``.
            session_expires: Session lifetime in seconds.
            atomic_merge: Use compare-and-swap writes.
            cas_max_attempts: Attempts allowed for a compare-and-swap merge.
            connect: Coroutine opening the backend from a descriptor;
                defaults to ``connect_couchbase``.

        Raises:
            ConfigurationError: If the configuration is invalid.
            BackendError: If the Couchbase bucket cannot be opened.
        """
        logger.debug("Setting up Couchbase session store")

        key_prefix = build_key_prefix(app_name)
        descriptor = build_connection_descriptor(config)

        if connect is None:
            from session.couchbase_backend import connect_couchbase
            connect = connect_couchbase

        backend = await connect(descriptor)
        if backend is None:
            raise BackendError(
                "Couchbase bucket object undefined!",
                details={"bucket": descriptor.bucket, "hosts": descriptor.hosts}
            )

        logger.info(
            "Couchbase session store ready",
            extra={"extra_data": {
                "connection": repr(descriptor),
                "key_prefix": key_prefix,
                "atomic_merge": atomic_merge,
            }}
        )
        return cls(
            backend,
            key_prefix,
            session_expires=session_expires,
            atomic_merge=atomic_merge,
            cas_max_attempts=cas_max_attempts,
        )

    def _resolve(self, key: str) -> tuple[SessionKey, str]:
        parsed = decompose(key)
        return parsed, to_storage_key(self._key_prefix, parsed.id)

    def _compute_expiry(self, expires_at: Optional[Union[float, datetime]]) -> int:
        if isinstance(expires_at, datetime):
            expires_at = expires_at.timestamp()
        expiry = int(expires_at - self._clock()) if expires_at else 0
        if expiry <= 0:
            logger.warning(
                "No expiry set for sessions! Defaulting to one hour..",
                extra={"extra_data": {"expires_at": expires_at,
                                      "default_expiry": DEFAULT_SESSION_EXPIRY}}
            )
            expiry = DEFAULT_SESSION_EXPIRY
        return expiry

    async def get_session_data(self, key: str) -> Optional[Any]:
        parsed, storage_key = self._resolve(key)

        result = await self._backend.get_and_touch(
            storage_key, timedelta(seconds=self._session_expires)
        )

        if isinstance(result, Found):
            if result.content is None:
                return None
            if not isinstance(result.content, dict):
                logger.warning(
                    "Session document is not an object, ignoring it",
                    extra={"extra_data": {"key": storage_key,
                                          "content_type": type(result.content).__name__}}
                )
                return None
            document = SessionDocument.from_content(storage_key, result.content, result.cas)
            try:
                return document.get(parsed.type)
            except ValueError as e:
                logger.error(
                    "Failed to decode session field",
                    extra={"extra_data": {"key": storage_key, "field": parsed.type,
                                          "backend_error": str(e)}}
                )
                raise BackendError(
                    f"Failed to decode Couchbase item field '{parsed.type}': {e}. "
                    f"Key was: {storage_key}",
                    key=storage_key,
                    backend_error=str(e),
                ) from e

        if isinstance(result, NotFound):
            return None

        logger.error(
            "Failed to fetch session document",
            extra={"extra_data": {"key": storage_key, "backend_error": result.detail}}
        )
        raise BackendError(
            f"Failed to fetch Couchbase item: {result.detail}. Key was: {storage_key}",
            key=storage_key,
            backend_error=result.detail,
        )

    async def store_session_data(
        self,
        key: str,
        value: Any,
        expires_at: Optional[Union[float, datetime]] = None
    ) -> bool:
        parsed, storage_key = self._resolve(key)
        check_value(value)
        expiry = self._compute_expiry(expires_at)

        if not self._atomic_merge:
            document = await self._load_for_update(storage_key)
            document.set(parsed.type, value)
            document.expiry = expiry
            result = await self._backend.upsert(
                storage_key, document.to_content(), timedelta(seconds=expiry)
            )
            if not isinstance(result, Stored):
                raise self._write_error(storage_key, value, result)
            return True

        try:
            await retry_async(
                self._merge_with_cas,
                storage_key,
                parsed.type,
                value,
                expiry,
                config=self._cas_retry,
                operation_name="session_merge",
            )
        except RetryExhaustedException as e:
            raise BackendError(
                f"Couldn't save {storage_key} in couchbase storage: "
                f"document kept changing after {e.attempts} attempts",
                key=storage_key,
                error_code=ErrorCode.SESSION_STORE_CONFLICT,
                details={"attempts": e.attempts},
            ) from e
        return True

    async def _load_for_update(self, storage_key: str) -> SessionDocument:
        result = await self._backend.get(storage_key)
        if isinstance(result, Found) and isinstance(result.content, dict):
            return SessionDocument.from_content(storage_key, result.content, result.cas)
        if isinstance(result, Failure):
            logger.warning(
                "Could not read session document before update, starting empty",
                extra={"extra_data": {"key": storage_key, "backend_error": result.detail}}
            )
        return SessionDocument(id=storage_key)

    async def _merge_with_cas(self, storage_key: str, field_type: str,
                              value: Any, expiry: int) -> None:
        document = await self._load_for_update(storage_key)
        document.set(field_type, value)
        document.expiry = expiry
        ttl = timedelta(seconds=expiry)

        if document.cas is None:
            result = await self._backend.insert(storage_key, document.to_content(), ttl)
        else:
            result = await self._backend.replace(
                storage_key, document.to_content(), document.cas, ttl
            )

        if isinstance(result, (Conflict, NotFound)):
            raise CasConflictError(storage_key)
        if not isinstance(result, Stored):
            raise self._write_error(storage_key, value, result)

    def _write_error(self, storage_key: str, value: Any,
                     result: MutationResult) -> BackendError:
        detail = result.detail if isinstance(result, Failure) else type(result).__name__
        preview = _preview(value)
        logger.error(
            "Failed to save session document",
            extra={"extra_data": {"key": storage_key, "backend_error": detail}}
        )
        return BackendError(
            f"Couldn't save {storage_key} / {preview} in couchbase storage: {detail}",
            key=storage_key,
            backend_error=detail,
            details={"value_preview": preview},
        )

    async def delete_session_data(self, key: str) -> bool:
        logger.debug("Couchbase session store: delete_session_data(%s)", key)
        _, storage_key = self._resolve(key)

        try:
            result = await self._backend.remove(storage_key)
        except Exception as e:
            logger.warning(
                "Ignoring failed session delete",
                extra={"extra_data": {"key": storage_key, "backend_error": str(e),
                                      "error_type": type(e).__name__}}
            )
            return True

        if isinstance(result, Failure):
            logger.warning(
                "Ignoring failed session delete",
                extra={"extra_data": {"key": storage_key, "backend_error": result.detail}}
            )
        return True

    async def delete_expired_sessions(self) -> None:
        # Couchbase expires documents itself
        return None

    async def health_check(self) -> bool:
        try:
            return await self._backend.ping()
        except Exception as e:
            logger.warning("Session store health check failed: %s", e)
            return False

    async def close(self) -> None:
        """Release the backend connection at application shutdown."""
        await self._backend.close()


async def create_session_store(settings: Settings) -> CouchbaseSessionStore:
    """
    Build the session store selected by the settings.

    ``SESSION_BACKEND=memory`` gives a process-local store for development;
    anything else connects to Couchbase.
    """
    if settings.session_backend == "memory":
        from session.memory_backend import InMemoryBackend

        logger.warning("Using in-memory session backend; sessions are not shared or persisted")
        return CouchbaseSessionStore(
            InMemoryBackend(),
            build_key_prefix(settings.app_name),
            session_expires=settings.session_expires,
            atomic_merge=settings.session_atomic_merge,
            cas_max_attempts=settings.session_cas_max_attempts,
        )

    return await CouchbaseSessionStore.setup(
        settings.couchbase,
        settings.app_name,
        session_expires=settings.session_expires,
        atomic_merge=settings.session_atomic_merge,
        cas_max_attempts=settings.session_cas_max_attempts,
    )
