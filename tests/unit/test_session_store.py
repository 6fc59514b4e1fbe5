"""
Unit tests for the Couchbase session store adapter.

These tests verify the get/store/delete behavior against the in-memory
backend and a mocked backend:
- Fields of one session share a document keyed by the session id
- A missing document reads as None; other failures raise BackendError
- Stores always carry a time-to-live
- Deletes always succeed
- Compare-and-swap merges survive concurrent writers
"""

import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from config.settings import ConfigurationError, Settings
from errors.codes import ErrorCode
from errors.exceptions import AppException, BackendError, InvalidKeyError
from session.backend import Failure, Found, NotFound
from session.connection import ConnectionDescriptor
from session.couchbase_store import (
    DEFAULT_SESSION_EXPIRY,
    CouchbaseSessionStore,
    create_session_store,
)
from session.memory_backend import InMemoryBackend


class RacingBackend(InMemoryBackend):
    """In-memory backend where another writer stores a flash field right after each read."""

    def __init__(self, clock, races: int):
        super().__init__(clock=clock)
        self.races = races

    async def get(self, key):
        result = await super().get(key)
        if self.races > 0:
            self.races -= 1
            content = dict(result.content) if isinstance(result, Found) else {}
            content["flash"] = "from another request"
            await self.upsert(key, content, timedelta(seconds=100))
        return result


class TestEndToEnd:
    """Store-then-read scenarios against the in-memory backend."""

    @pytest.mark.asyncio
    async def test_store_then_get(self, store, memory_backend, clock):
        """Test that a stored value is read back and other fields stay empty."""
        assert await store.store_session_data("session:abc123", "blob", clock() + 10) is True

        assert await store.get_session_data("session:abc123") == "blob"
        assert await store.get_session_data("flash:abc123") is None

    @pytest.mark.asyncio
    async def test_fields_share_one_document(self, store, memory_backend, clock):
        """Test that different types of one session merge into one document."""
        await store.store_session_data("session:abc123", "data", clock() + 60)
        await store.store_session_data("expires:abc123", "1700000060", clock() + 60)

        result = await memory_backend.get("MyAppsess:abc123")
        assert result.content == {"session": "data", "expires": "1700000060"}
        assert await store.get_session_data("flash:abc123") is None

    @pytest.mark.asyncio
    async def test_sessions_are_isolated_by_id(self, store, clock):
        await store.store_session_data("session:one", "first", clock() + 60)

        assert await store.get_session_data("session:two") is None

    @pytest.mark.asyncio
    async def test_stored_ttl_matches_expiration(self, store, memory_backend, clock):
        await store.store_session_data("session:abc123", "blob", clock() + 10)

        assert memory_backend.ttl("MyAppsess:abc123") == 10

    @pytest.mark.asyncio
    async def test_session_disappears_after_ttl(self, store, clock):
        """Test that expiry is left to the backend's time-to-live."""
        await store.store_session_data("session:abc123", "blob", clock() + 10)
        clock.advance(11)

        assert await store.get_session_data("session:abc123") is None

    @pytest.mark.asyncio
    async def test_get_refreshes_ttl(self, store, memory_backend, clock):
        """Test that reading a session extends it to the configured lifetime."""
        await store.store_session_data("session:abc123", "blob", clock() + 10)

        await store.get_session_data("session:abc123")

        assert memory_backend.ttl("MyAppsess:abc123") == DEFAULT_SESSION_EXPIRY

    @pytest.mark.asyncio
    async def test_bytes_values(self, store, memory_backend, clock):
        """Test that binary blobs are stored as JSON and read back as bytes."""
        payload = b"\x00\xffpickled"
        await store.store_session_data("session:abc123", payload, clock() + 60)

        assert await store.get_session_data("session:abc123") == payload
        stored = await memory_backend.get("MyAppsess:abc123")
        assert isinstance(stored.content["session"], dict)

    @pytest.mark.asyncio
    async def test_delete_removes_all_fields(self, store, clock):
        await store.store_session_data("session:abc123", "blob", clock() + 60)
        await store.store_session_data("flash:abc123", "note", clock() + 60)

        assert await store.delete_session_data("session:abc123") is True

        assert await store.get_session_data("session:abc123") is None
        assert await store.get_session_data("flash:abc123") is None


class TestGetSessionData:
    """Tests for reads."""

    @pytest.mark.asyncio
    async def test_not_found_returns_none(self, mock_backend):
        store = CouchbaseSessionStore(mock_backend, "MyAppsess:")

        assert await store.get_session_data("session:missing") is None
        mock_backend.get_and_touch.assert_awaited_once_with(
            "MyAppsess:missing", timedelta(seconds=DEFAULT_SESSION_EXPIRY)
        )

    @pytest.mark.asyncio
    async def test_backend_failure_raises(self, mock_backend):
        """Test that failures other than not-found propagate with key and text."""
        mock_backend.get_and_touch.side_effect = lambda key, expiry: Failure(key, "LCB_ETIMEDOUT")
        store = CouchbaseSessionStore(mock_backend, "MyAppsess:")

        with pytest.raises(BackendError) as exc_info:
            await store.get_session_data("session:abc")

        assert exc_info.value.key == "MyAppsess:abc"
        assert exc_info.value.backend_error == "LCB_ETIMEDOUT"
        assert "Key was: MyAppsess:abc" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_document_without_value_returns_none(self, mock_backend):
        mock_backend.get_and_touch.side_effect = lambda key, expiry: Found(key, None, 1)
        store = CouchbaseSessionStore(mock_backend, "MyAppsess:")

        assert await store.get_session_data("session:abc") is None

    @pytest.mark.asyncio
    async def test_non_object_document_returns_none(self, mock_backend, caplog):
        mock_backend.get_and_touch.side_effect = lambda key, expiry: Found(key, "raw", 1)
        store = CouchbaseSessionStore(mock_backend, "MyAppsess:")

        with caplog.at_level(logging.WARNING):
            assert await store.get_session_data("session:abc") is None

        assert "not an object" in caplog.text

    @pytest.mark.asyncio
    async def test_corrupt_field_does_not_affect_other_fields(self, mock_backend):
        """Test that only the requested field is decoded."""
        mock_backend.get_and_touch.side_effect = lambda key, expiry: Found(
            key, {"session": {"__bytes__": "not base64!"}, "flash": "hello"}, 1
        )
        store = CouchbaseSessionStore(mock_backend, "MyAppsess:")

        assert await store.get_session_data("flash:abc") == "hello"
        assert await store.get_session_data("expires:abc") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", ["not base64!", 12345])
    async def test_corrupt_field_raises_backend_error(self, mock_backend, payload):
        mock_backend.get_and_touch.side_effect = lambda key, expiry: Found(
            key, {"session": {"__bytes__": payload}}, 1
        )
        store = CouchbaseSessionStore(mock_backend, "MyAppsess:")

        with pytest.raises(BackendError) as exc_info:
            await store.get_session_data("session:abc")

        assert exc_info.value.key == "MyAppsess:abc"
        assert "__bytes__" in exc_info.value.backend_error

    @pytest.mark.asyncio
    async def test_touch_uses_configured_lifetime(self, mock_backend):
        store = CouchbaseSessionStore(mock_backend, "MyAppsess:", session_expires=7200)

        await store.get_session_data("session:abc")

        assert mock_backend.get_and_touch.await_args.args[1] == timedelta(seconds=7200)


class TestInvalidKeys:
    """Tests that invalid keys never reach the backend."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["", None, "no-separator", ":abc", "session:"])
    async def test_all_operations_reject_invalid_keys(self, mock_backend, key):
        store = CouchbaseSessionStore(mock_backend, "MyAppsess:")

        with pytest.raises(InvalidKeyError):
            await store.get_session_data(key)
        with pytest.raises(InvalidKeyError):
            await store.store_session_data(key, "blob", 0)
        with pytest.raises(InvalidKeyError):
            await store.delete_session_data(key)

        mock_backend.get.assert_not_awaited()
        mock_backend.get_and_touch.assert_not_awaited()
        mock_backend.upsert.assert_not_awaited()
        mock_backend.remove.assert_not_awaited()


class TestStoreSessionData:
    """Tests for writes."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("offset", [None, 0, -5])
    async def test_missing_or_past_expiration_defaults_to_one_hour(
        self, mock_backend, clock, caplog, offset
    ):
        """Test that sessions are never stored without a time-to-live."""
        store = CouchbaseSessionStore(mock_backend, "MyAppsess:", clock=clock)
        expires_at = None if offset is None else clock() + offset

        with caplog.at_level(logging.WARNING):
            await store.store_session_data("session:abc", "blob", expires_at)

        key, content, expiry = mock_backend.upsert.await_args.args
        assert expiry == timedelta(seconds=3600)
        assert "No expiry set for sessions" in caplog.text

    @pytest.mark.asyncio
    async def test_datetime_expiration(self, mock_backend, clock):
        store = CouchbaseSessionStore(mock_backend, "MyAppsess:", clock=clock)
        expires_at = datetime.fromtimestamp(clock() + 120, tz=timezone.utc)

        await store.store_session_data("session:abc", "blob", expires_at)

        assert mock_backend.upsert.await_args.args[2] == timedelta(seconds=120)

    @pytest.mark.asyncio
    async def test_read_failure_starts_from_empty_document(self, mock_backend, clock, caplog):
        mock_backend.get.side_effect = lambda key: Failure(key, "temporary failure")
        store = CouchbaseSessionStore(mock_backend, "MyAppsess:", clock=clock)

        with caplog.at_level(logging.WARNING):
            await store.store_session_data("session:abc", "blob", clock() + 60)

        key, content, expiry = mock_backend.upsert.await_args.args
        assert key == "MyAppsess:abc"
        assert content == {"session": "blob"}
        assert "starting empty" in caplog.text

    @pytest.mark.asyncio
    async def test_existing_fields_are_kept(self, mock_backend, clock):
        mock_backend.get.side_effect = lambda key: Found(key, {"flash": "hello"}, 9)
        store = CouchbaseSessionStore(mock_backend, "MyAppsess:", clock=clock)

        await store.store_session_data("session:abc", "blob", clock() + 60)

        assert mock_backend.upsert.await_args.args[1] == {"flash": "hello", "session": "blob"}

    @pytest.mark.asyncio
    async def test_corrupt_field_kept_when_writing_another(self, mock_backend, clock):
        """Test that a write does not decode or drop fields it does not touch."""
        corrupt = {"__bytes__": "not base64!"}
        mock_backend.get.side_effect = lambda key: Found(key, {"flash": corrupt}, 9)
        store = CouchbaseSessionStore(mock_backend, "MyAppsess:", clock=clock)

        await store.store_session_data("session:abc", b"\x00blob", clock() + 60)

        content = mock_backend.upsert.await_args.args[1]
        assert content["flash"] == corrupt
        assert content["session"] == {"__bytes__": "AGJsb2I="}

    @pytest.mark.asyncio
    async def test_upsert_failure_raises_with_context(self, mock_backend, clock):
        mock_backend.upsert.side_effect = lambda key, content, expiry: Failure(key, "out of memory")
        store = CouchbaseSessionStore(mock_backend, "MyAppsess:", clock=clock)

        with pytest.raises(BackendError) as exc_info:
            await store.store_session_data("session:abc", "blob", clock() + 60)

        error = exc_info.value
        assert error.key == "MyAppsess:abc"
        assert error.backend_error == "out of memory"
        assert "'blob'" in error.message
        assert error.details["value_preview"] == "'blob'"

    @pytest.mark.asyncio
    async def test_unserialized_value_rejected(self, mock_backend, clock):
        store = CouchbaseSessionStore(mock_backend, "MyAppsess:", clock=clock)

        with pytest.raises(AppException) as exc_info:
            await store.store_session_data("session:abc", {"user": 1}, clock() + 60)

        assert exc_info.value.error_code == ErrorCode.VALIDATION_ERROR
        mock_backend.upsert.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unconditional_merge_loses_concurrent_field(self, clock):
        """Test the documented last-writer-wins behavior of the default merge."""
        backend = RacingBackend(clock, races=1)
        store = CouchbaseSessionStore(backend, "MyAppsess:", clock=clock)

        await store.store_session_data("session:abc", "blob", clock() + 60)

        result = await backend.get("MyAppsess:abc")
        assert result.content == {"session": "blob"}


class TestAtomicMerge:
    """Tests for compare-and-swap merges."""

    @pytest.fixture(autouse=True)
    def no_backoff(self):
        with patch("resilience.retry.asyncio.sleep", new=AsyncMock()):
            yield

    @pytest.mark.asyncio
    async def test_concurrent_insert_is_retried(self, clock):
        backend = RacingBackend(clock, races=1)
        store = CouchbaseSessionStore(backend, "MyAppsess:", atomic_merge=True, clock=clock)

        await store.store_session_data("session:abc", "blob", clock() + 60)

        result = await backend.get("MyAppsess:abc")
        assert result.content == {"session": "blob", "flash": "from another request"}

    @pytest.mark.asyncio
    async def test_concurrent_replace_is_retried(self, clock):
        backend = RacingBackend(clock, races=0)
        store = CouchbaseSessionStore(backend, "MyAppsess:", atomic_merge=True, clock=clock)
        await store.store_session_data("expires:abc", "123", clock() + 60)

        backend.races = 2
        await store.store_session_data("session:abc", "blob", clock() + 60)

        result = await backend.get("MyAppsess:abc")
        assert result.content == {
            "expires": "123", "session": "blob", "flash": "from another request"
        }
        assert backend.ttl("MyAppsess:abc") == 60

    @pytest.mark.asyncio
    async def test_exhausted_attempts_raise_conflict(self, clock):
        backend = RacingBackend(clock, races=100)
        store = CouchbaseSessionStore(
            backend, "MyAppsess:", atomic_merge=True, cas_max_attempts=3, clock=clock
        )

        with pytest.raises(BackendError) as exc_info:
            await store.store_session_data("session:abc", "blob", clock() + 60)

        assert exc_info.value.error_code == ErrorCode.SESSION_STORE_CONFLICT
        assert exc_info.value.details["attempts"] == 3
        assert backend.races == 97

    @pytest.mark.asyncio
    async def test_write_failure_is_not_retried(self, mock_backend, clock):
        mock_backend.insert.side_effect = lambda key, content, expiry: Failure(key, "bucket gone")
        store = CouchbaseSessionStore(mock_backend, "MyAppsess:", atomic_merge=True, clock=clock)

        with pytest.raises(BackendError) as exc_info:
            await store.store_session_data("session:abc", "blob", clock() + 60)

        assert exc_info.value.backend_error == "bucket gone"
        assert mock_backend.insert.await_count == 1


class TestDeleteSessionData:
    """Tests for deletes and the expiry sweep."""

    @pytest.mark.asyncio
    async def test_delete_missing_session_succeeds(self, mock_backend):
        mock_backend.remove.side_effect = lambda key: NotFound(key)
        store = CouchbaseSessionStore(mock_backend, "MyAppsess:")

        assert await store.delete_session_data("session:gone") is True
        mock_backend.remove.assert_awaited_once_with("MyAppsess:gone")

    @pytest.mark.asyncio
    async def test_delete_failure_is_ignored(self, mock_backend, caplog):
        mock_backend.remove.side_effect = lambda key: Failure(key, "network unreachable")
        store = CouchbaseSessionStore(mock_backend, "MyAppsess:")

        with caplog.at_level(logging.WARNING):
            assert await store.delete_session_data("session:abc") is True

        assert "Ignoring failed session delete" in caplog.text

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [RuntimeError("cluster closed"), ConnectionError("reset")])
    async def test_delete_exception_is_ignored(self, mock_backend, caplog, error):
        """Test that deletes report success even when the backend raises."""
        mock_backend.remove.side_effect = error
        store = CouchbaseSessionStore(mock_backend, "MyAppsess:")

        with caplog.at_level(logging.WARNING):
            assert await store.delete_session_data("session:abc") is True

        assert "Ignoring failed session delete" in caplog.text

    @pytest.mark.asyncio
    async def test_expired_session_sweep_is_a_no_op(self, mock_backend):
        store = CouchbaseSessionStore(mock_backend, "MyAppsess:")

        assert await store.delete_expired_sessions() is None
        mock_backend.remove.assert_not_awaited()


class TestHealthAndLifecycle:
    """Tests for health checks and closing."""

    @pytest.mark.asyncio
    async def test_health_check_uses_ping(self, mock_backend):
        store = CouchbaseSessionStore(mock_backend, "MyAppsess:")

        assert await store.health_check() is True

    @pytest.mark.asyncio
    async def test_health_check_never_raises(self, mock_backend):
        mock_backend.ping.side_effect = RuntimeError("socket closed")
        store = CouchbaseSessionStore(mock_backend, "MyAppsess:")

        assert await store.health_check() is False

    @pytest.mark.asyncio
    async def test_close_releases_backend(self, mock_backend):
        store = CouchbaseSessionStore(mock_backend, "MyAppsess:")

        await store.close()

        mock_backend.close.assert_awaited_once()


class TestSetup:
    """Tests for building the store at application startup."""

    @pytest.mark.asyncio
    async def test_setup_connects_once_with_descriptor(self, mock_backend):
        connect = AsyncMock(return_value=mock_backend)

        store = await CouchbaseSessionStore.setup(
            {"server": "cb1,cb2", "bucket": "sessions"},
            "MyApp",
            session_expires=7200,
            atomic_merge=True,
            connect=connect,
        )

        descriptor = connect.await_args.args[0]
        assert isinstance(descriptor, ConnectionDescriptor)
        assert descriptor.connection_string.startswith("couchbase://cb1,cb2/sessions?")
        assert store.backend is mock_backend
        assert store.key_prefix == "MyAppsess:"
        assert store.session_expires == 7200
        assert store.atomic_merge is True

    @pytest.mark.asyncio
    async def test_setup_fails_without_handle(self):
        connect = AsyncMock(return_value=None)

        with pytest.raises(BackendError) as exc_info:
            await CouchbaseSessionStore.setup({"server": "localhost"}, "MyApp", connect=connect)

        assert "undefined" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_setup_rejects_ssl_without_certificate(self):
        connect = AsyncMock()

        with pytest.raises(ConfigurationError):
            await CouchbaseSessionStore.setup(
                {"server": "localhost", "ssl": True}, "MyApp", connect=connect
            )

        connect.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_store_attributes_are_read_only(self, mock_backend):
        store = CouchbaseSessionStore(mock_backend, "MyAppsess:")

        with pytest.raises(AttributeError):
            store.key_prefix = "Othersess:"

    @pytest.mark.asyncio
    async def test_create_session_store_with_memory_backend(self):
        settings = Settings(session_backend="memory", app_name="Demo", session_expires=600)

        store = await create_session_store(settings)

        assert isinstance(store.backend, InMemoryBackend)
        assert store.key_prefix == "Demosess:"
        assert store.session_expires == 600

    @pytest.mark.asyncio
    async def test_create_session_store_with_couchbase(self):
        settings = Settings(couchbase={"server": "cb1"}, app_name="Demo")

        with patch(
            "session.couchbase_store.CouchbaseSessionStore.setup", new=AsyncMock()
        ) as setup:
            await create_session_store(settings)

        assert setup.await_args.args[1] == "Demo"
        assert setup.await_args.args[0].server == "cb1"
