"""
Couchbase implementation of the session document backend.

This module wraps an ``acouchbase`` collection and maps the SDK's
exceptions onto typed results: ``DocumentNotFoundException`` becomes
``NotFound``, ``DocumentExistsException`` and ``CasMismatchException``
become ``Conflict``, and any other ``CouchbaseException`` becomes a
``Failure`` carrying the SDK's error text.
"""

import logging
from datetime import timedelta
from typing import Any, Optional

from acouchbase.cluster import Cluster
from couchbase.auth import PasswordAuthenticator
from couchbase.exceptions import (
    CasMismatchException,
    CouchbaseException,
    DocumentExistsException,
    DocumentNotFoundException,
)
from couchbase.options import (
    ClusterOptions,
    ClusterTimeoutOptions,
    InsertOptions,
    ReplaceOptions,
    UpsertOptions,
)

from errors.exceptions import BackendError
from session.backend import (
    Conflict,
    DocumentBackend,
    Failure,
    FetchResult,
    Found,
    MutationResult,
    NotFound,
    Stored,
)
from session.connection import ConnectionDescriptor

logger = logging.getLogger(__name__)


class CouchbaseBackend(DocumentBackend):
    """
    Session document backend on a Couchbase bucket's default collection.

    Attributes:
        cluster: The connected ``acouchbase`` cluster, used for ping/close
        collection: The collection holding session documents
    """

    def __init__(self, collection: Any, cluster: Optional[Any] = None):
        self.collection = collection
        self.cluster = cluster

    async def get(self, key: str) -> FetchResult:
        try:
            result = await self.collection.get(key)
        except DocumentNotFoundException:
            return NotFound(key)
        except CouchbaseException as e:
            return Failure(key, str(e), e)
        return Found(key, result.value, result.cas)

    async def get_and_touch(self, key: str, expiry: timedelta) -> FetchResult:
        try:
            result = await self.collection.get_and_touch(key, expiry)
        except DocumentNotFoundException:
            return NotFound(key)
        except CouchbaseException as e:
            return Failure(key, str(e), e)
        return Found(key, result.value, result.cas)

    async def upsert(self, key: str, content: dict[str, Any],
                     expiry: timedelta) -> MutationResult:
        try:
            result = await self.collection.upsert(key, content, UpsertOptions(expiry=expiry))
        except CouchbaseException as e:
            return Failure(key, str(e), e)
        return Stored(key, result.cas)

    async def insert(self, key: str, content: dict[str, Any],
                     expiry: timedelta) -> MutationResult:
        try:
            result = await self.collection.insert(key, content, InsertOptions(expiry=expiry))
        except DocumentExistsException:
            return Conflict(key)
        except CouchbaseException as e:
            return Failure(key, str(e), e)
        return Stored(key, result.cas)

    async def replace(self, key: str, content: dict[str, Any], cas: int,
                      expiry: timedelta) -> MutationResult:
        try:
            result = await self.collection.replace(
                key, content, ReplaceOptions(cas=cas, expiry=expiry)
            )
        except CasMismatchException:
            return Conflict(key)
        except DocumentNotFoundException:
            return NotFound(key)
        except CouchbaseException as e:
            return Failure(key, str(e), e)
        return Stored(key, result.cas)

    async def remove(self, key: str) -> MutationResult:
        try:
            result = await self.collection.remove(key)
        except DocumentNotFoundException:
            return NotFound(key)
        except CouchbaseException as e:
            return Failure(key, str(e), e)
        return Stored(key, result.cas)

    async def ping(self) -> bool:
        if self.cluster is None:
            return False
        try:
            await self.cluster.ping()
            return True
        except CouchbaseException as e:
            logger.warning("Couchbase ping failed: %s", e)
            return False

    async def close(self) -> None:
        if self.cluster is not None:
            await self.cluster.close()
            self.cluster = None


async def connect_couchbase(descriptor: ConnectionDescriptor) -> CouchbaseBackend:
    """
    Open the long-lived connection to the session bucket.

    The SDK receives the cluster URL, the credentials through a
    PasswordAuthenticator (with the certificate when TLS is enabled) and the
    bootstrap timeout from the descriptor.

    Raises:
        BackendError: If the cluster or bucket cannot be opened.
    """
    authenticator = PasswordAuthenticator(
        descriptor.username,
        descriptor.password or "",
        cert_path=descriptor.certpath,
    )
    options = ClusterOptions(
        authenticator,
        timeout_options=ClusterTimeoutOptions(
            bootstrap_timeout=timedelta(seconds=descriptor.timeout)
        ),
    )

    try:
        cluster = await Cluster.connect(descriptor.cluster_url, options)
        bucket = cluster.bucket(descriptor.bucket)
        await bucket.on_connect()
    except CouchbaseException as e:
        logger.error(
            "Failed to open Couchbase bucket",
            extra={"extra_data": {"descriptor": repr(descriptor), "error": str(e)}}
        )
        raise BackendError(
            f"Couchbase bucket could not be opened: {e}",
            backend_error=str(e),
            details={"bucket": descriptor.bucket, "hosts": descriptor.hosts},
        ) from e

    logger.info(
        "Connected to Couchbase",
        extra={"extra_data": {"hosts": descriptor.hosts, "bucket": descriptor.bucket,
                              "ssl": descriptor.ssl}}
    )
    return CouchbaseBackend(bucket.default_collection(), cluster)
