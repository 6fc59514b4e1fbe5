"""
Session management module.

This module provides a Couchbase-backed session store for web
applications: session attributes addressed by ``type:id`` keys are kept
in one namespaced document per session, with expiry enforced by
Couchbase's time-to-live.
"""

from session.store import SessionStore
from session.couchbase_store import (
    CouchbaseSessionStore,
    DEFAULT_SESSION_EXPIRY,
    create_session_store,
)
from session.connection import ConnectionDescriptor, build_connection_descriptor
from session.keys import SessionKey, decompose

__all__ = [
    "SessionStore",
    "CouchbaseSessionStore",
    "DEFAULT_SESSION_EXPIRY",
    "create_session_store",
    "ConnectionDescriptor",
    "build_connection_descriptor",
    "SessionKey",
    "decompose",
]
