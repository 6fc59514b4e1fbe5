# Configuration module for the Couchbase session store
from .settings import (
    ConfigurationError,
    CouchbaseConfig,
    Environment,
    Settings,
    clear_settings_cache,
    get_settings,
    validate_startup,
)

__all__ = [
    "ConfigurationError",
    "CouchbaseConfig",
    "Environment",
    "Settings",
    "clear_settings_cache",
    "get_settings",
    "validate_startup",
]
