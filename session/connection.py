"""
Couchbase connection descriptor construction.

This module turns the Couchbase configuration section into an immutable
ConnectionDescriptor holding the connection string of the form::

    couchbase[s]://host1,host2/bucket?config_node_timeout=6000000&password=...

The descriptor is built once at application startup. TLS problems (a
missing or non-existent certificate) are configuration errors and abort
startup instead of surfacing later as connection failures.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Union
from urllib.parse import quote

from pydantic import ValidationError

from config.settings import ConfigurationError, CouchbaseConfig

DEFAULT_BUCKET = "default"
DEFAULT_TIMEOUT_SECONDS = 6

PLAIN_SCHEME = "couchbase"
ENCRYPTED_SCHEME = "couchbases"


@dataclass(frozen=True)
class ConnectionDescriptor:
    """
    Immutable description of how to reach the session bucket.

    Attributes:
        scheme: "couchbase" or "couchbases" (TLS)
        hosts: Host list exactly as configured, e.g. "host1,host2:11210"
        bucket: Bucket name
        username: User name handed to the SDK authenticator
        password: Bucket password, if any
        timeout: Bootstrap timeout in seconds
        certpath: Certificate path when TLS is enabled
        connection_string: The full connection string including options
    """
    scheme: str
    hosts: str
    bucket: str
    username: str
    password: Optional[str]
    timeout: int
    certpath: Optional[str]
    connection_string: str

    @property
    def cluster_url(self) -> str:
        """Connection string without bucket and options, as the SDK expects."""
        return f"{self.scheme}://{self.hosts}"

    @property
    def ssl(self) -> bool:
        return self.scheme == ENCRYPTED_SCHEME

    def __repr__(self) -> str:
        password = "***" if self.password else None
        return (
            f"ConnectionDescriptor(scheme={self.scheme!r}, hosts={self.hosts!r}, "
            f"bucket={self.bucket!r}, username={self.username!r}, "
            f"password={password!r}, timeout={self.timeout}, "
            f"certpath={self.certpath!r})"
        )


def _coerce_config(config: Union[CouchbaseConfig, Mapping[str, Any], None]) -> CouchbaseConfig:
    if config is None:
        raise ConfigurationError(
            "Couchbase configuration is missing", missing_fields=["server"]
        )
    if isinstance(config, CouchbaseConfig):
        return config
    try:
        return CouchbaseConfig.model_validate(dict(config))
    except ValidationError as e:
        raise ConfigurationError.from_validation_error(
            "Invalid Couchbase configuration", e
        ) from e


def _encode_options(options: Mapping[str, Any]) -> str:
    return "&".join(
        f"{name}={quote(str(value), safe='')}" for name, value in options.items()
    )


def build_connection_descriptor(
    config: Union[CouchbaseConfig, Mapping[str, Any], None]
) -> ConnectionDescriptor:
    """
    Build the connection descriptor for the session bucket.

    Args:
        config: A CouchbaseConfig or a raw mapping with the keys server,
            bucket, password, username, ssl, certpath and timeout.

    Returns:
        ConnectionDescriptor: The validated descriptor.

    Raises:
        ConfigurationError: If the server list is missing or malformed, or
            if ssl is enabled without an existing certificate file.
    """
    cfg = _coerce_config(config)

    timeout = cfg.timeout or DEFAULT_TIMEOUT_SECONDS
    bucket = cfg.bucket or DEFAULT_BUCKET

    options: dict[str, Any] = {
        "config_node_timeout": timeout * 1_000_000,
    }
    if cfg.password:
        options["password"] = cfg.password

    if cfg.ssl:
        if not cfg.certpath or not Path(cfg.certpath).exists():
            raise ConfigurationError(
                "SSL enabled, but certpath is missing or invalid",
                invalid_fields={"certpath": f"Certificate file not found: {cfg.certpath}"}
            )
        scheme = ENCRYPTED_SCHEME
        options["certpath"] = cfg.certpath
    else:
        scheme = PLAIN_SCHEME

    connection_string = f"{scheme}://{cfg.server}/{bucket}?{_encode_options(options)}"

    return ConnectionDescriptor(
        scheme=scheme,
        hosts=cfg.server,
        bucket=bucket,
        username=cfg.username or bucket,
        password=cfg.password or None,
        timeout=timeout,
        certpath=cfg.certpath if cfg.ssl else None,
        connection_string=connection_string,
    )


def build_connection_string(
    config: Union[CouchbaseConfig, Mapping[str, Any], None]
) -> str:
    """Build just the connection string for the session bucket."""
    return build_connection_descriptor(config).connection_string
