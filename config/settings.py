"""
Configuration management for the Couchbase session store.

This module provides centralized configuration loading and validation using
Pydantic settings. Values are loaded from environment variables or .env
files; the Couchbase connection section is read from ``COUCHBASE__*``
variables (for example ``COUCHBASE__SERVER=host1,host2``).
"""

import os
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Supported deployment environments."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


def _detect_environment() -> Environment:
    """
    Detect the current environment from the ENVIRONMENT variable.

    Returns:
        Environment: The detected environment, defaults to DEVELOPMENT if not set.
    """
    env_value = os.environ.get("ENVIRONMENT", "development").lower().strip()
    try:
        return Environment(env_value)
    except ValueError:
        return Environment.DEVELOPMENT


def _get_env_files(environment: Environment) -> Tuple[str, ...]:
    """
    Get the list of .env files to load for the given environment.

    Files are loaded in order, with later files overriding earlier ones.
    The base .env file is loaded first, then the environment-specific file.
    """
    env_file_map = {
        Environment.DEVELOPMENT: ".env.development",
        Environment.STAGING: ".env.staging",
        Environment.PRODUCTION: ".env.production",
    }
    env_specific_file = env_file_map.get(environment, ".env.development")

    return (".env", env_specific_file)


class CouchbaseConfig(BaseModel):
    """
    Connection options for the Couchbase cluster holding session documents.

    Attributes:
        server: One or more comma-separated ``host[:port]`` entries. Multiple
            nodes let the client bootstrap when the first node is down.
        password: Password for the bucket, omitted when the bucket has none.
        bucket: Bucket name; an empty value means "default".
        username: User name for SDK authentication; defaults to the bucket name.
        ssl: Connect over TLS (``couchbases://``); requires ``certpath``.
        certpath: Path to the cluster's PEM-encoded certificate.
        timeout: Seconds allowed for bootstrapping the client; an empty or
            zero value means 6.
    """

    server: str = Field(..., description="Comma-separated Couchbase node list")
    password: Optional[str] = Field(default=None, description="Bucket password")
    bucket: Optional[str] = Field(default=None, description="Bucket name")
    username: Optional[str] = Field(default=None, description="SDK user name")
    ssl: bool = Field(default=False, description="Use the encrypted scheme")
    certpath: Optional[str] = Field(default=None, description="TLS certificate path")
    timeout: Optional[int] = Field(default=None, ge=0, description="Bootstrap timeout in seconds")

    @field_validator("server")
    @classmethod
    def validate_server(cls, v: str) -> str:
        """Validate that server is a non-empty list of non-empty host entries."""
        if not v or not v.strip():
            raise ValueError("server cannot be empty")
        v = v.strip()
        hosts = v.split(",")
        if any(not host.strip() for host in hosts):
            raise ValueError(f"server list contains an empty host entry: {v!r}")
        if any("/" in host or "?" in host for host in hosts):
            raise ValueError(f"server entries must be host[:port] values: {v!r}")
        return v


class ConfigurationError(Exception):
    """Exception raised when configuration validation fails."""

    def __init__(self, message: str, missing_fields: Optional[List[str]] = None,
                 invalid_fields: Optional[dict] = None):
        self.message = message
        self.missing_fields = missing_fields or []
        self.invalid_fields = invalid_fields or {}
        super().__init__(self.format_error_message())

    def format_error_message(self) -> str:
        """Format a descriptive error message listing all issues."""
        parts = [self.message]

        if self.missing_fields:
            parts.append(f"\nMissing required fields: {', '.join(self.missing_fields)}")

        if self.invalid_fields:
            invalid_parts = [f"  - {field}: {error}" for field, error in self.invalid_fields.items()]
            parts.append("\nInvalid field values:\n" + "\n".join(invalid_parts))

        return "".join(parts)

    @classmethod
    def from_validation_error(cls, message: str, error: ValidationError) -> "ConfigurationError":
        """Build a ConfigurationError from a Pydantic ValidationError."""
        missing_fields = []
        invalid_fields = {}

        for detail in error.errors():
            field_name = ".".join(str(loc) for loc in detail.get("loc", []))
            if detail.get("type") == "missing":
                missing_fields.append(field_name)
            else:
                invalid_fields[field_name] = detail.get("msg", str(detail))

        return cls(message, missing_fields=missing_fields, invalid_fields=invalid_fields)


class Settings(BaseSettings):
    """
    Session store settings loaded from environment variables.

    Environment-specific configuration is supported through:
    - .env.development - Development environment settings
    - .env.staging - Staging environment settings
    - .env.production - Production environment settings

    The ENVIRONMENT variable determines which file to load.
    """

    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Deployment environment (development, staging, production)"
    )

    # Session Store Configuration
    app_name: str = Field(
        default="app",
        description="Application identity used to namespace session keys"
    )
    session_backend: str = Field(
        default="couchbase",
        description="Session backend: 'couchbase' or 'memory'"
    )
    session_expires: int = Field(
        default=3600,
        ge=60,
        le=30 * 24 * 3600,
        description="Session lifetime in seconds, applied when sessions are read"
    )
    session_atomic_merge: bool = Field(
        default=False,
        description="Merge session fields with compare-and-swap writes"
    )
    session_cas_max_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Attempts allowed for a compare-and-swap merge"
    )
    couchbase: Optional[CouchbaseConfig] = Field(
        default=None,
        description="Couchbase connection options"
    )

    # Observability Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    health_check_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Seconds allowed for a session store health check"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("app_name")
    @classmethod
    def validate_app_name(cls, v: str) -> str:
        """Validate that app_name is not empty."""
        if not v or not v.strip():
            raise ValueError("app_name cannot be empty")
        return v.strip()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that log_level is a valid logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v = v.strip().upper()
        if v not in valid_levels:
            raise ValueError(f"log_level must be one of: {', '.join(sorted(valid_levels))}")
        return v

    @field_validator("session_backend")
    @classmethod
    def validate_session_backend(cls, v: str) -> str:
        """Validate that session_backend is either 'couchbase' or 'memory'."""
        v = v.strip().lower()
        if v not in {"couchbase", "memory"}:
            raise ValueError("session_backend must be 'couchbase' or 'memory'")
        return v

    @model_validator(mode="after")
    def validate_session_backend_config(self) -> "Settings":
        """Validate that the selected backend is usable in this environment."""
        if self.session_backend == "couchbase" and self.couchbase is None:
            raise ValueError(
                "couchbase settings (COUCHBASE__SERVER) are required when "
                "session_backend is 'couchbase'"
            )
        if self.session_backend == "memory" and self.environment == Environment.PRODUCTION:
            raise ValueError(
                "session_backend 'memory' is not allowed in production; "
                "sessions would not survive a restart or be shared between workers"
            )
        return self


def create_settings_for_environment(environment: Optional[Environment] = None,
                                    **overrides: Any) -> Settings:
    """
    Factory function to create Settings for a specific environment.

    This function detects the environment from the ENVIRONMENT variable (if not provided)
    and loads the appropriate environment-specific .env file.

    Args:
        environment: Optional environment override. If not provided, detected from
                    ENVIRONMENT variable.
        **overrides: Field values that take precedence over the environment.

    Returns:
        Settings: Validated settings for the specified environment.

    Raises:
        ConfigurationError: If required settings are missing or invalid.
    """
    if environment is None:
        environment = _detect_environment()

    env_files = _get_env_files(environment)
    existing_env_files = [f for f in env_files if Path(f).exists()]

    class EnvironmentSettings(Settings):
        model_config = SettingsConfigDict(
            env_file=tuple(existing_env_files) or None,
            env_file_encoding="utf-8",
            env_nested_delimiter="__",
            case_sensitive=False,
            extra="ignore"
        )

    try:
        return EnvironmentSettings(environment=environment, **overrides)
    except ValidationError as e:
        raise ConfigurationError.from_validation_error(
            f"Failed to load configuration for environment '{environment.value}'", e
        ) from e


# Global settings cache
_settings_cache: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Settings are loaded once and cached for subsequent calls.

    Raises:
        ConfigurationError: If required settings are missing or invalid.
    """
    global _settings_cache

    if _settings_cache is None:
        _settings_cache = create_settings_for_environment()

    return _settings_cache


def clear_settings_cache() -> None:
    """
    Clear the settings cache.

    This is primarily useful for testing to allow reloading settings
    with different environment variables.
    """
    global _settings_cache
    _settings_cache = None


def validate_startup(settings: Optional[Settings] = None) -> None:
    """
    Validate the session store settings at application startup.

    Building the connection descriptor checks the TLS certificate and the
    server list, so a bad Couchbase section stops the application before it
    accepts requests.

    Raises:
        ConfigurationError: If any required settings are missing or invalid.
    """
    from session.connection import build_connection_descriptor

    settings = settings or get_settings()

    if settings.session_backend == "couchbase":
        build_connection_descriptor(settings.couchbase)
