"""
Session key handling.

The host framework addresses session data with composite keys of the form
``type:id``, where ``type`` names a logical attribute ("session",
"expires", "flash", ...) and ``id`` is the session identifier. All
attributes of one session live in a single document stored under
``<prefix><id>``; the type only selects a field inside that document.
"""

from typing import NamedTuple

from config.settings import ConfigurationError
from errors.exceptions import InvalidKeyError

KEY_SEPARATOR = ":"
PREFIX_SUFFIX = "sess:"


class SessionKey(NamedTuple):
    """A decomposed composite key."""
    type: str
    id: str


def decompose(composite_key: str) -> SessionKey:
    """
    Split a composite key on its first separator.

    Args:
        composite_key: Key of the form ``type:id``.

    Returns:
        SessionKey: The field type and the session id.

    Raises:
        InvalidKeyError: If the key is empty, has no separator, or either
            part is empty.
    """
    if not composite_key:
        raise InvalidKeyError()
    if not isinstance(composite_key, str):
        raise InvalidKeyError(
            "Session key must be a string",
            details={"key_type": type(composite_key).__name__}
        )

    field_type, separator, session_id = composite_key.partition(KEY_SEPARATOR)
    if not separator:
        raise InvalidKeyError(
            "Session key must be of the form type:id",
            details={"key": composite_key}
        )
    if not field_type or not session_id:
        raise InvalidKeyError(
            "Session key has an empty type or id",
            details={"key": composite_key}
        )
    return SessionKey(field_type, session_id)


def build_key_prefix(app_name: str) -> str:
    """
    Build the namespace prefix for all session documents of an application.

    Raises:
        ConfigurationError: If the application name is blank.
    """
    if not app_name or not app_name.strip():
        raise ConfigurationError(
            "Application name is required to namespace session keys",
            missing_fields=["app_name"]
        )
    return app_name.strip() + PREFIX_SUFFIX


def to_storage_key(prefix: str, session_id: str) -> str:
    """Build the document key for a session id."""
    return prefix + session_id
