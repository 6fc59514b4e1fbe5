"""
Session document model.

One document holds every attribute of a session, keyed by attribute type.
The document body stored in Couchbase is that mapping itself; byte blobs
are wrapped in a one-key object so the body stays valid JSON.

Fields are kept in their stored form and only decoded when read, so a
corrupt field written by another client affects reads of that field alone
and is carried through writes of other fields untouched.
"""

import base64
import binascii
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from errors.exceptions import validation_error

BYTES_MARKER = "__bytes__"

SessionValue = Union[str, bytes]


def encode_value(value: Any) -> Any:
    """Encode a session blob for the JSON document body."""
    if isinstance(value, (bytes, bytearray)):
        return {BYTES_MARKER: base64.b64encode(bytes(value)).decode("ascii")}
    return value


def check_value(value: Any) -> None:
    """Reject values the host did not serialize."""
    if isinstance(value, (str, bytes, bytearray)):
        return
    raise validation_error(
        "Session values must be serialized to str or bytes before storage",
        details={"value_type": type(value).__name__}
    )


def decode_value(raw: Any) -> Any:
    """
    Reverse encode_value; other values are returned unchanged.

    Raises:
        ValueError: If a bytes wrapper does not hold valid base64 text.
    """
    if isinstance(raw, dict) and set(raw) == {BYTES_MARKER}:
        encoded = raw[BYTES_MARKER]
        if not isinstance(encoded, str):
            raise ValueError(f"{BYTES_MARKER} payload must be a base64 string")
        try:
            return base64.b64decode(encoded, validate=True)
        except binascii.Error as e:
            raise ValueError(f"{BYTES_MARKER} payload is not valid base64: {e}") from e
    return raw


@dataclass
class SessionDocument:
    """
    The stored form of one session.

    Attributes:
        id: The storage key (prefix plus session id)
        fields: Attribute type to stored blob (bytes still wrapped); any
            subset may be present
        expiry: Time-to-live in seconds applied on the next write
        cas: Version token of the document as read, None for a new document
    """
    id: str
    fields: dict[str, Any] = field(default_factory=dict)
    expiry: int = 0
    cas: Optional[int] = None

    @classmethod
    def from_content(cls, key: str, content: dict[str, Any],
                     cas: Optional[int] = None) -> "SessionDocument":
        return cls(id=key, fields=dict(content), cas=cas)

    def get(self, field_type: str) -> Optional[Any]:
        """
        Decode one field.

        Raises:
            ValueError: If the stored field cannot be decoded.
        """
        return decode_value(self.fields.get(field_type))

    def set(self, field_type: str, value: SessionValue) -> None:
        check_value(value)
        self.fields[field_type] = encode_value(value)

    def to_content(self) -> dict[str, Any]:
        return dict(self.fields)
