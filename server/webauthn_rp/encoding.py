"""Helpers for moving binary WebAuthn fields across the JSON boundary."""
from __future__ import annotations

import base64
import binascii
from typing import Any, Mapping

from .errors import InvalidRequestError

__all__ = [
    "canonical_base64url",
    "decode_base64url",
    "encode_base64url",
    "require_binary_field",
]


def _add_base64_padding(value: str) -> str:
    return value + "=" * (-len(value) % 4)


def encode_base64url(data: bytes) -> str:
    """Encode ``data`` as unpadded base64url."""
    return base64.urlsafe_b64encode(bytes(data)).decode("ascii").rstrip("=")


def decode_base64url(value: str) -> bytes:
    """Decode padded or unpadded base64url; raises ``ValueError`` on bad input."""
    if not isinstance(value, str):
        raise ValueError("base64url value must be a string")
    text = value.strip()
    try:
        return base64.b64decode(_add_base64_padding(text), altchars=b"-_", validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Invalid base64url value: {exc}") from exc


def canonical_base64url(value: str) -> str:
    """Normalise a base64url string by round-tripping it through its bytes."""
    return encode_base64url(decode_base64url(value))


def require_binary_field(mapping: Mapping[str, Any], key: str, *, label: str = "") -> bytes:
    """Return the decoded bytes of ``mapping[key]`` or raise :class:`InvalidRequestError`."""

    name = label or key
    value = mapping.get(key)
    if value is None or value == "":
        raise InvalidRequestError(f"Missing required field: {name}")
    try:
        return decode_base64url(value)
    except ValueError as exc:
        raise InvalidRequestError(f"Field {name} is not valid base64url") from exc
