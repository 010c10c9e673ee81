"""Parsing and validation of ``clientDataJSON``."""
from __future__ import annotations

import hashlib
import hmac
from enum import Enum, unique
from typing import AbstractSet

from fido2.webauthn import AuthenticatorData, CollectedClientData

from .errors import (
    CeremonyTypeMismatchError,
    ChallengeMismatchError,
    MalformedClientDataError,
    OriginMismatchError,
    RPIDMismatchError,
    catch_builtins,
)

__all__ = [
    "CeremonyType",
    "CollectedClientData",
    "parse_client_data",
    "validate_client_data",
    "validate_rp_id_hash",
]


@unique
class CeremonyType(Enum):
    CREATE = "webauthn.create"
    GET = "webauthn.get"


@catch_builtins(MalformedClientDataError)
def parse_client_data(raw: bytes) -> CollectedClientData:
    """Decode ``clientDataJSON`` bytes and the base64url challenge inside it.

    :raises MalformedClientDataError: The bytes are not a UTF-8 JSON object with
        string ``type``, ``challenge`` and ``origin`` members, or nest too deeply
        to decode.
    """

    client_data = CollectedClientData(bytes(raw))
    for member in ("type", "origin"):
        if not isinstance(getattr(client_data, member), str):
            raise MalformedClientDataError(f"clientDataJSON '{member}' must be a string")
    return client_data


def validate_client_data(
    client_data: CollectedClientData,
    *,
    expected_type: CeremonyType,
    expected_challenge: bytes,
    expected_origins: AbstractSet[str],
) -> None:
    """Check ceremony type, challenge bytes and origin, in that order."""

    if client_data.type != expected_type.value:
        raise CeremonyTypeMismatchError(
            f"Expected client data type {expected_type.value!r}, got {client_data.type!r}"
        )

    if not hmac.compare_digest(client_data.challenge, expected_challenge):
        raise ChallengeMismatchError("Client data challenge does not match the issued challenge")

    if client_data.origin not in expected_origins:
        raise OriginMismatchError(f"Unexpected origin {client_data.origin!r}")


def validate_rp_id_hash(auth_data: AuthenticatorData, rp_id: str) -> None:
    expected = hashlib.sha256(rp_id.encode("utf-8")).digest()
    if not hmac.compare_digest(auth_data.rp_id_hash, expected):
        raise RPIDMismatchError(f"Authenticator data is not scoped to RP ID {rp_id!r}")
