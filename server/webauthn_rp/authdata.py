"""Decoding of attestation objects and authenticator data with :mod:`fido2.webauthn`.

Authenticator data layout (WebAuthn Level 2, section 6.1)::

    rpIdHash      32 bytes
    flags          1 byte
    signCount      4 bytes, big-endian
    -- present when the AT flag is set --
    aaguid        16 bytes
    credIdLength   2 bytes, big-endian
    credentialId   credIdLength bytes
    credentialPublicKey   CBOR (COSE_Key)
    -- present when the ED flag is set --
    extensions     CBOR map

The fixed-length fields are checked here so a short buffer is reported as
truncated; everything else is left to fido2.
"""
from __future__ import annotations

import struct
from typing import Mapping

from fido2 import cbor
from fido2.webauthn import AttestationObject, AuthenticatorData

from .errors import (
    MalformedAttestationError,
    TruncatedAuthenticatorDataError,
    catch_builtins,
)

__all__ = [
    "AttestationObject",
    "AuthenticatorData",
    "parse_attestation_object",
    "parse_authenticator_data",
]

_FIXED_LENGTH = 37
_ATTESTED_HEADER_LENGTH = _FIXED_LENGTH + 16 + 2


def _check_lengths(data: bytes) -> None:
    if len(data) < _FIXED_LENGTH:
        raise TruncatedAuthenticatorDataError(
            f"Authenticator data was {len(data)} bytes, expected at least {_FIXED_LENGTH}"
        )
    flags = data[32]
    if flags & AuthenticatorData.FLAG.AT:
        if len(data) < _ATTESTED_HEADER_LENGTH:
            raise TruncatedAuthenticatorDataError("Attested credential data header is truncated")
        (id_length,) = struct.unpack(">H", data[_ATTESTED_HEADER_LENGTH - 2:_ATTESTED_HEADER_LENGTH])
        remaining = len(data) - _ATTESTED_HEADER_LENGTH
        if remaining < id_length:
            raise TruncatedAuthenticatorDataError(
                f"Credential ID needs {id_length} bytes, only {remaining} remain"
            )
        if remaining == id_length:
            raise TruncatedAuthenticatorDataError("Credential public key is missing")
    elif flags & AuthenticatorData.FLAG.ED and len(data) == _FIXED_LENGTH:
        raise TruncatedAuthenticatorDataError("Extension data is missing")


def parse_authenticator_data(data: bytes) -> AuthenticatorData:
    """Parse authenticator data, including attested credential data when flagged.

    :raises TruncatedAuthenticatorDataError: A fixed or declared length runs past
        the end of the buffer, or a CBOR member ends early.
    :raises MalformedAttestationError: The credential public key or extension
        block is not valid CBOR, or unflagged bytes follow the parsed content.
    """

    data = bytes(data)
    _check_lengths(data)
    try:
        auth_data = AuthenticatorData(data)
    except (IndexError, struct.error) as exc:
        raise TruncatedAuthenticatorDataError(
            f"Authenticator data ends inside a CBOR member: {exc}"
        ) from exc
    except (ValueError, KeyError, TypeError, AttributeError, RecursionError) as exc:
        raise MalformedAttestationError(
            f"Invalid authenticator data: {exc or type(exc).__name__}"
        ) from exc

    if auth_data.extensions is not None and not isinstance(auth_data.extensions, Mapping):
        raise MalformedAttestationError("Extension data must be a CBOR map")
    return auth_data


@catch_builtins(MalformedAttestationError)
def parse_attestation_object(data: bytes) -> AttestationObject:
    """Decode the CBOR attestation object.

    :raises MalformedAttestationError: The object is not a CBOR map carrying a
        text ``fmt``, a byte string ``authData`` and a map ``attStmt``.
    :raises TruncatedAuthenticatorDataError: ``authData`` is cut short.
    """

    if not data:
        raise MalformedAttestationError("Attestation object is empty")

    data = bytes(data)
    decoded = cbor.decode(data)
    if not isinstance(decoded, Mapping):
        raise MalformedAttestationError("Attestation object must be a CBOR map")

    fmt = decoded.get("fmt")
    auth_data = decoded.get("authData")
    att_stmt = decoded.get("attStmt")

    if not isinstance(fmt, str) or not fmt:
        raise MalformedAttestationError("Attestation object is missing 'fmt'")
    if not isinstance(auth_data, (bytes, bytearray)):
        raise MalformedAttestationError("Attestation object is missing 'authData'")
    if not isinstance(att_stmt, Mapping):
        raise MalformedAttestationError("Attestation object is missing 'attStmt'")

    parse_authenticator_data(auth_data)
    return AttestationObject(data)
