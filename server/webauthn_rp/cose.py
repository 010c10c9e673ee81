"""COSE public key decoding on top of :mod:`fido2.cose`.

Only the two algorithms offered in ``pubKeyCredParams`` are accepted:

* ``ES256`` on an ``EC2`` (kty 2) P-256 key.
* ``RS256`` on an ``RSA`` (kty 3) key.
"""
from __future__ import annotations

from enum import IntEnum, unique
from typing import Any, Mapping, Union

from cryptography.hazmat.primitives.asymmetric import ec, rsa
from fido2.cose import ES256, RS256, CoseKey
from fido2.utils import bytes2int

from .errors import MalformedAttestationError, UnsupportedKeyTypeError

__all__ = [
    "COSE_ALG_ES256",
    "COSE_ALG_RS256",
    "COSE_CRV_P256",
    "SUPPORTED_ALGORITHMS",
    "KeyType",
    "PublicKey",
    "decode_cose_key",
    "key_type",
    "load_public_key",
]

COSE_ALG_ES256 = ES256.ALGORITHM
COSE_ALG_RS256 = RS256.ALGORITHM
COSE_CRV_P256 = 1

SUPPORTED_ALGORITHMS = (COSE_ALG_ES256, COSE_ALG_RS256)

PublicKey = Union[ES256, RS256]


@unique
class KeyType(IntEnum):
    """COSE key type discriminator (label ``1``)."""

    EC2 = 2
    RSA = 3


# Parameters each variant must carry, by COSE label.
_REQUIRED_PARAMETERS = {
    ES256: (KeyType.EC2, (-2, -3)),
    RS256: (KeyType.RSA, (-1, -2)),
}


def key_type(public_key: PublicKey) -> KeyType:
    return _REQUIRED_PARAMETERS[type(public_key)][0]


def decode_cose_key(cose: Mapping[int, Any]) -> PublicKey:
    """Parse a COSE_Key map with :meth:`CoseKey.parse` and keep ES256/RS256 only.

    :raises UnsupportedKeyTypeError: The key type or algorithm is not offered.
    :raises MalformedAttestationError: The alg label is missing, disagrees with
        the key type, or a required key parameter is absent.
    """
    if not isinstance(cose, Mapping):
        raise MalformedAttestationError("COSE key must be a map")

    kty = cose.get(1)
    if kty not in (KeyType.EC2, KeyType.RSA):
        raise UnsupportedKeyTypeError(f"Unsupported COSE key type: {kty!r}")

    alg = cose.get(3)
    if not isinstance(alg, int) or isinstance(alg, bool):
        raise MalformedAttestationError("COSE alg identifier must be an integer")
    try:
        public_key = CoseKey.parse(dict(cose))
    except ValueError as exc:
        raise MalformedAttestationError(f"Invalid COSE key: {exc}") from exc

    if type(public_key) not in _REQUIRED_PARAMETERS:
        raise UnsupportedKeyTypeError(f"Unsupported COSE algorithm {alg!r}")

    expected_kty, labels = _REQUIRED_PARAMETERS[type(public_key)]
    if kty != expected_kty:
        raise MalformedAttestationError(
            f"COSE algorithm {alg} cannot be used with key type {kty}"
        )
    for label in labels:
        value = public_key.get(label)
        if not isinstance(value, (bytes, bytearray)) or not value:
            raise MalformedAttestationError(f"COSE key parameter {label} must be a byte string")
    if expected_kty == KeyType.EC2 and not isinstance(public_key.get(-1), int):
        raise MalformedAttestationError("EC2 key is missing its curve identifier")
    return public_key


def load_public_key(public_key: PublicKey):
    """Build the :mod:`cryptography` key; raises ``ValueError`` if the parameters are unusable."""
    if isinstance(public_key, ES256):
        if public_key[-1] != COSE_CRV_P256:
            raise ValueError(f"Unsupported elliptic curve: {public_key[-1]}")
        if len(public_key[-2]) != 32 or len(public_key[-3]) != 32:
            raise ValueError("P-256 coordinates must be 32 bytes")
        return ec.EllipticCurvePublicNumbers(
            bytes2int(public_key[-2]), bytes2int(public_key[-3]), ec.SECP256R1()
        ).public_key()
    return rsa.RSAPublicNumbers(bytes2int(public_key[-2]), bytes2int(public_key[-1])).public_key()
