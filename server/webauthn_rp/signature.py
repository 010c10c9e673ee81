"""Assertion signature verification for ES256 and RS256 keys."""
from __future__ import annotations

import hashlib
import logging

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from fido2.cose import ES256, RS256

from .cose import PublicKey, key_type
from .errors import UnsupportedKeyTypeError

__all__ = ["signature_base", "verify_signature"]

logger = logging.getLogger(__name__)


def signature_base(authenticator_data: bytes, client_data_json: bytes) -> bytes:
    """Return ``authenticatorData || SHA-256(clientDataJSON)``."""
    return bytes(authenticator_data) + hashlib.sha256(bytes(client_data_json)).digest()


def verify_signature(
    public_key: PublicKey,
    authenticator_data: bytes,
    client_data_json: bytes,
    signature: bytes,
) -> bool:
    """Verify ``signature`` over the WebAuthn signature base with :meth:`CoseKey.verify`.

    Returns ``False`` for a bad signature, a malformed signature encoding or a
    public key that cannot be reconstructed. Only an unknown key variant raises.

    :raises UnsupportedKeyTypeError: ``public_key`` is neither ES256 nor RS256.
    """

    if not isinstance(public_key, (ES256, RS256)):
        raise UnsupportedKeyTypeError(f"Cannot verify with key of type {type(public_key).__name__}")

    kty = key_type(public_key)
    if public_key.get(1) not in (None, kty) or public_key.get(3) not in (None, public_key.ALGORITHM):
        logger.debug(
            "Rejecting signature: %s key labelled kty %r alg %r",
            kty.name,
            public_key.get(1),
            public_key.get(3),
        )
        return False

    message = signature_base(authenticator_data, client_data_json)
    try:
        public_key.verify(message, bytes(signature))
    except InvalidSignature:
        return False
    except (ValueError, TypeError, KeyError, UnsupportedAlgorithm) as exc:
        logger.debug("Rejecting signature with unusable %s key: %s", kty.name, exc)
        return False
    return True
