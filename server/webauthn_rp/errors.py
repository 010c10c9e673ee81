"""Error taxonomy for WebAuthn ceremony verification."""
from __future__ import annotations

import struct
from enum import Enum, unique
from functools import wraps
from typing import Callable, Optional, Type, TypeVar

__all__ = [
    "ErrorKind",
    "CeremonyError",
    "ChallengeNotFoundError",
    "ChallengeExpiredError",
    "ChallengeAlreadyUsedError",
    "ChallengePurposeMismatchError",
    "ChallengeUserMismatchError",
    "MalformedAttestationError",
    "TruncatedAuthenticatorDataError",
    "MalformedClientDataError",
    "InvalidRequestError",
    "CeremonyTypeMismatchError",
    "ChallengeMismatchError",
    "OriginMismatchError",
    "RPIDMismatchError",
    "UserNotPresentError",
    "UserNotVerifiedError",
    "UnsupportedKeyTypeError",
    "SignatureVerificationFailedError",
    "SignCountRegressionError",
    "DuplicateCredentialError",
    "CredentialNotFoundError",
    "UserNotFoundError",
    "StorageError",
    "catch_builtins",
]


@unique
class ErrorKind(Enum):
    """Every way a ceremony can terminate unsuccessfully."""

    CHALLENGE_NOT_FOUND = "challenge_not_found"
    CHALLENGE_EXPIRED = "challenge_expired"
    CHALLENGE_ALREADY_USED = "challenge_already_used"
    CHALLENGE_PURPOSE_MISMATCH = "challenge_purpose_mismatch"
    CHALLENGE_USER_MISMATCH = "challenge_user_mismatch"
    MALFORMED_ATTESTATION = "malformed_attestation"
    TRUNCATED_AUTHENTICATOR_DATA = "truncated_authenticator_data"
    MALFORMED_CLIENT_DATA = "malformed_client_data"
    INVALID_REQUEST = "invalid_request"
    CEREMONY_TYPE_MISMATCH = "ceremony_type_mismatch"
    CHALLENGE_MISMATCH = "challenge_mismatch"
    ORIGIN_MISMATCH = "origin_mismatch"
    RP_ID_MISMATCH = "rp_id_mismatch"
    USER_NOT_PRESENT = "user_not_present"
    USER_NOT_VERIFIED = "user_not_verified"
    UNSUPPORTED_KEY_TYPE = "unsupported_key_type"
    SIGNATURE_VERIFICATION_FAILED = "signature_verification_failed"
    SIGN_COUNT_REGRESSION = "sign_count_regression"
    DUPLICATE_CREDENTIAL = "duplicate_credential"
    CREDENTIAL_NOT_FOUND = "credential_not_found"
    USER_NOT_FOUND = "user_not_found"


class CeremonyError(Exception):
    """Base exception for errors that terminate a registration or authentication.

    :cvar kind: The :class:`ErrorKind` this exception represents.
    :cvar sensitive: When set, clients only ever see a generic failure message.
    """

    kind: ErrorKind
    sensitive: bool = False

    def __init__(self, detail: Optional[str] = None) -> None:
        super().__init__(detail or self.kind.value.replace("_", " ").capitalize())
        self.detail = detail


# Ceremony binding


class ChallengeNotFoundError(CeremonyError):
    kind = ErrorKind.CHALLENGE_NOT_FOUND
    sensitive = True


class ChallengeExpiredError(CeremonyError):
    kind = ErrorKind.CHALLENGE_EXPIRED
    sensitive = True


class ChallengeAlreadyUsedError(CeremonyError):
    kind = ErrorKind.CHALLENGE_ALREADY_USED
    sensitive = True


class ChallengePurposeMismatchError(CeremonyError):
    kind = ErrorKind.CHALLENGE_PURPOSE_MISMATCH
    sensitive = True


class ChallengeUserMismatchError(CeremonyError):
    kind = ErrorKind.CHALLENGE_USER_MISMATCH
    sensitive = True


# Structural decoding


class MalformedAttestationError(CeremonyError):
    kind = ErrorKind.MALFORMED_ATTESTATION


class TruncatedAuthenticatorDataError(CeremonyError):
    kind = ErrorKind.TRUNCATED_AUTHENTICATOR_DATA


class MalformedClientDataError(CeremonyError):
    kind = ErrorKind.MALFORMED_CLIENT_DATA


class InvalidRequestError(CeremonyError):
    """A required request field is missing or cannot be decoded."""

    kind = ErrorKind.INVALID_REQUEST


# Client data integrity


class CeremonyTypeMismatchError(CeremonyError):
    kind = ErrorKind.CEREMONY_TYPE_MISMATCH
    sensitive = True


class ChallengeMismatchError(CeremonyError):
    kind = ErrorKind.CHALLENGE_MISMATCH
    sensitive = True


class OriginMismatchError(CeremonyError):
    kind = ErrorKind.ORIGIN_MISMATCH
    sensitive = True


class RPIDMismatchError(CeremonyError):
    kind = ErrorKind.RP_ID_MISMATCH
    sensitive = True


class UserNotPresentError(CeremonyError):
    kind = ErrorKind.USER_NOT_PRESENT
    sensitive = True


class UserNotVerifiedError(CeremonyError):
    kind = ErrorKind.USER_NOT_VERIFIED
    sensitive = True


# Cryptographic


class UnsupportedKeyTypeError(CeremonyError):
    kind = ErrorKind.UNSUPPORTED_KEY_TYPE


class SignatureVerificationFailedError(CeremonyError):
    kind = ErrorKind.SIGNATURE_VERIFICATION_FAILED
    sensitive = True


class SignCountRegressionError(CeremonyError):
    """The sign counter did not increase: a likely cloned authenticator."""

    kind = ErrorKind.SIGN_COUNT_REGRESSION
    sensitive = True


# Identity and state


class DuplicateCredentialError(CeremonyError):
    kind = ErrorKind.DUPLICATE_CREDENTIAL


class CredentialNotFoundError(CeremonyError):
    kind = ErrorKind.CREDENTIAL_NOT_FOUND


class UserNotFoundError(CeremonyError):
    kind = ErrorKind.USER_NOT_FOUND


class StorageError(Exception):
    """The backing store failed; not a verification outcome."""


F = TypeVar("F", bound=Callable)

# What malformed input makes fido2.cbor and json raise.
_DECODING_ERRORS = (
    ValueError,
    KeyError,
    IndexError,
    TypeError,
    AttributeError,
    RecursionError,
    struct.error,
)


def catch_builtins(error_cls: Type[CeremonyError]) -> Callable[[F], F]:
    """Decorator re-raising common decoding exceptions as ``error_cls``."""

    def decorator(f):
        @wraps(f)
        def inner(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except _DECODING_ERRORS as e:
                raise error_cls(str(e) or type(e).__name__) from e

        return inner

    return decorator
