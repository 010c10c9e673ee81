"""Closed request types for the two ceremonies.

Every JSON body is validated once, here, and turned into a frozen dataclass.
Nothing past this module inspects raw request dictionaries.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, unique
from typing import Any, Dict, FrozenSet, Mapping, Optional

from .encoding import decode_base64url, require_binary_field
from .errors import InvalidRequestError

__all__ = [
    "PUBLIC_KEY_CREDENTIAL_TYPE",
    "AuthenticationCredential",
    "AuthenticationOptionsRequest",
    "AuthenticatorAttachment",
    "AuthenticatorPreset",
    "RegistrationCredential",
    "RegistrationOptionsRequest",
    "ResidentKeyRequirement",
    "UserVerificationRequirement",
]

PUBLIC_KEY_CREDENTIAL_TYPE = "public-key"


@unique
class ResidentKeyRequirement(Enum):
    REQUIRED = "required"
    PREFERRED = "preferred"
    DISCOURAGED = "discouraged"


@unique
class UserVerificationRequirement(Enum):
    REQUIRED = "required"
    PREFERRED = "preferred"
    DISCOURAGED = "discouraged"


@unique
class AuthenticatorAttachment(Enum):
    PLATFORM = "platform"
    CROSS_PLATFORM = "cross-platform"


@unique
class AuthenticatorPreset(Enum):
    """Named authenticator-selection profiles offered to clients."""

    PASSKEY = "passkey"
    EXTERNAL_SECURITY_KEY = "externalSecurityKey"
    PLATFORM_AUTHENTICATOR = "platformAuthenticator"

    @classmethod
    def from_name(cls, name: Optional[str]) -> "AuthenticatorPreset":
        if name is None:
            return cls.PASSKEY
        try:
            return cls(name)
        except ValueError:
            known = ", ".join(p.value for p in cls)
            raise InvalidRequestError(f"Unknown preset {name!r}; expected one of {known}") from None

    @property
    def resident_key(self) -> ResidentKeyRequirement:
        if self is AuthenticatorPreset.EXTERNAL_SECURITY_KEY:
            return ResidentKeyRequirement.DISCOURAGED
        return ResidentKeyRequirement.REQUIRED

    @property
    def user_verification(self) -> UserVerificationRequirement:
        if self is AuthenticatorPreset.PLATFORM_AUTHENTICATOR:
            return UserVerificationRequirement.REQUIRED
        return UserVerificationRequirement.PREFERRED

    @property
    def attachment(self) -> Optional[AuthenticatorAttachment]:
        if self is AuthenticatorPreset.EXTERNAL_SECURITY_KEY:
            return AuthenticatorAttachment.CROSS_PLATFORM
        if self is AuthenticatorPreset.PLATFORM_AUTHENTICATOR:
            return AuthenticatorAttachment.PLATFORM
        return None

    def authenticator_selection(self, *, require_user_verification: bool = False) -> Dict[str, str]:
        """Return the ``authenticatorSelection`` block for registration options."""

        user_verification = self.user_verification
        if require_user_verification:
            user_verification = UserVerificationRequirement.REQUIRED

        selection = {
            "residentKey": self.resident_key.value,
            "userVerification": user_verification.value,
        }
        if self.attachment is not None:
            selection["authenticatorAttachment"] = self.attachment.value
        return selection


def _require_mapping(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise InvalidRequestError(f"{what} must be a JSON object")
    return data


def _optional_text(data: Mapping[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidRequestError(f"Field {key} must be a string")
    value = value.strip()
    return value or None


def _credential_id(data: Mapping[str, Any]) -> bytes:
    """Decode ``rawId`` (falling back to ``id``) and check the two agree."""

    if data.get("rawId") is None and data.get("id") is None:
        raise InvalidRequestError("Missing required field: rawId")
    key = "rawId" if data.get("rawId") is not None else "id"
    raw_id = require_binary_field(data, key)

    if key == "rawId" and data.get("id") is not None:
        try:
            other = decode_base64url(data["id"])
        except ValueError as exc:
            raise InvalidRequestError("Field id is not valid base64url") from exc
        if other != raw_id:
            raise InvalidRequestError("Fields id and rawId do not match")
    return raw_id


def _check_credential_type(data: Mapping[str, Any]) -> None:
    credential_type = data.get("type", PUBLIC_KEY_CREDENTIAL_TYPE)
    if credential_type != PUBLIC_KEY_CREDENTIAL_TYPE:
        raise InvalidRequestError(f"Unsupported credential type {credential_type!r}")


@dataclass(frozen=True)
class RegistrationOptionsRequest:
    username: str
    display_name: Optional[str] = None
    preset: AuthenticatorPreset = AuthenticatorPreset.PASSKEY

    @classmethod
    def from_json(cls, data: Any) -> "RegistrationOptionsRequest":
        body = _require_mapping(data, "Request body")
        username = _optional_text(body, "username")
        if username is None:
            raise InvalidRequestError("Username is required")
        return cls(
            username=username,
            display_name=_optional_text(body, "displayName"),
            preset=AuthenticatorPreset.from_name(_optional_text(body, "preset")),
        )


@dataclass(frozen=True)
class AuthenticationOptionsRequest:
    """``username=None`` selects discoverable-credential mode."""

    username: Optional[str] = None

    @classmethod
    def from_json(cls, data: Any) -> "AuthenticationOptionsRequest":
        body = _require_mapping(data if data is not None else {}, "Request body")
        return cls(username=_optional_text(body, "username"))


@dataclass(frozen=True)
class RegistrationCredential:
    """A decoded ``navigator.credentials.create()`` response."""

    credential_id: bytes
    client_data_json: bytes
    attestation_object: bytes
    transports: FrozenSet[str] = frozenset()
    username: Optional[str] = None

    @classmethod
    def from_json(cls, data: Any) -> "RegistrationCredential":
        body = _require_mapping(data, "Request body")
        _check_credential_type(body)
        response = _require_mapping(body.get("response"), "Field response")

        transports = response.get("transports", body.get("transports")) or []
        if not isinstance(transports, list) or not all(isinstance(t, str) for t in transports):
            raise InvalidRequestError("Field transports must be a list of strings")

        return cls(
            credential_id=_credential_id(body),
            client_data_json=require_binary_field(
                response, "clientDataJSON", label="response.clientDataJSON"
            ),
            attestation_object=require_binary_field(
                response, "attestationObject", label="response.attestationObject"
            ),
            transports=frozenset(transports),
            username=_optional_text(body, "username"),
        )


@dataclass(frozen=True)
class AuthenticationCredential:
    """A decoded ``navigator.credentials.get()`` response."""

    credential_id: bytes
    client_data_json: bytes
    authenticator_data: bytes
    signature: bytes
    user_handle: Optional[bytes] = None
    username: Optional[str] = None

    @classmethod
    def from_json(cls, data: Any) -> "AuthenticationCredential":
        body = _require_mapping(data, "Request body")
        _check_credential_type(body)
        response = _require_mapping(body.get("response"), "Field response")

        user_handle = None
        if response.get("userHandle"):
            user_handle = require_binary_field(response, "userHandle", label="response.userHandle")

        return cls(
            credential_id=_credential_id(body),
            client_data_json=require_binary_field(
                response, "clientDataJSON", label="response.clientDataJSON"
            ),
            authenticator_data=require_binary_field(
                response, "authenticatorData", label="response.authenticatorData"
            ),
            signature=require_binary_field(response, "signature", label="response.signature"),
            user_handle=user_handle,
            username=_optional_text(body, "username"),
        )
