"""Registration ceremony: options and attestation verification."""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, unique
from typing import Any, Callable, Dict, List, Optional

from fido2 import cbor
from fido2.webauthn import AuthenticatorData

from .authdata import parse_attestation_object
from .ceremony import CeremonyTrace
from .challenges import ChallengeManager
from .client_data import CeremonyType, parse_client_data, validate_client_data, validate_rp_id_hash
from .cose import SUPPORTED_ALGORITHMS, PublicKey, decode_cose_key, key_type, load_public_key
from .encoding import decode_base64url, encode_base64url
from .errors import (
    CeremonyError,
    DuplicateCredentialError,
    InvalidRequestError,
    MalformedAttestationError,
    UserNotFoundError,
    UserNotPresentError,
    UserNotVerifiedError,
)
from .models import ChallengePurpose, Credential, User
from .options import (
    PUBLIC_KEY_CREDENTIAL_TYPE,
    RegistrationCredential,
    RegistrationOptionsRequest,
)
from .settings import RelyingPartySettings
from .storage import CredentialStore

__all__ = [
    "RegistrationResult",
    "RegistrationState",
    "RegistrationVerifier",
    "USER_HANDLE_LENGTH",
    "describe_public_key",
]

logger = logging.getLogger(__name__)

USER_HANDLE_LENGTH = 16
_FMT_NONE = "none"


@unique
class RegistrationState(Enum):
    START = "start"
    CHALLENGE_CONSUMED = "challenge_consumed"
    ATTESTATION_DECODED = "attestation_decoded"
    CLIENT_DATA_VALIDATED = "client_data_validated"
    AUTH_DATA_VALIDATED = "auth_data_validated"
    CREDENTIAL_EXTRACTED = "credential_extracted"
    STORED = "stored"
    REJECTED = "rejected"


def describe_public_key(public_key: PublicKey) -> Dict[str, Any]:
    """JSON-friendly summary of a stored public key."""
    return {
        "type": key_type(public_key).name,
        "algorithm": public_key.ALGORITHM,
        "cose": encode_base64url(_cose_bytes(public_key)),
    }


def _cose_bytes(public_key: PublicKey) -> bytes:
    return cbor.encode(dict(public_key))


@dataclass(frozen=True)
class RegistrationResult:
    username: str
    credential: Credential
    history: List[RegistrationState] = field(default_factory=list)

    @property
    def credential_id(self) -> str:
        return encode_base64url(self.credential.credential_id)

    def to_json(self) -> Dict[str, Any]:
        return {
            "success": True,
            "message": "Registration successful",
            "credentialId": self.credential_id,
            "publicKey": describe_public_key(self.credential.public_key),
            "transports": sorted(self.credential.transports),
        }


class RegistrationVerifier:
    """Issues registration options and verifies attestation responses.

    The verifier holds no per-ceremony state; everything that links options to
    a later response lives in the challenge table.
    """

    def __init__(
        self,
        settings: RelyingPartySettings,
        challenges: ChallengeManager,
        store: CredentialStore,
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.settings = settings
        self.challenges = challenges
        self.store = store
        self._clock = clock

    def _get_or_create_user(self, request: RegistrationOptionsRequest) -> User:
        user = self.store.get_user(request.username)
        if user is not None:
            return user
        user = User(
            user_id=secrets.token_bytes(USER_HANDLE_LENGTH),
            username=request.username,
            display_name=request.display_name or request.username,
            created_at=self._clock(),
        )
        self.store.store_user(user)
        logger.info("Created new user %s", user.username)
        return user

    def options(self, request: RegistrationOptionsRequest) -> Dict[str, Any]:
        """Build ``PublicKeyCredentialCreationOptions`` and record the challenge."""

        user = self._get_or_create_user(request)
        challenge = self.challenges.issue(ChallengePurpose.REGISTRATION, user.username)
        exclude = [
            {"type": PUBLIC_KEY_CREDENTIAL_TYPE, "id": encode_base64url(c.credential_id)}
            for c in self.store.get_credentials_by_username(user.username)
        ]
        logger.debug(
            "Registration options for %s (preset %s, %d excluded)",
            user.username,
            request.preset.value,
            len(exclude),
        )
        return {
            "challenge": challenge.value,
            "rp": {"name": self.settings.rp_name, "id": self.settings.rp_id},
            "user": {
                "id": encode_base64url(user.user_id),
                "name": user.username,
                "displayName": user.display_name,
            },
            "pubKeyCredParams": [
                {"type": PUBLIC_KEY_CREDENTIAL_TYPE, "alg": alg} for alg in SUPPORTED_ALGORITHMS
            ],
            "timeout": self.settings.timeout_ms,
            "attestation": "none",
            "authenticatorSelection": request.preset.authenticator_selection(
                require_user_verification=self.settings.require_user_verification
            ),
            "excludeCredentials": exclude,
        }

    def verify(
        self,
        response: RegistrationCredential,
        username: Optional[str] = None,
    ) -> RegistrationResult:
        """Run the registration state machine over ``response``.

        Exactly one store write happens on success and none on failure.

        :raises CeremonyError: The ceremony was rejected; ``kind`` names the check.
        """

        trace = CeremonyTrace(
            "Registration", RegistrationState.START, RegistrationState.REJECTED, logger
        )
        try:
            result = self._verify(trace, response, username or response.username)
        except CeremonyError as exc:
            trace.reject(exc)
            raise
        logger.info(
            "Registered credential %s... for %s",
            result.credential_id[:8],
            result.username,
        )
        return result

    def _verify(
        self,
        trace: CeremonyTrace[RegistrationState],
        response: RegistrationCredential,
        username: Optional[str],
    ) -> RegistrationResult:
        settings = self.settings

        client_data = parse_client_data(response.client_data_json)
        challenge = self.challenges.verify_and_consume(
            encode_base64url(client_data.challenge),
            ChallengePurpose.REGISTRATION,
            username,
        )
        trace.advance(RegistrationState.CHALLENGE_CONSUMED)

        owner_name = challenge.bound_username or username
        if owner_name is None:
            raise InvalidRequestError("Username is required")
        user = self.store.get_user(owner_name)
        if user is None:
            raise UserNotFoundError(f"User {owner_name!r} not found")

        attestation = parse_attestation_object(response.attestation_object)
        if attestation.fmt == _FMT_NONE and attestation.att_stmt:
            raise MalformedAttestationError("Attestation format 'none' must have an empty attStmt")
        trace.advance(RegistrationState.ATTESTATION_DECODED)

        validate_client_data(
            client_data,
            expected_type=CeremonyType.CREATE,
            expected_challenge=decode_base64url(challenge.value),
            expected_origins=settings.origins,
        )
        trace.advance(RegistrationState.CLIENT_DATA_VALIDATED)

        auth_data = attestation.auth_data
        validate_rp_id_hash(auth_data, settings.rp_id)
        if not auth_data.flags & AuthenticatorData.FLAG.UP:
            raise UserNotPresentError("User presence flag is not set")
        if settings.require_user_verification and not auth_data.flags & AuthenticatorData.FLAG.UV:
            raise UserNotVerifiedError("User verification is required")
        attested = auth_data.credential_data
        if not auth_data.flags & AuthenticatorData.FLAG.AT or attested is None:
            raise MalformedAttestationError("Authenticator data carries no attested credential")
        trace.advance(RegistrationState.AUTH_DATA_VALIDATED)

        if bytes(attested.credential_id) != response.credential_id:
            raise MalformedAttestationError("Attested credential ID does not match rawId")
        public_key = decode_cose_key(attested.public_key)
        try:
            load_public_key(public_key)
        except ValueError as exc:
            raise MalformedAttestationError(f"Credential public key is invalid: {exc}") from exc

        credential = Credential(
            credential_id=bytes(attested.credential_id),
            public_key=public_key,
            owner_user_id=user.user_id,
            sign_count=auth_data.counter,
            transports=response.transports,
            aaguid=bytes(attested.aaguid),
            attestation_format=attestation.fmt,
            created_at=self._clock(),
        )
        trace.advance(RegistrationState.CREDENTIAL_EXTRACTED)

        if self.store.get_credential_by_id(credential.credential_id) is not None:
            raise DuplicateCredentialError("Credential is already registered")
        self.store.add_credential(user.user_id, credential)
        trace.advance(RegistrationState.STORED)

        return RegistrationResult(
            username=user.username,
            credential=credential,
            history=list(trace.history),
        )
