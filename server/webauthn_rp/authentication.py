"""Authentication ceremony: options and assertion verification."""
from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass, field
from enum import Enum, unique
from typing import Any, Dict, List, Optional, Tuple

from fido2.webauthn import AuthenticatorData

from .authdata import parse_authenticator_data
from .ceremony import CeremonyTrace
from .challenges import ChallengeManager
from .client_data import CeremonyType, parse_client_data, validate_client_data, validate_rp_id_hash
from .encoding import decode_base64url, encode_base64url
from .errors import (
    CeremonyError,
    ChallengeUserMismatchError,
    CredentialNotFoundError,
    SignatureVerificationFailedError,
    SignCountRegressionError,
    UserNotFoundError,
    UserNotPresentError,
    UserNotVerifiedError,
)
from .models import ChallengePurpose, Credential, User
from .options import (
    PUBLIC_KEY_CREDENTIAL_TYPE,
    AuthenticationCredential,
    AuthenticationOptionsRequest,
    UserVerificationRequirement,
)
from .settings import RelyingPartySettings
from .signature import verify_signature
from .storage import CredentialStore

__all__ = [
    "AuthenticationResult",
    "AuthenticationState",
    "AuthenticationVerifier",
    "check_sign_count",
]

logger = logging.getLogger(__name__)


@unique
class AuthenticationState(Enum):
    START = "start"
    CHALLENGE_CONSUMED = "challenge_consumed"
    CREDENTIAL_LOOKUP = "credential_lookup"
    CLIENT_DATA_VALIDATED = "client_data_validated"
    AUTH_DATA_VALIDATED = "auth_data_validated"
    SIGNATURE_VERIFIED = "signature_verified"
    COUNTER_CHECKED = "counter_checked"
    COMMITTED = "committed"
    REJECTED = "rejected"


def check_sign_count(stored: int, received: int) -> None:
    """Reject a counter that did not move forward.

    Both counters at zero means the authenticator does not implement a
    counter, so there is nothing to compare.

    :raises SignCountRegressionError: ``received`` is not greater than ``stored``.
    """
    if stored == 0 and received == 0:
        return
    if received <= stored:
        raise SignCountRegressionError(
            f"Sign count {received} does not exceed stored count {stored}"
        )


@dataclass(frozen=True)
class AuthenticationResult:
    user: User
    credential: Credential
    sign_count: int
    history: List[AuthenticationState] = field(default_factory=list)

    @property
    def credential_id(self) -> str:
        return encode_base64url(self.credential.credential_id)

    def to_json(self) -> Dict[str, Any]:
        return {
            "success": True,
            "message": "Authentication successful",
            "credentialId": self.credential_id,
            "username": self.user.username,
            "userHandle": encode_base64url(self.user.user_id),
            "signCount": self.sign_count,
        }


class AuthenticationVerifier:
    """Issues authentication options and verifies assertion responses."""

    def __init__(
        self,
        settings: RelyingPartySettings,
        challenges: ChallengeManager,
        store: CredentialStore,
    ) -> None:
        self.settings = settings
        self.challenges = challenges
        self.store = store

    @property
    def user_verification(self) -> UserVerificationRequirement:
        if self.settings.require_user_verification:
            return UserVerificationRequirement.REQUIRED
        return UserVerificationRequirement.PREFERRED

    def options(self, request: AuthenticationOptionsRequest) -> Dict[str, Any]:
        """Build ``PublicKeyCredentialRequestOptions`` and record the challenge.

        Without a username the allow-list is empty (discoverable credentials).

        :raises UserNotFoundError: A username was given but is not registered.
        """

        allow_credentials: List[Dict[str, Any]] = []
        if request.username is not None:
            if self.store.get_user(request.username) is None:
                raise UserNotFoundError("User not found")
            allow_credentials = [
                {
                    "type": PUBLIC_KEY_CREDENTIAL_TYPE,
                    "id": encode_base64url(c.credential_id),
                    "transports": sorted(c.transports),
                }
                for c in self.store.get_credentials_by_username(request.username)
            ]
            logger.debug(
                "Found %d credentials for %s", len(allow_credentials), request.username
            )
        else:
            logger.debug("Authentication options in discoverable credential mode")

        challenge = self.challenges.issue(ChallengePurpose.AUTHENTICATION, request.username)
        return {
            "challenge": challenge.value,
            "timeout": self.settings.timeout_ms,
            "rpId": self.settings.rp_id,
            "allowCredentials": allow_credentials,
            "userVerification": self.user_verification.value,
        }

    def verify(self, response: AuthenticationCredential) -> AuthenticationResult:
        """Run the authentication state machine over ``response``.

        On success the credential's sign counter is written exactly once; a
        rejected ceremony leaves storage untouched.

        :raises CeremonyError: The ceremony was rejected; ``kind`` names the check.
        """

        trace = CeremonyTrace(
            "Authentication", AuthenticationState.START, AuthenticationState.REJECTED, logger
        )
        try:
            result = self._verify(trace, response)
        except CeremonyError as exc:
            trace.reject(exc)
            raise
        logger.info(
            "Authenticated %s with credential %s... (sign count %d)",
            result.user.username,
            result.credential_id[:8],
            result.sign_count,
        )
        return result

    def _lookup(
        self, response: AuthenticationCredential, bound_username: Optional[str]
    ) -> Tuple[Credential, User]:
        credential = self.store.get_credential_by_id(response.credential_id)
        if credential is None:
            raise CredentialNotFoundError("Credential not found")
        owner = self.store.get_user_by_id(credential.owner_user_id)
        if owner is None:
            raise CredentialNotFoundError("Credential has no owner")

        if response.user_handle is not None and not hmac.compare_digest(
            response.user_handle, owner.user_id
        ):
            raise CredentialNotFoundError("Credential does not belong to the given user handle")
        for expected in (bound_username, response.username):
            if expected is not None and expected != owner.username:
                raise ChallengeUserMismatchError("Credential belongs to a different user")
        return credential, owner

    def _verify(
        self,
        trace: CeremonyTrace[AuthenticationState],
        response: AuthenticationCredential,
    ) -> AuthenticationResult:
        settings = self.settings

        client_data = parse_client_data(response.client_data_json)
        challenge = self.challenges.verify_and_consume(
            encode_base64url(client_data.challenge),
            ChallengePurpose.AUTHENTICATION,
            response.username,
        )
        trace.advance(AuthenticationState.CHALLENGE_CONSUMED)

        credential, owner = self._lookup(response, challenge.bound_username)
        trace.advance(AuthenticationState.CREDENTIAL_LOOKUP)

        validate_client_data(
            client_data,
            expected_type=CeremonyType.GET,
            expected_challenge=decode_base64url(challenge.value),
            expected_origins=settings.origins,
        )
        trace.advance(AuthenticationState.CLIENT_DATA_VALIDATED)

        auth_data = parse_authenticator_data(response.authenticator_data)
        validate_rp_id_hash(auth_data, settings.rp_id)
        if not auth_data.flags & AuthenticatorData.FLAG.UP:
            raise UserNotPresentError("User presence flag is not set")
        if settings.require_user_verification and not auth_data.flags & AuthenticatorData.FLAG.UV:
            raise UserNotVerifiedError("User verification is required")
        trace.advance(AuthenticationState.AUTH_DATA_VALIDATED)

        if not verify_signature(
            credential.public_key,
            response.authenticator_data,
            response.client_data_json,
            response.signature,
        ):
            raise SignatureVerificationFailedError("Assertion signature is invalid")
        trace.advance(AuthenticationState.SIGNATURE_VERIFIED)

        check_sign_count(credential.sign_count, auth_data.counter)
        trace.advance(AuthenticationState.COUNTER_CHECKED)

        if not self.store.update_sign_count(
            credential.credential_id,
            auth_data.counter,
            expected_count=credential.sign_count,
        ):
            raise SignCountRegressionError("Sign count changed during verification")
        trace.advance(AuthenticationState.COMMITTED)

        return AuthenticationResult(
            user=owner,
            credential=credential,
            sign_count=auth_data.counter,
            history=list(trace.history),
        )
