import hashlib
import json
import secrets
import struct
from datetime import UTC, datetime, timedelta
from typing import Any, Dict, Optional

import cbor2
import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa

from webauthn_rp.authentication import AuthenticationVerifier
from webauthn_rp.challenges import ChallengeManager, InMemoryChallengeStore
from webauthn_rp.encoding import decode_base64url, encode_base64url
from webauthn_rp.options import RegistrationCredential, RegistrationOptionsRequest
from webauthn_rp.registration import RegistrationVerifier
from webauthn_rp.settings import RelyingPartySettings
from webauthn_rp.storage import InMemoryCredentialStore

RP_ID = "example.com"
ORIGIN = "https://example.com"

FLAG_UP = 0x01
FLAG_UV = 0x04
FLAG_AT = 0x40
FLAG_ED = 0x80


def _int_to_bytes(value: int, length: int = 0) -> bytes:
    return value.to_bytes(max(length, (value.bit_length() + 7) // 8, 1), "big")


class SoftAuthenticator:
    """Software authenticator producing browser-shaped WebAuthn responses."""

    def __init__(
        self,
        algorithm: int = -7,
        credential_id: Optional[bytes] = None,
        sign_count: int = 0,
        counter_step: int = 1,
        aaguid: bytes = b"\x11" * 16,
    ) -> None:
        self.algorithm = algorithm
        if algorithm == -7:
            self.private_key = ec.generate_private_key(ec.SECP256R1())
        elif algorithm == -257:
            self.private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        else:
            raise ValueError(f"Unsupported algorithm {algorithm}")
        self.credential_id = credential_id or secrets.token_bytes(32)
        self.sign_count = sign_count
        self.counter_step = counter_step
        self.aaguid = aaguid
        self.user_handle: Optional[bytes] = None

    def cose_key(self) -> Dict[int, Any]:
        numbers = self.private_key.public_key().public_numbers()
        if self.algorithm == -7:
            return {
                1: 2,
                3: -7,
                -1: 1,
                -2: _int_to_bytes(numbers.x, 32),
                -3: _int_to_bytes(numbers.y, 32),
            }
        return {1: 3, 3: -257, -1: _int_to_bytes(numbers.n), -2: _int_to_bytes(numbers.e)}

    def sign(self, message: bytes) -> bytes:
        if self.algorithm == -7:
            return self.private_key.sign(message, ec.ECDSA(hashes.SHA256()))
        return self.private_key.sign(message, padding.PKCS1v15(), hashes.SHA256())

    @staticmethod
    def client_data(ceremony_type: str, challenge: str, origin: str = ORIGIN) -> bytes:
        return json.dumps(
            {"type": ceremony_type, "challenge": challenge, "origin": origin, "crossOrigin": False},
            separators=(",", ":"),
        ).encode()

    def authenticator_data(
        self,
        *,
        rp_id: str = RP_ID,
        flags: int = FLAG_UP | FLAG_UV,
        sign_count: int = 0,
        attested: bool = False,
        cose_key: Optional[Dict[int, Any]] = None,
        credential_id: Optional[bytes] = None,
    ) -> bytes:
        data = hashlib.sha256(rp_id.encode()).digest()
        if attested:
            flags |= FLAG_AT
        data += bytes([flags]) + struct.pack(">I", sign_count)
        if attested:
            cred_id = self.credential_id if credential_id is None else credential_id
            data += self.aaguid + struct.pack(">H", len(cred_id)) + cred_id
            data += cbor2.dumps(self.cose_key() if cose_key is None else cose_key)
        return data

    def create(
        self,
        challenge: str,
        *,
        rp_id: str = RP_ID,
        origin: str = ORIGIN,
        flags: int = FLAG_UP | FLAG_UV,
        ceremony_type: str = "webauthn.create",
        fmt: str = "none",
        att_stmt: Optional[Dict[str, Any]] = None,
        cose_key: Optional[Dict[int, Any]] = None,
        attested_credential_id: Optional[bytes] = None,
        username: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Return a ``navigator.credentials.create()`` style JSON payload."""
        auth_data = self.authenticator_data(
            rp_id=rp_id,
            flags=flags,
            sign_count=self.sign_count,
            attested=True,
            cose_key=cose_key,
            credential_id=attested_credential_id,
        )
        attestation_object = cbor2.dumps(
            {"fmt": fmt, "attStmt": att_stmt or {}, "authData": auth_data}
        )
        payload = {
            "id": encode_base64url(self.credential_id),
            "rawId": encode_base64url(self.credential_id),
            "type": "public-key",
            "response": {
                "clientDataJSON": encode_base64url(
                    self.client_data(ceremony_type, challenge, origin)
                ),
                "attestationObject": encode_base64url(attestation_object),
                "transports": ["usb"],
            },
        }
        if username is not None:
            payload["username"] = username
        return payload

    def get(
        self,
        challenge: str,
        *,
        rp_id: str = RP_ID,
        origin: str = ORIGIN,
        flags: int = FLAG_UP | FLAG_UV,
        ceremony_type: str = "webauthn.get",
        sign_count: Optional[int] = None,
        user_handle: Optional[bytes] = None,
        username: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Return a ``navigator.credentials.get()`` style JSON payload."""
        if sign_count is None:
            self.sign_count += self.counter_step
            sign_count = self.sign_count
        auth_data = self.authenticator_data(rp_id=rp_id, flags=flags, sign_count=sign_count)
        client_data = self.client_data(ceremony_type, challenge, origin)
        signature = self.sign(auth_data + hashlib.sha256(client_data).digest())
        response = {
            "clientDataJSON": encode_base64url(client_data),
            "authenticatorData": encode_base64url(auth_data),
            "signature": encode_base64url(signature),
        }
        if user_handle is not None:
            response["userHandle"] = encode_base64url(user_handle)
        payload = {
            "id": encode_base64url(self.credential_id),
            "rawId": encode_base64url(self.credential_id),
            "type": "public-key",
            "response": response,
        }
        if username is not None:
            payload["username"] = username
        return payload


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, milliseconds: int) -> None:
        self.now += timedelta(milliseconds=milliseconds)


@pytest.fixture
def settings():
    return RelyingPartySettings(rp_id=RP_ID, rp_name="Example", origins=frozenset({ORIGIN}))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def challenges(clock):
    return ChallengeManager(InMemoryChallengeStore(), clock=clock)


@pytest.fixture
def store():
    return InMemoryCredentialStore()


@pytest.fixture
def registration_verifier(settings, challenges, store):
    return RegistrationVerifier(settings, challenges, store)


@pytest.fixture
def authentication_verifier(settings, challenges, store):
    return AuthenticationVerifier(settings, challenges, store)


@pytest.fixture
def authenticator():
    return SoftAuthenticator()


@pytest.fixture
def rsa_authenticator():
    return SoftAuthenticator(algorithm=-257)


@pytest.fixture
def make_authenticator():
    return SoftAuthenticator


@pytest.fixture
def register(registration_verifier):
    """Run a full registration ceremony for ``authenticator``."""

    def _register(authenticator: SoftAuthenticator, username: str = "alice"):
        options = registration_verifier.options(RegistrationOptionsRequest(username=username))
        authenticator.user_handle = decode_base64url(options["user"]["id"])
        payload = authenticator.create(options["challenge"], username=username)
        return registration_verifier.verify(RegistrationCredential.from_json(payload))

    return _register
