import hashlib
import struct

import cbor2
import pytest
from fido2.cose import ES256
from fido2.webauthn import AuthenticatorData

from webauthn_rp.authdata import parse_attestation_object, parse_authenticator_data
from webauthn_rp.cose import decode_cose_key
from webauthn_rp.errors import MalformedAttestationError, TruncatedAuthenticatorDataError

RP_ID_HASH = hashlib.sha256(b"example.com").digest()
COSE_KEY = {1: 2, 3: -7, -1: 1, -2: b"\x01" * 32, -3: b"\x02" * 32}
CREDENTIAL_ID = bytes(range(20))
AAGUID = bytes(range(16, 32))


def _prefix(flags: int, sign_count: int = 0) -> bytes:
    return RP_ID_HASH + bytes([flags]) + struct.pack(">I", sign_count)


def _attested(flags: int = 0x41, credential_id: bytes = CREDENTIAL_ID) -> bytes:
    return (
        _prefix(flags, 7)
        + AAGUID
        + struct.pack(">H", len(credential_id))
        + credential_id
        + cbor2.dumps(COSE_KEY)
    )


def test_fixed_prefix():
    parsed = parse_authenticator_data(_prefix(0x05, 0x01020304))

    assert parsed.rp_id_hash == RP_ID_HASH
    assert parsed.flags & AuthenticatorData.FLAG.UP
    assert parsed.flags & AuthenticatorData.FLAG.UV
    assert not parsed.flags & AuthenticatorData.FLAG.AT
    assert not parsed.flags & AuthenticatorData.FLAG.ED
    assert parsed.counter == 0x01020304
    assert parsed.credential_data is None
    assert parsed.extensions is None


def test_attested_credential_data():
    parsed = parse_authenticator_data(_attested())

    assert parsed.flags & AuthenticatorData.FLAG.AT
    assert parsed.counter == 7
    assert bytes(parsed.credential_data.aaguid) == AAGUID
    assert parsed.credential_data.credential_id == CREDENTIAL_ID
    public_key = decode_cose_key(parsed.credential_data.public_key)
    assert isinstance(public_key, ES256)
    assert public_key == COSE_KEY


def test_extension_data_after_credential():
    data = _attested(flags=0xC1) + cbor2.dumps({"credProtect": 1})

    parsed = parse_authenticator_data(data)

    assert parsed.flags & AuthenticatorData.FLAG.ED
    assert parsed.extensions == {"credProtect": 1}
    assert parsed.credential_data.credential_id == CREDENTIAL_ID


@pytest.mark.parametrize("length", [0, 1, 32, 36])
def test_short_buffer_is_truncated(length):
    with pytest.raises(TruncatedAuthenticatorDataError):
        parse_authenticator_data(_prefix(0x01)[:length])


def test_credential_id_length_past_end_is_truncated():
    data = _prefix(0x41) + AAGUID + struct.pack(">H", 500) + b"\x01" * 10
    with pytest.raises(TruncatedAuthenticatorDataError):
        parse_authenticator_data(data)


def test_missing_aaguid_is_truncated():
    with pytest.raises(TruncatedAuthenticatorDataError):
        parse_authenticator_data(_prefix(0x41) + AAGUID[:8])


def test_missing_public_key_is_truncated():
    data = _prefix(0x41) + AAGUID + struct.pack(">H", 4) + b"\x01\x02\x03\x04"
    with pytest.raises(TruncatedAuthenticatorDataError):
        parse_authenticator_data(data)


def test_cut_public_key_is_truncated():
    with pytest.raises(TruncatedAuthenticatorDataError):
        parse_authenticator_data(_attested()[:-35])


def test_trailing_bytes_are_malformed():
    with pytest.raises(MalformedAttestationError):
        parse_authenticator_data(_attested() + b"\x00")
    with pytest.raises(MalformedAttestationError):
        parse_authenticator_data(_prefix(0x01) + b"\x00")


def test_extensions_flagged_but_absent_are_truncated():
    with pytest.raises(TruncatedAuthenticatorDataError):
        parse_authenticator_data(_prefix(0x81))


def test_public_key_without_algorithm_is_malformed():
    cose_key = {1: 2, -1: 1, -2: b"\x01" * 32, -3: b"\x02" * 32}
    data = _prefix(0x41) + AAGUID + struct.pack(">H", 2) + b"\x01\x02" + cbor2.dumps(cose_key)
    with pytest.raises(MalformedAttestationError):
        parse_authenticator_data(data)


def test_public_key_must_be_a_map():
    data = _prefix(0x41) + AAGUID + struct.pack(">H", 2) + b"\x01\x02" + cbor2.dumps([1, 2])
    with pytest.raises(MalformedAttestationError):
        parse_authenticator_data(data)


def test_parse_attestation_object():
    auth_data = _attested()
    attestation = parse_attestation_object(
        cbor2.dumps({"fmt": "none", "attStmt": {}, "authData": auth_data})
    )

    assert attestation.fmt == "none"
    assert attestation.att_stmt == {}
    assert attestation.auth_data == auth_data


@pytest.mark.parametrize(
    "data",
    [
        b"",
        b"\xff\xff",
        cbor2.dumps([1, 2, 3]),
        cbor2.dumps({"attStmt": {}, "authData": b"\x00" * 37}),
        cbor2.dumps({"fmt": "none", "attStmt": {}}),
        cbor2.dumps({"fmt": "none", "attStmt": {}, "authData": "not bytes"}),
        cbor2.dumps({"fmt": "none", "attStmt": [], "authData": b"\x00" * 37}),
        cbor2.dumps({"fmt": "none", "attStmt": {}, "authData": b"\x00" * 37}) + b"\x00",
    ],
    ids=[
        "empty",
        "garbage",
        "array",
        "no-fmt",
        "no-authData",
        "authData-text",
        "attStmt-array",
        "trailing-bytes",
    ],
)
def test_malformed_attestation_objects(data):
    with pytest.raises(MalformedAttestationError):
        parse_attestation_object(data)


def test_deeply_nested_attestation_object_is_malformed():
    with pytest.raises(MalformedAttestationError):
        parse_attestation_object(b"\x81" * 100000 + b"\x00")


def test_truncated_auth_data_inside_attestation_object():
    attestation = cbor2.dumps({"fmt": "none", "attStmt": {}, "authData": _attested()[:50]})
    with pytest.raises(TruncatedAuthenticatorDataError):
        parse_attestation_object(attestation)
