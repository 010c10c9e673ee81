from datetime import timedelta

import pytest

from webauthn_rp import config
from webauthn_rp.config import app, determine_rp_id
from webauthn_rp.settings import (
    DEFAULT_CORS_ORIGINS,
    DEFAULT_ORIGIN,
    DEFAULT_RP_ID,
    DEFAULT_RP_NAME,
    RelyingPartySettings,
    parse_origins,
)


def test_default_settings():
    settings = RelyingPartySettings()

    assert settings.rp_id == DEFAULT_RP_ID == "localhost"
    assert settings.rp_name == DEFAULT_RP_NAME
    assert settings.origins == frozenset({DEFAULT_ORIGIN})
    assert settings.challenge_ttl == timedelta(seconds=60)
    assert settings.timeout_ms == 60000
    assert settings.challenge_length == 32
    assert settings.require_user_verification is False
    assert settings.credential_store_path is None


def test_settings_from_mapping():
    settings = RelyingPartySettings.from_mapping(
        {
            "WEBAUTHN_RP_ID": " login.example.com ",
            "WEBAUTHN_RP_NAME": "Example Login",
            "WEBAUTHN_ORIGINS": "https://login.example.com/, https://app.example.com",
            "WEBAUTHN_CHALLENGE_TTL_MS": "120000",
            "WEBAUTHN_CHALLENGE_LENGTH": 48,
            "WEBAUTHN_REQUIRE_USER_VERIFICATION": "yes",
            "WEBAUTHN_CREDENTIAL_STORE_PATH": "/tmp/credentials.pkl",
            "WEBAUTHN_CLEANUP_INTERVAL_SECONDS": "30",
        }
    )

    assert settings.rp_id == "login.example.com"
    assert settings.rp_name == "Example Login"
    assert settings.origins == frozenset({"https://login.example.com", "https://app.example.com"})
    assert settings.timeout_ms == 120000
    assert settings.challenge_length == 48
    assert settings.require_user_verification is True
    assert settings.credential_store_path == "/tmp/credentials.pkl"
    assert settings.cleanup_interval == 30.0


def test_settings_from_empty_mapping():
    assert RelyingPartySettings.from_mapping({}) == RelyingPartySettings()


@pytest.mark.parametrize("raw", ["false", "0", "off", "", False])
def test_settings_user_verification_off(raw):
    settings = RelyingPartySettings.from_mapping({"WEBAUTHN_REQUIRE_USER_VERIFICATION": raw})
    assert settings.require_user_verification is False


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("https://a.example", {"https://a.example"}),
        ("https://a.example/;https://b.example\nhttps://c.example", {"https://a.example", "https://b.example", "https://c.example"}),
        (" , https://a.example ,,", {"https://a.example"}),
        (["https://a.example/", "https://b.example"], {"https://a.example", "https://b.example"}),
        (None, set()),
    ],
)
def test_parse_origins(raw, expected):
    assert parse_origins(raw) == frozenset(expected)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"rp_id": ""},
        {"origins": frozenset()},
        {"challenge_ttl": timedelta(0)},
        {"challenge_length": 15},
        {"cleanup_interval": 0},
    ],
)
def test_invalid_settings(kwargs):
    with pytest.raises(ValueError):
        RelyingPartySettings(**kwargs)


@pytest.mark.parametrize(
    "key, value",
    [
        ("WEBAUTHN_CHALLENGE_TTL_MS", "soon"),
        ("WEBAUTHN_CHALLENGE_TTL_MS", "-5"),
        ("WEBAUTHN_CHALLENGE_LENGTH", "8"),
    ],
)
def test_invalid_mapping_values(key, value):
    with pytest.raises(ValueError):
        RelyingPartySettings.from_mapping({key: value})


@pytest.mark.parametrize(
    "raw, expected",
    [("1", True), ("true", True), ("On", True), ("0", False), ("false", False), (" no ", False), ("", False)],
)
def test_env_flag(monkeypatch, raw, expected):
    monkeypatch.setenv("WEBAUTHN_TEST_FLAG", raw)
    assert config._env_flag("WEBAUTHN_TEST_FLAG") is expected


def test_env_flag_unset(monkeypatch):
    monkeypatch.delenv("WEBAUTHN_TEST_FLAG", raising=False)
    assert config._env_flag("WEBAUTHN_TEST_FLAG") is None


@pytest.fixture
def unconfigured_rp_id(monkeypatch):
    monkeypatch.delitem(app.config, "WEBAUTHN_RP_ID", raising=False)


def test_determine_rp_id_explicit(monkeypatch):
    monkeypatch.setitem(app.config, "WEBAUTHN_RP_ID", "configured.example")
    assert determine_rp_id("explicit.example") == "explicit.example"
    assert determine_rp_id() == "configured.example"


def test_determine_rp_id_without_request(unconfigured_rp_id):
    assert determine_rp_id() == "localhost"


@pytest.mark.parametrize(
    "base_url",
    ["https://Login.Example.org:8443", "https://attacker.invalid", "http://[::1]:5000"],
)
def test_determine_rp_id_ignores_request_host(unconfigured_rp_id, base_url):
    with app.test_request_context("/", base_url=base_url):
        assert determine_rp_id() == "localhost"


def test_cors_origins():
    assert config.cors_origins({}) == sorted(DEFAULT_CORS_ORIGINS)
    assert config.cors_origins(
        {"WEBAUTHN_CORS_ORIGINS": "https://app.example/, https://admin.example"}
    ) == ["https://admin.example", "https://app.example"]
