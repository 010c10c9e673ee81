"""Configuration and application setup for the WebAuthn relying-party server."""
from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional

from flask import Flask
from flask_cors import CORS

from .authentication import AuthenticationVerifier
from .challenges import ChallengeManager, InMemoryChallengeStore
from .registration import RegistrationVerifier
from .settings import DEFAULT_CORS_ORIGINS, DEFAULT_RP_ID, RelyingPartySettings, parse_origins
from .storage import CredentialStore, InMemoryCredentialStore, PickleCredentialStore

__version__ = "1.0.0"

app = Flask(__name__)

_EXTENSION_KEY = "webauthn_rp"
_state_lock = threading.Lock()

_CONFIG_KEYS = (
    "WEBAUTHN_RP_NAME",
    "WEBAUTHN_RP_ID",
    "WEBAUTHN_ORIGINS",
    "WEBAUTHN_CORS_ORIGINS",
    "WEBAUTHN_CHALLENGE_TTL_MS",
    "WEBAUTHN_CHALLENGE_LENGTH",
    "WEBAUTHN_REQUIRE_USER_VERIFICATION",
    "WEBAUTHN_CREDENTIAL_STORE_PATH",
    "WEBAUTHN_CLEANUP_INTERVAL_SECONDS",
    "WEBAUTHN_HOST",
    "WEBAUTHN_PORT",
)


def _env_flag(name: str) -> Optional[bool]:
    """Return ``True`` or ``False`` when the named env var is explicitly set."""

    raw_value = os.environ.get(name)
    if raw_value is None:
        return None

    normalised = raw_value.strip().lower()
    if normalised in {"", "0", "false", "off", "no"}:
        return False
    return True


for _key in _CONFIG_KEYS:
    if _key in os.environ:
        app.config.setdefault(_key, os.environ[_key])

_require_uv_flag = _env_flag("WEBAUTHN_REQUIRE_USER_VERIFICATION")
if _require_uv_flag is not None:
    app.config["WEBAUTHN_REQUIRE_USER_VERIFICATION"] = _require_uv_flag


def cors_origins(config: Mapping[str, Any]) -> List[str]:
    """Browser origins allowed to call ``/api/*`` cross-origin."""

    origins = parse_origins(config.get("WEBAUTHN_CORS_ORIGINS"))
    return sorted(origins or DEFAULT_CORS_ORIGINS)


CORS(
    app,
    resources={r"/api/*": {"origins": cors_origins(app.config)}},
    methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    supports_credentials=True,
)


def determine_rp_id(explicit_id: Optional[str] = None) -> str:
    """Resolve the relying party identifier.

    Order: ``explicit_id``, the configured ``WEBAUTHN_RP_ID``, ``localhost``.
    The identifier is fixed at startup; request headers never influence it.
    """

    if explicit_id:
        return explicit_id

    configured_id = app.config.get("WEBAUTHN_RP_ID")
    if isinstance(configured_id, str) and configured_id.strip():
        return configured_id.strip()

    return DEFAULT_RP_ID


@dataclass
class ServerState:
    """Process-wide stores and the verifiers built on them."""

    settings: RelyingPartySettings
    challenges: ChallengeManager
    credentials: CredentialStore
    registration: RegistrationVerifier
    authentication: AuthenticationVerifier


def _build_state(config: Mapping[str, Any]) -> ServerState:
    settings = RelyingPartySettings.from_mapping(
        {**config, "WEBAUTHN_RP_ID": determine_rp_id(config.get("WEBAUTHN_RP_ID"))}
    )
    challenges = ChallengeManager(
        InMemoryChallengeStore(),
        ttl=settings.challenge_ttl,
        length=settings.challenge_length,
    )
    credentials: CredentialStore
    if settings.credential_store_path:
        credentials = PickleCredentialStore(settings.credential_store_path)
    else:
        credentials = InMemoryCredentialStore()

    app.logger.debug(
        "Relying party %s (%s) accepting origins %s",
        settings.rp_id,
        settings.rp_name,
        ", ".join(sorted(settings.origins)),
    )
    return ServerState(
        settings=settings,
        challenges=challenges,
        credentials=credentials,
        registration=RegistrationVerifier(settings, challenges, credentials),
        authentication=AuthenticationVerifier(settings, challenges, credentials),
    )


def get_state() -> ServerState:
    """Return the server state, building it from ``app.config`` on first use."""

    with _state_lock:
        state = app.extensions.get(_EXTENSION_KEY)
        if state is None:
            state = _build_state(app.config)
            app.extensions[_EXTENSION_KEY] = state
        return state


def reset_state(**overrides: Any) -> ServerState:
    """Rebuild the server state with an empty challenge table.

    The in-memory credential store starts empty; a file-backed store reloads
    its last snapshot.

    Keyword arguments are applied to ``app.config`` first, e.g.
    ``reset_state(WEBAUTHN_REQUIRE_USER_VERIFICATION=True)``.
    """

    with _state_lock:
        app.config.update(overrides)
        app.extensions.pop(_EXTENSION_KEY, None)
    return get_state()
