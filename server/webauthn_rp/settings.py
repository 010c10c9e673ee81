"""Relying-party policy shared by the options builders and both verifiers."""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, FrozenSet, Mapping, Optional

from .challenges import DEFAULT_CHALLENGE_LENGTH, MIN_CHALLENGE_LENGTH

__all__ = [
    "DEFAULT_CORS_ORIGINS",
    "DEFAULT_ORIGIN",
    "DEFAULT_RP_ID",
    "DEFAULT_RP_NAME",
    "RelyingPartySettings",
    "parse_origins",
]

DEFAULT_RP_NAME = "WebAuthn Demo"
DEFAULT_RP_ID = "localhost"
DEFAULT_ORIGIN = "http://localhost:4201"
DEFAULT_CORS_ORIGINS = frozenset({"http://localhost:4200", "http://localhost:4201"})
DEFAULT_CHALLENGE_TTL_MS = 60000
DEFAULT_CLEANUP_INTERVAL_SECONDS = 300.0

_FALSE_VALUES = {"", "0", "false", "off", "no"}


def parse_origins(raw_value: Any) -> FrozenSet[str]:
    """Normalise a comma, semicolon or newline separated list of origins."""

    if raw_value is None:
        return frozenset()
    if isinstance(raw_value, str):
        components = re.split(r"[,;\n]+", raw_value)
    else:
        components = [str(component) for component in raw_value]
    return frozenset(c.strip().rstrip("/") for c in components if c.strip())


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in _FALSE_VALUES
    return bool(value)


def _positive_int(value: Any, name: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an integer, got {value!r}") from None
    if number <= 0:
        raise ValueError(f"{name} must be positive, got {number}")
    return number


@dataclass(frozen=True)
class RelyingPartySettings:
    rp_id: str = DEFAULT_RP_ID
    rp_name: str = DEFAULT_RP_NAME
    origins: FrozenSet[str] = frozenset({DEFAULT_ORIGIN})
    challenge_ttl: timedelta = timedelta(milliseconds=DEFAULT_CHALLENGE_TTL_MS)
    challenge_length: int = DEFAULT_CHALLENGE_LENGTH
    require_user_verification: bool = False
    credential_store_path: Optional[str] = None
    cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL_SECONDS

    def __post_init__(self) -> None:
        if not self.rp_id:
            raise ValueError("RP ID must not be empty")
        if not self.origins:
            raise ValueError("At least one allowed origin is required")
        if self.challenge_ttl <= timedelta(0):
            raise ValueError("Challenge TTL must be positive")
        if self.challenge_length < MIN_CHALLENGE_LENGTH:
            raise ValueError(f"Challenge length must be at least {MIN_CHALLENGE_LENGTH} bytes")
        if self.cleanup_interval <= 0:
            raise ValueError("Cleanup interval must be positive")

    @property
    def timeout_ms(self) -> int:
        return int(self.challenge_ttl.total_seconds() * 1000)

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> "RelyingPartySettings":
        """Build settings from ``WEBAUTHN_*`` keys, as found in Flask config or the environment.

        :raises ValueError: A value is present but unusable.
        """

        origins = config.get("WEBAUTHN_ORIGINS")
        store_path = config.get("WEBAUTHN_CREDENTIAL_STORE_PATH")
        return cls(
            rp_id=(config.get("WEBAUTHN_RP_ID") or DEFAULT_RP_ID).strip(),
            rp_name=(config.get("WEBAUTHN_RP_NAME") or DEFAULT_RP_NAME).strip(),
            origins=parse_origins(origins) if origins else frozenset({DEFAULT_ORIGIN}),
            challenge_ttl=timedelta(
                milliseconds=_positive_int(
                    config.get("WEBAUTHN_CHALLENGE_TTL_MS", DEFAULT_CHALLENGE_TTL_MS),
                    "WEBAUTHN_CHALLENGE_TTL_MS",
                )
            ),
            challenge_length=_positive_int(
                config.get("WEBAUTHN_CHALLENGE_LENGTH", DEFAULT_CHALLENGE_LENGTH),
                "WEBAUTHN_CHALLENGE_LENGTH",
            ),
            require_user_verification=_flag(
                config.get("WEBAUTHN_REQUIRE_USER_VERIFICATION", False)
            ),
            credential_store_path=store_path or None,
            cleanup_interval=float(
                _positive_int(
                    config.get(
                        "WEBAUTHN_CLEANUP_INTERVAL_SECONDS", DEFAULT_CLEANUP_INTERVAL_SECONDS
                    ),
                    "WEBAUTHN_CLEANUP_INTERVAL_SECONDS",
                )
            ),
        )
