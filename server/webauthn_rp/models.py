"""Records shared by the challenge manager, the verifiers and the stores."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, unique
from typing import FrozenSet, List, Optional

from .cose import PublicKey

__all__ = ["Challenge", "ChallengePurpose", "Credential", "User"]


@unique
class ChallengePurpose(Enum):
    REGISTRATION = "registration"
    AUTHENTICATION = "authentication"


@dataclass(frozen=True)
class Challenge:
    """A single-use, expiring challenge issued for one ceremony.

    ``value`` is the unpadded base64url encoding of the random challenge bytes,
    exactly as it is sent to the client.
    """

    value: str
    purpose: ChallengePurpose
    created_at: datetime
    expires_at: datetime
    bound_username: Optional[str] = None
    consumed: bool = False

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass(frozen=True)
class Credential:
    credential_id: bytes
    public_key: PublicKey
    owner_user_id: bytes
    sign_count: int = 0
    transports: FrozenSet[str] = frozenset()
    aaguid: bytes = b"\x00" * 16
    attestation_format: str = "none"
    created_at: Optional[datetime] = None


@dataclass
class User:
    user_id: bytes
    username: str
    display_name: str
    credentials: List[Credential] = field(default_factory=list)
    created_at: Optional[datetime] = None
