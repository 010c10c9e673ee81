"""Issuing and single-use consumption of ceremony challenges.

A challenge is valid for exactly one verification attempt that succeeds, and
only until it expires. Expiry is decided by comparing timestamps when the
challenge is consumed; :meth:`ChallengeManager.cleanup` merely reclaims memory.
"""
from __future__ import annotations

import abc
import dataclasses
import logging
import secrets
import threading
from datetime import UTC, datetime, timedelta
from typing import Callable, Dict, Optional

from .encoding import canonical_base64url, encode_base64url
from .errors import (
    ChallengeAlreadyUsedError,
    ChallengeExpiredError,
    ChallengeNotFoundError,
    ChallengePurposeMismatchError,
    ChallengeUserMismatchError,
)
from .models import Challenge, ChallengePurpose

__all__ = [
    "DEFAULT_CHALLENGE_LENGTH",
    "DEFAULT_CHALLENGE_TTL",
    "MIN_CHALLENGE_LENGTH",
    "ChallengeManager",
    "ChallengeStore",
    "InMemoryChallengeStore",
]

logger = logging.getLogger(__name__)

MIN_CHALLENGE_LENGTH = 16
DEFAULT_CHALLENGE_LENGTH = 32
DEFAULT_CHALLENGE_TTL = timedelta(milliseconds=60000)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ChallengeStore(abc.ABC):
    """Shared challenge table.

    Implementations must make :meth:`consume` atomic: the ``validate`` callback
    and the switch to ``consumed=True`` happen in one critical section (or one
    conditional update), so two racing consumers never both succeed.
    """

    @abc.abstractmethod
    def put(self, challenge: Challenge) -> None:
        """Insert ``challenge``, replacing any record with the same value."""

    @abc.abstractmethod
    def get(self, value: str) -> Optional[Challenge]:
        """Return the record for ``value`` without consuming it."""

    @abc.abstractmethod
    def consume(self, value: str, validate: Callable[[Challenge], None]) -> Challenge:
        """Atomically validate and mark the record consumed.

        :raises ChallengeNotFoundError: No record exists for ``value``.
        :raises CeremonyError: Whatever ``validate`` raises; the record is left untouched.
        """

    @abc.abstractmethod
    def evict_expired(self, now: datetime) -> int:
        """Delete every record that expired before ``now``; return how many."""

    @abc.abstractmethod
    def __len__(self) -> int: ...

    @abc.abstractmethod
    def clear(self) -> None: ...


class InMemoryChallengeStore(ChallengeStore):
    """Process-local challenge table guarded by a single lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._challenges: Dict[str, Challenge] = {}

    def put(self, challenge: Challenge) -> None:
        with self._lock:
            self._challenges[challenge.value] = challenge

    def get(self, value: str) -> Optional[Challenge]:
        with self._lock:
            return self._challenges.get(value)

    def consume(self, value: str, validate: Callable[[Challenge], None]) -> Challenge:
        with self._lock:
            stored = self._challenges.get(value)
            if stored is None:
                raise ChallengeNotFoundError("Challenge not found")
            validate(stored)
            consumed = dataclasses.replace(stored, consumed=True)
            self._challenges[value] = consumed
            return consumed

    def evict_expired(self, now: datetime) -> int:
        with self._lock:
            expired = [value for value, c in self._challenges.items() if c.is_expired(now)]
            for value in expired:
                del self._challenges[value]
            return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._challenges)

    def clear(self) -> None:
        with self._lock:
            self._challenges.clear()


class ChallengeManager:
    """Generates, records and consumes challenges for both ceremony types."""

    def __init__(
        self,
        store: Optional[ChallengeStore] = None,
        *,
        ttl: timedelta = DEFAULT_CHALLENGE_TTL,
        length: int = DEFAULT_CHALLENGE_LENGTH,
        clock: Clock = _utcnow,
    ) -> None:
        if length < MIN_CHALLENGE_LENGTH:
            raise ValueError(f"Challenges must be at least {MIN_CHALLENGE_LENGTH} bytes")
        if ttl <= timedelta(0):
            raise ValueError("Challenge TTL must be positive")
        self.table = store if store is not None else InMemoryChallengeStore()
        self.ttl = ttl
        self.length = length
        self._clock = clock

    def generate(self) -> str:
        """Return fresh random challenge bytes, base64url-encoded for transport."""
        return encode_base64url(secrets.token_bytes(self.length))

    def store(
        self,
        value: str,
        purpose: ChallengePurpose,
        bound_username: Optional[str] = None,
    ) -> Challenge:
        now = self._clock()
        challenge = Challenge(
            value=canonical_base64url(value),
            purpose=purpose,
            created_at=now,
            expires_at=now + self.ttl,
            bound_username=bound_username,
        )
        self.table.put(challenge)
        logger.debug(
            "Stored %s challenge %s... expiring at %s",
            purpose.value,
            challenge.value[:8],
            challenge.expires_at.isoformat(),
        )
        return challenge

    def issue(self, purpose: ChallengePurpose, bound_username: Optional[str] = None) -> Challenge:
        """Generate and store a challenge in one step."""
        return self.store(self.generate(), purpose, bound_username)

    def verify_and_consume(
        self,
        value: str,
        purpose: ChallengePurpose,
        provided_username: Optional[str] = None,
    ) -> Challenge:
        """Consume ``value`` for ``purpose`` exactly once.

        The username binding is only checked when a username is asserted;
        ``provided_username=None`` leaves that check to the caller.
        """

        try:
            key = canonical_base64url(value)
        except ValueError as exc:
            raise ChallengeNotFoundError("Challenge not found") from exc
        now = self._clock()

        def _validate(challenge: Challenge) -> None:
            if challenge.is_expired(now):
                raise ChallengeExpiredError("Challenge expired")
            if challenge.consumed:
                raise ChallengeAlreadyUsedError("Challenge already used")
            if challenge.purpose is not purpose:
                raise ChallengePurposeMismatchError(
                    f"Challenge was issued for {challenge.purpose.value}, not {purpose.value}"
                )
            if (
                challenge.bound_username is not None
                and provided_username is not None
                and challenge.bound_username != provided_username
            ):
                raise ChallengeUserMismatchError("Challenge was issued to a different user")

        consumed = self.table.consume(key, _validate)
        logger.debug("Consumed %s challenge %s...", purpose.value, key[:8])
        return consumed

    def cleanup(self) -> int:
        """Evict expired challenges; return the number removed."""
        removed = self.table.evict_expired(self._clock())
        if removed:
            logger.info("Cleaned up %d expired challenges", removed)
        return removed
