"""Credential storage for relying-party users and their credentials."""
from __future__ import annotations

import abc
import copy
import dataclasses
import logging
import os
import pickle
import threading
from typing import Dict, List, Optional

from .errors import DuplicateCredentialError, StorageError, UserNotFoundError
from .models import Credential, User

__all__ = [
    "CredentialStore",
    "InMemoryCredentialStore",
    "PickleCredentialStore",
]

logger = logging.getLogger(__name__)


class CredentialStore(abc.ABC):
    """Keyed storage for users and the credentials they own.

    Records handed out are copies; callers change stored state only through
    :meth:`store_user`, :meth:`add_credential` and :meth:`update_sign_count`.
    """

    @abc.abstractmethod
    def get_user(self, username: str) -> Optional[User]:
        ...

    @abc.abstractmethod
    def get_user_by_id(self, user_id: bytes) -> Optional[User]:
        ...

    @abc.abstractmethod
    def store_user(self, user: User) -> None:
        """Insert or replace the user record keyed by ``user.username``."""

    @abc.abstractmethod
    def get_credentials_by_username(self, username: str) -> List[Credential]:
        """Return the user's credentials in registration order, or ``[]``."""

    @abc.abstractmethod
    def get_credential_by_id(self, credential_id: bytes) -> Optional[Credential]:
        ...

    @abc.abstractmethod
    def update_sign_count(
        self,
        credential_id: bytes,
        new_count: int,
        expected_count: Optional[int] = None,
    ) -> bool:
        """Set the stored counter to ``new_count``.

        When ``expected_count`` is given the write only happens if the stored
        counter still equals it. Returns ``False`` when the credential is gone
        or the stored counter moved underneath the caller.
        """

    @abc.abstractmethod
    def add_credential(self, user_id: bytes, credential: Credential) -> None:
        """Append ``credential`` to the user owning ``user_id``.

        :raises UserNotFoundError: No user has ``user_id``.
        :raises DuplicateCredentialError: The credential ID is already registered.
        """

    @abc.abstractmethod
    def stats(self) -> Dict[str, int]:
        ...

    @abc.abstractmethod
    def clear(self) -> None:
        ...


class InMemoryCredentialStore(CredentialStore):
    """Process-local store; one lock serialises every read and write."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._users: Dict[str, User] = {}

    def _find_user_by_id(self, user_id: bytes) -> Optional[User]:
        for user in self._users.values():
            if user.user_id == user_id:
                return user
        return None

    def _find_credential(self, credential_id: bytes):
        for user in self._users.values():
            for index, credential in enumerate(user.credentials):
                if credential.credential_id == credential_id:
                    return user, index
        return None, None

    def _committed(self) -> None:
        """Hook run inside the lock after every successful write."""

    def get_user(self, username: str) -> Optional[User]:
        with self._lock:
            user = self._users.get(username)
            return copy.deepcopy(user) if user is not None else None

    def get_user_by_id(self, user_id: bytes) -> Optional[User]:
        with self._lock:
            user = self._find_user_by_id(bytes(user_id))
            return copy.deepcopy(user) if user is not None else None

    def store_user(self, user: User) -> None:
        with self._lock:
            self._users[user.username] = copy.deepcopy(user)
            self._committed()
        logger.debug("Stored user %s", user.username)

    def get_credentials_by_username(self, username: str) -> List[Credential]:
        with self._lock:
            user = self._users.get(username)
            return copy.deepcopy(user.credentials) if user is not None else []

    def get_credential_by_id(self, credential_id: bytes) -> Optional[Credential]:
        with self._lock:
            user, index = self._find_credential(bytes(credential_id))
            return copy.deepcopy(user.credentials[index]) if user is not None else None

    def update_sign_count(
        self,
        credential_id: bytes,
        new_count: int,
        expected_count: Optional[int] = None,
    ) -> bool:
        with self._lock:
            user, index = self._find_credential(bytes(credential_id))
            if user is None:
                return False
            current = user.credentials[index]
            if expected_count is not None and current.sign_count != expected_count:
                return False
            user.credentials[index] = dataclasses.replace(current, sign_count=new_count)
            self._committed()
            return True

    def add_credential(self, user_id: bytes, credential: Credential) -> None:
        with self._lock:
            user = self._find_user_by_id(bytes(user_id))
            if user is None:
                raise UserNotFoundError("No user owns the given user handle")
            existing, _ = self._find_credential(credential.credential_id)
            if existing is not None:
                raise DuplicateCredentialError("Credential is already registered")
            user.credentials.append(copy.deepcopy(credential))
            self._committed()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "users": len(self._users),
                "credentials": sum(len(u.credentials) for u in self._users.values()),
            }

    def clear(self) -> None:
        with self._lock:
            self._users.clear()
            self._committed()


class PickleCredentialStore(InMemoryCredentialStore):
    """In-memory store that snapshots every write to a pickle file.

    A write that cannot be flushed is rolled back to the last snapshot on
    disk before :class:`StorageError` propagates.
    """

    def __init__(self, path: str) -> None:
        super().__init__()
        self.path = os.path.abspath(path)
        self._snapshot = self._read_snapshot()
        self._users = pickle.loads(self._snapshot)

    def _read_snapshot(self) -> bytes:
        if not os.path.exists(self.path):
            return pickle.dumps({})
        try:
            with open(self.path, "rb") as f:
                snapshot = f.read()
            users = pickle.loads(snapshot)
        except (OSError, pickle.UnpicklingError, EOFError) as exc:
            raise StorageError(f"Unable to read credential store {self.path}: {exc}") from exc
        if not isinstance(users, dict):
            raise StorageError(f"Credential store {self.path} has an unexpected layout")
        logger.info("Loaded %d users from %s", len(users), self.path)
        return snapshot

    def _committed(self) -> None:
        snapshot = pickle.dumps(self._users)
        tmp_path = self.path + ".tmp"
        try:
            with open(tmp_path, "wb") as f:
                f.write(snapshot)
            os.replace(tmp_path, self.path)
        except OSError as exc:
            self._users = pickle.loads(self._snapshot)
            raise StorageError(f"Unable to write credential store {self.path}: {exc}") from exc
        self._snapshot = snapshot
