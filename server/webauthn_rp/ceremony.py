"""State tracking shared by the registration and authentication verifiers."""
from __future__ import annotations

import logging
from enum import Enum
from typing import Generic, List, Optional, TypeVar

from .errors import CeremonyError

__all__ = ["CeremonyTrace"]

S = TypeVar("S", bound=Enum)


class CeremonyTrace(Generic[S]):
    """Records the states one ceremony passes through.

    A trace only moves forward. Once :meth:`reject` has been called the trace
    is terminal and further transitions raise ``RuntimeError``.
    """

    def __init__(self, name: str, start: S, rejected: S, logger: logging.Logger) -> None:
        self.name = name
        self.state: S = start
        self.history: List[S] = [start]
        self.error: Optional[CeremonyError] = None
        self._rejected = rejected
        self._logger = logger

    @property
    def rejected(self) -> bool:
        return self.state is self._rejected

    def advance(self, state: S) -> None:
        if self.rejected:
            raise RuntimeError(f"{self.name} ceremony was already rejected")
        self._logger.debug("%s: %s -> %s", self.name, self.state.name, state.name)
        self.state = state
        self.history.append(state)

    def reject(self, error: CeremonyError) -> None:
        self._logger.warning(
            "%s rejected in state %s: %s (%s)",
            self.name,
            self.state.name,
            error.kind.value,
            error,
        )
        self.error = error
        self.state = self._rejected
        self.history.append(self._rejected)
