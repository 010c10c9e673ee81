"""Background thread evicting expired challenges."""
from __future__ import annotations

import logging
import threading
from typing import Optional

from .challenges import ChallengeManager

_scheduler_thread: Optional[threading.Thread] = None
_stop_event = threading.Event()

_MIN_INTERVAL_SECONDS = 1.0


def _scheduler_loop(manager: ChallengeManager, interval: float, logger: logging.Logger) -> None:
    logger.info("Starting challenge cleanup scheduler (every %.0f seconds).", interval)
    while not _stop_event.wait(interval):
        try:
            manager.cleanup()
        except Exception as exc:  # pragma: no cover - keep the thread alive
            logger.exception("Challenge cleanup failed: %s", exc)
    logger.info("Stopping challenge cleanup scheduler.")


def is_running() -> bool:
    return bool(_scheduler_thread and _scheduler_thread.is_alive())


def start_scheduler(
    manager: ChallengeManager,
    interval: float,
    logger: logging.Logger,
) -> None:
    """Launch the cleanup thread if not already running."""

    global _scheduler_thread

    if is_running():
        return

    _stop_event.clear()
    _scheduler_thread = threading.Thread(
        target=_scheduler_loop,
        args=(manager, max(interval, _MIN_INTERVAL_SECONDS), logger),
        name="challenge-cleanup-scheduler",
        daemon=True,
    )
    _scheduler_thread.start()


def stop_scheduler() -> None:
    """Request the scheduler thread to stop (primarily for tests)."""

    _stop_event.set()
    if _scheduler_thread and _scheduler_thread.is_alive():
        _scheduler_thread.join(timeout=5)
