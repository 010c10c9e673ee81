"""Application entry point for the WebAuthn relying-party server."""
from __future__ import annotations

import logging

from . import cleanup_scheduler
from .config import app, get_state

# Import the route modules so their decorators register endpoints with Flask.
from . import routes  # noqa: F401

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _configure_logging() -> None:
    logging.basicConfig(level=logging.INFO, format=_LOG_FORMAT)


def main() -> None:
    _configure_logging()
    state = get_state()
    settings = state.settings

    cleanup_scheduler.start_scheduler(state.challenges, settings.cleanup_interval, app.logger)

    host = app.config.get("WEBAUTHN_HOST") or "localhost"
    port = int(app.config.get("WEBAUTHN_PORT") or 3000)
    app.logger.info(
        "Serving relying party %s (%s) on http://%s:%d", settings.rp_id, settings.rp_name, host, port
    )
    try:
        app.run(host=host, port=port, threaded=True)
    finally:
        cleanup_scheduler.stop_scheduler()


__all__ = ["app", "main"]


if __name__ == "__main__":  # pragma: no cover - convenience script entry point.
    main()
