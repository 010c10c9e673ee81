"""Health check, request logging and error mapping."""
from __future__ import annotations

import time
from datetime import UTC, datetime

from flask import g, jsonify, request

from ..config import __version__, app, get_state
from ..errors import CeremonyError, StorageError, UserNotFoundError

GENERIC_FAILURE_MESSAGE = "Verification failed."


@app.before_request
def _start_timer() -> None:
    g.request_started = time.perf_counter()


@app.after_request
def _log_request(response):
    started = g.pop("request_started", None)
    duration_ms = (time.perf_counter() - started) * 1000 if started is not None else 0.0
    app.logger.info(
        "%s %s - %d (%.1f ms)", request.method, request.path, response.status_code, duration_ms
    )
    return response


@app.errorhandler(CeremonyError)
def _ceremony_failed(exc: CeremonyError):
    if exc.sensitive:
        return jsonify({"success": False, "message": GENERIC_FAILURE_MESSAGE}), 400

    status = 404 if isinstance(exc, UserNotFoundError) else 400
    return jsonify({"success": False, "error": exc.kind.value, "message": str(exc)}), status


@app.errorhandler(StorageError)
def _storage_failed(exc: StorageError):
    app.logger.error("Credential storage failure: %s", exc)
    return jsonify({"success": False, "message": "Storage unavailable."}), 503


@app.route("/api/health", methods=["GET"])
def health():
    state = get_state()
    settings = state.settings
    credential_stats = state.credentials.stats()
    return jsonify(
        {
            "status": "ok",
            "timestamp": datetime.now(UTC).isoformat(),
            "version": __version__,
            "config": {
                "rpName": settings.rp_name,
                "rpId": settings.rp_id,
                "origins": sorted(settings.origins),
                "challengeTimeout": settings.timeout_ms,
            },
            "storage": {
                "challenges": len(state.challenges.table),
                "users": credential_stats["users"],
                "credentials": credential_stats["credentials"],
            },
        }
    )
