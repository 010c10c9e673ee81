"""Registration and authentication ceremony endpoints."""
from __future__ import annotations

from flask import jsonify, request

from ..config import app, get_state
from ..options import (
    AuthenticationCredential,
    AuthenticationOptionsRequest,
    RegistrationCredential,
    RegistrationOptionsRequest,
)


@app.route("/api/webauthn/register/options", methods=["POST"])
def register_options():
    options_request = RegistrationOptionsRequest.from_json(request.get_json(silent=True))
    app.logger.info("Getting registration options for %s", options_request.username)
    return jsonify(get_state().registration.options(options_request))


@app.route("/api/webauthn/register/verify", methods=["POST"])
def register_verify():
    response = RegistrationCredential.from_json(request.get_json(silent=True))
    result = get_state().registration.verify(response)
    return jsonify(result.to_json())


@app.route("/api/webauthn/authenticate/options", methods=["POST"])
def authenticate_options():
    options_request = AuthenticationOptionsRequest.from_json(request.get_json(silent=True))
    app.logger.info(
        "Getting authentication options for %s", options_request.username or "discoverable"
    )
    return jsonify(get_state().authentication.options(options_request))


@app.route("/api/webauthn/authenticate/verify", methods=["POST"])
def authenticate_verify():
    response = AuthenticationCredential.from_json(request.get_json(silent=True))
    result = get_state().authentication.verify(response)
    return jsonify(result.to_json())
