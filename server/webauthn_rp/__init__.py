"""WebAuthn relying-party verification; ``webauthn_rp.app`` is the Flask server."""
from __future__ import annotations

from importlib import import_module

__all__ = ["app", "main"]


def __getattr__(name):
    # Importing the verifiers should not register routes on the Flask app.
    if name in __all__:
        return getattr(import_module(".server", __name__), name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
