"""
Custom route decorators for callable endpoints.

- callable_endpoint: app-check (when enforced) + authenticated caller,
  unwraps the {"data": {...}} request envelope and wraps the return value
  as {"result": ...}.
"""

from functools import wraps

from flask import current_app, jsonify, request
from flask_login import current_user

from puzzlepass.auth import verify_app_check_token
from puzzlepass.errors import CallableError


def get_checkout_settings():
    """The CheckoutSettings built once by create_app()."""
    return current_app.extensions["checkout_settings"]


def callable_endpoint(f):
    """Require an authenticated caller; pass (caller, data, settings) to the view."""

    @wraps(f)
    def decorated(*args, **kwargs):
        settings = get_checkout_settings()

        if settings.enforce_app_check and not verify_app_check_token(
            request.headers.get("X-App-Check")
        ):
            raise CallableError("unauthenticated", "Missing or invalid App Check token.")

        if not current_user.is_authenticated:
            raise CallableError("unauthenticated", "You must be signed in.")

        payload = request.get_json(silent=True) or {}
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            data = {}

        result = f(current_user, data, settings, *args, **kwargs)
        return jsonify({"result": result})

    return decorated
