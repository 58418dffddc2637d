"""Callables blueprint: /api/<operation>

JSON request/response endpoints called by the app. Every operation needs
a bearer ID token. Body: {"data": {...}}; success: {"result": {...}};
failure: {"error": {"code": ..., "message": ...}}.

Routes:
- POST /api/startEpisode: create or return progress
- POST /api/submitAction: check an answer, advance progress
- POST /api/restartEpisode: reset progress to the first scene
- POST /api/createCheckoutSession: start (or reuse) a Stripe Checkout
- POST /api/verifyCheckoutSession: reconcile a session after redirect
"""

import logging

from flask import Blueprint, current_app, jsonify

from puzzlepass.decorators import callable_endpoint
from puzzlepass.errors import CallableError
from puzzlepass.extensions import limiter
from puzzlepass.services.episode_service import restart_episode, start_episode, submit_action
from puzzlepass.services.stripe_service import create_checkout_session, verify_checkout_session

logger = logging.getLogger(__name__)

callables_bp = Blueprint("callables", __name__, url_prefix="/api")


def _callable_rate_limit():
    return current_app.config.get("CALLABLE_RATE_LIMIT", "60 per minute")


@callables_bp.errorhandler(CallableError)
def handle_callable_error(error):
    """Render a CallableError as the structured error body."""
    if error.code == "internal":
        logger.error(f"Callable failed: {error.message}")
    return jsonify({"error": error.to_dict()}), error.http_status


# ──────────────────────────────────────────────
# Episodes
# ──────────────────────────────────────────────

@callables_bp.route("/startEpisode", methods=["POST"])
@limiter.limit(_callable_rate_limit)
@callable_endpoint
def start_episode_view(caller, data, settings):
    return start_episode(caller.uid, data.get("episodeId"))


@callables_bp.route("/submitAction", methods=["POST"])
@limiter.limit(_callable_rate_limit)
@callable_endpoint
def submit_action_view(caller, data, settings):
    return submit_action(
        caller.uid,
        data.get("episodeId"),
        data.get("sceneId"),
        data.get("action"),
    )


@callables_bp.route("/restartEpisode", methods=["POST"])
@limiter.limit(_callable_rate_limit)
@callable_endpoint
def restart_episode_view(caller, data, settings):
    return restart_episode(caller.uid, data.get("episodeId"))


# ──────────────────────────────────────────────
# Checkout
# ──────────────────────────────────────────────

@callables_bp.route("/createCheckoutSession", methods=["POST"])
@limiter.limit(_callable_rate_limit)
@callable_endpoint
def create_checkout_session_view(caller, data, settings):
    """Start Stripe Checkout for one episode.

    Returns {"url": ..., "reused": bool}; the client redirects to url.
    """
    return create_checkout_session(
        caller,
        data.get("episodeId"),
        settings,
        success_url=data.get("successUrl"),
        cancel_url=data.get("cancelUrl"),
    )


@callables_bp.route("/verifyCheckoutSession", methods=["POST"])
@limiter.limit(_callable_rate_limit)
@callable_endpoint
def verify_checkout_session_view(caller, data, settings):
    """Reconcile a Checkout Session after the client returns from Stripe.

    Safe to call repeatedly; also safe to race the webhook.
    """
    return verify_checkout_session(caller, data.get("sessionId"), settings)
