"""Webhooks blueprint: /stripe/webhooks

Receives Stripe webhook events for episode purchases and refunds.
Unauthenticated; trust comes only from the Stripe-Signature header,
checked against the raw request body.

Status codes tell Stripe what to do next: 2xx stops redelivery, 5xx
asks for it, 4xx means the request itself was bad.
"""

import logging

import stripe
from flask import Blueprint, jsonify, request

from puzzlepass.decorators import get_checkout_settings
from puzzlepass.services.stripe_service import handle_webhook_event, verify_webhook_signature

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/stripe")


@webhooks_bp.route("/webhooks", methods=["POST"])
def stripe_webhook():
    """Verify, then process one Stripe event at most once.

    400  missing or invalid signature / unparseable payload
    500  webhook secret not configured, or the handler failed (lock released)
    200  {"received": true, "status": "processed" | "already_processed"}
    """
    settings = get_checkout_settings()
    sig_header = request.headers.get("Stripe-Signature")

    if not sig_header:
        logger.warning("Webhook received without Stripe-Signature header")
        return jsonify({"error": "Missing signature"}), 400

    if not settings.stripe_webhook_secret:
        logger.error("STRIPE_WEBHOOK_SECRET is not configured, asking Stripe to retry")
        return jsonify({"error": "Webhook secret not configured"}), 500

    try:
        event = verify_webhook_signature(request.get_data(as_text=True), sig_header, settings)
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        return jsonify({"error": "Invalid signature"}), 400
    except ValueError as e:
        logger.warning(f"Webhook payload could not be parsed: {e}")
        return jsonify({"error": "Invalid payload"}), 400

    success, message = handle_webhook_event(event, settings)
    if not success:
        return jsonify({"error": message}), 500

    logger.info(f"Webhook {event['type']} ({event['id']}): {message}")
    return jsonify({"received": True, "status": message}), 200
