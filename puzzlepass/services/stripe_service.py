"""Stripe service: episode checkout and payment reconciliation.

Responsible for:
- Creating Stripe Checkout Sessions (one-time episode unlocks), reusing
  an open session where possible
- Verifying a session after the client returns from Stripe (self-healing
  path, works even if the webhook is late or misconfigured)
- Handling incoming webhooks with signature verification
- Dispatching events under the stripe_events lock
- Refund reversal via stripe_purchases / episode_purchases

The webhook and the verify call may both fulfil the same session, in any
order. Every step is idempotent, so the second one is a no-op.
"""

import logging
from urllib.parse import urlsplit

import stripe

from puzzlepass.errors import CallableError
from puzzlepass.extensions import db
from puzzlepass.models.episode import Episode
from puzzlepass.services.checkout_attempt_service import (
    MODE_REUSE,
    get_or_create_attempt,
    mark_attempt_status,
    record_open_session,
)
from puzzlepass.services.entitlement_service import (
    get_entitlement,
    grant_episode,
    user_can_access_episode,
)
from puzzlepass.services.episode_service import get_published_episode
from puzzlepass.services.event_lock_service import with_event_lock
from puzzlepass.services.purchase_service import (
    record_paid_purchase,
    revoke_if_current_purchase_refunded,
)
from puzzlepass.services.rate_limit_service import enforce_rate_limit

logger = logging.getLogger(__name__)

CHECKOUT_PURPOSE = "episode_unlock"
SESSION_ID_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"
IDEMPOTENCY_KEY_PREFIX = "pps_attempt_"
MAX_REUSE_CHECKS = 2

_DEFAULT_PORTS = {"http": 80, "https": 443}


def _configure_stripe(settings):
    if not settings.stripe_secret_key:
        raise CallableError("failed-precondition", "Missing STRIPE_SECRET_KEY.")
    stripe.api_key = settings.stripe_secret_key


def _expandable_id(value):
    """Stripe fields like payment_intent may be an id string or an expanded object."""
    if isinstance(value, str):
        return value or None
    if value is not None and hasattr(value, "get"):
        return value.get("id")
    return None


# ──────────────────────────────────────────────
# Redirect URL validation
# ──────────────────────────────────────────────

def _origin(url):
    """Scheme://host[:port] with default ports dropped. Raises ValueError on junk."""
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    host = parts.hostname
    if not host:
        raise ValueError(f"No host in {url!r}")
    port = parts.port
    if port and port != _DEFAULT_PORTS.get(scheme):
        return f"{scheme}://{host}:{port}"
    return f"{scheme}://{host}"


def validate_redirect_url(url, kind, settings):
    """Accept same-origin web URLs or allow-listed custom schemes.

    `kind` is "successUrl" or "cancelUrl" (used in error messages).
    Returns the URL unchanged; raises invalid-argument otherwise.
    """
    # Stripe substitutes the placeholder itself; validate a concrete URL
    candidate = str(url).replace(SESSION_ID_PLACEHOLDER, "cs_test_placeholder")

    try:
        scheme = urlsplit(candidate).scheme.lower()
    except ValueError:
        raise CallableError("invalid-argument", f"Invalid {kind}.")
    if not scheme:
        raise CallableError("invalid-argument", f"Invalid {kind}.")

    if scheme in ("http", "https"):
        try:
            origin = _origin(candidate)
        except ValueError:
            raise CallableError("invalid-argument", f"Invalid {kind}.")

        try:
            app_origin = _origin(settings.app_base_url) if settings.app_base_url else None
        except ValueError:
            app_origin = None

        if app_origin and origin != app_origin:
            raise CallableError(
                "invalid-argument",
                f"{kind} origin not allowed. Expected {app_origin}",
            )
        return str(url)

    # Custom schemes for mobile (puzzlepass://, exp://, etc.)
    if scheme not in settings.allowed_mobile_schemes:
        raise CallableError("invalid-argument", f"{kind} scheme not allowed: {scheme}")
    return str(url)


# ──────────────────────────────────────────────
# Checkout Sessions
# ──────────────────────────────────────────────

def _try_reuse_open_session(user_id, episode_id, attempt):
    """Hand out the stored session again if Stripe still reports it OPEN.

    Returns the callable result, or None when a new session is needed.
    A Stripe error counts as "not reusable" and is recorded as unknown.
    """
    try:
        session = stripe.checkout.Session.retrieve(attempt.stripe_session_id)
    except stripe.StripeError as e:
        logger.warning(
            f"Could not retrieve session {attempt.stripe_session_id} for reuse: {e}"
        )
        mark_attempt_status(user_id, episode_id, "unknown",
                            attempt_id=attempt.attempt_id)
        return None

    status = session.get("status")
    url = session.get("url") or attempt.stripe_session_url

    if status == "open" and url:
        mark_attempt_status(user_id, episode_id, "open", stripe_session_url=url,
                            attempt_id=attempt.attempt_id)
        logger.info(f"Reusing open session {attempt.stripe_session_id} for user {user_id}")
        return {"url": url, "reused": True}

    next_status = status if status in ("complete", "expired") else "unknown"
    mark_attempt_status(user_id, episode_id, next_status,
                        attempt_id=attempt.attempt_id)
    return None


def create_checkout_session(caller, episode_id, settings, success_url=None,
                            cancel_url=None):
    """Create (or reuse) a Stripe Checkout Session for one episode.

    Returns {"url": ..., "reused": bool}.
    Raises CallableError for every rejected precondition.
    """
    _configure_stripe(settings)

    if settings.require_non_anon_for_checkout and caller.is_anonymous_account:
        raise CallableError(
            "failed-precondition", "Please create a full account before purchasing."
        )

    user_id = caller.uid
    episode = get_published_episode(episode_id)

    if episode.is_free_preview:
        raise CallableError("failed-precondition", "Episode is free. No purchase needed.")

    if user_can_access_episode(get_entitlement(user_id), episode):
        raise CallableError(
            "failed-precondition", "You already own access to this episode."
        )

    if not episode.stripe_price_id:
        raise CallableError("failed-precondition", "Missing stripePriceId.")

    enforce_rate_limit(user_id, episode.id, settings)

    attempt = get_or_create_attempt(user_id, episode.id, settings)
    for _ in range(MAX_REUSE_CHECKS):
        if attempt.mode != MODE_REUSE:
            break
        reused = _try_reuse_open_session(user_id, episode.id, attempt)
        if reused:
            return reused
        # The stale session is now marked complete/expired/unknown, so this mints a
        # fresh attempt id, unless another caller has opened a newer session meanwhile
        attempt = get_or_create_attempt(user_id, episode.id, settings)

    final_success_url = (
        validate_redirect_url(success_url, "successUrl", settings)
        if success_url
        else f"{settings.app_base_url}/purchase?purchase=success"
             f"&session_id={SESSION_ID_PLACEHOLDER}"
    )
    final_cancel_url = (
        validate_redirect_url(cancel_url, "cancelUrl", settings)
        if cancel_url
        else f"{settings.app_base_url}/purchase?purchase=cancel"
    )

    try:
        session = stripe.checkout.Session.create(
            mode="payment",
            line_items=[{"price": episode.stripe_price_id, "quantity": 1}],
            success_url=final_success_url,
            cancel_url=final_cancel_url,
            metadata={
                "uid": user_id,
                "episode_id": episode.id,
                "type": CHECKOUT_PURPOSE,
            },
            client_reference_id=user_id,
            idempotency_key=f"{IDEMPOTENCY_KEY_PREFIX}{attempt.attempt_id}",
        )
    except stripe.StripeError as e:
        logger.error(f"Checkout session create failed for {episode.id}: {e}", exc_info=True)
        raise CallableError("internal", "Could not start checkout. Please try again.")

    session_id = session.get("id")
    session_url = session.get("url")
    if not session_url:
        raise CallableError("internal", "Stripe session missing url.")

    record_open_session(user_id, episode.id, attempt.attempt_id, session_id, session_url)
    logger.info(f"Created checkout session {session_id} for user {user_id} episode {episode.id}")
    return {"url": session_url, "reused": False}


# ──────────────────────────────────────────────
# Fulfilment (shared by verify + webhook)
# ──────────────────────────────────────────────

def fulfil_paid_session(session, user_id, episode_id):
    """Record the purchase, unlock the episode, complete the ledger attempt.

    Safe to run any number of times, from either path, in any order.
    Returns False if the session's PaymentIntent was already refunded.
    """
    payment_intent_id = _expandable_id(session.get("payment_intent"))
    customer_id = _expandable_id(session.get("customer"))

    if payment_intent_id:
        recorded = record_paid_purchase(
            user_id=user_id,
            episode_id=episode_id,
            session_id=session.get("id"),
            payment_intent_id=payment_intent_id,
            customer_id=customer_id,
        )
        if not recorded:
            return False

    grant_episode(user_id, episode_id, stripe_customer_id=customer_id)
    mark_attempt_status(user_id, episode_id, "complete")
    return True


def _session_owner(session):
    """Return (uid, episode_id) from an episode-unlock session, else (None, None)."""
    metadata = session.get("metadata") or {}
    uid = metadata.get("uid")
    episode_id = metadata.get("episode_id")
    if metadata.get("type") != CHECKOUT_PURPOSE or not uid or not episode_id:
        return None, None
    return uid, episode_id


# ──────────────────────────────────────────────
# Verify after redirect
# ──────────────────────────────────────────────

def verify_checkout_session(caller, session_id, settings):
    """Reconcile a Checkout Session the caller just returned from.

    Returns {"status": "paid_unlocked" | "already_entitled" | "not_paid",
             "episodeId": ..., ["paymentStatus": ...]}.
    """
    _configure_stripe(settings)

    if not session_id or not isinstance(session_id, str):
        raise CallableError("invalid-argument", "Missing sessionId.")

    try:
        session = stripe.checkout.Session.retrieve(session_id)
    except stripe.InvalidRequestError as e:
        logger.info(f"verifyCheckoutSession: no such session {session_id}: {e}")
        raise CallableError("not-found", "Checkout session not found.")
    except stripe.StripeError as e:
        logger.error(f"verifyCheckoutSession: Stripe error for {session_id}: {e}", exc_info=True)
        raise CallableError("internal", "Could not verify checkout session.")

    owner_uid, episode_id = _session_owner(session)
    if not owner_uid:
        raise CallableError(
            "failed-precondition", "Not a valid PuzzlePass purchase session."
        )

    if owner_uid != caller.uid:
        logger.warning(
            f"User {caller.uid} tried to verify session {session_id} owned by {owner_uid}"
        )
        raise CallableError(
            "permission-denied", "This checkout session does not belong to you."
        )

    episode = db.session.get(Episode, episode_id)
    if episode is None:
        raise CallableError("not-found", "Episode not found.")

    if user_can_access_episode(get_entitlement(caller.uid), episode):
        return {"status": "already_entitled", "episodeId": episode_id}

    payment_status = session.get("payment_status")
    if payment_status != "paid":
        return {
            "status": "not_paid",
            "episodeId": episode_id,
            "paymentStatus": payment_status,
        }

    if not fulfil_paid_session(session, caller.uid, episode_id):
        return {"status": "not_paid", "episodeId": episode_id, "paymentStatus": "refunded"}

    logger.info(f"verifyCheckoutSession unlocked {episode_id} for user {caller.uid}")
    return {"status": "paid_unlocked", "episodeId": episode_id}


# ──────────────────────────────────────────────
# Webhook Handling
# ──────────────────────────────────────────────

def verify_webhook_signature(payload, sig_header, settings):
    """Verify Stripe webhook signature and construct the event.

    Returns the verified Stripe event object.
    Raises stripe.SignatureVerificationError on invalid signature.
    """
    return stripe.Webhook.construct_event(
        payload, sig_header, settings.stripe_webhook_secret
    )


def handle_webhook_event(event, settings):
    """Process a verified Stripe webhook event under the event lock.

    Returns (success: bool, message: str). success=False means the handler
    failed and the lock was released, so the caller should answer 500 and
    let Stripe redeliver.
    """
    event_id = event["id"]
    event_type = event["type"]

    handlers = {
        "checkout.session.completed": _handle_checkout_completed,
        "checkout.session.async_payment_succeeded": _handle_checkout_completed,
        "charge.refunded": _handle_charge_refunded,
    }
    handler = handlers.get(event_type)

    def process():
        if handler:
            handler(event)

    try:
        processed = with_event_lock(event_id, process, settings, event_type=event_type)
    except Exception as e:
        logger.error(f"Error handling {event_type} ({event_id}): {e}", exc_info=True)
        return False, str(e)

    return True, "processed" if processed else "already_processed"


# ──────────────────────────────────────────────
# Event Handlers
# ──────────────────────────────────────────────

def _handle_checkout_completed(event):
    """Handle checkout.session.completed (and async_payment_succeeded).

    Only paid episode-unlock sessions are fulfilled; anything else is
    acknowledged without side effects.
    """
    session = event["data"]["object"]
    uid, episode_id = _session_owner(session)

    if not uid:
        logger.info(f"{event['type']} {session.get('id')} is not an episode unlock, ignoring")
        return

    if session.get("payment_status") != "paid":
        logger.info(
            f"{event['type']} {session.get('id')} payment_status="
            f"{session.get('payment_status')}, waiting for payment"
        )
        return

    if fulfil_paid_session(session, uid, episode_id):
        logger.info(f"Webhook unlocked {episode_id} for user {uid}")


def _handle_charge_refunded(event):
    """Handle charge.refunded: revoke access if the refunded purchase still owns it."""
    charge = event["data"]["object"]
    payment_intent_id = _expandable_id(charge.get("payment_intent"))

    if not payment_intent_id or charge.get("refunded") is not True:
        logger.info(f"charge.refunded {charge.get('id')} is partial or has no PaymentIntent")
        return

    revoke_if_current_purchase_refunded(payment_intent_id)
