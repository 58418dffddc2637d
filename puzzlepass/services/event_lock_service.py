"""Stripe event lock: at-most-once processing of webhook deliveries.

Claims stripe_events/{eventId} with a create-if-absent insert before any
side effect runs. A claim that already exists (processing or processed)
means another delivery owns the event. On failure the claim is deleted
so Stripe's redelivery gets a clean retry.
"""

import logging

from puzzlepass.extensions import db
from puzzlepass.models.stripe_event import StripeEvent
from puzzlepass.services.store import create_if_absent, delete_document, expires_in, transactional_upsert

logger = logging.getLogger(__name__)


def with_event_lock(event_id, fn, settings, event_type=None):
    """Run fn() at most once per Stripe event id.

    Returns True if fn ran (and succeeded), False if the event was already
    handled or is in flight. Exceptions from fn propagate after the lock
    is released.
    """
    created = create_if_absent(
        StripeEvent,
        event_id,
        stripe_event_id=event_id,
        event_type=event_type,
        status="processing",
        expires_at=expires_in(settings.stripe_event_ttl_seconds),
    )
    if not created:
        logger.info(f"Duplicate webhook event {event_id}, skipping")
        return False

    try:
        fn()
    except Exception:
        db.session.rollback()
        delete_document(StripeEvent, event_id)
        raise

    def mark_processed(lock):
        if lock is None:
            return False
        lock.status = "processed"
        lock.processed_at = db.func.now()
        return True

    transactional_upsert(StripeEvent, event_id, mark_processed)
    return True
