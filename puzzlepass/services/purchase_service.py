"""Purchase records: PaymentIntent -> (user, episode) mapping and refund reversal.

stripe_purchases/{paymentIntentId} -> {uid, episode, session, customer, status}
episode_purchases/{uid}__{episodeId} -> {current_payment_intent_id, status}
"""

import logging

from puzzlepass.extensions import db
from puzzlepass.models.purchase import EpisodePurchase, StripePurchase
from puzzlepass.services.entitlement_service import get_entitlement, revoke_episode
from puzzlepass.services.store import create_if_absent, doc_id, transactional_upsert

logger = logging.getLogger(__name__)


def episode_purchase_id(user_id, episode_id):
    return doc_id(user_id, episode_id)


def record_paid_purchase(user_id, episode_id, session_id, payment_intent_id,
                         customer_id=None):
    """Record a confirmed payment and point the (user, episode) pair at it.

    The purchase row is created once and never rewritten. The pointer
    moves to this PaymentIntent only when the row is new or no pointer
    exists yet, so a late duplicate of an older purchase can't take the
    pointer back from a newer one.

    Returns False if this PaymentIntent was already refunded (the caller
    must not grant access for it), True otherwise.
    """
    created = create_if_absent(
        StripePurchase,
        payment_intent_id,
        payment_intent_id=payment_intent_id,
        user_id=user_id,
        episode_id=episode_id,
        session_id=session_id,
        customer_id=customer_id,
        status="paid",
    )
    if not created:
        existing = db.session.get(StripePurchase, payment_intent_id)
        if existing is not None and existing.status == "refunded":
            logger.info(f"PaymentIntent {payment_intent_id} already refunded, not re-granting")
            return False

    key = episode_purchase_id(user_id, episode_id)

    def mutate(pointer):
        if pointer is None:
            pointer = EpisodePurchase(id=key, user_id=user_id, episode_id=episode_id)
            db.session.add(pointer)
        elif not created:
            return pointer.current_payment_intent_id
        pointer.current_payment_intent_id = payment_intent_id
        pointer.status = "paid"
        return payment_intent_id

    transactional_upsert(EpisodePurchase, key, mutate)
    return True


def revoke_if_current_purchase_refunded(payment_intent_id):
    """Handle a refund of `payment_intent_id`.

    Marks the purchase refunded. Access is revoked only if the pointer for
    that (user, episode) still names this PaymentIntent and the user is not
    a subscriber. Unknown PaymentIntents and superseded pointers are
    expected outcomes, not errors.

    Returns True if access was revoked.
    """

    def mark_refunded(purchase):
        if purchase is None:
            return None
        purchase.status = "refunded"
        if purchase.refunded_at is None:
            purchase.refunded_at = db.func.now()
        return (purchase.user_id, purchase.episode_id)

    owner = transactional_upsert(StripePurchase, payment_intent_id, mark_refunded)
    if owner is None:
        logger.info(f"Refund for unknown PaymentIntent {payment_intent_id}, nothing to revoke")
        return False

    user_id, episode_id = owner
    if not user_id or not episode_id:
        return False

    pointer = db.session.get(EpisodePurchase, episode_purchase_id(user_id, episode_id))
    if pointer is None or pointer.current_payment_intent_id != payment_intent_id:
        logger.info(
            f"Refund of {payment_intent_id} superseded by a newer purchase of "
            f"{episode_id} for user {user_id}, keeping access"
        )
        return False

    if get_entitlement(user_id).is_subscriber:
        logger.info(f"User {user_id} is a subscriber, keeping access to {episode_id}")
        return False

    revoke_episode(user_id, episode_id)

    def mark_pointer_refunded(current):
        if current is None or current.current_payment_intent_id != payment_intent_id:
            return False
        current.status = "refunded"
        return True

    transactional_upsert(
        EpisodePurchase, episode_purchase_id(user_id, episode_id), mark_pointer_refunded
    )
    return True
