"""Entitlement service: reads and mutations of entitlements/{uid}.

Responsible for:
- Reading a user's entitlement (subscriber flag + unlocked episode set)
- The access rule shared by the content engine and checkout
- Granting an episode (set-union, safe to repeat or race)
- Revoking an episode (refunds and manual support revokes)
"""

import logging
from dataclasses import dataclass, field

from puzzlepass.extensions import db
from puzzlepass.models.entitlement import Entitlement, UnlockedEpisode
from puzzlepass.services.store import create_if_absent, transactional_upsert

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntitlementView:
    is_subscriber: bool = False
    unlocked_episode_ids: frozenset = field(default_factory=frozenset)
    stripe_customer_id: str = None


def get_entitlement(user_id):
    """Return the user's entitlement. Missing records read as "nothing unlocked"."""
    ent = db.session.get(Entitlement, user_id)
    unlocked = (
        db.session.query(UnlockedEpisode.episode_id)
        .filter(UnlockedEpisode.user_id == user_id)
        .all()
    )
    return EntitlementView(
        is_subscriber=bool(ent and ent.is_subscriber),
        unlocked_episode_ids=frozenset(row.episode_id for row in unlocked),
        stripe_customer_id=ent.stripe_customer_id if ent else None,
    )


def user_can_access_episode(entitlement, episode):
    if episode.is_free_preview:
        return True
    if entitlement.is_subscriber:
        return True
    return episode.id in entitlement.unlocked_episode_ids


def _touch_entitlement(user_id, **fields):
    """Create-or-update the entitlement header row."""

    def mutate(ent):
        if ent is None:
            ent = Entitlement(user_id=user_id)
            db.session.add(ent)
        for name, value in fields.items():
            setattr(ent, name, value)
        ent.updated_at = db.func.now()
        return ent.user_id

    transactional_upsert(Entitlement, user_id, mutate)


def grant_episode(user_id, episode_id, stripe_customer_id=None):
    """Add episode_id to the user's unlocked set.

    Returns True if this call unlocked it, False if it was already unlocked.
    """
    if stripe_customer_id:
        _touch_entitlement(user_id, stripe_customer_id=stripe_customer_id)
    else:
        _touch_entitlement(user_id)

    created = create_if_absent(
        UnlockedEpisode,
        (user_id, episode_id),
        user_id=user_id,
        episode_id=episode_id,
    )
    if created:
        logger.info(f"Unlocked episode {episode_id} for user {user_id}")
    return created


def revoke_episode(user_id, episode_id):
    """Remove episode_id from the user's unlocked set. Returns True if removed."""
    record = db.session.get(UnlockedEpisode, (user_id, episode_id))
    if record is None:
        return False
    db.session.delete(record)
    db.session.commit()
    _touch_entitlement(user_id)
    logger.info(f"Revoked episode {episode_id} for user {user_id}")
    return True


def set_subscriber(user_id, is_subscriber):
    _touch_entitlement(user_id, is_subscriber=bool(is_subscriber))
