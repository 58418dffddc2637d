"""Checkout rate limiter: fixed window per (user, episode).

One transactional read-modify-write per call on
rate_limits/{uid}__checkout__{episodeId}. The attempted increment is
persisted *before* the ceiling check, so a rejected call still consumes a
slot and rapid retries keep failing until the window rolls over.
"""

import logging

from puzzlepass.errors import CallableError
from puzzlepass.extensions import db
from puzzlepass.models.checkout import RateLimit
from puzzlepass.services.store import doc_id, expires_in, now_ms, transactional_upsert

logger = logging.getLogger(__name__)


def rate_limit_id(user_id, episode_id):
    return doc_id(user_id, "checkout", episode_id)


def enforce_rate_limit(user_id, episode_id, settings, now=None):
    """Count one checkout attempt; raise resource-exhausted past the ceiling.

    Returns the count recorded for the current window.
    """
    now = now if now is not None else now_ms()
    window_ms = settings.checkout_window_seconds * 1000
    key = rate_limit_id(user_id, episode_id)

    def mutate(record):
        if record is None:
            record = RateLimit(
                id=key, user_id=user_id, episode_id=episode_id,
                count=0, window_start_ms=now,
            )
            db.session.add(record)

        if now - (record.window_start_ms or 0) >= window_ms:
            record.window_start_ms = now
            record.count = 1
        else:
            record.count = (record.count or 0) + 1

        record.expires_at = expires_in(settings.rate_limit_ttl_seconds, now=now)
        return record.count

    count = transactional_upsert(RateLimit, key, mutate)

    if count > settings.checkout_limit:
        logger.info(
            f"Checkout rate limit hit for user {user_id} episode {episode_id} "
            f"({count}/{settings.checkout_limit})"
        )
        raise CallableError(
            "resource-exhausted",
            "Too many checkout attempts. Try again in a few minutes.",
        )
    return count
