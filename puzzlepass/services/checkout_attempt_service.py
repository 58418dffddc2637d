"""Checkout attempt ledger: checkout_sessions/{uid}__{episodeId}.

Responsible for:
- Classifying the latest attempt for a (user, episode) pair in one
  transaction: reuse an OPEN Stripe session, continue a recent CREATING
  attempt with the same idempotency key, or mint a new attempt
- Recording the Stripe session an attempt produced
- Recording status changes observed from Stripe (complete / expired)

This bounds Stripe session creation to about once per reuse window per
pair while letting retries converge on one session.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from puzzlepass.extensions import db
from puzzlepass.models.checkout import CheckoutSession
from puzzlepass.services.store import doc_id, expires_in, now_ms, transactional_upsert

logger = logging.getLogger(__name__)

MODE_NEW = "new"
MODE_CONTINUE_CREATING = "continue-creating"
MODE_REUSE = "reuse"


@dataclass(frozen=True)
class CheckoutAttempt:
    mode: str
    attempt_id: str
    created_at_ms: int
    stripe_session_id: Optional[str] = None
    stripe_session_url: Optional[str] = None


def checkout_session_id(user_id, episode_id):
    return doc_id(user_id, episode_id)


def _is_recent(age_ms, limit_ms):
    return age_ms is not None and age_ms < limit_ms


def get_or_create_attempt(user_id, episode_id, settings, now=None):
    """Classify the existing attempt or start a fresh one. Returns a CheckoutAttempt.

    A "reuse" result is only a candidate: the caller must confirm with
    Stripe that the session is still open before handing it out.
    """
    now = now if now is not None else now_ms()
    reuse_ms = settings.checkout_reuse_seconds * 1000
    creating_grace_ms = settings.checkout_creating_grace_seconds * 1000
    key = checkout_session_id(user_id, episode_id)

    def mutate(record):
        if record is not None:
            status = record.status or "unknown"
            age_ms = now - record.created_at_ms if record.created_at_ms else None

            if (
                status == "open"
                and record.attempt_id
                and record.stripe_session_id
                and _is_recent(age_ms, reuse_ms)
            ):
                return CheckoutAttempt(
                    mode=MODE_REUSE,
                    attempt_id=record.attempt_id,
                    created_at_ms=record.created_at_ms,
                    stripe_session_id=record.stripe_session_id,
                    stripe_session_url=record.stripe_session_url,
                )

            # Keep the same attempt id so a retry hits Stripe with the same idempotency key
            if status == "creating" and record.attempt_id and _is_recent(age_ms, creating_grace_ms):
                return CheckoutAttempt(
                    mode=MODE_CONTINUE_CREATING,
                    attempt_id=record.attempt_id,
                    created_at_ms=record.created_at_ms,
                    stripe_session_id=record.stripe_session_id,
                    stripe_session_url=record.stripe_session_url,
                )
        else:
            record = CheckoutSession(id=key, user_id=user_id, episode_id=episode_id)
            db.session.add(record)

        attempt_id = str(uuid.uuid4())
        record.attempt_id = attempt_id
        record.status = "creating"
        record.stripe_session_id = None
        record.stripe_session_url = None
        record.created_at_ms = now
        record.expires_at = expires_in(settings.checkout_doc_ttl_seconds, now=now)
        return CheckoutAttempt(mode=MODE_NEW, attempt_id=attempt_id, created_at_ms=now)

    attempt = transactional_upsert(CheckoutSession, key, mutate)
    logger.info(
        f"Checkout attempt for user {user_id} episode {episode_id}: "
        f"{attempt.mode} ({attempt.attempt_id})"
    )
    return attempt


def record_open_session(user_id, episode_id, attempt_id, stripe_session_id,
                        stripe_session_url):
    """Store the Stripe session created for `attempt_id` and mark it open.

    Skipped if a newer attempt has replaced `attempt_id` in the meantime.
    Returns True if the ledger was updated.
    """
    key = checkout_session_id(user_id, episode_id)

    def mutate(record):
        if record is None or record.attempt_id != attempt_id:
            return False
        record.stripe_session_id = stripe_session_id
        record.stripe_session_url = stripe_session_url
        record.status = "open"
        return True

    updated = transactional_upsert(CheckoutSession, key, mutate)
    if not updated:
        logger.warning(
            f"Attempt {attempt_id} superseded before session {stripe_session_id} "
            f"was recorded (user {user_id}, episode {episode_id})"
        )
    return updated


def mark_attempt_status(user_id, episode_id, status, stripe_session_url=None,
                        attempt_id=None):
    """Record a status observed from Stripe. No-op if the ledger row is gone.

    With `attempt_id`, the write is also skipped once a newer attempt owns
    the row, so a late Stripe answer about an old session cannot clobber it.
    Returns True if the ledger was updated.
    """
    key = checkout_session_id(user_id, episode_id)

    def mutate(record):
        if record is None:
            return False
        if attempt_id is not None and record.attempt_id != attempt_id:
            return False
        record.status = status
        if stripe_session_url:
            record.stripe_session_url = stripe_session_url
        return True

    updated = transactional_upsert(CheckoutSession, key, mutate)
    if not updated and attempt_id is not None:
        logger.info(
            f"Ignored stale status {status!r} for attempt {attempt_id} "
            f"(user {user_id}, episode {episode_id})"
        )
    return updated
