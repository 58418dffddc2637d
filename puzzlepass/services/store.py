"""Store primitives: the only atomic operations the reconciliation code uses.

Responsible for:
- create_if_absent: insert a row keyed by its primary key, never overwriting
- transactional_upsert: read FOR UPDATE -> mutate -> commit, retried on
  concurrent-create conflicts
- delete_document
- document ids, epoch-millisecond clock and TTL timestamps

Each primitive is its own transaction: it commits (or rolls back) before
returning, so callers never hold a transaction across a Stripe call.
"""

import logging
import re
import time
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError

from puzzlepass.errors import TransactionContention
from puzzlepass.extensions import db

logger = logging.getLogger(__name__)

MAX_TRANSACTION_ATTEMPTS = 5

ID_SEPARATOR = "__"
_UNSAFE_ID_CHARS = re.compile(rb"[^a-zA-Z0-9:-]")


def _escape_id_part(part):
    # "_" is escaped too, so an escape is always "_" + two hex digits and
    # ID_SEPARATOR can never appear inside a part
    raw = str(part).encode("utf-8")
    return _UNSAFE_ID_CHARS.sub(lambda m: b"_%02x" % m.group()[0], raw).decode("ascii")


def doc_id(*parts):
    """Build a document id like "{uid}__{episodeId}" from untrusted parts.

    Distinct part tuples always give distinct ids: ("a__b", "c") and
    ("a", "b__c") no longer collide, nor do "ep.1" and "ep_1".
    """
    return ID_SEPARATOR.join(_escape_id_part(p) for p in parts)


def now_ms():
    return int(time.time() * 1000)


def expires_in(seconds, now=None):
    """UTC datetime `seconds` after `now` (epoch ms), used for TTL columns."""
    base = now if now is not None else now_ms()
    return datetime.fromtimestamp(base / 1000, tz=timezone.utc) + timedelta(
        seconds=seconds
    )


def create_if_absent(model, key, **values):
    """Insert model(**values) only if no row with primary key `key` exists.

    Returns True if this call created the row, False if it already existed
    (including when a concurrent writer won the insert race).
    """
    if db.session.get(model, key) is not None:
        return False

    db.session.add(model(**values))
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.info(f"{model.__tablename__}/{key} created concurrently, not overwriting")
        return False
    return True


def transactional_upsert(model, key, mutate):
    """Atomically read-modify-write one row.

    `mutate(record)` receives the locked row (or None when absent), applies
    its changes (adding a new instance to db.session to create one) and
    returns the value handed back to the caller. If two writers both saw
    "absent", the loser's commit conflicts and the whole read-modify-write
    is retried against the winner's row.
    """
    for attempt in range(1, MAX_TRANSACTION_ATTEMPTS + 1):
        record = db.session.get(
            model, key, with_for_update=True, populate_existing=True
        )
        try:
            result = mutate(record)
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            logger.info(
                f"Write conflict on {model.__tablename__}/{key} "
                f"(attempt {attempt}/{MAX_TRANSACTION_ATTEMPTS}), retrying"
            )
            continue
        except Exception:
            db.session.rollback()
            raise
        return result

    raise TransactionContention(
        f"Gave up on {model.__tablename__}/{key} after {MAX_TRANSACTION_ATTEMPTS} attempts"
    )


def delete_document(model, key):
    """Delete the row with primary key `key` if present. Returns True if deleted."""
    record = db.session.get(model, key)
    if record is None:
        return False
    db.session.delete(record)
    db.session.commit()
    return True
