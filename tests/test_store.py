"""Tests for the store primitives.

Covers:
- Document ids escape untrusted parts without collisions
- create_if_absent never overwrites, including when it loses the insert race
- transactional_upsert retries against the row a concurrent writer created
- transactional_upsert gives up with TransactionContention

A "concurrent writer" runs in a second app context, so it works through its
own db.session and commits before the first writer's insert reaches the DB.
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from puzzlepass.errors import TransactionContention
from puzzlepass.extensions import db
from puzzlepass.models.checkout import RateLimit
from puzzlepass.models.stripe_event import StripeEvent
from puzzlepass.services.store import (
    MAX_TRANSACTION_ATTEMPTS,
    create_if_absent,
    doc_id,
    transactional_upsert,
)

EXPIRES = datetime(2030, 1, 1, tzinfo=timezone.utc)


def _bump(record):
    if record is None:
        record = RateLimit(id="rl_1", user_id="u", episode_id="e", count=0,
                           window_start_ms=0, expires_at=EXPIRES)
        db.session.add(record)
    record.count += 1
    return record.count


class TestDocId:

    def test_safe_parts_are_kept(self):
        assert doc_id("user-a", "ep-paid") == "user-a__ep-paid"
        assert doc_id("uid:1", "checkout", "ep-1") == "uid:1__checkout__ep-1"

    def test_unsafe_characters_are_escaped(self):
        assert doc_id("user/a", "ep paid") == "user_2fa__ep_20paid"
        assert doc_id("café") == "caf_c3_a9"

    def test_separator_inside_a_part_does_not_collide(self):
        assert doc_id("a__b", "c") != doc_id("a", "b__c")
        assert doc_id("a__b", "c") == "a_5f_5fb__c"

    def test_punctuation_does_not_collide_with_underscore(self):
        assert doc_id("ep.1") != doc_id("ep_1")
        assert doc_id("ep.1") == "ep_2e1"
        assert doc_id("ep_1") == "ep_5f1"

    def test_non_string_parts(self):
        assert doc_id("user-a", 42) == "user-a__42"


class TestCreateIfAbsent:

    def test_creates_once(self):
        assert create_if_absent(StripeEvent, "evt_1", stripe_event_id="evt_1",
                                status="processing", expires_at=EXPIRES) is True
        assert create_if_absent(StripeEvent, "evt_1", stripe_event_id="evt_1",
                                status="processed", expires_at=EXPIRES) is False
        assert db.session.get(StripeEvent, "evt_1").status == "processing"

    def test_concurrent_insert_wins(self, race_after_read):
        """Both writers see "absent"; the one that commits second gets False."""

        def other_writer():
            assert create_if_absent(StripeEvent, "evt_1", stripe_event_id="evt_1",
                                    status="processing", expires_at=EXPIRES) is True

        with race_after_read(other_writer, StripeEvent):
            created = create_if_absent(StripeEvent, "evt_1", stripe_event_id="evt_1",
                                       status="processed", expires_at=EXPIRES)

        assert created is False
        assert StripeEvent.query.count() == 1
        assert db.session.get(StripeEvent, "evt_1").status == "processing"


class TestTransactionalUpsert:

    def test_creates_then_updates(self):
        assert transactional_upsert(RateLimit, "rl_1", _bump) == 1
        assert transactional_upsert(RateLimit, "rl_1", _bump) == 2

    def test_retries_against_concurrently_created_row(self, race_after_read):
        """A lost create is re-run against the winner's row, so no increment is lost."""

        def other_writer():
            assert transactional_upsert(RateLimit, "rl_1", _bump) == 1

        with race_after_read(other_writer, RateLimit):
            result = transactional_upsert(RateLimit, "rl_1", _bump)

        assert result == 2
        assert RateLimit.query.count() == 1
        assert db.session.get(RateLimit, "rl_1").count == 2

    def test_gives_up_after_repeated_conflicts(self, app):
        with app.app_context():
            db.session.add(RateLimit(id="rl_1", user_id="u", episode_id="e", count=7,
                                     window_start_ms=0, expires_at=EXPIRES))
            db.session.commit()

        # Every read misses the existing row, so every create conflicts
        with patch.object(db.session, "get", return_value=None) as mock_get:
            with pytest.raises(TransactionContention):
                transactional_upsert(RateLimit, "rl_1", _bump)

        assert mock_get.call_count == MAX_TRANSACTION_ATTEMPTS
        db.session.expire_all()
        assert db.session.get(RateLimit, "rl_1").count == 7

    def test_mutate_error_rolls_back(self):
        def explode(record):
            db.session.add(RateLimit(id="rl_1", user_id="u", episode_id="e", count=1,
                                     window_start_ms=0, expires_at=EXPIRES))
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            transactional_upsert(RateLimit, "rl_1", explode)

        assert db.session.get(RateLimit, "rl_1") is None
