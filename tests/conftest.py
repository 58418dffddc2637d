"""Shared test fixtures for the PuzzlePass test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- settings: the CheckoutSettings the app was built with
- override_settings: swap CheckoutSettings fields for one test
- auth_headers: build Authorization headers for a user id
- seed_episodes: a paid episode, a free preview, an unpublished episode
- call: POST a callable with the {"data": ...} envelope
- make_session: factory for Stripe Checkout Session payloads
- race_after_read: let a concurrent writer commit between a read and a write
"""

import dataclasses
from unittest.mock import patch

import pytest
from flask import g

from puzzlepass import create_app
from puzzlepass.auth import issue_id_token
from puzzlepass.extensions import db as _db
from puzzlepass.models.episode import Episode, Scene, Solution


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def settings(app):
    return app.extensions["checkout_settings"]


@pytest.fixture
def override_settings(app, monkeypatch):
    """Return a function that replaces CheckoutSettings fields for this test only."""

    def _override(**changes):
        current = app.extensions["checkout_settings"]
        updated = dataclasses.replace(current, **changes)
        monkeypatch.setitem(app.extensions, "checkout_settings", updated)
        return updated

    return _override


@pytest.fixture
def auth_headers(app):
    """Return a function building bearer-token headers for a user id."""

    def _headers(uid, provider="password"):
        with app.app_context():
            token = issue_id_token(uid, provider)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def call(client, auth_headers):
    """POST /api/<name> as `uid` (or unauthenticated when uid is None)."""

    def _call(name, data=None, uid="user-a", headers=None, provider="password"):
        # Requests share the test's app context, so drop the cached caller
        g.pop("_login_user", None)
        all_headers = dict(auth_headers(uid, provider)) if uid else {}
        all_headers.update(headers or {})
        return client.post(f"/api/{name}", json={"data": data or {}}, headers=all_headers)

    return _call


@pytest.fixture
def seed_episodes(app, db_session):
    """Seed a paid episode with three scenes, a free preview and an unpublished episode."""
    with app.app_context():
        paid = Episode(
            id="ep-paid",
            title="The Locked Vault",
            is_published=True,
            is_free_preview=False,
            start_scene_id="s1",
            stripe_price_id="price_ep_paid",
        )
        free = Episode(
            id="ep-free",
            title="Prologue",
            is_published=True,
            is_free_preview=True,
            start_scene_id="f1",
        )
        draft = Episode(
            id="ep-draft",
            title="Work In Progress",
            is_published=False,
            is_free_preview=False,
            start_scene_id="d1",
            stripe_price_id="price_ep_draft",
        )
        _db.session.add_all([paid, free, draft])
        _db.session.flush()

        _db.session.add_all([
            Scene(episode_id="ep-paid", scene_id="s1", type="story",
                  title="Arrival", body="The vault door looms.", next_scene_id="s2"),
            Scene(episode_id="ep-paid", scene_id="s2", type="code_entry",
                  title="Keypad", prompt="Enter the code.", next_scene_id="s3"),
            Scene(episode_id="ep-paid", scene_id="s3", type="choice",
                  title="Two Doors", prompt="Which door?",
                  options=[{"id": "left", "label": "Left"}, {"id": "right", "label": "Right"}]),
            Solution(episode_id="ep-paid", scene_id="s2", answer="4821"),
            Solution(episode_id="ep-paid", scene_id="s3", correct_option_id="right"),
            Scene(episode_id="ep-free", scene_id="f1", type="story",
                  title="Welcome", body="A short taste."),
        ])
        _db.session.commit()

    return {"paid": "ep-paid", "free": "ep-free", "draft": "ep-draft"}


@pytest.fixture
def make_session():
    """Return a factory for Stripe Checkout Session payloads (retrieve() / webhook shape)."""

    def _make(session_id="cs_test_1", uid="user-a", episode_id="ep-paid",
              payment_intent="pi_A", payment_status="paid", customer="cus_1",
              status="complete", url=None):
        return {
            "id": session_id,
            "object": "checkout.session",
            "status": status,
            "payment_status": payment_status,
            "payment_intent": payment_intent,
            "customer": customer,
            "url": url,
            "metadata": {"uid": uid, "episode_id": episode_id, "type": "episode_unlock"},
        }

    return _make


@pytest.fixture
def race_after_read(app):
    """Return a patcher that lets a concurrent writer commit mid-operation.

    race_after_read(writer, Model) patches db.session.get: the next read of
    Model that finds nothing runs writer() in a second app context (its own
    session) before returning the miss. Use it as a context manager around
    the call that should lose the race.
    """

    def _install(writer, model):
        real_get = _db.session.get
        pending = [writer]

        def _get(cls, key, **kwargs):
            found = real_get(cls, key, **kwargs)
            if cls is model and found is None and pending:
                with app.app_context():
                    pending.pop()()
            return found

        return patch.object(_db.session, "get", side_effect=_get)

    return _install
