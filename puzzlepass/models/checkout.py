"""Checkout hardening models.

- RateLimit: fixed-window counter per (user, episode) at rate_limits/{uid}__checkout__{episode}.
- CheckoutSession: the checkout attempt ledger: one live row per
  (user, episode) holding the latest attempt id (used as the Stripe
  idempotency key) and the Stripe session it produced.

Both carry expires_at; `flask purge-expired` removes stale rows.
Time fields ending in _ms are epoch milliseconds.
"""

from puzzlepass.extensions import db


class RateLimit(db.Model):
    __tablename__ = "rate_limits"

    id = db.Column(db.String(300), primary_key=True)
    user_id = db.Column(db.String(128), nullable=False)
    episode_id = db.Column(db.String(128), nullable=False)
    count = db.Column(db.Integer, default=0, nullable=False)
    window_start_ms = db.Column(db.BigInteger, nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self):
        return f"<RateLimit {self.id} count={self.count}>"


class CheckoutSession(db.Model):
    __tablename__ = "checkout_sessions"

    # -- Attempt statuses --
    STATUSES = ["creating", "open", "complete", "expired", "unknown"]

    id = db.Column(db.String(300), primary_key=True)
    user_id = db.Column(db.String(128), nullable=False)
    episode_id = db.Column(db.String(128), nullable=False)
    attempt_id = db.Column(db.String(36), nullable=False)
    stripe_session_id = db.Column(db.String(255), nullable=True)  # e.g. "cs_test_..."
    stripe_session_url = db.Column(db.Text, nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default="creating"
    )  # creating | open | complete | expired | unknown
    created_at_ms = db.Column(db.BigInteger, nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self):
        return f"<CheckoutSession {self.id} attempt={self.attempt_id} ({self.status})>"
