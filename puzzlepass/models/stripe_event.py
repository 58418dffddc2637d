"""Stripe event lock model (webhook dedup table).

Every webhook event claims a row keyed by its Stripe event ID before any
side effect runs. A row in any status means "do not process again"; the
row is deleted when processing fails so Stripe's redelivery can retry.
"""

from puzzlepass.extensions import db


class StripeEvent(db.Model):
    __tablename__ = "stripe_events"

    stripe_event_id = db.Column(
        db.String(255), primary_key=True
    )  # e.g. "evt_1Abc..."
    event_type = db.Column(
        db.String(255), nullable=True
    )  # e.g. "checkout.session.completed"
    status = db.Column(
        db.String(20), nullable=False, default="processing"
    )  # processing | processed
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<StripeEvent {self.stripe_event_id} ({self.status})>"
