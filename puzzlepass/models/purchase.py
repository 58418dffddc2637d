"""Purchase models.

- StripePurchase: one row per paid PaymentIntent (stripe_purchases/{pi}).
  Immutable once created except for status paid -> refunded. Kept for
  audit and refund correlation; never deleted.
- EpisodePurchase: pointer per (user, episode) to the PaymentIntent that
  currently "owns" the user's access (episode_purchases/{uid}__{episode}).
  A refund only revokes access while the pointer still names the refunded
  PaymentIntent.
"""

from puzzlepass.extensions import db


class StripePurchase(db.Model):
    __tablename__ = "stripe_purchases"

    STATUSES = ["paid", "refunded"]

    payment_intent_id = db.Column(db.String(255), primary_key=True)  # e.g. "pi_3Abc..."
    user_id = db.Column(db.String(128), nullable=False, index=True)
    episode_id = db.Column(db.String(128), nullable=False)
    session_id = db.Column(db.String(255), nullable=True)
    customer_id = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="paid")  # paid | refunded
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<StripePurchase {self.payment_intent_id} ({self.status})>"


class EpisodePurchase(db.Model):
    __tablename__ = "episode_purchases"

    id = db.Column(db.String(300), primary_key=True)
    user_id = db.Column(db.String(128), nullable=False)
    episode_id = db.Column(db.String(128), nullable=False)
    current_payment_intent_id = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="paid")  # paid | refunded
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self):
        return f"<EpisodePurchase {self.id} -> {self.current_payment_intent_id} ({self.status})>"
