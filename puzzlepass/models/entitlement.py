"""Entitlement models.

- Entitlement: per-user access record (entitlements/{uid}).
- UnlockedEpisode: one row per member of the user's unlocked set. The
  composite primary key makes a grant a set-union: granting twice leaves
  exactly one row.

Mutated only by the reconciliation services, never by client requests.
"""

from puzzlepass.extensions import db


class Entitlement(db.Model):
    __tablename__ = "entitlements"

    user_id = db.Column(db.String(128), primary_key=True)
    is_subscriber = db.Column(db.Boolean, default=False, nullable=False)
    stripe_customer_id = db.Column(db.String(255), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self):
        return f"<Entitlement {self.user_id} subscriber={self.is_subscriber}>"


class UnlockedEpisode(db.Model):
    __tablename__ = "unlocked_episodes"

    user_id = db.Column(db.String(128), primary_key=True)
    episode_id = db.Column(db.String(128), primary_key=True)
    unlocked_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<UnlockedEpisode {self.user_id}/{self.episode_id}>"
