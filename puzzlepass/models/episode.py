"""Episode content models.

- Episode: a purchasable unit of story content.
- Scene: one node in an episode's progression (story / code_entry / choice).
- Solution: server-held answer for a code or choice scene. Never sent to clients.
"""

from puzzlepass.extensions import db


class Episode(db.Model):
    __tablename__ = "episodes"

    id = db.Column(db.String(128), primary_key=True)  # e.g. "ep-001"
    title = db.Column(db.String(255), nullable=False)
    is_published = db.Column(db.Boolean, default=False, nullable=False)
    is_free_preview = db.Column(db.Boolean, default=False, nullable=False)
    start_scene_id = db.Column(db.String(128), nullable=True)
    stripe_price_id = db.Column(db.String(255), nullable=True)  # e.g. "price_1Abc..."
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    scenes = db.relationship(
        "Scene", back_populates="episode", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<Episode {self.id}>"


class Scene(db.Model):
    __tablename__ = "scenes"

    TYPES = ["story", "code_entry", "choice"]

    episode_id = db.Column(
        db.String(128), db.ForeignKey("episodes.id"), primary_key=True
    )
    scene_id = db.Column(db.String(128), primary_key=True)
    type = db.Column(db.String(20), nullable=False)  # story | code_entry | choice
    title = db.Column(db.String(255), nullable=False)
    body = db.Column(db.Text, nullable=True)  # story text
    prompt = db.Column(db.Text, nullable=True)  # code_entry / choice prompt
    options = db.Column(db.JSON, nullable=True)  # [{"id": ..., "label": ...}]
    next_scene_id = db.Column(db.String(128), nullable=True)  # NULL = last scene

    # --- Relationships ---
    episode = db.relationship("Episode", back_populates="scenes")

    def __repr__(self):
        return f"<Scene {self.episode_id}/{self.scene_id} ({self.type})>"


class Solution(db.Model):
    __tablename__ = "solutions"

    episode_id = db.Column(
        db.String(128), db.ForeignKey("episodes.id"), primary_key=True
    )
    scene_id = db.Column(db.String(128), primary_key=True)
    answer = db.Column(db.String(255), nullable=True)  # code_entry
    correct_option_id = db.Column(db.String(128), nullable=True)  # choice

    def __repr__(self):
        return f"<Solution {self.episode_id}/{self.scene_id}>"
