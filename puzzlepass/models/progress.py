"""Per-user episode progress (progress/{uid}/episodes/{episodeId})."""

from puzzlepass.extensions import db


class Progress(db.Model):
    __tablename__ = "progress"

    user_id = db.Column(db.String(128), primary_key=True)
    episode_id = db.Column(
        db.String(128), db.ForeignKey("episodes.id"), primary_key=True
    )
    current_scene_id = db.Column(db.String(128), nullable=False)
    completed_scene_ids = db.Column(db.JSON, default=list, nullable=False)
    is_completed = db.Column(db.Boolean, default=False, nullable=False)
    started_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Progress {self.user_id}/{self.episode_id} at {self.current_scene_id}>"
