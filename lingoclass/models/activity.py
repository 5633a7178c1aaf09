from enum import Enum

from lingoclass.extensions import db
from lingoclass.utils import utcnow


class ActivityType(str, Enum):
    READING = "READING"
    LISTENING = "LISTENING"
    SPEAKING = "SPEAKING"
    WRITING = "WRITING"
    VOCABULARY = "VOCABULARY"


class ActivityStatus(str, Enum):
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class Activity(db.Model):
    __tablename__ = "activities"
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    activity_type = db.Column(db.Enum(ActivityType, name="activity_type"), nullable=False)
    level = db.Column(db.Integer, nullable=False, default=1)
    points = db.Column(db.Integer, nullable=False, default=10)
    duration_minutes = db.Column(db.Integer)
    is_published = db.Column(db.Boolean, nullable=False, default=False)
    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"))
    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (
        db.CheckConstraint("points >= 0", name="ck_activity_points_nonneg"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "type": self.activity_type.value,
            "level": self.level,
            "points": self.points,
            "duration_minutes": self.duration_minutes,
            "is_published": self.is_published,
        }


class UserActivity(db.Model):
    __tablename__ = "user_activities"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    activity_id = db.Column(db.Integer, db.ForeignKey("activities.id"), nullable=False)
    status = db.Column(db.Enum(ActivityStatus, name="user_activity_status"), nullable=False, default=ActivityStatus.ASSIGNED)
    assigned_by_id = db.Column(db.Integer, db.ForeignKey("users.id"))
    attempts = db.Column(db.Integer, nullable=False, default=0)
    score = db.Column(db.Float)
    last_attempt_at = db.Column(db.DateTime)
    completed_at = db.Column(db.DateTime)

    activity = db.relationship("Activity")

    __table_args__ = (
        db.UniqueConstraint("user_id", "activity_id", name="uq_user_activity"),
    )

    def to_dict(self) -> dict:
        return {
            "activity_id": self.activity_id,
            "status": self.status.value,
            "attempts": self.attempts,
            "score": self.score,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
