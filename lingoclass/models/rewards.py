from lingoclass.extensions import db
from lingoclass.utils import utcnow


class PointBalance(db.Model):
    __tablename__ = "point_balances"
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), primary_key=True)
    total_points = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)


class RewardTransaction(db.Model):
    __tablename__ = "reward_transactions"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    delta = db.Column(db.Integer, nullable=False)  # can be negative
    reason = db.Column(db.String(255), nullable=True)
    source = db.Column(db.String(50), nullable=False, default="manual")  # manual|activity|streak
    idempotency_key = db.Column(db.String(128), nullable=True)
    issued_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    user = db.relationship("User", foreign_keys=[user_id])
    issued_by = db.relationship("User", foreign_keys=[issued_by_id])

    __table_args__ = (
        db.CheckConstraint("delta <> 0", name="ck_reward_delta_nonzero"),
        # NULL keys never collide, so manual grants stay unrestricted.
        db.UniqueConstraint("user_id", "idempotency_key", name="uq_reward_user_key"),
        db.Index("ix_reward_user_id", "user_id"),
        db.Index("ix_reward_created_at", "created_at"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "delta": self.delta,
            "reason": self.reason,
            "source": self.source,
            "idempotency_key": self.idempotency_key,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# Helper: ledger sum for a user, used to audit PointBalance

def ledger_total_points(session, user_id: int) -> int:
    total = session.execute(
        db.select(db.func.coalesce(db.func.sum(RewardTransaction.delta), 0)).where(RewardTransaction.user_id == user_id)
    ).scalar_one()
    return int(total)


class UserStreak(db.Model):
    __tablename__ = "user_streaks"
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), primary_key=True)
    current_streak = db.Column(db.Integer, nullable=False, default=0)
    longest_streak = db.Column(db.Integer, nullable=False, default=0)
    last_activity_date = db.Column(db.Date, nullable=True)

    __table_args__ = (
        db.CheckConstraint("longest_streak >= current_streak", name="ck_streak_longest"),
    )
