from enum import Enum

from sqlalchemy.ext.hybrid import hybrid_property

from lingoclass.extensions import db
from lingoclass.utils import utcnow


class TransactionType(str, Enum):
    PURCHASE = "PURCHASE"
    BONUS = "BONUS"
    REWARD = "REWARD"
    REFUND = "REFUND"
    ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT"
    SPEND_PRODUCT = "SPEND_PRODUCT"
    SPEND_PLAN = "SPEND_PLAN"
    SPEND_COURSE = "SPEND_COURSE"
    SPEND_CLASS = "SPEND_CLASS"


GRANT_TYPES = frozenset({
    TransactionType.PURCHASE,
    TransactionType.BONUS,
    TransactionType.REWARD,
    TransactionType.REFUND,
    TransactionType.ADMIN_ADJUSTMENT,
})
BONUS_TYPES = frozenset({TransactionType.BONUS, TransactionType.REWARD})
SPEND_TYPES = frozenset({
    TransactionType.SPEND_PRODUCT,
    TransactionType.SPEND_PLAN,
    TransactionType.SPEND_COURSE,
    TransactionType.SPEND_CLASS,
})


class CreditBalance(db.Model):
    __tablename__ = "credit_balances"

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), primary_key=True)
    total_credits = db.Column(db.Integer, nullable=False, default=0)
    spent_credits = db.Column(db.Integer, nullable=False, default=0)
    bonus_credits = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    user = db.relationship("User")

    __table_args__ = (
        db.CheckConstraint("spent_credits >= 0", name="ck_balance_spent_nonneg"),
        db.CheckConstraint("spent_credits <= total_credits", name="ck_balance_not_overspent"),
    )

    # Derived on every read, never stored.
    @hybrid_property
    def available_credits(self) -> int:
        return self.total_credits - self.spent_credits

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "total_credits": self.total_credits,
            "spent_credits": self.spent_credits,
            "bonus_credits": self.bonus_credits,
            "available_credits": self.available_credits,
        }


class CreditTransaction(db.Model):
    __tablename__ = "credit_transactions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    transaction_type = db.Column(db.Enum(TransactionType, name="credit_transaction_type"), nullable=False)
    amount = db.Column(db.Integer, nullable=False)  # negative for spends
    balance_before = db.Column(db.Integer, nullable=False)
    balance_after = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=False, default="")
    related_entity_id = db.Column(db.String(64))
    related_entity_type = db.Column(db.String(50))
    extra = db.Column("metadata", db.JSON)
    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (
        db.CheckConstraint("amount <> 0", name="ck_credit_tx_amount_nonzero"),
        db.CheckConstraint("balance_after - balance_before = amount", name="ck_credit_tx_consistent"),
        db.Index("ix_credit_tx_user_created", "user_id", "created_at"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.transaction_type.value,
            "amount": self.amount,
            "balance_before": self.balance_before,
            "balance_after": self.balance_after,
            "description": self.description,
            "related_entity_id": self.related_entity_id,
            "related_entity_type": self.related_entity_type,
            "metadata": self.extra,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class CreditPackage(db.Model):
    __tablename__ = "credit_packages"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text)
    credits = db.Column(db.Integer, nullable=False)
    bonus_credits = db.Column(db.Integer, nullable=False, default=0)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_popular = db.Column(db.Boolean, nullable=False, default=False)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (
        db.CheckConstraint("credits > 0", name="ck_package_credits_pos"),
        db.CheckConstraint("bonus_credits >= 0", name="ck_package_bonus_nonneg"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "credits": self.credits,
            "bonus_credits": self.bonus_credits,
            "price": str(self.price),
            "is_active": self.is_active,
            "is_popular": self.is_popular,
            "sort_order": self.sort_order,
        }


class CreditPackagePurchase(db.Model):
    __tablename__ = "credit_package_purchases"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    package_id = db.Column(db.Integer, db.ForeignKey("credit_packages.id"), nullable=False)
    payment_reference = db.Column(db.String(128), nullable=False, unique=True)
    credits_received = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="CONFIRMED")
    created_at = db.Column(db.DateTime, default=utcnow)

    package = db.relationship("CreditPackage")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "package_id": self.package_id,
            "payment_reference": self.payment_reference,
            "credits_received": self.credits_received,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
