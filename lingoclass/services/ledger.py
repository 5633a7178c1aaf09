"""Credit ledger: balances plus an append-only transaction log.

Every mutation updates ``CreditBalance`` with a single conditional UPDATE and
appends exactly one ``CreditTransaction`` in the same database transaction,
so the balance and its audit trail cannot diverge. ``available_credits`` is
always ``total_credits - spent_credits``.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lingoclass.errors import InsufficientCredits, InvalidState, NotFound, ValidationFailed
from lingoclass.models import (
    BONUS_TYPES,
    GRANT_TYPES,
    SPEND_TYPES,
    CreditBalance,
    CreditPackage,
    CreditPackagePurchase,
    CreditTransaction,
    TransactionType,
    User,
)

log = logging.getLogger(__name__)


def get_balance(session: Session, user_id: int, *, commit: bool = True) -> CreditBalance:
    """Return the user's balance row, creating a zeroed one on first access."""
    balance = session.get(CreditBalance, user_id)
    if balance is not None:
        return balance
    if session.get(User, user_id) is None:
        raise NotFound("User not found")

    balance = CreditBalance(user_id=user_id, total_credits=0, spent_credits=0, bonus_credits=0)
    try:
        # Only the insert is undone if another request created the row first.
        with session.begin_nested():
            session.add(balance)
    except IntegrityError:
        balance = session.get(CreditBalance, user_id)
    if commit:
        session.commit()
    return balance


def _append(
    session: Session,
    balance: CreditBalance,
    transaction_type: TransactionType,
    amount: int,
    description: str,
    related_entity_id: Any = None,
    related_entity_type: str | None = None,
    metadata: dict | None = None,
) -> CreditTransaction:
    session.refresh(balance)
    after = balance.available_credits
    tx = CreditTransaction(
        user_id=balance.user_id,
        transaction_type=transaction_type,
        amount=amount,
        balance_before=after - amount,
        balance_after=after,
        description=description,
        related_entity_id=str(related_entity_id) if related_entity_id is not None else None,
        related_entity_type=related_entity_type,
        extra=metadata,
    )
    session.add(tx)
    session.flush()
    return tx


def add_credits(
    session: Session,
    user_id: int,
    amount: int,
    transaction_type: TransactionType,
    description: str,
    *,
    related_entity_id: Any = None,
    related_entity_type: str | None = None,
    metadata: dict | None = None,
    bonus: int | None = None,
    commit: bool = True,
) -> tuple[CreditBalance, CreditTransaction]:
    """
    Grant ``amount`` credits. ``bonus`` is the part of the grant tracked as
    bonus credits; it defaults to the whole amount for BONUS/REWARD grants.
    """
    if amount <= 0:
        raise ValidationFailed("Amount must be positive")
    transaction_type = TransactionType(transaction_type)
    if transaction_type not in GRANT_TYPES:
        raise ValidationFailed(f"{transaction_type.value} is not a credit grant")
    if bonus is None:
        bonus = amount if transaction_type in BONUS_TYPES else 0

    balance = get_balance(session, user_id, commit=False)
    values = {"total_credits": CreditBalance.total_credits + amount}
    if bonus:
        values["bonus_credits"] = CreditBalance.bonus_credits + bonus
    session.execute(
        update(CreditBalance)
        .where(CreditBalance.user_id == user_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    tx = _append(session, balance, transaction_type, amount, description,
                 related_entity_id, related_entity_type, metadata)
    if commit:
        session.commit()
    log.info("Credits granted user=%s amount=%s type=%s available=%s",
             user_id, amount, transaction_type.value, tx.balance_after)
    return balance, tx


def spend_credits(
    session: Session,
    user_id: int,
    amount: int,
    transaction_type: TransactionType,
    description: str,
    *,
    related_entity_id: Any = None,
    related_entity_type: str | None = None,
    metadata: dict | None = None,
    commit: bool = True,
) -> tuple[CreditBalance, CreditTransaction]:
    if amount <= 0:
        raise ValidationFailed("Amount must be positive")
    transaction_type = TransactionType(transaction_type)
    if transaction_type not in SPEND_TYPES:
        raise ValidationFailed(f"{transaction_type.value} is not a credit spend")

    balance = get_balance(session, user_id, commit=False)
    # The availability check and the decrement are one statement.
    result = session.execute(
        update(CreditBalance)
        .where(
            CreditBalance.user_id == user_id,
            CreditBalance.total_credits - CreditBalance.spent_credits >= amount,
        )
        .values(spent_credits=CreditBalance.spent_credits + amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        session.refresh(balance)
        available = balance.available_credits
        log.warning("Spend rejected user=%s amount=%s available=%s", user_id, amount, available)
        raise InsufficientCredits(required=amount, available=available, missing=amount - available)

    tx = _append(session, balance, transaction_type, -amount, description,
                 related_entity_id, related_entity_type, metadata)
    if commit:
        session.commit()
    log.info("Credits spent user=%s amount=%s type=%s available=%s",
             user_id, amount, transaction_type.value, tx.balance_after)
    return balance, tx


def list_transactions(
    session: Session,
    user_id: int,
    *,
    limit: int = 50,
    offset: int = 0,
    transaction_type: TransactionType | None = None,
) -> tuple[list[CreditTransaction], int]:
    query = session.query(CreditTransaction).filter(CreditTransaction.user_id == user_id)
    if transaction_type is not None:
        query = query.filter(CreditTransaction.transaction_type == TransactionType(transaction_type))
    total = query.count()
    items = (
        query.order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return items, total


# --- Credit packages ---

def list_packages(session: Session, *, include_inactive: bool = False) -> list[CreditPackage]:
    query = session.query(CreditPackage)
    if not include_inactive:
        query = query.filter(CreditPackage.is_active.is_(True))
    return query.order_by(CreditPackage.sort_order, CreditPackage.id).all()


def create_package(
    session: Session,
    *,
    name: str,
    credits: int,
    price: Decimal,
    bonus_credits: int = 0,
    description: str | None = None,
    is_popular: bool = False,
    sort_order: int = 0,
) -> CreditPackage:
    if credits <= 0 or bonus_credits < 0:
        raise ValidationFailed("Package credits must be positive")
    pkg = CreditPackage(
        name=name.strip(),
        description=description,
        credits=credits,
        bonus_credits=bonus_credits,
        price=price,
        is_popular=is_popular,
        sort_order=sort_order,
    )
    session.add(pkg)
    session.commit()
    return pkg


def update_package(session: Session, package_id: int, **changes: Any) -> CreditPackage:
    pkg = session.get(CreditPackage, package_id)
    if pkg is None:
        raise NotFound("Package not found")
    for key, value in changes.items():
        if value is not None:
            setattr(pkg, key, value)
    session.commit()
    return pkg


def _check_owner(purchase: CreditPackagePurchase, user_id: int) -> CreditPackagePurchase:
    if purchase.user_id != user_id:
        log.warning("Payment reference %s reused by user %s", purchase.payment_reference, user_id)
        raise InvalidState("This payment reference was already used")
    return purchase


def purchase_package(
    session: Session,
    user_id: int,
    package_id: int,
    payment_reference: str,
) -> tuple[CreditPackagePurchase, bool]:
    """
    Record a captured payment and grant the package credits.
    Returns (purchase, created); a repeated payment reference returns the
    original purchase without granting again.
    """
    existing = (session.query(CreditPackagePurchase)
                .filter_by(payment_reference=payment_reference)
                .first())
    if existing:
        return _check_owner(existing, user_id), False

    pkg = session.get(CreditPackage, package_id)
    if pkg is None or not pkg.is_active:
        raise NotFound("Package not found")

    credits = pkg.credits + pkg.bonus_credits
    purchase = CreditPackagePurchase(
        user_id=user_id,
        package_id=pkg.id,
        payment_reference=payment_reference,
        credits_received=credits,
    )
    session.add(purchase)
    try:
        session.flush()
        add_credits(
            session,
            user_id,
            credits,
            TransactionType.PURCHASE,
            f"Purchase of {pkg.name}",
            related_entity_id=pkg.id,
            related_entity_type="credit_package",
            metadata={
                "package_name": pkg.name,
                "base_credits": pkg.credits,
                "bonus_credits": pkg.bonus_credits,
                "price": str(pkg.price),
                "payment_reference": payment_reference,
            },
            bonus=pkg.bonus_credits,
            commit=False,
        )
        session.commit()
    except IntegrityError:
        session.rollback()
        existing = (session.query(CreditPackagePurchase)
                    .filter_by(payment_reference=payment_reference)
                    .one())
        return _check_owner(existing, user_id), False
    return purchase, True
