from decimal import Decimal

import pytest

from lingoclass.errors import InsufficientCredits, InvalidState, NotFound, ValidationFailed
from lingoclass.models import CreditBalance, CreditPackagePurchase, CreditTransaction, TransactionType
from lingoclass.services import ledger


def test_balance_created_on_first_access(session, student):
    balance = ledger.get_balance(session, student.id)
    assert (balance.total_credits, balance.spent_credits, balance.available_credits) == (0, 0, 0)
    assert ledger.get_balance(session, student.id) is balance


def test_spend_from_partially_used_balance(session, student):
    ledger.add_credits(session, student.id, 100, TransactionType.PURCHASE, "Pack")
    ledger.spend_credits(session, student.id, 20, TransactionType.SPEND_PRODUCT, "Book")
    assert ledger.get_balance(session, student.id).available_credits == 80

    balance, tx = ledger.spend_credits(session, student.id, 30, TransactionType.SPEND_CLASS, "Class")

    assert balance.available_credits == 50
    assert balance.spent_credits == 50
    assert tx.amount == -30
    assert (tx.balance_before, tx.balance_after) == (80, 50)
    assert session.query(CreditTransaction).filter_by(user_id=student.id).count() == 3


def test_available_matches_total_minus_spent_after_mixed_operations(session, student):
    ops = [
        ("add", 40, TransactionType.PURCHASE),
        ("spend", 15, TransactionType.SPEND_COURSE),
        ("add", 5, TransactionType.BONUS),
        ("spend", 30, TransactionType.SPEND_CLASS),
        ("add", 10, TransactionType.REFUND),
    ]
    for op, amount, tx_type in ops:
        fn = ledger.add_credits if op == "add" else ledger.spend_credits
        fn(session, student.id, amount, tx_type, op)

    balance = ledger.get_balance(session, student.id)
    assert balance.total_credits == 55
    assert balance.spent_credits == 45
    assert balance.available_credits == balance.total_credits - balance.spent_credits == 10
    assert balance.bonus_credits == 5

    txs, total = ledger.list_transactions(session, student.id)
    assert total == len(ops)
    assert sum(t.amount for t in txs) == balance.available_credits
    for t in txs:
        assert t.balance_after - t.balance_before == t.amount


def test_insufficient_credits_reports_shortfall(session, student):
    ledger.add_credits(session, student.id, 10, TransactionType.PURCHASE, "Pack")
    with pytest.raises(InsufficientCredits) as exc:
        ledger.spend_credits(session, student.id, 25, TransactionType.SPEND_PLAN, "Plan")
    assert exc.value.to_dict() == {"error": "Not enough credits", "required": 25, "available": 10, "missing": 15}
    session.rollback()

    balance = ledger.get_balance(session, student.id)
    assert balance.spent_credits == 0
    assert session.query(CreditTransaction).filter_by(user_id=student.id).count() == 1


@pytest.mark.parametrize("amount", [0, -5])
def test_non_positive_amounts_rejected(session, student, amount):
    with pytest.raises(ValidationFailed):
        ledger.add_credits(session, student.id, amount, TransactionType.PURCHASE, "x")
    with pytest.raises(ValidationFailed):
        ledger.spend_credits(session, student.id, amount, TransactionType.SPEND_CLASS, "x")


def test_transaction_type_must_match_direction(session, student):
    with pytest.raises(ValidationFailed):
        ledger.add_credits(session, student.id, 5, TransactionType.SPEND_CLASS, "x")
    with pytest.raises(ValidationFailed):
        ledger.spend_credits(session, student.id, 5, TransactionType.REFUND, "x")


def test_list_transactions_newest_first_with_filter(session, student):
    ledger.add_credits(session, student.id, 50, TransactionType.PURCHASE, "first")
    ledger.spend_credits(session, student.id, 5, TransactionType.SPEND_CLASS, "second")
    ledger.spend_credits(session, student.id, 5, TransactionType.SPEND_CLASS, "third")

    items, total = ledger.list_transactions(session, student.id, limit=2)
    assert total == 3
    assert [t.description for t in items] == ["third", "second"]

    items, total = ledger.list_transactions(session, student.id, transaction_type=TransactionType.PURCHASE)
    assert total == 1 and items[0].description == "first"


def test_purchase_grants_credits_and_bonus_once(session, student):
    pkg = ledger.create_package(session, name="Intensive", credits=40, bonus_credits=5, price=Decimal("99.00"))

    purchase, created = ledger.purchase_package(session, student.id, pkg.id, "PAY-1")
    assert created
    assert purchase.credits_received == 45

    again, created = ledger.purchase_package(session, student.id, pkg.id, "PAY-1")
    assert not created
    assert again.id == purchase.id

    balance = ledger.get_balance(session, student.id)
    assert balance.total_credits == 45
    assert balance.bonus_credits == 5
    txs, total = ledger.list_transactions(session, student.id)
    assert total == 1
    assert txs[0].transaction_type == TransactionType.PURCHASE
    assert txs[0].extra["payment_reference"] == "PAY-1"


def test_payment_reference_cannot_be_reused_by_another_user(session, student, make_user):
    other = make_user()
    pkg = ledger.create_package(session, name="Starter", credits=10, price=Decimal("29.00"))
    ledger.purchase_package(session, student.id, pkg.id, "PAY-2")
    with pytest.raises(InvalidState):
        ledger.purchase_package(session, other.id, pkg.id, "PAY-2")
    assert ledger.get_balance(session, other.id).total_credits == 0


def test_inactive_package_cannot_be_bought(session, student):
    pkg = ledger.create_package(session, name="Old", credits=10, price=Decimal("9.00"))
    ledger.update_package(session, pkg.id, is_active=False)
    assert ledger.list_packages(session) == []
    assert ledger.list_packages(session, include_inactive=True) == [pkg]
    with pytest.raises(NotFound):
        ledger.purchase_package(session, student.id, pkg.id, "PAY-3")


def test_grant_to_unknown_user_rejected(session):
    with pytest.raises(NotFound):
        ledger.add_credits(session, 9999, 50, TransactionType.ADMIN_ADJUSTMENT, "Typo in user id")
    assert session.query(CreditBalance).count() == 0
    assert session.query(CreditTransaction).count() == 0


def test_purchase_survives_balance_created_concurrently(session, other_session, student, hide_first_lookup):
    pkg = ledger.create_package(session, name="Starter", credits=10, bonus_credits=2, price=Decimal("29.00"))
    other_session.add(CreditBalance(user_id=student.id, total_credits=0, spent_credits=0, bonus_credits=0))
    other_session.commit()
    hide_first_lookup(session, CreditBalance)

    purchase, created = ledger.purchase_package(session, student.id, pkg.id, "PAY-RACE")
    assert created is True
    assert session.query(CreditPackagePurchase).filter_by(payment_reference="PAY-RACE").count() == 1
    assert session.query(CreditBalance).count() == 1
    assert ledger.get_balance(session, student.id).available_credits == 12

    _, replayed = ledger.purchase_package(session, student.id, pkg.id, "PAY-RACE")
    assert replayed is False
    assert ledger.get_balance(session, student.id).available_credits == 12
