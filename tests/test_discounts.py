from decimal import Decimal

import pytest

from hms_billing.models.billing import LedgerEntry
from hms_billing.services.billing_account_service import (
    approve_discount,
    propose_discount,
)
from hms_billing.services.billing_errors import InvalidStateError, ValidationError
from hms_billing.services.billing_items import cancel_item
from hms_billing.services.billing_payment_service import record_payment

from conftest import ACTOR, APPROVER


def test_discount_then_payment_walkthrough(db, account, charge) -> None:
    charge(5000)
    db.refresh(account)
    assert (account.total_amount, account.net_amount, account.balance) == (
        Decimal("5000.00"), Decimal("5000.00"), Decimal("5000.00"))

    propose_discount(db, account.id, amount=500, reason="hardship",
                     actor_id=ACTOR)
    approve_discount(db, account.id, approver_id=APPROVER)
    db.refresh(account)
    assert account.net_amount == Decimal("4500.00")
    assert account.balance == Decimal("4500.00")
    assert account.discount_approved_by == APPROVER
    assert account.discount_approved_at is not None

    record_payment(db, account.id, 2000, "cash", actor_id=ACTOR)
    db.refresh(account)
    assert account.amount_paid == Decimal("2000.00")
    assert account.balance == Decimal("2500.00")


def test_approval_posts_discount_entries(db, account, charge) -> None:
    charge(2000)
    propose_discount(db, account.id, amount=250, reason="staff",
                     actor_id=ACTOR)
    approve_discount(db, account.id, approver_id=APPROVER)

    rows = db.query(LedgerEntry).filter_by(event="discount_approved").all()
    assert {(r.account_head, r.debit, r.credit) for r in rows} == {
        ("Discounts Allowed", Decimal("250.00"), Decimal("0.00")),
        ("Accounts Receivable", Decimal("0.00"), Decimal("250.00")),
    }
    assert all(r.created_by == APPROVER for r in rows)


def test_flat_amount_wins_over_percentage(db, account, charge) -> None:
    charge(1000)
    propose_discount(db, account.id, amount=100, percentage=50,
                     reason="both filled in", actor_id=ACTOR)
    approve_discount(db, account.id, approver_id=APPROVER)
    db.refresh(account)
    assert account.discount_amount == Decimal("100.00")


def test_percentage_only(db, account, charge) -> None:
    charge(1234)
    propose_discount(db, account.id, percentage=Decimal("12.5"),
                     reason="scheme", actor_id=ACTOR)
    approve_discount(db, account.id, approver_id=APPROVER)
    db.refresh(account)
    assert account.discount_amount == Decimal("154.25")
    assert account.net_amount == Decimal("1079.75")


def test_discount_is_capped_at_total(db, account, charge) -> None:
    item_id = charge(800)
    charge(200, description="Urinalysis")
    propose_discount(db, account.id, amount=900, reason="charity",
                     actor_id=ACTOR)
    approve_discount(db, account.id, approver_id=APPROVER)

    cancel_item(db, item_id, "not done", actor_id=ACTOR)
    db.refresh(account)
    assert account.discount_amount == Decimal("200.00")
    assert account.net_amount == Decimal("0.00")

    rows = db.query(LedgerEntry).filter_by(account_head="Discounts Allowed").all()
    assert sum(r.debit for r in rows) - sum(r.credit for r in rows) == Decimal("200.00")


def test_approve_twice_is_invalid(db, account, charge) -> None:
    charge(1000)
    propose_discount(db, account.id, amount=100, reason="staff",
                     actor_id=ACTOR)
    approve_discount(db, account.id, approver_id=APPROVER)
    with pytest.raises(InvalidStateError):
        approve_discount(db, account.id, approver_id=APPROVER)


def test_cannot_repropose_after_approval(db, account, charge) -> None:
    charge(1000)
    propose_discount(db, account.id, amount=100, reason="staff",
                     actor_id=ACTOR)
    approve_discount(db, account.id, approver_id=APPROVER)
    with pytest.raises(InvalidStateError):
        propose_discount(db, account.id, amount=300, reason="more",
                         actor_id=ACTOR)


def test_approve_without_proposal(db, account) -> None:
    with pytest.raises(ValidationError):
        approve_discount(db, account.id, approver_id=APPROVER)


@pytest.mark.parametrize(
    "amount, percentage, reason",
    [(None, None, "x"), (0, None, "x"), (None, 0, "x"), (None, 101, "x"),
     (-10, None, "x"), (100, None, ""), (Decimal("NaN"), None, "x"),
     (None, Decimal("Infinity"), "x"), (Decimal("-Infinity"), None, "x")],
)
def test_invalid_proposals(db, account, amount, percentage, reason) -> None:
    with pytest.raises(ValidationError):
        propose_discount(db, account.id, amount=amount, percentage=percentage,
                         reason=reason, actor_id=ACTOR)
    db.refresh(account)
    assert account.discount_status == "none"
