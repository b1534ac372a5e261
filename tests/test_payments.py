from decimal import Decimal

import pytest

from hms_billing.models.billing import LedgerEntry, Payment
from hms_billing.services.billing_errors import InvalidStateError, ValidationError
from hms_billing.services.billing_items import cancel_item
from hms_billing.services.billing_payment_service import (
    list_payments,
    record_payment,
    record_refund,
)
from hms_billing.utils.timezone import today_local

from conftest import ACTOR


def test_cash_payment_ledger_entries(db, account, charge) -> None:
    charge(5000)
    pay_id = record_payment(db, account.id, 2000, "cash", actor_id=ACTOR)

    rows = db.query(LedgerEntry).filter_by(source_ref=f"payment:{pay_id}").all()
    assert len(rows) == 2
    by_head = {r.account_head: r for r in rows}
    assert by_head["Cash Account"].debit == Decimal("2000.00")
    assert by_head["Cash Account"].credit == Decimal("0.00")
    assert by_head["Accounts Receivable"].credit == Decimal("2000.00")
    assert by_head["Accounts Receivable"].debit == Decimal("0.00")
    assert {r.entry_date for r in rows} == {today_local()}


@pytest.mark.parametrize(
    "method, head",
    [("card", "Card Clearing Account"),
     ("mobile_money", "Mobile Money Account"),
     ("bank", "Bank Account")],
)
def test_payment_method_selects_debit_head(db, account, charge, method,
                                           head) -> None:
    charge(100)
    pay_id = record_payment(db, account.id, 100, method, actor_id=ACTOR)
    row = (db.query(LedgerEntry).filter_by(source_ref=f"payment:{pay_id}",
                                           account_head=head).one())
    assert row.debit == Decimal("100.00")


def test_reference_generated_when_missing(db, account, charge) -> None:
    charge(100)
    pay_id = record_payment(db, account.id, 60, "mobile_money", actor_id=ACTOR)
    pay = db.get(Payment, pay_id)
    assert pay.reference_no == f"MOMO{today_local():%Y%m%d}{pay_id:04d}"

    own = record_payment(db, account.id, 40, "card", "TXN-77", actor_id=ACTOR)
    assert db.get(Payment, own).reference_no == "TXN-77"
    assert [p.id for p in list_payments(db, account.id)] == [pay_id, own]


def test_overpayment_is_rejected(db, account, charge) -> None:
    charge(1000)
    with pytest.raises(ValidationError):
        record_payment(db, account.id, Decimal("1000.01"), "cash",
                       actor_id=ACTOR)
    db.refresh(account)
    assert account.amount_paid == Decimal("0.00")
    assert db.query(Payment).count() == 0
    assert db.query(LedgerEntry).count() == 0


@pytest.mark.parametrize("amount", [0, -5])
def test_non_positive_payment(db, account, charge, amount) -> None:
    charge(1000)
    with pytest.raises(ValidationError):
        record_payment(db, account.id, amount, "cash", actor_id=ACTOR)


@pytest.mark.parametrize("amount", [Decimal("NaN"), Decimal("Infinity"), "1e40"])
def test_non_finite_payment(db, account, charge, amount) -> None:
    charge(1000)
    with pytest.raises(ValidationError):
        record_payment(db, account.id, amount, "cash", actor_id=ACTOR)
    db.refresh(account)
    assert account.amount_paid == Decimal("0.00")
    assert db.query(Payment).count() == 0


def test_unknown_method(db, account, charge) -> None:
    charge(1000)
    with pytest.raises(ValidationError):
        record_payment(db, account.id, 10, "cheque", actor_id=ACTOR)


def test_refund_after_cancelled_charge(db, account, charge) -> None:
    charge(700)
    drop = charge(300, description="X-ray", item_type="imaging")
    record_payment(db, account.id, 1000, "cash", actor_id=ACTOR)
    cancel_item(db, drop, "not performed", actor_id=ACTOR)

    db.refresh(account)
    assert account.balance == Decimal("-300.00")

    with pytest.raises(ValidationError):
        record_refund(db, account.id, 301, "cash", reason="too much",
                      actor_id=ACTOR)

    pay_id = record_refund(db, account.id, 300, "cash",
                           reason="X-ray not performed", actor_id=ACTOR)
    db.refresh(account)
    assert account.amount_paid == Decimal("700.00")
    assert account.balance == Decimal("0.00")
    assert db.get(Payment, pay_id).kind == "refund"

    rows = db.query(LedgerEntry).filter_by(source_ref=f"payment:{pay_id}").all()
    assert {(r.account_head, r.debit, r.credit) for r in rows} == {
        ("Accounts Receivable", Decimal("300.00"), Decimal("0.00")),
        ("Cash Account", Decimal("0.00"), Decimal("300.00")),
    }


def test_refund_without_credit(db, account, charge) -> None:
    charge(500)
    with pytest.raises(InvalidStateError):
        record_refund(db, account.id, 10, "cash", reason="?", actor_id=ACTOR)


def test_refund_requires_reason(db, account, charge) -> None:
    charge(500)
    with pytest.raises(ValidationError):
        record_refund(db, account.id, 10, "cash", reason="", actor_id=ACTOR)
