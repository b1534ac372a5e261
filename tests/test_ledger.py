from decimal import Decimal

import pytest

from hms_billing.models.billing import (
    BillingAccount,
    BillItem,
    ItemStatus,
    LedgerEntry,
    Payment,
)
from hms_billing.services import billing_ledger as ledger
from hms_billing.services.billing_account_service import (
    approve_discount,
    close_account,
    propose_discount,
)
from hms_billing.services.billing_claims_service import (
    submit_claim,
    update_claim_status,
)
from hms_billing.services.billing_errors import ValidationError
from hms_billing.services import billing_items
from hms_billing.services.billing_items import add_item, cancel_item, post_item
from hms_billing.services.billing_payment_service import record_payment

from conftest import ACTOR, APPROVER


def _totals(db):
    rows = db.query(LedgerEntry).all()
    return sum(r.debit for r in rows), sum(r.credit for r in rows)


def test_every_event_leaves_the_journal_balanced(db, account, charge) -> None:
    charge(3000)
    charge(2000, item_type="procedure", description="Suturing")
    propose_discount(db, account.id, amount=500, reason="staff",
                     actor_id=ACTOR)
    approve_discount(db, account.id, approver_id=APPROVER)
    close_account(db, account.id, actor_id=ACTOR)
    db.refresh(account)
    assert account.status == "pending"

    record_payment(db, account.id, 1000, "mobile_money", actor_id=ACTOR)
    claim_id = submit_claim(db, account.id, "NHIF", "N-1", 2000,
                            actor_id=ACTOR)
    update_claim_status(db, claim_id, "approved", actor_id=ACTOR)
    update_claim_status(db, claim_id, "paid", actor_id=ACTOR)

    dr, cr = _totals(db)
    assert dr == cr
    assert db.query(LedgerEntry).filter(
        (LedgerEntry.debit > 0) == (LedgerEntry.credit > 0)).count() == 0


def test_rows_carry_one_side_only(db) -> None:
    with pytest.raises(ValidationError):
        ledger.post_entries(
            db,
            [ledger.LedgerLine("Cash Account", debit=Decimal("5"),
                               credit=Decimal("5"))],
            account_id=None,
            event="manual",
            source_ref=None,
            narration="both sides",
            actor_id=ACTOR,
        )
    with pytest.raises(ValidationError):
        ledger.post_entries(
            db,
            [ledger.LedgerLine("Cash Account", debit=Decimal("-5"))],
            account_id=None,
            event="manual",
            source_ref=None,
            narration="negative",
            actor_id=ACTOR,
        )


def test_unknown_event_and_method(db) -> None:
    with pytest.raises(ValidationError):
        ledger.rule_heads("lottery_win")
    with pytest.raises(ValidationError):
        ledger.rule_heads(ledger.PAYMENT_RECEIVED, method="cheque")


def test_reversal_swaps_sides(db, account) -> None:
    ledger.post_event(db, ledger.ITEM_POSTED, 120, account_id=account.id,
                      source_ref="item:1", narration="CBC", actor_id=ACTOR)
    rows = ledger.post_reversal(db, ledger.ITEM_POSTED, 120,
                                account_id=account.id, source_ref="item:1",
                                narration="CBC", actor_id=ACTOR)
    db.commit()

    assert {(r.account_head, r.debit, r.credit) for r in rows} == {
        ("Patient Services Revenue", Decimal("120.00"), Decimal("0.00")),
        ("Accounts Receivable", Decimal("0.00"), Decimal("120.00")),
    }
    assert rows[0].narration.startswith("Reversal: ")
    assert [r.id for r in ledger.list_account_entries(db, account.id)] == sorted(
        r.id for r in db.query(LedgerEntry).all())


def test_cancelling_unposted_item_writes_nothing(db, charge) -> None:
    item_id = charge(300)
    cancel_item(db, item_id, "ordered twice", actor_id=ACTOR)
    assert db.query(LedgerEntry).count() == 0


def _fail(*args, **kwargs):
    raise RuntimeError("ledger unavailable")


def test_failed_posting_rolls_back_the_payment(db, account, charge,
                                               monkeypatch) -> None:
    charge(1000)
    monkeypatch.setattr(ledger, "post_event", _fail)

    with pytest.raises(RuntimeError):
        record_payment(db, account.id, 400, "cash", actor_id=ACTOR)

    db.refresh(account)
    assert account.amount_paid == Decimal("0.00")
    assert account.balance == Decimal("1000.00")
    assert db.query(Payment).count() == 0
    assert db.query(LedgerEntry).count() == 0


def test_failed_recompute_rolls_back_the_charge(db, account,
                                                monkeypatch) -> None:
    monkeypatch.setattr(billing_items, "recompute_account", _fail)

    with pytest.raises(RuntimeError):
        add_item(db, account.encounter_id, "lab", "CBC", 1, 500,
                 actor_id=ACTOR)
    with pytest.raises(RuntimeError):
        add_item(db, 404, "lab", "CBC", 1, 500, actor_id=ACTOR, patient_id=12)

    assert db.query(BillItem).count() == 0
    assert db.query(BillingAccount).filter_by(encounter_id=404).count() == 0
    db.refresh(account)
    assert account.total_amount == Decimal("0.00")
    assert account.balance == Decimal("0.00")


def test_failed_reversal_keeps_the_item_posted(db, account, charge,
                                               monkeypatch) -> None:
    item_id = charge(600)
    post_item(db, item_id, actor_id=ACTOR)
    monkeypatch.setattr(ledger, "post_event", _fail)

    with pytest.raises(RuntimeError):
        cancel_item(db, item_id, "wrong patient", actor_id=ACTOR)

    assert db.get(BillItem, item_id).status == ItemStatus.POSTED.value
    db.refresh(account)
    assert account.total_amount == Decimal("600.00")
    assert db.query(LedgerEntry).filter_by(event="item_cancelled").count() == 0
