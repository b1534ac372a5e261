# FILE: hms_billing/services/billing_payment_service.py
from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from hms_billing.db.session import transaction
from hms_billing.models.billing import (
    BillingAccount,
    PayMode,
    Payment,
    PaymentKind,
)
from hms_billing.services import billing_ledger as ledger
from hms_billing.services.billing_accounts import ensure_mutable, lock_account
from hms_billing.services.billing_errors import InvalidStateError, ValidationError
from hms_billing.services.billing_math import money2, money_in
from hms_billing.services.billing_recalc import recompute_account
from hms_billing.utils.timezone import now_local

logger = logging.getLogger(__name__)

REFERENCE_PREFIXES = {
    PayMode.CASH.value: "CASH",
    PayMode.CARD.value: "CARD",
    PayMode.MOBILE_MONEY.value: "MOMO",
    PayMode.BANK.value: "BANK",
}


def _pay_mode(v) -> str:
    try:
        return PayMode(getattr(v, "value", v)).value
    except ValueError:
        raise ValidationError(f"Unsupported payment method: {v}")


def _positive_amount(amount):
    amt = money_in(amount, "Payment amount")
    if amt <= 0:
        raise ValidationError("Payment amount must be > 0")
    return amt


def generate_reference_no(method: str, payment_id: int) -> str:
    prefix = REFERENCE_PREFIXES.get(method, "PAY")
    return f"{prefix}{now_local():%Y%m%d}{int(payment_id):04d}"


def add_payment_row(
    db: Session,
    acc: BillingAccount,
    *,
    amount,
    method: str,
    kind: PaymentKind,
    reference_no: Optional[str],
    notes: Optional[str],
    actor_id: Optional[int],
    claim_id: Optional[int] = None,
) -> Payment:
    pay = Payment(
        account_id=acc.id,
        claim_id=claim_id,
        amount=amount,
        method=method,
        kind=kind.value,
        reference_no=(reference_no or None),
        status="completed",
        notes=(notes or None),
        paid_at=now_local(),
        created_by=actor_id,
    )
    db.add(pay)
    db.flush()
    if not pay.reference_no:
        pay.reference_no = generate_reference_no(method, int(pay.id))
        db.flush()
    return pay


def record_payment(
    db: Session,
    account_id: int,
    amount,
    method,
    reference_no: Optional[str] = None,
    *,
    actor_id: Optional[int],
    notes: Optional[str] = None,
) -> int:
    """
    Receipt against an account.

    Rejects amount <= 0 and anything above the outstanding balance;
    refunds go through record_refund. Posts Dr <method head> / Cr AR.
    """
    amt = _positive_amount(amount)
    mode = _pay_mode(method)

    with transaction(db):
        acc = lock_account(db, account_id)
        ensure_mutable(acc)
        due = money2(acc.balance)
        if amt > due:
            raise ValidationError(
                f"Payment {amt} exceeds outstanding balance {due} on {acc.account_no}")

        pay = add_payment_row(
            db,
            acc,
            amount=amt,
            method=mode,
            kind=PaymentKind.RECEIPT,
            reference_no=reference_no,
            notes=notes,
            actor_id=actor_id,
        )
        pay_id = int(pay.id)

        acc.amount_paid = money2(money2(acc.amount_paid) + amt)
        ledger.post_event(
            db,
            ledger.PAYMENT_RECEIVED,
            amt,
            method=mode,
            account_id=int(acc.id),
            source_ref=f"payment:{pay_id}",
            narration=f"Payment {pay.reference_no} on {acc.account_no}",
            actor_id=actor_id,
        )
        recompute_account(db, acc, actor_id=actor_id)
        logger.info("Payment id=%s %s %s on %s (balance now %s)", pay_id, mode,
                    amt, acc.account_no, acc.balance)

    return pay_id


def record_refund(
    db: Session,
    account_id: int,
    amount,
    method,
    reference_no: Optional[str] = None,
    *,
    reason: str,
    actor_id: Optional[int],
) -> int:
    """
    Pay back a credit (balance < 0, e.g. a charge cancelled after payment).
    Never more than the credit; posts Dr AR / Cr <method head>.
    """
    amt = _positive_amount(amount)
    mode = _pay_mode(method)
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Refund reason is required")

    with transaction(db):
        acc = lock_account(db, account_id)
        ensure_mutable(acc)
        credit = -money2(acc.balance)
        if credit <= 0:
            raise InvalidStateError(
                f"Account {acc.account_no} has no credit to refund")
        if amt > credit:
            raise ValidationError(
                f"Refund {amt} exceeds available credit {credit} on {acc.account_no}")

        pay = add_payment_row(
            db,
            acc,
            amount=amt,
            method=mode,
            kind=PaymentKind.REFUND,
            reference_no=reference_no,
            notes=reason[:255],
            actor_id=actor_id,
        )
        pay_id = int(pay.id)

        acc.amount_paid = money2(money2(acc.amount_paid) - amt)
        ledger.post_event(
            db,
            ledger.REFUND_ISSUED,
            amt,
            method=mode,
            account_id=int(acc.id),
            source_ref=f"payment:{pay_id}",
            narration=f"Refund {pay.reference_no} on {acc.account_no}: {reason}",
            actor_id=actor_id,
        )
        recompute_account(db, acc, actor_id=actor_id)
        logger.info("Refund id=%s %s %s on %s", pay_id, mode, amt,
                    acc.account_no)

    return pay_id


def list_payments(db: Session, account_id: int) -> List[Payment]:
    return (db.query(Payment).filter(
        Payment.account_id == int(account_id)).order_by(
            Payment.id.asc()).all())
