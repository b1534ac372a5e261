# FILE: hms_billing/services/billing_account_service.py
"""
Billing account commands and reads.

This is the surface producers and reporting screens talk to; each command
is one transaction that locks the account, mutates, recomputes and posts
ledger rows before committing.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from hms_billing.db.session import transaction
from hms_billing.models.billing import (
    AccountStatus,
    BillingAccount,
    BillItem,
    ItemStatus,
)
from hms_billing.services import billing_discount
from hms_billing.services import billing_ledger as ledger
from hms_billing.services.billing_accounts import (
    ensure_mutable,
    get_account_or_404,
    get_or_open_account,
    lock_account,
)
from hms_billing.services.billing_errors import InvalidStateError
from hms_billing.services.billing_items import post_unpaid_items
from hms_billing.services.billing_math import money2
from hms_billing.services.billing_recalc import recompute_account
from hms_billing.utils.timezone import now_local

logger = logging.getLogger(__name__)


def open_account(
    db: Session,
    encounter_id: int,
    patient_id: int,
    *,
    actor_id: Optional[int],
    branch_id: Optional[int] = None,
) -> BillingAccount:
    """Get-or-create the account for an encounter."""
    with transaction(db):
        acc = get_or_open_account(
            db,
            encounter_id=encounter_id,
            patient_id=patient_id,
            actor_id=actor_id,
            branch_id=branch_id,
        )
    return acc


def propose_discount(
    db: Session,
    account_id: int,
    *,
    amount=None,
    percentage=None,
    reason: str,
    actor_id: Optional[int],
) -> BillingAccount:
    amt, pct, reason = billing_discount.validate_proposal(
        amount, percentage, reason)

    with transaction(db):
        acc = lock_account(db, account_id)
        ensure_mutable(acc)
        billing_discount.apply_proposal(
            acc,
            amount=amt,
            percentage=pct,
            reason=reason,
            actor_id=actor_id,
            on=now_local(),
        )
        recompute_account(db, acc, actor_id=actor_id)
        logger.info("Discount proposed on %s: amount=%s pct=%s by=%s",
                    acc.account_no, amt, pct, actor_id)
    return acc


def approve_discount(
    db: Session,
    account_id: int,
    *,
    approver_id: int,
) -> BillingAccount:
    with transaction(db):
        acc = lock_account(db, account_id)
        ensure_mutable(acc)
        billing_discount.mark_approved(acc,
                                       approver_id=approver_id,
                                       on=now_local())
        res = recompute_account(db,
                                acc,
                                actor_id=approver_id,
                                discount_event=ledger.DISCOUNT_APPROVED)
        logger.info("Discount approved on %s by=%s: discount=%s net=%s",
                    acc.account_no, approver_id, res.discount_amount,
                    res.net_amount)
    return acc


def recalculate(db: Session, account_id: int, *,
                actor_id: Optional[int]) -> Dict[str, Any]:
    with transaction(db):
        acc = lock_account(db, account_id)
        recompute_account(db, acc, actor_id=actor_id)
    return get_account_summary(db, account_id)


def close_account(db: Session, account_id: int, *,
                  actor_id: Optional[int]) -> BillingAccount:
    """
    Discharge: post every unpaid charge, then close when fully settled or
    park in `pending` until the balance is cleared.
    """
    with transaction(db):
        acc = lock_account(db, account_id)
        if acc.status == AccountStatus.CLOSED.value:
            raise InvalidStateError(f"Billing account {acc.account_no} is already closed")

        posted = post_unpaid_items(db, acc, actor_id=actor_id)
        res = recompute_account(db, acc, actor_id=actor_id)

        if res.balance == 0:
            acc.status = AccountStatus.CLOSED.value
            acc.closed_at = now_local()
        else:
            acc.status = AccountStatus.PENDING.value
        db.flush()
        logger.info("Account %s discharged: posted %s item(s), balance=%s status=%s",
                    acc.account_no, len(posted), res.balance, acc.status)
    return acc


def _items_count(db: Session, account_id: int) -> int:
    return int(
        db.query(func.count(BillItem.id)).filter(
            BillItem.account_id == int(account_id)).filter(
                BillItem.status != ItemStatus.CANCELLED.value).scalar() or 0)


def _summary(db: Session, acc: BillingAccount) -> Dict[str, Any]:
    return {
        "account_exists": True,
        "account_id": int(acc.id),
        "account_no": acc.account_no,
        "encounter_id": int(acc.encounter_id),
        "patient_id": int(acc.patient_id),
        "status": acc.status,
        "total": money2(acc.total_amount),
        "discount": money2(acc.discount_amount),
        "net": money2(acc.net_amount),
        "paid": money2(acc.amount_paid),
        "balance": money2(acc.balance),
        "discount_status": acc.discount_status,
        "items_count": _items_count(db, int(acc.id)),
    }


def get_account_summary(db: Session, account_id: int) -> Dict[str, Any]:
    """Read-only summary for reporting / UI collaborators."""
    return _summary(db, get_account_or_404(db, account_id))


def get_encounter_summary(db: Session, encounter_id: int) -> Dict[str, Any]:
    acc = (db.query(BillingAccount).filter(
        BillingAccount.encounter_id == int(encounter_id)).first())
    if not acc:
        zero = money2(0)
        return {
            "account_exists": False,
            "encounter_id": int(encounter_id),
            "total": zero,
            "discount": zero,
            "net": zero,
            "paid": zero,
            "balance": zero,
            "items_count": 0,
        }
    return _summary(db, acc)
