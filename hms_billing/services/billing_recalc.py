# FILE: hms_billing/services/billing_recalc.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from hms_billing.models.billing import (
    AccountStatus,
    BillingAccount,
    BillItem,
    ItemStatus,
)
from hms_billing.services import billing_ledger as ledger
from hms_billing.services.billing_discount import resolve_discount
from hms_billing.services.billing_math import money2
from hms_billing.utils.timezone import now_local

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecalcResult:
    total_amount: Decimal
    discount_amount: Decimal
    net_amount: Decimal
    amount_paid: Decimal
    balance: Decimal
    status: str
    changed: bool


def active_items_total(db: Session, account_id: int) -> Decimal:
    total = (db.query(func.coalesce(func.sum(BillItem.net_amount), 0)).filter(
        BillItem.account_id == int(account_id)).filter(
            BillItem.status != ItemStatus.CANCELLED.value).scalar())
    return money2(total)


def _derive_status(current: str, net: Decimal, balance: Decimal) -> str:
    if current == AccountStatus.CLOSED.value:
        return current
    if current == AccountStatus.PENDING.value:
        return AccountStatus.CLOSED.value if balance == 0 else current
    if current == AccountStatus.OPEN.value and net > 0 and balance == 0:
        return AccountStatus.PAID.value
    if current == AccountStatus.PAID.value and balance != 0:
        return AccountStatus.OPEN.value
    return current


def recompute_account(
    db: Session,
    acc: BillingAccount,
    *,
    actor_id: Optional[int] = None,
    discount_event: str = ledger.DISCOUNT_ADJUSTED,
) -> RecalcResult:
    """
    Rebuild the account summary from the full set of active items.

      total_amount    = sum(item.net_amount) over non-cancelled items
      discount_amount = approved account discount (0 if none / unapproved)
      net_amount      = total_amount - discount_amount
      balance         = net_amount - amount_paid

    The caller holds the account lock and owns the transaction.
    Running it again without a mutation in between changes nothing.
    If the applied discount moves (approval, or a percentage over a new
    total) the difference is posted to the ledger under `discount_event`.
    """
    db.flush()

    total = active_items_total(db, int(acc.id))
    discount = resolve_discount(acc, total)
    net = money2(total - discount)
    paid = money2(acc.amount_paid)
    balance = money2(net - paid)
    status = _derive_status(acc.status, net, balance)

    prev_discount = money2(acc.discount_amount)
    new_values = {
        "total_amount": total,
        "discount_amount": discount,
        "net_amount": net,
        "amount_paid": paid,
        "balance": balance,
    }

    changed = False
    for field, value in new_values.items():
        if money2(getattr(acc, field)) != value or getattr(acc, field) is None:
            setattr(acc, field, value)
            changed = True

    if status != acc.status:
        acc.status = status
        changed = True
        if status == AccountStatus.CLOSED.value and acc.closed_at is None:
            acc.closed_at = now_local()

    delta = money2(discount - prev_discount)
    if delta > 0:
        ledger.post_event(
            db,
            discount_event,
            delta,
            account_id=int(acc.id),
            source_ref=f"account:{acc.id}",
            narration=f"Discount on {acc.account_no}: {acc.discount_reason or ''}",
            actor_id=actor_id,
        )
    elif delta < 0:
        ledger.post_reversal(
            db,
            ledger.DISCOUNT_ADJUSTED,
            -delta,
            account_id=int(acc.id),
            source_ref=f"account:{acc.id}",
            narration=f"Discount on {acc.account_no} reduced",
            actor_id=actor_id,
        )

    if changed:
        db.flush()
        logger.info(
            "Recomputed %s: total=%s discount=%s net=%s paid=%s balance=%s status=%s",
            acc.account_no, total, discount, net, paid, balance, acc.status)

    return RecalcResult(
        total_amount=total,
        discount_amount=discount,
        net_amount=net,
        amount_paid=paid,
        balance=balance,
        status=acc.status,
        changed=changed,
    )
