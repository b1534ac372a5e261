# FILE: hms_billing/services/billing_ledger.py
"""
Double-entry posting for billing events.

Every economic event maps to a fixed (debit head, credit head) pair; the
pair is written as two LedgerEntry rows with the same amount. Rows are never
updated; a correction is the mirror-image rule posted as new rows.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from hms_billing.models.billing import LedgerEntry, PayMode
from hms_billing.services.billing_errors import ValidationError
from hms_billing.services.billing_math import ZERO, money2
from hms_billing.utils.timezone import today_local

logger = logging.getLogger(__name__)

# -------------------------
# Account heads
# -------------------------
CASH_ACCOUNT = "Cash Account"
CARD_CLEARING = "Card Clearing Account"
MOBILE_MONEY_ACCOUNT = "Mobile Money Account"
BANK_ACCOUNT = "Bank Account"
ACCOUNTS_RECEIVABLE = "Accounts Receivable"
INSURANCE_RECEIVABLE = "Insurance Receivable"
PATIENT_SERVICES_REVENUE = "Patient Services Revenue"
DISCOUNTS_ALLOWED = "Discounts Allowed"

METHOD_HEADS = {
    PayMode.CASH.value: CASH_ACCOUNT,
    PayMode.CARD.value: CARD_CLEARING,
    PayMode.MOBILE_MONEY.value: MOBILE_MONEY_ACCOUNT,
    PayMode.BANK.value: BANK_ACCOUNT,
}

# -------------------------
# Posting rules: event -> (debit head, credit head)
# payment_received / refund_issued resolve the cash side from the method.
# -------------------------
ITEM_POSTED = "item_posted"
ITEM_CANCELLED = "item_cancelled"
DISCOUNT_APPROVED = "discount_approved"
DISCOUNT_ADJUSTED = "discount_adjusted"
PAYMENT_RECEIVED = "payment_received"
REFUND_ISSUED = "refund_issued"
CLAIM_APPROVED = "claim_approved"
CLAIM_PAID = "claim_paid"

POSTING_RULES = {
    ITEM_POSTED: (ACCOUNTS_RECEIVABLE, PATIENT_SERVICES_REVENUE),
    ITEM_CANCELLED: (PATIENT_SERVICES_REVENUE, ACCOUNTS_RECEIVABLE),
    DISCOUNT_APPROVED: (DISCOUNTS_ALLOWED, ACCOUNTS_RECEIVABLE),
    DISCOUNT_ADJUSTED: (DISCOUNTS_ALLOWED, ACCOUNTS_RECEIVABLE),
    CLAIM_APPROVED: (INSURANCE_RECEIVABLE, ACCOUNTS_RECEIVABLE),
    CLAIM_PAID: (BANK_ACCOUNT, INSURANCE_RECEIVABLE),
}


@dataclass(frozen=True)
class LedgerLine:
    account_head: str
    debit: Decimal = ZERO
    credit: Decimal = ZERO


def method_head(method: str) -> str:
    head = METHOD_HEADS.get(getattr(method, "value", method))
    if head is None:
        raise ValidationError(f"Unsupported payment method: {method}")
    return head


def rule_heads(event: str, *, method: Optional[str] = None) -> Tuple[str, str]:
    if event == PAYMENT_RECEIVED:
        return method_head(method), ACCOUNTS_RECEIVABLE
    if event == REFUND_ISSUED:
        return ACCOUNTS_RECEIVABLE, method_head(method)
    try:
        return POSTING_RULES[event]
    except KeyError:
        raise ValidationError(f"No posting rule for event {event}")


def _check_line(ln: LedgerLine) -> None:
    dr = money2(ln.debit)
    cr = money2(ln.credit)
    if dr < 0 or cr < 0:
        raise ValidationError("Ledger amounts cannot be negative")
    if (dr > 0) == (cr > 0):
        raise ValidationError(
            f"Ledger row for {ln.account_head} needs exactly one non-zero side")


def post_entries(
    db: Session,
    lines: Iterable[LedgerLine],
    *,
    account_id: Optional[int],
    event: str,
    source_ref: Optional[str],
    narration: str,
    actor_id: Optional[int],
    entry_date: Optional[date] = None,
) -> List[LedgerEntry]:
    lines = list(lines)
    for ln in lines:
        _check_line(ln)

    on = entry_date or today_local()
    rows: List[LedgerEntry] = []
    for ln in lines:
        row = LedgerEntry(
            entry_date=on,
            account_head=ln.account_head,
            debit=money2(ln.debit),
            credit=money2(ln.credit),
            narration=(narration or "")[:255],
            account_id=account_id,
            event=event,
            source_ref=source_ref,
            created_by=actor_id,
        )
        db.add(row)
        rows.append(row)
    db.flush()
    return rows


def post_event(
    db: Session,
    event: str,
    amount,
    *,
    account_id: Optional[int],
    source_ref: Optional[str],
    narration: str,
    actor_id: Optional[int],
    method: Optional[str] = None,
    entry_date: Optional[date] = None,
) -> List[LedgerEntry]:
    """Post the fixed rule for `event` as a debit row and a credit row."""
    amt = money2(amount)
    if amt <= 0:
        raise ValidationError("Posting amount must be > 0")

    dr_head, cr_head = rule_heads(event, method=method)
    rows = post_entries(
        db,
        [LedgerLine(dr_head, debit=amt), LedgerLine(cr_head, credit=amt)],
        account_id=account_id,
        event=event,
        source_ref=source_ref,
        narration=narration,
        actor_id=actor_id,
        entry_date=entry_date,
    )
    logger.info("Ledger %s: Dr %s / Cr %s %s (account_id=%s ref=%s)", event,
                dr_head, cr_head, amt, account_id, source_ref)
    return rows


def post_reversal(
    db: Session,
    event: str,
    amount,
    *,
    account_id: Optional[int],
    source_ref: Optional[str],
    narration: str,
    actor_id: Optional[int],
    method: Optional[str] = None,
    reversal_event: Optional[str] = None,
) -> List[LedgerEntry]:
    """Mirror image of `event`: same heads, sides swapped."""
    amt = money2(amount)
    if amt <= 0:
        raise ValidationError("Posting amount must be > 0")

    dr_head, cr_head = rule_heads(event, method=method)
    return post_entries(
        db,
        [LedgerLine(cr_head, debit=amt), LedgerLine(dr_head, credit=amt)],
        account_id=account_id,
        event=reversal_event or event,
        source_ref=source_ref,
        narration=f"Reversal: {narration}",
        actor_id=actor_id,
    )


def list_account_entries(db: Session, account_id: int) -> List[LedgerEntry]:
    return (db.query(LedgerEntry).filter(
        LedgerEntry.account_id == int(account_id)).order_by(
            LedgerEntry.id.asc()).all())
