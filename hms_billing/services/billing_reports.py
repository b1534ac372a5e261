# FILE: hms_billing/services/billing_reports.py
from __future__ import annotations

from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from hms_billing.core.config import settings
from hms_billing.models.billing import (
    BillingAccount,
    DiscountStatus,
    InsuranceClaim,
    LedgerEntry,
)
from hms_billing.services.billing_math import ZERO, money2


def _rate(part, whole) -> Decimal:
    if not whole:
        return ZERO
    return money2(Decimal(part) * 100 / Decimal(whole))


def _day_bounds(start: date, end: date):
    return datetime.combine(start, time.min), datetime.combine(
        end + timedelta(days=1), time.min)


def discount_report(
    db: Session,
    start: date,
    end: date,
    branch_id: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Discount totals and compliance for accounts opened in [start, end].
    High-value = discount above settings.DISCOUNT_HIGH_VALUE_THRESHOLD.
    """
    lo, hi = _day_bounds(start, end)
    q = db.query(BillingAccount).filter(BillingAccount.created_at >= lo,
                                        BillingAccount.created_at < hi)
    if branch_id is not None:
        q = q.filter(BillingAccount.branch_id == int(branch_id))
    accounts = q.all()

    threshold = money2(settings.DISCOUNT_HIGH_VALUE_THRESHOLD)
    total_revenue = sum((money2(a.total_amount) for a in accounts), ZERO)
    total_discount = sum((money2(a.discount_amount) for a in accounts), ZERO)
    total_net = sum((money2(a.net_amount) for a in accounts), ZERO)

    # proposals count too: that is where unapproved discounts show up
    discounted = [
        a for a in accounts
        if a.discount_status in (DiscountStatus.PROPOSED.value,
                                 DiscountStatus.APPROVED.value)
    ]
    approved = [a for a in discounted if a.discount_approved_by is not None]
    with_reason = [a for a in discounted if (a.discount_reason or "").strip()]
    high_value = [
        a for a in discounted
        if money2(a.discount_amount or a.proposed_discount_amount) > threshold
    ]
    high_value_approved = [
        a for a in high_value if a.discount_approved_by is not None
    ]

    return {
        "start": start,
        "end": end,
        "branch_id": branch_id,
        "total_accounts": len(accounts),
        "total_revenue": total_revenue,
        "total_discount": total_discount,
        "total_net": total_net,
        "discount_percentage": _rate(total_discount, total_revenue),
        "discount_count": len(discounted),
        "average_discount":
        money2(total_discount / len(approved)) if approved else ZERO,
        "compliance": {
            "approved_discounts": len(approved),
            "approval_rate": _rate(len(approved), len(discounted)),
            "with_reason": len(with_reason),
            "reason_compliance": _rate(len(with_reason), len(discounted)),
            "high_value_threshold": threshold,
            "high_value_discounts": len(high_value),
            "high_value_approved": len(high_value_approved),
            "high_value_approval_rate":
            _rate(len(high_value_approved), len(high_value)),
        },
        "accounts": [{
            "account_no": a.account_no,
            "discount_status": a.discount_status,
            "discount_amount": money2(a.discount_amount),
            "proposed_discount_amount": a.proposed_discount_amount,
            "discount_percentage": a.discount_percentage,
            "discount_reason": a.discount_reason,
            "discount_approved_by": a.discount_approved_by,
            "discount_approved_at": a.discount_approved_at,
        } for a in discounted],
    }


def trial_balance(
    db: Session,
    start: date,
    end: date,
    account_id: Optional[int] = None,
) -> Dict[str, Any]:
    q = db.query(
        LedgerEntry.account_head,
        func.coalesce(func.sum(LedgerEntry.debit), 0),
        func.coalesce(func.sum(LedgerEntry.credit), 0),
    ).filter(LedgerEntry.entry_date >= start, LedgerEntry.entry_date <= end)
    if account_id is not None:
        q = q.filter(LedgerEntry.account_id == int(account_id))
    rows = q.group_by(LedgerEntry.account_head).order_by(
        LedgerEntry.account_head.asc()).all()

    heads: List[Dict[str, Any]] = []
    total_dr = ZERO
    total_cr = ZERO
    for head, dr, cr in rows:
        dr = money2(dr)
        cr = money2(cr)
        heads.append({
            "account_head": head,
            "debit": dr,
            "credit": cr,
            "net": money2(dr - cr),
        })
        total_dr += dr
        total_cr += cr

    return {
        "start": start,
        "end": end,
        "heads": heads,
        "total_debit": money2(total_dr),
        "total_credit": money2(total_cr),
    }


def claims_summary(db: Session) -> Dict[str, Any]:
    rows = (db.query(
        InsuranceClaim.claim_status,
        func.count(InsuranceClaim.id),
        func.coalesce(func.sum(InsuranceClaim.claim_amount), 0),
    ).group_by(InsuranceClaim.claim_status).all())
    by_status = {
        status: {
            "count": int(cnt or 0),
            "amount": money2(amt)
        }
        for status, cnt, amt in rows
    }
    return {
        "by_status": by_status,
        "total_claims": sum(v["count"] for v in by_status.values()),
    }


def ledger_entries_between(db: Session, start: date,
                           end: date) -> List[LedgerEntry]:
    return (db.query(LedgerEntry).filter(
        LedgerEntry.entry_date >= start,
        LedgerEntry.entry_date <= end).order_by(LedgerEntry.entry_date.asc(),
                                                LedgerEntry.id.asc()).all())
