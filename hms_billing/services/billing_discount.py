# FILE: hms_billing/services/billing_discount.py
"""
Account-level discount policy.

A discount is proposed (flat amount and/or percentage plus a reason) and
only counts toward net_amount once an approver is recorded. When both a
flat amount and a percentage are on the proposal the flat amount wins.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from hms_billing.models.billing import BillingAccount, DiscountStatus
from hms_billing.services.billing_errors import InvalidStateError, ValidationError
from hms_billing.services.billing_math import (
    ZERO,
    D,
    money2,
    money_in,
    percent_of,
)


def validate_proposal(
    amount,
    percentage,
    reason: Optional[str],
) -> Tuple[Optional[Decimal], Optional[Decimal], str]:
    amt = None if amount is None else money_in(amount, "Discount amount")
    pct = (None if percentage is None else
           money_in(percentage, "Discount percentage"))

    if amt is None and pct is None:
        raise ValidationError("Provide a discount amount or percentage")
    if amt is not None and amt <= 0:
        raise ValidationError("Discount amount must be > 0")
    if pct is not None and (pct <= 0 or pct > 100):
        raise ValidationError("Discount percentage must be within (0, 100]")

    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Discount reason is required")
    return amt, pct, reason


def apply_proposal(
    acc: BillingAccount,
    *,
    amount: Optional[Decimal],
    percentage: Optional[Decimal],
    reason: str,
    actor_id: Optional[int],
    on: datetime,
) -> None:
    if acc.discount_status == DiscountStatus.APPROVED.value:
        raise InvalidStateError("Discount already approved for this account")

    acc.proposed_discount_amount = amount
    acc.discount_percentage = percentage
    acc.discount_reason = reason
    acc.discount_proposed_by = actor_id
    acc.discount_proposed_at = on
    acc.discount_status = DiscountStatus.PROPOSED.value


def mark_approved(acc: BillingAccount, *, approver_id: int,
                  on: datetime) -> None:
    if acc.discount_status == DiscountStatus.APPROVED.value:
        raise InvalidStateError("Discount already approved for this account")
    if acc.discount_status != DiscountStatus.PROPOSED.value:
        raise ValidationError("No discount proposed for this account")
    if approver_id is None:
        raise ValidationError("Approver is required")

    acc.discount_approved_by = approver_id
    acc.discount_approved_at = on
    acc.discount_status = DiscountStatus.APPROVED.value


def resolve_discount(acc: BillingAccount, total) -> Decimal:
    """
    Discount the recompute may apply against `total`.

    - nothing / only proposed -> 0
    - approved -> flat amount if set, else percentage of total
    - capped at total so net never goes negative
    """
    status = acc.discount_status or DiscountStatus.NONE.value
    if status != DiscountStatus.APPROVED.value:
        return ZERO

    if acc.discount_approved_by is None or acc.discount_approved_at is None:
        raise ValidationError(
            f"Discount on {acc.account_no} has no approval record")

    total = money2(total)
    flat = D(acc.proposed_discount_amount)
    pct = D(acc.discount_percentage)

    if flat > 0:
        disc = money2(flat)
    elif pct > 0:
        disc = percent_of(total, pct)
    else:
        disc = ZERO

    if disc > total:
        disc = total
    return money2(disc)
