# hms_billing/services/billing_math.py
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict

from hms_billing.services.billing_errors import ValidationError

Q2 = Decimal("0.01")
ZERO = Decimal("0.00")


def D(x) -> Decimal:
    """Raw Decimal from anything numeric; None / garbage -> 0."""
    try:
        return Decimal(str(x if x is not None else 0))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def money2(x) -> Decimal:
    return D(x).quantize(Q2, rounding=ROUND_HALF_UP)


def money_in(x, label: str = "Amount") -> Decimal:
    """money2 for caller input; NaN / Infinity is a ValidationError."""
    v = D(x)
    if not v.is_finite():
        raise ValidationError(f"{label} must be a finite number")
    try:
        return money2(v)
    except InvalidOperation:
        raise ValidationError(f"{label} is out of range")


def compute_line_amounts(qty, unit_price, discount_amount) -> Dict[str, Decimal]:
    """
    amount = qty * unit_price
    net_amount = amount - discount_amount

    Inputs are assumed validated (qty, price > 0, 0 <= discount <= amount).
    """
    amount = money2(D(qty) * D(unit_price))
    discount = money2(discount_amount)
    return {
        "amount": amount,
        "discount_amount": discount,
        "net_amount": money2(amount - discount),
    }


def percent_of(base, pct) -> Decimal:
    return money2(D(base) * D(pct) / Decimal("100"))
