# FILE: hms_billing/services/billing_claims_service.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, FrozenSet, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from hms_billing.db.session import transaction
from hms_billing.models.billing import (
    BillingAccount,
    ClaimStatus,
    InsuranceClaim,
    PayMode,
    PaymentKind,
)
from hms_billing.services import billing_ledger as ledger
from hms_billing.services.billing_accounts import ensure_mutable, lock_account
from hms_billing.services.billing_errors import (
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from hms_billing.services.billing_math import money2, money_in
from hms_billing.services.billing_payment_service import add_payment_row
from hms_billing.services.billing_recalc import recompute_account
from hms_billing.utils.timezone import now_local

logger = logging.getLogger(__name__)

# pending -> approved -> paid ; pending -> rejected (terminal)
CLAIM_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    ClaimStatus.PENDING.value:
    frozenset({ClaimStatus.APPROVED.value, ClaimStatus.REJECTED.value}),
    ClaimStatus.APPROVED.value: frozenset({ClaimStatus.PAID.value}),
    ClaimStatus.REJECTED.value: frozenset(),
    ClaimStatus.PAID.value: frozenset(),
}


def _ref(prefix: str, idv: int) -> str:
    return f"{prefix}-{int(idv):06d}"


def _claim_status(v) -> str:
    try:
        return ClaimStatus(str(getattr(v, "value", v)).lower()).value
    except ValueError:
        raise ValidationError(f"Unknown claim status: {v}")


def claimed_total(db: Session, account_id: int) -> Decimal:
    """Sum of claims still standing against the account (not rejected)."""
    total = (db.query(
        func.coalesce(func.sum(InsuranceClaim.claim_amount), 0)).filter(
            InsuranceClaim.account_id == int(account_id)).filter(
                InsuranceClaim.claim_status != ClaimStatus.REJECTED.value).
             scalar())
    return money2(total)


def submit_claim(
    db: Session,
    account_id: int,
    insurer_name: str,
    policy_number: str,
    claim_amount,
    *,
    actor_id: Optional[int],
    remarks: Optional[str] = None,
) -> int:
    """
    Open a pending claim. Together with the other standing claims it may
    not exceed the account's net amount.
    """
    insurer_name = (insurer_name or "").strip()
    policy_number = (policy_number or "").strip()
    if not insurer_name:
        raise ValidationError("Insurer name is required")
    if not policy_number:
        raise ValidationError("Policy number is required")
    amt = money_in(claim_amount, "Claim amount")
    if amt <= 0:
        raise ValidationError("claim_amount must be > 0")

    with transaction(db):
        acc = lock_account(db, account_id)
        ensure_mutable(acc)

        net = money2(acc.net_amount)
        already = claimed_total(db, int(acc.id))
        if already + amt > net:
            raise ValidationError(
                f"Claim {amt} exceeds net amount {net} on {acc.account_no} "
                f"(already claimed {already})")

        cl = InsuranceClaim(
            account_id=acc.id,
            insurer_name=insurer_name[:199],
            policy_number=policy_number[:100],
            claim_amount=amt,
            claim_status=ClaimStatus.PENDING.value,
            submitted_by=actor_id,
            submitted_date=now_local(),
            remarks=remarks,
        )
        db.add(cl)
        db.flush()
        cl.claim_number = _ref("CLM", int(cl.id))
        claim_id = int(cl.id)
        logger.info("Claim %s submitted to %s for %s on %s", cl.claim_number,
                    insurer_name, amt, acc.account_no)

    return claim_id


def _settle_claim(db: Session, acc: BillingAccount, cl: InsuranceClaim, *,
                  actor_id: Optional[int]) -> None:
    amt = money2(cl.claim_amount)
    due = money2(acc.balance)
    if amt > due:
        raise ValidationError(
            f"Settlement {amt} exceeds outstanding balance {due} on {acc.account_no}")

    pay = add_payment_row(
        db,
        acc,
        amount=amt,
        method=PayMode.BANK.value,
        kind=PaymentKind.INSURANCE,
        reference_no=cl.claim_number,
        notes=f"Insurer settlement: {cl.insurer_name}",
        actor_id=actor_id,
        claim_id=int(cl.id),
    )
    acc.amount_paid = money2(money2(acc.amount_paid) + amt)
    ledger.post_event(
        db,
        ledger.CLAIM_PAID,
        amt,
        account_id=int(acc.id),
        source_ref=f"claim:{cl.id}",
        narration=f"{cl.insurer_name} paid claim {cl.claim_number} (payment {pay.id})",
        actor_id=actor_id,
    )
    recompute_account(db, acc, actor_id=actor_id)


def update_claim_status(
    db: Session,
    claim_id: int,
    new_status,
    *,
    actor_id: Optional[int],
    remarks: Optional[str] = None,
) -> InsuranceClaim:
    target = _claim_status(new_status)

    with transaction(db):
        account_id = (db.query(InsuranceClaim.account_id).filter(
            InsuranceClaim.id == int(claim_id)).scalar())
        if account_id is None:
            raise NotFoundError(f"Insurance claim {claim_id} not found")
        acc = lock_account(db, int(account_id))
        cl = (db.query(InsuranceClaim).filter(
            InsuranceClaim.id == int(claim_id)).populate_existing().one())
        ensure_mutable(acc)

        current = cl.claim_status
        if target not in CLAIM_TRANSITIONS.get(current, frozenset()):
            raise InvalidTransitionError(
                f"Claim {cl.claim_number} cannot move {current} -> {target}")

        if target == ClaimStatus.APPROVED.value:
            ledger.post_event(
                db,
                ledger.CLAIM_APPROVED,
                cl.claim_amount,
                account_id=int(acc.id),
                source_ref=f"claim:{cl.id}",
                narration=f"{cl.insurer_name} approved claim {cl.claim_number}",
                actor_id=actor_id,
            )
        elif target == ClaimStatus.PAID.value:
            _settle_claim(db, acc, cl, actor_id=actor_id)

        cl.claim_status = target
        cl.decided_by = actor_id
        cl.decided_at = now_local()
        if remarks:
            cl.remarks = remarks
        db.flush()
        logger.info("Claim %s %s -> %s on %s", cl.claim_number, current,
                    target, acc.account_no)

    return cl


def list_claims(db: Session, account_id: int) -> List[InsuranceClaim]:
    return (db.query(InsuranceClaim).filter(
        InsuranceClaim.account_id == int(account_id)).order_by(
            InsuranceClaim.id.asc()).all())
