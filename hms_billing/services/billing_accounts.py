# FILE: hms_billing/services/billing_accounts.py
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hms_billing.models.billing import AccountStatus, BillingAccount, DiscountStatus
from hms_billing.services.billing_errors import InvalidStateError, NotFoundError

logger = logging.getLogger(__name__)


def account_no_for(encounter_id: int) -> str:
    return f"BA{int(encounter_id):06d}"


def get_account_or_404(db: Session, account_id: int) -> BillingAccount:
    acc = db.get(BillingAccount, int(account_id))
    if not acc:
        raise NotFoundError(f"Billing account {account_id} not found")
    return acc


def lock_account(db: Session, account_id: int) -> BillingAccount:
    """
    SELECT ... FOR UPDATE on the account row, values refreshed from the DB.
    Every summary mutation goes through here first.
    """
    acc = (db.query(BillingAccount).filter(
        BillingAccount.id == int(account_id)).with_for_update().
           populate_existing().first())
    if not acc:
        raise NotFoundError(f"Billing account {account_id} not found")
    return acc


def lock_account_for_encounter(db: Session,
                               encounter_id: int) -> Optional[BillingAccount]:
    return (db.query(BillingAccount).filter(
        BillingAccount.encounter_id == int(encounter_id)).with_for_update().
            populate_existing().first())


def get_or_open_account(
    db: Session,
    *,
    encounter_id: int,
    patient_id: Optional[int],
    actor_id: Optional[int],
    branch_id: Optional[int] = None,
) -> BillingAccount:
    """
    Locked account for the encounter, created on first charge.
    Does not commit; the caller's transaction owns it.

    Two first charges racing on MySQL collide on the unique encounter key
    (READ COMMITTED takes no gap lock), and the loser re-reads the winner.
    """
    acc = lock_account_for_encounter(db, encounter_id)
    if acc:
        return acc

    if patient_id is None:
        raise NotFoundError(
            f"No billing account for encounter {encounter_id}")

    acc = BillingAccount(
        account_no=account_no_for(encounter_id),
        patient_id=int(patient_id),
        encounter_id=int(encounter_id),
        branch_id=branch_id,
        status=AccountStatus.OPEN.value,
        total_amount=0,
        discount_amount=0,
        net_amount=0,
        amount_paid=0,
        balance=0,
        discount_status=DiscountStatus.NONE.value,
        created_by=actor_id,
    )
    try:
        with db.begin_nested():
            db.add(acc)
            db.flush()
    except IntegrityError:
        # another request opened it first
        acc = lock_account_for_encounter(db, encounter_id)
        if not acc:
            raise
        return acc

    logger.info("Opened billing account %s for encounter=%s patient=%s",
                acc.account_no, encounter_id, patient_id)
    return acc


def ensure_mutable(acc: BillingAccount) -> None:
    if acc.status == AccountStatus.CLOSED.value:
        raise InvalidStateError(f"Billing account {acc.account_no} is closed")
