# FILE: hms_billing/services/billing_items.py
from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from hms_billing.db.session import transaction
from hms_billing.models.billing import (
    BillingAccount,
    BillItem,
    ItemReference,
    ItemStatus,
    ItemType,
    ReferenceKind,
)
from hms_billing.services import billing_ledger as ledger
from hms_billing.services.billing_accounts import (
    ensure_mutable,
    get_or_open_account,
    lock_account,
)
from hms_billing.services.billing_errors import (
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from hms_billing.services.billing_math import (
    compute_line_amounts,
    money2,
    money_in,
)
from hms_billing.services.billing_recalc import recompute_account
from hms_billing.utils.timezone import now_local

logger = logging.getLogger(__name__)


def _item_type(v) -> str:
    try:
        return ItemType(getattr(v, "value", v)).value
    except ValueError:
        raise ValidationError(f"Unknown item_type: {v}")


def _reference(ref) -> Optional[ItemReference]:
    if ref is None:
        return None
    if isinstance(ref, ItemReference):
        kind, rid = ref.kind, ref.id
    else:
        try:
            kind, rid = ref
        except (TypeError, ValueError):
            raise ValidationError(
                "Reference must be an ItemReference or a (kind, id) pair")
    try:
        kind = ReferenceKind(getattr(kind, "value", kind))
    except ValueError:
        raise ValidationError(f"Unknown reference kind: {kind}")
    rid = str(rid or "").strip()
    if not rid:
        raise ValidationError("Reference id is required")
    return ItemReference(kind, rid)


def _lock_item(db: Session, item_id: int) -> tuple[BillItem, BillingAccount]:
    """Account lock first, then the item loaded under it."""
    account_id = (db.query(BillItem.account_id).filter(
        BillItem.id == int(item_id)).scalar())
    if account_id is None:
        raise NotFoundError(f"Bill item {item_id} not found")
    acc = lock_account(db, int(account_id))
    item = (db.query(BillItem).filter(
        BillItem.id == int(item_id)).populate_existing().one())
    return item, acc


def _find_active_by_reference(db: Session, account_id: int,
                              ref: ItemReference) -> Optional[BillItem]:
    return (db.query(BillItem).filter(
        BillItem.account_id == int(account_id),
        BillItem.reference_kind == ref.kind.value,
        BillItem.reference_id == ref.id,
        BillItem.status != ItemStatus.CANCELLED.value,
    ).first())


def add_item(
    db: Session,
    encounter_id: int,
    item_type,
    description: str,
    quantity,
    unit_price,
    discount=0,
    reference=None,
    *,
    actor_id: Optional[int],
    patient_id: Optional[int] = None,
    branch_id: Optional[int] = None,
    service_code: Optional[str] = None,
) -> int:
    """
    Append a charge to the encounter's account and recompute it.

    Opens the account when the encounter has none yet (needs patient_id).
    A second call for the same producer event (same reference on an active
    item) returns the existing item instead of charging twice.
    """
    itype = _item_type(item_type)
    description = (description or "").strip()
    if not description:
        raise ValidationError("Description is required")

    qty = money_in(quantity, "Quantity")
    price = money_in(unit_price, "Unit price")
    if qty <= 0:
        raise ValidationError("Quantity must be > 0")
    if price <= 0:
        raise ValidationError("Unit price must be > 0")

    disc = money_in(discount or 0, "Discount")
    line = compute_line_amounts(qty, price, disc)
    if disc < 0:
        raise ValidationError("Discount cannot be negative")
    if disc > line["amount"]:
        raise ValidationError("Discount cannot exceed the line amount")

    ref = _reference(reference)

    with transaction(db):
        acc = get_or_open_account(
            db,
            encounter_id=encounter_id,
            patient_id=patient_id,
            actor_id=actor_id,
            branch_id=branch_id,
        )
        ensure_mutable(acc)

        if ref is not None:
            existing = _find_active_by_reference(db, int(acc.id), ref)
            if existing:
                logger.info(
                    "Duplicate charge ignored: %s already billed as item=%s on %s",
                    ref, existing.id, acc.account_no)
                return int(existing.id)

        item = BillItem(
            account_id=acc.id,
            encounter_id=acc.encounter_id,
            item_type=itype,
            description=description[:300],
            service_code=service_code,
            quantity=qty,
            unit_price=price,
            amount=line["amount"],
            discount_amount=line["discount_amount"],
            net_amount=line["net_amount"],
            status=ItemStatus.UNPAID.value,
            reference_kind=ref.kind.value if ref else None,
            reference_id=ref.id if ref else None,
            created_by=actor_id,
        )
        db.add(item)
        db.flush()
        item_id = int(item.id)

        recompute_account(db, acc, actor_id=actor_id)
        logger.info("Added item=%s %s %s x %s on %s", item_id, itype, qty,
                    price, acc.account_no)

    return item_id


def cancel_item(
    db: Session,
    item_id: int,
    reason: str,
    *,
    actor_id: Optional[int],
) -> BillItem:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("Cancellation reason is required")

    with transaction(db):
        item, acc = _lock_item(db, item_id)
        if not item.is_active:
            raise InvalidStateError(f"Bill item {item_id} is already cancelled")
        ensure_mutable(acc)

        was_posted = item.status == ItemStatus.POSTED.value
        item.status = ItemStatus.CANCELLED.value
        item.cancel_reason = reason[:255]
        item.cancelled_by = actor_id
        item.cancelled_at = now_local()
        db.flush()

        if was_posted and money2(item.net_amount) > 0:
            ledger.post_event(
                db,
                ledger.ITEM_CANCELLED,
                item.net_amount,
                account_id=int(acc.id),
                source_ref=f"item:{item.id}",
                narration=f"Cancelled {item.description}: {reason}",
                actor_id=actor_id,
            )

        recompute_account(db, acc, actor_id=actor_id)
        logger.info("Cancelled item=%s on %s (posted=%s) reason=%s", item.id,
                    acc.account_no, was_posted, reason)

    return item


def update_item_quantity(
    db: Session,
    item_id: int,
    quantity,
    *,
    actor_id: Optional[int],
) -> BillItem:
    qty = money_in(quantity, "Quantity")
    if qty <= 0:
        raise ValidationError("Quantity must be > 0")

    with transaction(db):
        item, acc = _lock_item(db, item_id)
        ensure_mutable(acc)
        if item.status != ItemStatus.UNPAID.value:
            raise InvalidStateError(
                f"Only unpaid items can be corrected (item {item_id} is {item.status})")

        line = compute_line_amounts(qty, item.unit_price, item.discount_amount)
        if money2(item.discount_amount) > line["amount"]:
            raise ValidationError("Line discount would exceed the new amount")

        item.quantity = qty
        item.amount = line["amount"]
        item.net_amount = line["net_amount"]
        db.flush()

        recompute_account(db, acc, actor_id=actor_id)

    return item


def _post_item(db: Session, acc: BillingAccount, item: BillItem, *,
               actor_id: Optional[int]) -> None:
    item.status = ItemStatus.POSTED.value
    item.posted_by = actor_id
    item.posted_at = now_local()
    db.flush()

    if money2(item.net_amount) > 0:
        ledger.post_event(
            db,
            ledger.ITEM_POSTED,
            item.net_amount,
            account_id=int(acc.id),
            source_ref=f"item:{item.id}",
            narration=f"{item.item_type}: {item.description}",
            actor_id=actor_id,
        )


def post_item(db: Session, item_id: int, *,
              actor_id: Optional[int]) -> BillItem:
    with transaction(db):
        item, acc = _lock_item(db, item_id)
        ensure_mutable(acc)
        if item.status != ItemStatus.UNPAID.value:
            raise InvalidStateError(
                f"Only unpaid items can be posted (item {item_id} is {item.status})")

        _post_item(db, acc, item, actor_id=actor_id)
        recompute_account(db, acc, actor_id=actor_id)

    return item


def post_unpaid_items(db: Session, acc: BillingAccount, *,
                      actor_id: Optional[int]) -> List[BillItem]:
    """Post every unpaid item of a locked account. No commit."""
    items = (db.query(BillItem).filter(
        BillItem.account_id == int(acc.id),
        BillItem.status == ItemStatus.UNPAID.value,
    ).order_by(BillItem.id.asc()).all())
    for item in items:
        _post_item(db, acc, item, actor_id=actor_id)
    return items


def list_items(db: Session, account_id: int,
               include_cancelled: bool = False) -> List[BillItem]:
    q = db.query(BillItem).filter(BillItem.account_id == int(account_id))
    if not include_cancelled:
        q = q.filter(BillItem.status != ItemStatus.CANCELLED.value)
    return q.order_by(BillItem.id.asc()).all()


# -------------------------
# Producer shortcuts
# -------------------------
def add_consultation_charge(
    db: Session,
    encounter_id: int,
    fee,
    *,
    actor_id: Optional[int],
    consultation_type: str = "general",
    consultation_id=None,
    **kw,
) -> int:
    """One consultation fee per encounter and type unless an id is given."""
    ctype = (consultation_type or "general").strip().lower()
    rid = consultation_id or f"{int(encounter_id)}:{ctype}"
    return add_item(
        db,
        encounter_id,
        ItemType.CONSULTATION,
        f"Consultation ({ctype})",
        1,
        fee,
        reference=ItemReference(ReferenceKind.CONSULTATION, str(rid)),
        actor_id=actor_id,
        **kw,
    )


def add_lab_test_charge(
    db: Session,
    encounter_id: int,
    lab_order_id,
    test_name: str,
    price,
    *,
    actor_id: Optional[int],
    **kw,
) -> int:
    return add_item(
        db,
        encounter_id,
        ItemType.LAB,
        test_name,
        1,
        price,
        reference=ItemReference(ReferenceKind.LAB_ORDER, str(lab_order_id)),
        actor_id=actor_id,
        **kw,
    )


def add_medication_charge(
    db: Session,
    encounter_id: int,
    prescription_id,
    medication_name: str,
    unit_price,
    quantity=1,
    *,
    actor_id: Optional[int],
    **kw,
) -> int:
    return add_item(
        db,
        encounter_id,
        ItemType.MEDICATION,
        medication_name,
        quantity,
        unit_price,
        reference=ItemReference(ReferenceKind.PRESCRIPTION,
                                str(prescription_id)),
        actor_id=actor_id,
        **kw,
    )


def add_bed_charge(
    db: Session,
    encounter_id: int,
    bed_assignment_id,
    daily_rate,
    days=1,
    *,
    actor_id: Optional[int],
    bed_type: str = "general",
    **kw,
) -> int:
    """Bed stay billed as days x daily rate against the bed assignment."""
    days = money_in(days, "Days")
    if days <= 0:
        raise ValidationError("Days must be > 0")
    return add_item(
        db,
        encounter_id,
        ItemType.BED_CHARGE,
        f"Bed charge - {bed_type} ({days.normalize():f} day(s))",
        days,
        daily_rate,
        reference=ItemReference(ReferenceKind.BED_ASSIGNMENT,
                                str(bed_assignment_id)),
        actor_id=actor_id,
        **kw,
    )
