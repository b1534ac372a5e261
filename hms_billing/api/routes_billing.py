# FILE: hms_billing/api/routes_billing.py
from __future__ import annotations

import io
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from hms_billing.api.deps import Actor, current_actor, get_db
from hms_billing.api.response import ok
from hms_billing.models.billing import ItemReference
from hms_billing.schemas.billing import (
    AccountOpenIn,
    AccountOut,
    BillItemOut,
    ClaimCreateIn,
    ClaimOut,
    ClaimStatusIn,
    DiscountProposalIn,
    ItemCancelIn,
    ItemCreateIn,
    ItemQuantityIn,
    LedgerEntryOut,
    PaymentIn,
    PaymentOut,
    RefundIn,
)
from hms_billing.services import billing_account_service as accounts
from hms_billing.services import billing_claims_service as claims
from hms_billing.services import billing_items as items
from hms_billing.services import billing_payment_service as payments
from hms_billing.services import billing_reports as reports
from hms_billing.services.billing_accounts import get_account_or_404
from hms_billing.services.billing_ledger import list_account_entries
from hms_billing.services.excel_export import (
    build_discount_report_excel,
    build_ledger_daybook_excel,
)
from hms_billing.utils.timezone import today_local

router = APIRouter(prefix="/billing", tags=["Billing"])

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _account_out(acc) -> dict:
    return AccountOut.model_validate(acc).model_dump()


# -------------------------
# Accounts
# -------------------------
@router.post("/accounts")
def open_account(
        payload: AccountOpenIn,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    acc = accounts.open_account(
        db,
        payload.encounter_id,
        payload.patient_id,
        actor_id=actor.id,
        branch_id=payload.branch_id,
    )
    return ok(_account_out(acc), status_code=201)


@router.get("/accounts/{account_id}/summary")
def account_summary(
        account_id: int,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    return ok(accounts.get_account_summary(db, account_id))


@router.get("/encounters/{encounter_id}/summary")
def encounter_summary(
        encounter_id: int,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    return ok(accounts.get_encounter_summary(db, encounter_id))


@router.get("/accounts/{account_id}/items")
def account_items(
        account_id: int,
        include_cancelled: bool = Query(default=False),
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    get_account_or_404(db, account_id)
    rows = items.list_items(db, account_id, include_cancelled=include_cancelled)
    return ok([BillItemOut.model_validate(r).model_dump() for r in rows])


@router.post("/accounts/{account_id}/discount")
def propose_discount(
        account_id: int,
        payload: DiscountProposalIn,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    acc = accounts.propose_discount(
        db,
        account_id,
        amount=payload.amount,
        percentage=payload.percentage,
        reason=payload.reason,
        actor_id=actor.id,
    )
    return ok(_account_out(acc))


@router.post("/accounts/{account_id}/discount/approve")
def approve_discount(
        account_id: int,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    acc = accounts.approve_discount(db, account_id, approver_id=actor.id)
    return ok(_account_out(acc))


@router.post("/accounts/{account_id}/close")
def close_account(
        account_id: int,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    acc = accounts.close_account(db, account_id, actor_id=actor.id)
    return ok(_account_out(acc))


@router.post("/accounts/{account_id}/recalculate")
def recalculate(
        account_id: int,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    return ok(accounts.recalculate(db, account_id, actor_id=actor.id))


# -------------------------
# Items
# -------------------------
@router.post("/encounters/{encounter_id}/items")
def add_item(
        encounter_id: int,
        payload: ItemCreateIn,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    ref = None
    if payload.reference is not None:
        ref = ItemReference(payload.reference.kind, payload.reference.id)

    item_id = items.add_item(
        db,
        encounter_id,
        payload.item_type,
        payload.description,
        payload.quantity,
        payload.unit_price,
        payload.discount,
        ref,
        actor_id=actor.id,
        patient_id=payload.patient_id,
        branch_id=payload.branch_id,
        service_code=payload.service_code,
    )
    return ok({"item_id": item_id}, status_code=201)


@router.patch("/items/{item_id}")
def update_item_quantity(
        item_id: int,
        payload: ItemQuantityIn,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    item = items.update_item_quantity(db,
                                      item_id,
                                      payload.quantity,
                                      actor_id=actor.id)
    return ok(BillItemOut.model_validate(item).model_dump())


@router.post("/items/{item_id}/post")
def post_item(
        item_id: int,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    item = items.post_item(db, item_id, actor_id=actor.id)
    return ok(BillItemOut.model_validate(item).model_dump())


@router.post("/items/{item_id}/cancel")
def cancel_item(
        item_id: int,
        payload: ItemCancelIn,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    item = items.cancel_item(db, item_id, payload.reason, actor_id=actor.id)
    return ok(BillItemOut.model_validate(item).model_dump())


# -------------------------
# Payments
# -------------------------
@router.get("/accounts/{account_id}/payments")
def account_payments(
        account_id: int,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    get_account_or_404(db, account_id)
    rows = payments.list_payments(db, account_id)
    return ok([PaymentOut.model_validate(r).model_dump() for r in rows])


@router.post("/accounts/{account_id}/payments")
def record_payment(
        account_id: int,
        payload: PaymentIn,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    pay_id = payments.record_payment(
        db,
        account_id,
        payload.amount,
        payload.method,
        payload.reference_no,
        actor_id=actor.id,
        notes=payload.notes,
    )
    return ok(
        {
            "payment_id": pay_id,
            "summary": accounts.get_account_summary(db, account_id),
        },
        status_code=201,
    )


@router.post("/accounts/{account_id}/refunds")
def record_refund(
        account_id: int,
        payload: RefundIn,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    pay_id = payments.record_refund(
        db,
        account_id,
        payload.amount,
        payload.method,
        payload.reference_no,
        reason=payload.reason,
        actor_id=actor.id,
    )
    return ok(
        {
            "payment_id": pay_id,
            "summary": accounts.get_account_summary(db, account_id),
        },
        status_code=201,
    )


# -------------------------
# Insurance claims
# -------------------------
@router.get("/accounts/{account_id}/claims")
def account_claims(
        account_id: int,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    get_account_or_404(db, account_id)
    rows = claims.list_claims(db, account_id)
    return ok([ClaimOut.model_validate(r).model_dump() for r in rows])


@router.post("/accounts/{account_id}/claims")
def submit_claim(
        account_id: int,
        payload: ClaimCreateIn,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    claim_id = claims.submit_claim(
        db,
        account_id,
        payload.insurer_name,
        payload.policy_number,
        payload.claim_amount,
        actor_id=actor.id,
        remarks=payload.remarks,
    )
    return ok({"claim_id": claim_id}, status_code=201)


@router.patch("/claims/{claim_id}/status")
def update_claim_status(
        claim_id: int,
        payload: ClaimStatusIn,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    cl = claims.update_claim_status(
        db,
        claim_id,
        payload.status,
        actor_id=actor.id,
        remarks=payload.remarks,
    )
    return ok(ClaimOut.model_validate(cl).model_dump())


# -------------------------
# Ledger / reports
# -------------------------
@router.get("/accounts/{account_id}/ledger")
def account_ledger(
        account_id: int,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    get_account_or_404(db, account_id)
    rows = list_account_entries(db, account_id)
    return ok([LedgerEntryOut.model_validate(r).model_dump() for r in rows])


@router.get("/reports/discounts")
def discount_report(
        start: Optional[date] = Query(default=None),
        end: Optional[date] = Query(default=None),
        branch_id: Optional[int] = Query(default=None),
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    today = today_local()
    start = start or today.replace(day=1)
    end = end or today
    return ok(reports.discount_report(db, start, end, branch_id=branch_id))


@router.get("/reports/trial-balance")
def trial_balance(
        start: Optional[date] = Query(default=None),
        end: Optional[date] = Query(default=None),
        account_id: Optional[int] = Query(default=None),
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    today = today_local()
    start = start or today.replace(day=1)
    end = end or today
    return ok(reports.trial_balance(db, start, end, account_id=account_id))


@router.get("/reports/claims")
def claims_report(
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    return ok(reports.claims_summary(db))


@router.get("/reports/ledger.xlsx")
def ledger_daybook_xlsx(
        start: Optional[date] = Query(default=None),
        end: Optional[date] = Query(default=None),
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    today = today_local()
    start = start or today
    end = end or today
    rows = reports.ledger_entries_between(db, start, end)

    buf = io.BytesIO()
    build_ledger_daybook_excel(buf, rows)
    buf.seek(0)
    filename = f"daybook_{start:%Y%m%d}_{end:%Y%m%d}.xlsx"
    return StreamingResponse(
        buf,
        media_type=XLSX,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/reports/discounts.xlsx")
def discount_report_xlsx(
        start: Optional[date] = Query(default=None),
        end: Optional[date] = Query(default=None),
        branch_id: Optional[int] = Query(default=None),
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    today = today_local()
    start = start or today.replace(day=1)
    end = end or today
    report = reports.discount_report(db, start, end, branch_id=branch_id)

    buf = io.BytesIO()
    build_discount_report_excel(buf, report)
    buf.seek(0)
    filename = f"discounts_{start:%Y%m%d}_{end:%Y%m%d}.xlsx"
    return StreamingResponse(
        buf,
        media_type=XLSX,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
