# FILE: hms_billing/schemas/billing.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from hms_billing.models.billing import (
    ClaimStatus,
    ItemType,
    PayMode,
    ReferenceKind,
)


def _strip(v):
    if isinstance(v, str):
        v = v.strip()
    return v


class AccountOpenIn(BaseModel):
    encounter_id: int
    patient_id: int
    branch_id: Optional[int] = None


class ItemReferenceIn(BaseModel):
    kind: ReferenceKind
    id: str

    @field_validator("id", mode="before")
    @classmethod
    def id_str(cls, v):
        return str(v).strip() if v is not None else v


class ItemCreateIn(BaseModel):
    item_type: ItemType
    description: str
    quantity: Decimal = Decimal("1")
    unit_price: Decimal
    discount: Decimal = Decimal("0")
    service_code: Optional[str] = None
    reference: Optional[ItemReferenceIn] = None

    # only needed when the encounter has no account yet
    patient_id: Optional[int] = None
    branch_id: Optional[int] = None

    @field_validator("description", mode="before")
    @classmethod
    def strip_description(cls, v):
        return _strip(v)


class ItemQuantityIn(BaseModel):
    quantity: Decimal


class ItemCancelIn(BaseModel):
    reason: str

    @field_validator("reason", mode="before")
    @classmethod
    def strip_reason(cls, v):
        return _strip(v)


class DiscountProposalIn(BaseModel):
    amount: Optional[Decimal] = None
    percentage: Optional[Decimal] = None
    reason: str


class PaymentIn(BaseModel):
    amount: Decimal
    method: PayMode = PayMode.CASH
    reference_no: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("method", mode="before")
    @classmethod
    def method_alias(cls, v):
        # front desk still sends "mobile-money"
        if isinstance(v, str):
            v = v.strip().lower().replace("-", "_")
        return v


class RefundIn(PaymentIn):
    reason: str


class ClaimCreateIn(BaseModel):
    insurer_name: str
    policy_number: str
    claim_amount: Decimal
    remarks: Optional[str] = None


class ClaimStatusIn(BaseModel):
    status: ClaimStatus
    remarks: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def lower_status(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


# -------------------------
# Out
# -------------------------
class AccountSummaryOut(BaseModel):
    account_exists: bool
    account_id: Optional[int] = None
    account_no: Optional[str] = None
    encounter_id: int
    patient_id: Optional[int] = None
    status: Optional[str] = None
    total: Decimal
    discount: Decimal
    net: Decimal
    paid: Decimal
    balance: Decimal
    discount_status: Optional[str] = None
    items_count: int = 0


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_no: str
    patient_id: int
    encounter_id: int
    branch_id: Optional[int] = None
    status: str
    total_amount: Decimal
    discount_amount: Decimal
    net_amount: Decimal
    amount_paid: Decimal
    balance: Decimal
    discount_status: str
    proposed_discount_amount: Optional[Decimal] = None
    discount_percentage: Optional[Decimal] = None
    discount_reason: Optional[str] = None
    discount_approved_by: Optional[int] = None
    discount_approved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None


class BillItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    encounter_id: int
    item_type: str
    description: str
    service_code: Optional[str] = None
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal
    discount_amount: Decimal
    net_amount: Decimal
    status: str
    reference_kind: Optional[str] = None
    reference_id: Optional[str] = None
    cancel_reason: Optional[str] = None
    posted_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    claim_id: Optional[int] = None
    amount: Decimal
    method: str
    kind: str
    reference_no: Optional[str] = None
    paid_at: Optional[datetime] = None


class ClaimOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    insurer_name: str
    policy_number: str
    claim_number: Optional[str] = None
    claim_amount: Decimal
    claim_status: str
    submitted_date: Optional[datetime] = None
    decided_at: Optional[datetime] = None
    remarks: Optional[str] = None


class LedgerEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    entry_date: date
    account_head: str
    debit: Decimal
    credit: Decimal
    narration: Optional[str] = None
    account_id: Optional[int] = None
    event: str
    source_ref: Optional[str] = None
