# FILE: hms_billing/models/billing.py
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from hms_billing.db.base import Base


class AccountStatus(str, enum.Enum):
    OPEN = "open"
    PENDING = "pending"
    CLOSED = "closed"
    PAID = "paid"


class DiscountStatus(str, enum.Enum):
    NONE = "none"
    PROPOSED = "proposed"
    APPROVED = "approved"


class ItemType(str, enum.Enum):
    CONSULTATION = "consultation"
    LAB = "lab"
    IMAGING = "imaging"
    MEDICATION = "medication"
    PROCEDURE = "procedure"
    BED_CHARGE = "bed_charge"
    NURSING = "nursing"
    CONSUMABLE = "consumable"
    OTHER = "other"


class ItemStatus(str, enum.Enum):
    UNPAID = "unpaid"
    POSTED = "posted"
    CANCELLED = "cancelled"


class ReferenceKind(str, enum.Enum):
    LAB_ORDER = "lab_order"
    IMAGING_ORDER = "imaging_order"
    PRESCRIPTION = "prescription"
    PROCEDURE = "procedure"
    CONSULTATION = "consultation"
    BED_ASSIGNMENT = "bed_assignment"
    NURSING_CARE = "nursing_care"
    OTHER = "other"


class PayMode(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    MOBILE_MONEY = "mobile_money"
    BANK = "bank"


class PaymentKind(str, enum.Enum):
    RECEIPT = "receipt"
    REFUND = "refund"
    INSURANCE = "insurance"


class ClaimStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"


@dataclass(frozen=True)
class ItemReference:
    """The clinical / operational event that produced a charge."""
    kind: ReferenceKind
    id: str

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


class BillingAccount(Base):
    """
    Per-encounter aggregate holding the running financial summary.

    total_amount, discount_amount, net_amount and balance are derived by
    services.billing_recalc.recompute_account; never write them directly.
    """

    __tablename__ = "billing_accounts"
    __table_args__ = (Index("ix_billing_accounts_patient", "patient_id"), )

    id = Column(Integer, primary_key=True, index=True)
    account_no = Column(String(32), unique=True, index=True, nullable=False)

    # owned by registration; plain references
    patient_id = Column(Integer, nullable=False)
    encounter_id = Column(Integer, unique=True, index=True, nullable=False)
    branch_id = Column(Integer, nullable=True)

    status = Column(String(16), nullable=False,
                    default=AccountStatus.OPEN.value)  # open | pending | closed | paid

    # Totals
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    # effective (approved) discount only
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    net_amount = Column(Numeric(12, 2), nullable=False, default=0)
    amount_paid = Column(Numeric(12, 2), nullable=False, default=0)
    balance = Column(Numeric(12, 2), nullable=False, default=0)

    # Discount proposal / approval
    discount_status = Column(String(16), nullable=False,
                             default=DiscountStatus.NONE.value)
    proposed_discount_amount = Column(Numeric(12, 2), nullable=True)
    discount_percentage = Column(Numeric(5, 2), nullable=True)
    discount_reason = Column(String(255), nullable=True)
    discount_proposed_by = Column(Integer, nullable=True)
    discount_proposed_at = Column(DateTime, nullable=True)
    discount_approved_by = Column(Integer, nullable=True)
    discount_approved_at = Column(DateTime, nullable=True)

    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )
    closed_at = Column(DateTime, nullable=True)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    items = relationship(
        "BillItem",
        back_populates="account",
        order_by="BillItem.id",
    )
    payments = relationship(
        "Payment",
        back_populates="account",
        order_by="Payment.id",
    )
    claims = relationship(
        "InsuranceClaim",
        back_populates="account",
        order_by="InsuranceClaim.id",
    )
    ledger_entries = relationship(
        "LedgerEntry",
        back_populates="account",
        order_by="LedgerEntry.id",
    )


class BillItem(Base):
    __tablename__ = "billing_items"
    __table_args__ = (
        Index("ix_billing_items_account", "account_id"),
        Index("ix_billing_items_reference", "reference_kind", "reference_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(
        Integer,
        ForeignKey("billing_accounts.id"),
        nullable=False,
    )
    encounter_id = Column(Integer, nullable=False, index=True)

    # consultation | lab | imaging | medication | procedure | bed_charge | ...
    item_type = Column(String(32), nullable=False)
    description = Column(String(300), nullable=False)
    service_code = Column(String(50), nullable=True)

    quantity = Column(Numeric(10, 2), nullable=False, default=1)
    unit_price = Column(Numeric(12, 2), nullable=False, default=0)
    # quantity * unit_price
    amount = Column(Numeric(12, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    # amount - discount_amount
    net_amount = Column(Numeric(12, 2), nullable=False, default=0)

    status = Column(String(16), nullable=False,
                    default=ItemStatus.UNPAID.value)  # unpaid | posted | cancelled

    reference_kind = Column(String(32), nullable=True)
    reference_id = Column(String(64), nullable=True)

    posted_by = Column(Integer, nullable=True)
    posted_at = Column(DateTime, nullable=True)

    cancel_reason = Column(String(255), nullable=True)
    cancelled_by = Column(Integer, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    account = relationship("BillingAccount", back_populates="items")

    @property
    def reference(self) -> Optional[ItemReference]:
        if not self.reference_kind or self.reference_id is None:
            return None
        return ItemReference(ReferenceKind(self.reference_kind),
                             str(self.reference_id))

    @property
    def is_active(self) -> bool:
        return self.status != ItemStatus.CANCELLED.value


class Payment(Base):
    """
    Money moving against an account. Receipts and insurer settlements
    increase amount_paid, refunds decrease it. Rows are never edited.
    """

    __tablename__ = "billing_payments"
    __table_args__ = (Index("ix_billing_payments_account", "account_id"), )

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(
        Integer,
        ForeignKey("billing_accounts.id"),
        nullable=False,
    )
    claim_id = Column(Integer,
                      ForeignKey("billing_insurance_claims.id"),
                      nullable=True)

    amount = Column(Numeric(12, 2), nullable=False)
    method = Column(String(32), nullable=False)  # cash | card | mobile_money | bank
    kind = Column(String(16), nullable=False,
                  default=PaymentKind.RECEIPT.value)
    reference_no = Column(String(100), nullable=True, index=True)
    status = Column(String(16), nullable=False, default="completed")
    notes = Column(String(255), nullable=True)
    paid_at = Column(DateTime, default=datetime.utcnow)

    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    account = relationship("BillingAccount", back_populates="payments")


class InsuranceClaim(Base):
    __tablename__ = "billing_insurance_claims"
    __table_args__ = (Index("ix_billing_claims_account", "account_id"), )

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(
        Integer,
        ForeignKey("billing_accounts.id"),
        nullable=False,
    )

    insurer_name = Column(String(199), nullable=False)
    policy_number = Column(String(100), nullable=False)
    claim_number = Column(String(32), unique=True, nullable=True)
    claim_amount = Column(Numeric(12, 2), nullable=False)
    claim_status = Column(String(16), nullable=False,
                          default=ClaimStatus.PENDING.value)

    submitted_by = Column(Integer, nullable=True)
    submitted_date = Column(DateTime, default=datetime.utcnow)
    decided_by = Column(Integer, nullable=True)
    decided_at = Column(DateTime, nullable=True)
    remarks = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    account = relationship("BillingAccount", back_populates="claims")


class LedgerEntry(Base):
    """
    Append-only double-entry journal row.
    Exactly one of debit / credit is non-zero.
    """

    __tablename__ = "billing_ledger_entries"
    __table_args__ = (
        Index("ix_billing_ledger_date_head", "entry_date", "account_head"),
        Index("ix_billing_ledger_account", "account_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    entry_date = Column(Date, nullable=False)
    account_head = Column(String(100), nullable=False)
    debit = Column(Numeric(12, 2), nullable=False, default=0)
    credit = Column(Numeric(12, 2), nullable=False, default=0)
    narration = Column(String(255), nullable=True)

    account_id = Column(Integer,
                        ForeignKey("billing_accounts.id"),
                        nullable=True)
    # posting rule that produced the row (item_posted, payment_received, ...)
    event = Column(String(32), nullable=False)
    source_ref = Column(String(64), nullable=True)

    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    account = relationship("BillingAccount", back_populates="ledger_entries")
