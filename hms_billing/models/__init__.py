# hms_billing/models/__init__.py
from .billing import (
    AccountStatus,
    BillingAccount,
    BillItem,
    ClaimStatus,
    DiscountStatus,
    InsuranceClaim,
    ItemReference,
    ItemStatus,
    ItemType,
    LedgerEntry,
    PayMode,
    Payment,
    PaymentKind,
    ReferenceKind,
)

__all__ = [
    "AccountStatus",
    "BillingAccount",
    "BillItem",
    "ClaimStatus",
    "DiscountStatus",
    "InsuranceClaim",
    "ItemReference",
    "ItemStatus",
    "ItemType",
    "LedgerEntry",
    "PayMode",
    "Payment",
    "PaymentKind",
    "ReferenceKind",
]
