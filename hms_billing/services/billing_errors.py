# FILE: hms_billing/services/billing_errors.py
from __future__ import annotations


class BillingError(RuntimeError):
    status_code = 400
    code = "billing_error"


class ValidationError(BillingError):
    """Bad input: non-positive amounts, overpayment, unapproved discount."""
    status_code = 400
    code = "validation_error"


class NotFoundError(BillingError):
    status_code = 404
    code = "not_found"


class InvalidStateError(BillingError):
    """Operation not allowed in the record's current state."""
    status_code = 409
    code = "invalid_state"


class InvalidTransitionError(BillingError):
    status_code = 409
    code = "invalid_transition"
