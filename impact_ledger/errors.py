"""
Error taxonomy for the Impact-Credits ledger and rewards engine.

Every error carries a machine-readable ``code`` so the API layer can map
"already completed", "insufficient balance" and "action unavailable" to
distinct translatable outcomes.
"""

from decimal import Decimal
from typing import Optional


class LedgerServiceError(Exception):
    """Base class for all ledger and reward errors."""

    code = "LEDGER_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        if code:
            self.code = code
        super().__init__(message)


class ValidationError(LedgerServiceError):
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message, f"INVALID_{field.upper()}" if field else None)


class InvalidStatusTransitionError(ValidationError):
    def __init__(self, resource: str, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Cannot change {resource} status from '{from_status}' to '{to_status}'")
        self.code = "INVALID_STATUS_TRANSITION"


class NotFoundError(LedgerServiceError):
    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} '{identifier}' not found"
        super().__init__(message, f"{resource.upper()}_NOT_FOUND")


class TierNotFoundError(NotFoundError):
    def __init__(self, identifier=None):
        super().__init__("Tier", identifier)


class ActionNotFoundError(NotFoundError):
    def __init__(self, identifier=None):
        super().__init__("Action", identifier)


class ConflictError(LedgerServiceError):
    """Duplicate issuance attempt caught by a uniqueness guard."""

    code = "ALREADY_COMPLETED"


class InsufficientBalanceError(LedgerServiceError):
    code = "INSUFFICIENT_BALANCE"

    def __init__(self, current: Decimal, required: Decimal):
        self.current = current
        self.required = required
        super().__init__(f"Insufficient Impact Credits. Current: {current}, Required: {required}")


class PersistenceError(LedgerServiceError):
    """Transient storage failure; safe to retry."""

    code = "PERSISTENCE_ERROR"


class PartialFailureError(LedgerServiceError):
    """One leg of a multi-step operation failed while the others completed.

    ``result`` holds whatever the operation managed to do, ``failures`` maps
    the failed step name to the error that stopped it.
    """

    code = "PARTIAL_FAILURE"

    def __init__(self, result, failures: dict[str, Exception]):
        self.result = result
        self.failures = failures
        steps = ", ".join(sorted(failures))
        super().__init__(f"Partial failure in: {steps}")
