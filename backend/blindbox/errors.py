# Overview: Error hierarchy shared by every ledger service and mapped to HTTP status in routes.

"""
Ledger errors.

Every service raises a subclass of LedgerError. Preconditions are checked
before any mutation, so a raised LedgerError always means "nothing changed".
Routes map `http_status` straight onto the JSON response.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for ledger operation errors."""
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "kind": type(self).__name__}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(LedgerError):
    """400-level input problem (malformed payload, wrong types)."""


# =============================================================================
# AUTHORIZATION
# =============================================================================

class UnauthorizedError(LedgerError):
    """Role or ownership check failed."""
    http_status = 403


# =============================================================================
# NOT FOUND
# =============================================================================

class NotFoundError(LedgerError):
    http_status = 404


class AccountNotFoundError(NotFoundError):
    pass


class ProductNotFoundError(NotFoundError):
    pass


class OrderNotFoundError(NotFoundError):
    pass


class TicketNotFoundError(NotFoundError):
    pass


class PaymentRecordNotFoundError(NotFoundError):
    pass


class CartIndexError(NotFoundError):
    """Cart line index out of range."""


# =============================================================================
# CATALOG CONFIGURATION
# =============================================================================

class InvalidConfigError(LedgerError):
    """Catalog validation violated."""


class PriceMissingError(InvalidConfigError):
    """Resolved unit price is zero."""


# =============================================================================
# LIFECYCLE STATE
# =============================================================================

class InvalidStateError(LedgerError):
    """Wrong lifecycle stage for the requested operation."""
    http_status = 409


class InactiveProductError(InvalidStateError):
    pass


class ModeDisabledError(InvalidStateError):
    """Requested sale mode (individual/set) is not enabled for the product."""


class InvalidTransitionError(InvalidStateError):
    """Order status transition not allowed from its current status."""


class RefundAlreadyClaimedError(InvalidStateError):
    pass


class OrderIdCollisionError(InvalidStateError):
    """Legacy order reference already used."""


# =============================================================================
# MONEY AND STOCK
# =============================================================================

class InsufficientStockError(LedgerError):
    http_status = 409


class PaymentMismatchError(LedgerError):
    """Attached payment differs from the required amount."""


WrongPaymentAmountError = PaymentMismatchError


class InvalidAmountError(LedgerError):
    """Refund amount out of bounds."""


class PayoutFailedError(LedgerError):
    """External transfer failed; the operation was rolled back."""
    http_status = 502
