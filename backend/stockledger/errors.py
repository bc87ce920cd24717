"""
Error taxonomy for the channel-sync and ledger core.

Every error carries an HTTP status, a stable machine code and a human
message. Operator-facing endpoints render them as Problem-Details style
JSON; the webhook gateway collapses them to bare status codes.
"""

from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse


class StockLedgerError(Exception):
    """Base class for all domain errors."""

    status = 500
    code = "INTERNAL_ERROR"
    title = "Internal Server Error"

    def __init__(self, detail: Optional[str] = None, **extra: Any):
        self.detail = detail or self.title
        self.extra = extra
        super().__init__(self.detail)

    def to_dict(self, instance: Optional[str] = None) -> Dict[str, Any]:
        body = {
            "type": "about:blank",
            "title": self.title,
            "status": self.status,
            "detail": self.detail,
            "code": self.code,
        }
        if instance:
            body["instance"] = instance
        body.update({k: str(v) if isinstance(v, Decimal) else v for k, v in self.extra.items()})
        return body

    def to_response(self, request: Optional[Request] = None) -> JSONResponse:
        instance = str(request.url) if request else None
        return JSONResponse(
            status_code=self.status,
            content={"ok": False, "error": self.to_dict(instance)},
        )


class AuthenticationError(StockLedgerError):
    """Signature or credential failure. Never retried."""
    status = 401
    code = "AUTHENTICATION_FAILED"
    title = "Unauthorized"


class ValidationError(StockLedgerError):
    """Malformed input."""
    status = 422
    code = "VALIDATION_FAILED"
    title = "Unprocessable Entity"


class NotFoundError(StockLedgerError):
    status = 404
    code = "NOT_FOUND"
    title = "Not Found"


class ConflictError(StockLedgerError):
    """Lost claim race or duplicate unique key. Shown as 'already handled'."""
    status = 409
    code = "CONFLICT"
    title = "Conflict"


class InsufficientStockError(StockLedgerError):
    status = 422
    code = "INSUFFICIENT_STOCK"
    title = "Insufficient Stock"

    def __init__(self, current_quantity: int, requested_delta: int):
        self.current_quantity = current_quantity
        self.requested_delta = requested_delta
        super().__init__(
            f"Insufficient stock. Current: {current_quantity}, adjustment: {requested_delta}.",
            current_quantity=current_quantity,
            requested_delta=requested_delta,
        )


class OverpaymentError(StockLedgerError):
    status = 422
    code = "OVERPAYMENT"
    title = "Overpayment"

    def __init__(self, total_amount: Decimal, amount_paid: Decimal):
        self.total_amount = total_amount
        self.amount_paid = amount_paid
        super().__init__(
            f"Payment exceeds remaining balance. Total: ₹{total_amount}, already paid: ₹{amount_paid}.",
            total_amount=total_amount,
            amount_paid=amount_paid,
        )


class InvoiceCancelledError(StockLedgerError):
    status = 422
    code = "INVOICE_CANCELLED"
    title = "Invoice Cancelled"

    def __init__(self, detail: str = "Cannot add payment to a cancelled invoice."):
        super().__init__(detail)


class UpstreamError(StockLedgerError):
    """Storefront rejected a request for a reason other than rate limiting or outage."""
    status = 502
    code = "UPSTREAM_ERROR"
    title = "Bad Gateway"


class TransientIOError(StockLedgerError):
    """Network or database timeout. Safe to retry at the caller's discretion."""
    status = 503
    code = "UPSTREAM_UNAVAILABLE"
    title = "Service Unavailable"


class DecryptionError(StockLedgerError):
    """Corrupted token or rotated key."""
    status = 500
    code = "DECRYPTION_FAILED"
    title = "Internal Server Error"


async def stockledger_error_handler(request: Request, exc: StockLedgerError) -> JSONResponse:
    return exc.to_response(request)
