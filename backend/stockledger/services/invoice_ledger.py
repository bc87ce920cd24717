"""
Invoice/Payment Ledger
======================

Purchase invoices, their immutable line items and the payments posted
against them.

Invariants held under concurrent payment inserts and deletes:
- amount_paid equals the sum of the invoice's payments
- amount_paid never exceeds total_amount
- status is derived from amount_paid (received / partial / paid)

Money is Decimal throughout. Each line amount is rounded half-up to two
places before it is summed.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field
from sqlalchemy import case, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from stockledger.errors import (
    ConflictError,
    InvoiceCancelledError,
    NotFoundError,
    OverpaymentError,
    ValidationError,
)
from stockledger.models import Company, Payment, Product, PurchaseInvoice, PurchaseInvoiceItem
from stockledger.services.inventory_ledger import ReconciliationLedger

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


# =========================================================================
# INPUT SCHEMAS
# =========================================================================

class InvoiceItemIn(BaseModel):
    product_id: Optional[str] = None
    description: str = Field(min_length=1)
    quantity: Decimal = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    tax_percent: Decimal = Field(Decimal("0"), ge=0, le=100)


class InvoiceCreate(BaseModel):
    invoice_number: str = Field(min_length=1, max_length=100)
    company_id: str
    invoice_date: date
    due_date: Optional[date] = None
    status: Literal["draft", "received"] = "received"
    discount_amount: Decimal = Field(Decimal("0"), ge=0)
    notes: Optional[str] = None
    items: List[InvoiceItemIn] = Field(min_length=1)


class InvoiceUpdate(BaseModel):
    invoice_number: Optional[str] = Field(None, min_length=1, max_length=100)
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    status: Optional[Literal["draft", "received", "partial", "paid", "cancelled"]] = None
    discount_amount: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = None


class PaymentCreate(BaseModel):
    amount: Decimal = Field(gt=0)
    payment_date: date
    payment_mode: Literal["cash", "bank_transfer", "upi", "cheque", "other"]
    reference: Optional[str] = None
    notes: Optional[str] = None


# =========================================================================
# TOTALS
# =========================================================================

@dataclass
class ItemTotals:
    line_subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal


@dataclass
class InvoiceTotals:
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def compute_item_totals(quantity, unit_price, tax_percent) -> ItemTotals:
    line_subtotal = money(Decimal(quantity) * Decimal(unit_price))
    tax_amount = money(line_subtotal * Decimal(tax_percent) / 100)
    return ItemTotals(
        line_subtotal=line_subtotal,
        tax_amount=tax_amount,
        total_amount=money(line_subtotal + tax_amount),
    )


def compute_invoice_totals(items: Iterable, discount_amount=ZERO) -> InvoiceTotals:
    """
    Totals for a set of lines. `items` need quantity, unit_price and
    tax_percent attributes. The total is floored at zero.
    """
    subtotal = ZERO
    tax_total = ZERO
    for item in items:
        line = compute_item_totals(item.quantity, item.unit_price, item.tax_percent)
        subtotal += line.line_subtotal
        tax_total += line.tax_amount
    total = money(subtotal + tax_total - Decimal(discount_amount))
    return InvoiceTotals(
        subtotal=money(subtotal),
        tax_amount=money(tax_total),
        total_amount=max(ZERO, total),
    )


def derive_payment_status(amount_paid: Decimal, total_amount: Decimal) -> str:
    if amount_paid <= 0:
        return "received"
    if amount_paid >= total_amount:
        return "paid"
    return "partial"


# =========================================================================
# LEDGER
# =========================================================================

class InvoiceLedger:
    """Service for purchase invoices and payments."""

    def __init__(self, db: AsyncSession, user_id: Optional[str] = None):
        self.db = db
        self.user_id = user_id
        self.stock = ReconciliationLedger(db, user_id)

    async def _lock_invoice(self, invoice_id: str) -> PurchaseInvoice:
        result = await self.db.execute(
            select(PurchaseInvoice)
            .where(PurchaseInvoice.id == invoice_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise NotFoundError("Invoice not found.")
        return invoice

    async def _load_items(self, invoice_id: str) -> List[PurchaseInvoiceItem]:
        result = await self.db.execute(
            select(PurchaseInvoiceItem)
            .where(PurchaseInvoiceItem.invoice_id == invoice_id)
            .order_by(PurchaseInvoiceItem.sort_order)
        )
        return list(result.scalars().all())

    async def _check_references(self, company_id: str, items: List[InvoiceItemIn]):
        company = await self.db.get(Company, company_id)
        if not company:
            raise NotFoundError("Company not found.")

        product_ids = {item.product_id for item in items if item.product_id}
        if product_ids:
            result = await self.db.execute(select(Product.id).where(Product.id.in_(product_ids)))
            missing = product_ids - set(result.scalars().all())
            if missing:
                raise NotFoundError(f"Product not found: {', '.join(sorted(missing))}")

    async def _number_taken(self, company_id: str, invoice_number: str, exclude_id: Optional[str] = None) -> bool:
        query = select(PurchaseInvoice.id).where(
            PurchaseInvoice.company_id == company_id,
            PurchaseInvoice.invoice_number == invoice_number,
        )
        if exclude_id:
            query = query.where(PurchaseInvoice.id != exclude_id)
        result = await self.db.execute(query.limit(1))
        return result.scalar_one_or_none() is not None

    async def stage_invoice(
        self,
        data: InvoiceCreate,
        allow_fractional: bool = True,
    ) -> PurchaseInvoice:
        """
        Insert header and items, and post stock for non-draft invoices.

        Flushes but does not commit, so callers can fold it into a larger
        transaction (agent approvals do).
        """
        await self._check_references(data.company_id, data.items)
        if await self._number_taken(data.company_id, data.invoice_number):
            raise ConflictError(f"Invoice number {data.invoice_number} already exists for this company.")

        totals = compute_invoice_totals(data.items, data.discount_amount)
        invoice = PurchaseInvoice(
            invoice_number=data.invoice_number,
            company_id=data.company_id,
            invoice_date=data.invoice_date,
            due_date=data.due_date,
            status=data.status,
            subtotal=totals.subtotal,
            tax_amount=totals.tax_amount,
            discount_amount=money(data.discount_amount),
            total_amount=totals.total_amount,
            amount_paid=ZERO,
            notes=data.notes or None,
            created_by=self.user_id,
        )
        self.db.add(invoice)
        try:
            await self.db.flush()
        except IntegrityError:
            raise ConflictError(f"Invoice number {data.invoice_number} already exists for this company.")

        rows = []
        for index, item in enumerate(data.items):
            line = compute_item_totals(item.quantity, item.unit_price, item.tax_percent)
            row = PurchaseInvoiceItem(
                invoice_id=invoice.id,
                product_id=item.product_id,
                description=item.description,
                quantity=item.quantity,
                unit_price=money(item.unit_price),
                tax_percent=item.tax_percent,
                tax_amount=line.tax_amount,
                total_amount=line.total_amount,
                sort_order=index,
            )
            self.db.add(row)
            rows.append(row)
        await self.db.flush()

        if invoice.status != "draft":
            await self.stock.receive_invoice_items(invoice, rows, allow_fractional=allow_fractional)

        logger.info(
            f"Staged invoice {invoice.invoice_number} ({invoice.status}) total={invoice.total_amount}"
        )
        return invoice

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def create_invoice(self, data: InvoiceCreate) -> PurchaseInvoice:
        try:
            invoice = await self.stage_invoice(data)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return await self.get_invoice(invoice.id)

    async def get_invoice(self, invoice_id: str) -> PurchaseInvoice:
        result = await self.db.execute(
            select(PurchaseInvoice)
            .where(PurchaseInvoice.id == invoice_id)
            .options(selectinload(PurchaseInvoice.items), selectinload(PurchaseInvoice.payments))
            .execution_options(populate_existing=True)
        )
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise NotFoundError("Invoice not found.")
        return invoice

    async def update_invoice(self, invoice_id: str, data: InvoiceUpdate) -> PurchaseInvoice:
        """
        Header-only update. Items are immutable, so the total is recomputed
        from the stored subtotal and tax plus the new discount.
        """
        try:
            invoice = await self._lock_invoice(invoice_id)
            was_draft = invoice.status == "draft"

            if data.invoice_number and data.invoice_number != invoice.invoice_number:
                if await self._number_taken(invoice.company_id, data.invoice_number, exclude_id=invoice.id):
                    raise ConflictError("An invoice with this number already exists for this company.")
                invoice.invoice_number = data.invoice_number

            if data.discount_amount is not None:
                new_total = max(
                    ZERO,
                    money(invoice.subtotal + invoice.tax_amount - money(data.discount_amount)),
                )
                if new_total < invoice.amount_paid:
                    raise ValidationError(
                        f"Invoice total cannot drop below the amount already paid (₹{money(invoice.amount_paid)})."
                    )
                invoice.discount_amount = money(data.discount_amount)
                invoice.total_amount = new_total

            if data.invoice_date is not None:
                invoice.invoice_date = data.invoice_date
            if "due_date" in data.model_fields_set:
                invoice.due_date = data.due_date
            if "notes" in data.model_fields_set:
                invoice.notes = data.notes or None

            if data.status is not None and data.status != invoice.status:
                if data.status in ("partial", "paid"):
                    raise ValidationError("Payment status is derived from payments and cannot be set directly.")
                if data.status == "draft" and not was_draft:
                    raise ValidationError("A received invoice cannot be moved back to draft.")
                invoice.status = data.status

            if invoice.status not in ("draft", "cancelled"):
                # Discount changes can move an invoice across the paid line
                invoice.status = derive_payment_status(money(invoice.amount_paid), money(invoice.total_amount))

            await self.db.flush()

            if was_draft and invoice.status not in ("draft", "cancelled"):
                items = await self._load_items(invoice.id)
                await self.stock.receive_invoice_items(invoice, items)

            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("An invoice with this number already exists for this company.")
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Updated invoice {invoice_id}")
        return await self.get_invoice(invoice_id)

    async def delete_invoice(self, invoice_id: str) -> None:
        try:
            invoice = await self._lock_invoice(invoice_id)
            result = await self.db.execute(
                select(func.count(Payment.id)).where(Payment.invoice_id == invoice.id)
            )
            if result.scalar_one() > 0:
                raise ConflictError("Cannot delete invoice with existing payments. Cancel it instead.")

            await self.db.execute(delete(PurchaseInvoiceItem).where(PurchaseInvoiceItem.invoice_id == invoice.id))
            await self.db.execute(delete(PurchaseInvoice).where(PurchaseInvoice.id == invoice.id))
            await self.db.commit()
        except IntegrityError:
            # A payment slipped in between the check and the delete
            await self.db.rollback()
            raise ConflictError("Cannot delete invoice with existing payments. Cancel it instead.")
        except Exception:
            await self.db.rollback()
            raise
        logger.info(f"Deleted invoice {invoice_id}")

    async def add_payment(self, invoice_id: str, data: PaymentCreate) -> Payment:
        amount = money(data.amount)
        try:
            invoice = await self._lock_invoice(invoice_id)
            if invoice.status == "cancelled":
                raise InvoiceCancelledError()
            if invoice.status == "draft":
                raise ValidationError("Receive the invoice before recording payments.")
            if money(invoice.amount_paid) + amount > money(invoice.total_amount):
                raise OverpaymentError(money(invoice.total_amount), money(invoice.amount_paid))

            payment = Payment(
                invoice_id=invoice.id,
                amount=amount,
                payment_date=data.payment_date,
                payment_mode=data.payment_mode,
                reference=data.reference or None,
                notes=data.notes or None,
                created_by=self.user_id,
            )
            self.db.add(payment)
            await self.db.flush()

            new_paid = PurchaseInvoice.amount_paid + amount
            result = await self.db.execute(
                update(PurchaseInvoice)
                .where(
                    PurchaseInvoice.id == invoice.id,
                    PurchaseInvoice.status.notin_(("cancelled", "draft")),
                    new_paid <= PurchaseInvoice.total_amount,
                )
                .values(
                    amount_paid=new_paid,
                    status=case((new_paid >= PurchaseInvoice.total_amount, "paid"), else_="partial"),
                    updated_at=datetime.utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                current = await self._lock_invoice(invoice.id)
                if current.status == "cancelled":
                    raise InvoiceCancelledError()
                if current.status == "draft":
                    raise ValidationError("Receive the invoice before recording payments.")
                raise OverpaymentError(money(current.total_amount), money(current.amount_paid))

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Recorded payment {payment.id} of {amount} on invoice {invoice_id}")
        return payment

    async def delete_payment(self, payment_id: str) -> Tuple[Decimal, str]:
        """
        Remove a payment and roll its amount back off the invoice.

        The invoice is locked before the payment is read, and the delete must
        hit exactly one row, so a payment is never subtracted twice.
        """
        try:
            result = await self.db.execute(select(Payment.invoice_id).where(Payment.id == payment_id))
            invoice_id = result.scalar_one_or_none()
            if invoice_id is None:
                raise NotFoundError("Payment not found.")

            invoice = await self._lock_invoice(invoice_id)

            result = await self.db.execute(
                select(Payment.amount).where(Payment.id == payment_id, Payment.invoice_id == invoice.id)
            )
            amount = result.scalar_one_or_none()
            if amount is None:
                raise NotFoundError("Payment not found.")
            amount = money(amount)

            result = await self.db.execute(
                delete(Payment)
                .where(Payment.id == payment_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise NotFoundError("Payment not found.")

            new_paid = PurchaseInvoice.amount_paid - amount
            await self.db.execute(
                update(PurchaseInvoice)
                .where(PurchaseInvoice.id == invoice.id)
                .values(
                    amount_paid=new_paid,
                    status=case(
                        (new_paid <= 0, "received"),
                        (new_paid >= PurchaseInvoice.total_amount, "paid"),
                        else_="partial",
                    ),
                    updated_at=datetime.utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        invoice = await self.get_invoice(invoice_id)
        logger.info(f"Deleted payment {payment_id} from invoice {invoice_id}")
        return money(invoice.amount_paid), invoice.status
