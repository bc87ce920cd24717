"""
Purchase invoice, line item and payment models.
"""

from datetime import date
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import String, Text, Integer, Date, Numeric, ForeignKey, Index, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockledger.models.base import Base, UUIDMixin, TimestampMixin, CreatedAtMixin


INVOICE_STATUSES = ("draft", "received", "partial", "paid", "cancelled")
PAYMENT_MODES = ("cash", "bank_transfer", "upi", "cheque", "other")


class PurchaseInvoice(Base, UUIDMixin, TimestampMixin):
    """
    Supplier invoice header.

    total_amount = max(0, subtotal + tax_amount - discount_amount) and
    amount_paid <= total_amount at all times.
    """
    __tablename__ = "purchase_invoices"

    invoice_number: Mapped[str] = mapped_column(String(100), nullable=False)
    company_id: Mapped[str] = mapped_column(ForeignKey("companies.id", ondelete="RESTRICT"), nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[Optional[date]] = mapped_column(Date)
    status: Mapped[str] = mapped_column(String(20), default="draft", nullable=False)  # draft, received, partial, paid, cancelled

    # Money
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)

    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[str]] = mapped_column(String(36))

    # Relationships
    items: Mapped[List["PurchaseInvoiceItem"]] = relationship(
        "PurchaseInvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="PurchaseInvoiceItem.sort_order",
    )
    payments: Mapped[List["Payment"]] = relationship(
        "Payment",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="Payment.payment_date",
    )

    __table_args__ = (
        UniqueConstraint("company_id", "invoice_number", name="uq_invoice_company_number"),
        CheckConstraint("amount_paid <= total_amount", name="ck_invoice_paid_within_total"),
        Index("idx_invoice_status", "status"),
    )


class PurchaseInvoiceItem(Base, UUIDMixin, CreatedAtMixin):
    """Invoice line. Immutable once created."""
    __tablename__ = "purchase_invoice_items"

    invoice_id: Mapped[str] = mapped_column(ForeignKey("purchase_invoices.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[Optional[str]] = mapped_column(ForeignKey("products.id", ondelete="SET NULL"))
    description: Mapped[str] = mapped_column(Text, nullable=False)

    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    invoice: Mapped["PurchaseInvoice"] = relationship("PurchaseInvoice", back_populates="items")


class Payment(Base, UUIDMixin, CreatedAtMixin):
    """A payment against a purchase invoice."""
    __tablename__ = "payments"

    invoice_id: Mapped[str] = mapped_column(ForeignKey("purchase_invoices.id", ondelete="RESTRICT"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_mode: Mapped[str] = mapped_column(String(20), nullable=False)  # cash, bank_transfer, upi, cheque, other
    reference: Mapped[Optional[str]] = mapped_column(String(255))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[str]] = mapped_column(String(36))

    invoice: Mapped["PurchaseInvoice"] = relationship("PurchaseInvoice", back_populates="payments")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
        Index("idx_payment_invoice", "invoice_id"),
    )
