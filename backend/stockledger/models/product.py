"""
Product and company models.

Only the fields the sync and ledger core reads or writes live here.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import String, Integer, Boolean, Numeric, Index
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.models.base import Base, UUIDMixin, TimestampMixin


class Product(Base, UUIDMixin, TimestampMixin):
    """
    An internal stock-keeping unit.

    quantity_on_hand is mutated only by the reconciliation ledger.
    """
    __tablename__ = "products"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String(100), unique=True)
    unit: Mapped[str] = mapped_column(String(20), default="pcs")

    quantity_on_hand: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reorder_level: Mapped[int] = mapped_column(Integer, default=0)
    purchase_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (
        Index("idx_product_active", "is_active"),
    )


class Company(Base, UUIDMixin, TimestampMixin):
    """Supplier that purchase invoices are raised against."""
    __tablename__ = "companies"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
