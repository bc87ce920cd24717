"""
Inventory transaction model - append-only audit trail of stock movements.
"""

from typing import Optional

from sqlalchemy import String, Text, Integer, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.models.base import Base, UUIDMixin, CreatedAtMixin


class InventoryTransaction(Base, UUIDMixin, CreatedAtMixin):
    """
    One signed stock movement.

    (product_id, reference_type, reference_id) is the idempotency key for
    externally sourced changes. Manual adjustments leave reference_id NULL,
    and NULLs never collide on the unique index.
    """
    __tablename__ = "inventory_transactions"

    product_id: Mapped[str] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # purchase_in, sale_out, adjustment, return

    reference_type: Mapped[Optional[str]] = mapped_column(String(50))
    reference_id: Mapped[Optional[str]] = mapped_column(String(255))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[str]] = mapped_column(String(36))

    __table_args__ = (
        Index(
            "uq_inventory_txn_reference",
            "product_id", "reference_type", "reference_id",
            unique=True,
        ),
        Index("idx_inventory_txn_product_created", "product_id", "created_at"),
    )
