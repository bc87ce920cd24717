"""
Inventory Reconciliation Ledger
===============================

The only writer of Product.quantity_on_hand.

Every stock movement is applied as:
1. Lock the product row (SELECT ... FOR UPDATE)
2. Check the idempotency key (product, reference_type, reference_id)
3. Compute the new quantity (clamped for external events, strict for manual)
4. Increment on-hand with a database-side expression
5. Append an InventoryTransaction recording the applied delta

The ledger never commits. It runs inside the caller's transaction so the
quantity update and its audit row land (or roll back) together.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.errors import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from stockledger.models import InventoryTransaction, Product, PurchaseInvoice, PurchaseInvoiceItem

logger = logging.getLogger(__name__)

TXN_TYPES = ("purchase_in", "sale_out", "adjustment", "return")
REFERENCE_MANUAL = "manual"
REFERENCE_PURCHASE_INVOICE = "purchase_invoice"


@dataclass
class ChangeResult:
    applied: bool
    applied_delta: int
    quantity_on_hand: int


class ReconciliationLedger:
    """Applies stock deltas exactly once and records them."""

    def __init__(self, db: AsyncSession, user_id: Optional[str] = None):
        self.db = db
        self.user_id = user_id

    async def _lock_product(self, product_id: str) -> Product:
        result = await self.db.execute(
            select(Product)
            .where(Product.id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        product = result.scalar_one_or_none()
        if not product:
            raise NotFoundError(f"Product {product_id} not found.")
        return product

    async def _already_applied(self, product_id: str, reference_type: str, reference_id: str) -> bool:
        result = await self.db.execute(
            select(InventoryTransaction.id).where(
                InventoryTransaction.product_id == product_id,
                InventoryTransaction.reference_type == reference_type,
                InventoryTransaction.reference_id == reference_id,
            ).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def _write(
        self,
        product: Product,
        delta: int,
        txn_type: str,
        reference_type: Optional[str],
        reference_id: Optional[str],
        notes: Optional[str],
    ) -> int:
        current = product.quantity_on_hand
        await self.db.execute(
            update(Product)
            .where(Product.id == product.id)
            .values(
                quantity_on_hand=Product.quantity_on_hand + delta,
                updated_at=datetime.utcnow(),
            )
        )
        self.db.add(InventoryTransaction(
            product_id=product.id,
            quantity=delta,
            type=txn_type,
            reference_type=reference_type,
            reference_id=reference_id,
            notes=notes,
            created_by=self.user_id,
        ))
        try:
            await self.db.flush()
        except IntegrityError:
            raise ConflictError(
                f"Stock change {reference_type}/{reference_id} was already recorded for product {product.id}."
            )
        return current + delta

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def apply_change(
        self,
        product_id: str,
        delta: int,
        txn_type: str,
        reference_type: str,
        reference_id: str,
        notes: Optional[str] = None,
    ) -> ChangeResult:
        """
        Apply an externally sourced delta idempotently.

        Stock is clamped at zero: a sale of 50 against 10 on hand records
        -10. A change whose clamped delta is 0 writes nothing.
        """
        if txn_type not in TXN_TYPES:
            raise ValidationError(f"Unknown transaction type: {txn_type}")

        product = await self._lock_product(product_id)

        if await self._already_applied(product_id, reference_type, str(reference_id)):
            logger.info(
                f"Skipping duplicate stock change product={product_id} "
                f"ref={reference_type}/{reference_id}"
            )
            return ChangeResult(applied=False, applied_delta=0, quantity_on_hand=product.quantity_on_hand)

        current = product.quantity_on_hand
        actual_delta = max(0, current + delta) - current
        if actual_delta == 0:
            return ChangeResult(applied=False, applied_delta=0, quantity_on_hand=current)

        if actual_delta != delta:
            logger.warning(
                f"Clamped stock change for product {product_id}: requested {delta}, "
                f"applied {actual_delta} (on hand {current})"
            )

        new_quantity = await self._write(
            product, actual_delta, txn_type, reference_type, str(reference_id), notes
        )
        return ChangeResult(applied=True, applied_delta=actual_delta, quantity_on_hand=new_quantity)

    async def adjust_stock(self, product_id: str, delta: int, notes: Optional[str] = None) -> ChangeResult:
        """Manual adjustment. Refuses to take stock below zero."""
        if not delta:
            raise ValidationError("Adjustment quantity cannot be zero.")

        product = await self._lock_product(product_id)
        current = product.quantity_on_hand
        if current + delta < 0:
            raise InsufficientStockError(current_quantity=current, requested_delta=delta)

        new_quantity = await self._write(product, delta, "adjustment", REFERENCE_MANUAL, None, notes)
        logger.info(f"Manual stock adjustment product={product_id} delta={delta} new={new_quantity}")
        return ChangeResult(applied=True, applied_delta=delta, quantity_on_hand=new_quantity)

    async def receive_invoice_items(
        self,
        invoice: PurchaseInvoice,
        items: Iterable[PurchaseInvoiceItem],
        allow_fractional: bool = True,
    ) -> List[ChangeResult]:
        """
        Post purchased quantities to stock, one purchase_in per product.

        Quantities are floored and summed per product. Re-posting the same
        invoice is a no-op. With allow_fractional=False a non-integral
        quantity is rejected instead of floored.
        """
        totals = {}
        for item in items:
            if not item.product_id:
                continue
            quantity = Decimal(item.quantity)
            if not allow_fractional and quantity != quantity.to_integral_value():
                raise ValidationError(
                    f'Fractional quantity ({quantity.normalize()}) for "{item.description}" '
                    f"is not supported for stock updates."
                )
            whole = math.floor(quantity)
            if whole > 0:
                totals[item.product_id] = totals.get(item.product_id, 0) + whole

        results = []
        # Sorted so concurrent receipts lock products in the same order
        for product_id in sorted(totals):
            results.append(await self.apply_change(
                product_id,
                totals[product_id],
                "purchase_in",
                REFERENCE_PURCHASE_INVOICE,
                invoice.id,
                notes=f"Invoice #{invoice.invoice_number}",
            ))
        return results

    async def list_transactions(
        self,
        product_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[InventoryTransaction]:
        query = select(InventoryTransaction).order_by(InventoryTransaction.created_at.desc())
        if product_id:
            query = query.where(InventoryTransaction.product_id == product_id)
        result = await self.db.execute(query.limit(limit))
        return list(result.scalars().all())
