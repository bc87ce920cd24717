"""
Inventory API Router.

Manual stock adjustments and the transaction audit trail.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.auth_middleware import get_current_user
from stockledger.database import get_db
from stockledger.services.inventory_ledger import ReconciliationLedger

router = APIRouter()


class AdjustStockRequest(BaseModel):
    product_id: str
    quantity: int
    notes: Optional[str] = None


class AdjustStockResponse(BaseModel):
    product_id: str
    applied_delta: int
    quantity_on_hand: int


class TransactionResponse(BaseModel):
    """One ledger row. (product_id, reference_type, reference_id) is its idempotency key."""
    id: str
    product_id: str
    quantity: int
    type: str
    reference_type: Optional[str]
    reference_id: Optional[str]
    notes: Optional[str]
    created_by: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


@router.post("/adjust", response_model=AdjustStockResponse)
async def adjust_stock(
    body: AdjustStockRequest,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await ReconciliationLedger(db, user_id).adjust_stock(body.product_id, body.quantity, body.notes)
    await db.commit()
    return AdjustStockResponse(
        product_id=body.product_id,
        applied_delta=result.applied_delta,
        quantity_on_hand=result.quantity_on_hand,
    )


@router.get("/transactions", response_model=List[TransactionResponse])
async def list_transactions(
    product_id: Optional[str] = Query(None),
    limit: int = Query(100, le=500),
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    transactions = await ReconciliationLedger(db, user_id).list_transactions(product_id=product_id, limit=limit)
    return [TransactionResponse.model_validate(t) for t in transactions]
