"""
Invoices API Router.

Purchase invoices and the payments posted against them.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.auth_middleware import get_current_user
from stockledger.database import get_db
from stockledger.services.invoice_ledger import InvoiceCreate, InvoiceLedger, InvoiceUpdate, PaymentCreate

router = APIRouter()


class InvoiceItemResponse(BaseModel):
    id: str
    product_id: Optional[str]
    description: str
    quantity: Decimal
    unit_price: Decimal
    tax_percent: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    sort_order: int

    class Config:
        from_attributes = True


class PaymentResponse(BaseModel):
    id: str
    invoice_id: str
    amount: Decimal
    payment_date: date
    payment_mode: str
    reference: Optional[str]
    notes: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class InvoiceResponse(BaseModel):
    id: str
    invoice_number: str
    company_id: str
    invoice_date: date
    due_date: Optional[date]
    status: str
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    amount_paid: Decimal
    notes: Optional[str]
    items: List[InvoiceItemResponse] = []
    payments: List[PaymentResponse] = []

    class Config:
        from_attributes = True


class PaymentDeletedResponse(BaseModel):
    amount_paid: Decimal
    status: str


@router.post("", response_model=InvoiceResponse, status_code=201)
async def create_invoice(
    body: InvoiceCreate,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    invoice = await InvoiceLedger(db, user_id).create_invoice(body)
    return InvoiceResponse.model_validate(invoice)


@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(
    invoice_id: str,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    invoice = await InvoiceLedger(db, user_id).get_invoice(invoice_id)
    return InvoiceResponse.model_validate(invoice)


@router.patch("/{invoice_id}", response_model=InvoiceResponse)
async def update_invoice(
    invoice_id: str,
    body: InvoiceUpdate,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    invoice = await InvoiceLedger(db, user_id).update_invoice(invoice_id, body)
    return InvoiceResponse.model_validate(invoice)


@router.delete("/{invoice_id}", status_code=204)
async def delete_invoice(
    invoice_id: str,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await InvoiceLedger(db, user_id).delete_invoice(invoice_id)
    return Response(status_code=204)


@router.post("/{invoice_id}/payments", response_model=PaymentResponse, status_code=201)
async def add_payment(
    invoice_id: str,
    body: PaymentCreate,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    payment = await InvoiceLedger(db, user_id).add_payment(invoice_id, body)
    return PaymentResponse.model_validate(payment)


@router.delete("/payments/{payment_id}", response_model=PaymentDeletedResponse)
async def delete_payment(
    payment_id: str,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    amount_paid, status = await InvoiceLedger(db, user_id).delete_payment(payment_id)
    return PaymentDeletedResponse(amount_paid=amount_paid, status=status)
