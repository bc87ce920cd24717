"""
Agents API Router.

The approval queue. Agents propose, operators approve or dismiss. Every
approve endpoint claims the action first, so a double click or two
operators racing produce one invoice (or one set of mappings), and the
loser gets a 409.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.auth_middleware import get_current_user
from stockledger.database import get_db
from stockledger.services.approvals import ApprovalService, OcrApproval

router = APIRouter()


class AgentActionResponse(BaseModel):
    id: str
    agent_type: str
    status: str
    plan: Dict[str, Any]
    rationale: Optional[str]
    resolved_by: Optional[str]
    resolved_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class ApprovedInvoiceResponse(BaseModel):
    success: bool = True
    invoice_id: str
    invoice_number: str


class MappingApprovalRequest(BaseModel):
    # None approves every proposal
    external_product_ids: Optional[List[str]] = None


class MappingApprovalResponse(BaseModel):
    success: bool = True
    created: int


@router.get("", response_model=List[AgentActionResponse])
async def list_agent_actions(
    status: Optional[str] = Query(None),
    limit: int = Query(50, le=100),
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    actions = await ApprovalService(db, user_id).list_actions(status=status, limit=limit)
    return [AgentActionResponse.model_validate(a) for a in actions]


@router.post("/{action_id}/approve-reorder", response_model=ApprovedInvoiceResponse)
async def approve_reorder(
    action_id: str,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    invoice = await ApprovalService(db, user_id).approve_reorder_plan(action_id)
    return ApprovedInvoiceResponse(invoice_id=invoice.id, invoice_number=invoice.invoice_number)


@router.post("/{action_id}/approve-ocr", response_model=ApprovedInvoiceResponse)
async def approve_ocr(
    action_id: str,
    body: OcrApproval,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    invoice = await ApprovalService(db, user_id).approve_ocr_invoice(action_id, body)
    return ApprovedInvoiceResponse(invoice_id=invoice.id, invoice_number=invoice.invoice_number)


@router.post("/{action_id}/approve-mapping", response_model=MappingApprovalResponse)
async def approve_mapping(
    action_id: str,
    body: Optional[MappingApprovalRequest] = None,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    created = await ApprovalService(db, user_id).approve_channel_mapping(
        action_id, body.external_product_ids if body else None
    )
    return MappingApprovalResponse(created=len(created))


@router.post("/{action_id}/dismiss")
async def dismiss_action(
    action_id: str,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await ApprovalService(db, user_id).dismiss(action_id)
    return {"success": True}
