"""
Approval Claim Service
======================

Turns a human approval of an agent recommendation into exactly one
execution, however many approve requests race for it.

Flow for every approve_*:
1. Claim: conditional UPDATE pending_approval -> executed (rowcount decides)
2. Validate the stored plan
3. Materialize it (invoice, stock, mappings) in the same transaction
4. Commit, or roll back everything including the claim

The claim is the first statement of its transaction. On SQLite that keeps
concurrent claimers from deadlocking on lock upgrades.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.agents.plans import parse_plan
from stockledger.errors import ConflictError, NotFoundError, ValidationError
from stockledger.models import AgentAction, Channel, ChannelProductMapping, Product, PurchaseInvoice
from stockledger.models.agent import (
    AGENT_STATUS_DISMISSED,
    AGENT_STATUS_EXECUTED,
    AGENT_STATUS_PENDING,
)
from stockledger.services.invoice_ledger import InvoiceCreate, InvoiceItemIn, InvoiceLedger

logger = logging.getLogger(__name__)


class OcrApprovalItem(BaseModel):
    product_id: str = Field(min_length=1)
    description: str = Field(min_length=1)
    quantity: Decimal = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    tax_percent: Decimal = Field(Decimal("0"), ge=0, le=100)


class OcrApproval(BaseModel):
    """Invoice fields after a human reviewed the OCR extraction and linked every line to a product."""
    company_id: str
    invoice_number: str = Field(min_length=1, max_length=100)
    invoice_date: date
    due_date: Optional[date] = None
    discount_amount: Decimal = Field(Decimal("0"), ge=0)
    notes: Optional[str] = None
    items: List[OcrApprovalItem] = Field(min_length=1)


class ApprovalService:
    """Claims and executes agent recommendations."""

    def __init__(self, db: AsyncSession, user_id: str):
        self.db = db
        self.user_id = user_id

    async def claim(self, action_id: str, agent_type: Optional[str] = None) -> AgentAction:
        """
        Atomically move a pending action to executed.

        Raises:
            ConflictError: another caller already resolved it.
            NotFoundError: no such action.
        """
        stmt = update(AgentAction).where(
            AgentAction.id == action_id,
            AgentAction.status == AGENT_STATUS_PENDING,
        )
        if agent_type:
            stmt = stmt.where(AgentAction.agent_type == agent_type)

        result = await self.db.execute(
            stmt.values(
                status=AGENT_STATUS_EXECUTED,
                resolved_by=self.user_id,
                resolved_at=datetime.utcnow(),
            ).execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            row = (await self.db.execute(
                select(AgentAction.agent_type, AgentAction.status).where(AgentAction.id == action_id)
            )).first()
            if row is None:
                raise NotFoundError("Task not found.")
            if agent_type and row.agent_type != agent_type and row.status == AGENT_STATUS_PENDING:
                raise ValidationError(f"Task is a {row.agent_type} recommendation, not {agent_type}.")
            logger.info(f"Claim lost for agent action {action_id} (status={row.status})")
            raise ConflictError("This recommendation has already been resolved.")

        action = await self.db.get(AgentAction, action_id, populate_existing=True)
        logger.info(f"Claimed agent action {action_id} ({action.agent_type}) for user {self.user_id}")
        return action

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def approve_reorder_plan(self, action_id: str) -> PurchaseInvoice:
        """Create a draft purchase invoice from a reorder plan. Stock is untouched."""
        try:
            action = await self.claim(action_id, "reorder")
            plan = parse_plan(action.agent_type, action.plan)

            today = datetime.utcnow().date()
            invoice = await InvoiceLedger(self.db, self.user_id).stage_invoice(InvoiceCreate(
                invoice_number=f"AI-PO-{today:%Y%m%d}-{action.id[:8]}",
                company_id=plan.company_id,
                invoice_date=today,
                status="draft",
                notes=f"Draft created by AI Reorder Agent. Reasoning: {plan.reasoning}",
                items=[
                    InvoiceItemIn(
                        product_id=item.product_id,
                        description=item.product_name,
                        quantity=item.quantity,
                        unit_price=item.unit_price,
                        tax_percent=Decimal("0"),
                    )
                    for item in plan.items
                ],
            ))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Reorder plan {action_id} approved as draft invoice {invoice.invoice_number}")
        return invoice

    async def approve_ocr_invoice(self, action_id: str, reviewed: OcrApproval) -> PurchaseInvoice:
        """Create a received invoice from reviewed OCR output and post its stock."""
        notes = reviewed.notes.strip() if reviewed.notes else ""
        note_text = f"{notes}\n\nCreated via AI Invoice OCR." if notes else "Created via AI Invoice OCR."

        try:
            action = await self.claim(action_id, "invoice_ocr")
            # The reviewed payload drives the invoice; the stored plan must still be well formed
            parse_plan(action.agent_type, action.plan)
            invoice = await InvoiceLedger(self.db, self.user_id).stage_invoice(
                InvoiceCreate(
                    invoice_number=reviewed.invoice_number,
                    company_id=reviewed.company_id,
                    invoice_date=reviewed.invoice_date,
                    due_date=reviewed.due_date,
                    status="received",
                    discount_amount=reviewed.discount_amount,
                    notes=note_text,
                    items=[InvoiceItemIn(**item.model_dump()) for item in reviewed.items],
                ),
                allow_fractional=False,
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"OCR task {action_id} approved as invoice {invoice.invoice_number}")
        return invoice

    async def approve_channel_mapping(
        self,
        action_id: str,
        selected_external_ids: Optional[List[str]] = None,
    ) -> List[ChannelProductMapping]:
        """
        Insert the selected mapping proposals (all of them when none are
        selected). External ids already mapped on the channel are skipped.
        """
        try:
            action = await self.claim(action_id, "channel_mapping")
            plan = parse_plan(action.agent_type, action.plan)

            channel = (await self.db.execute(
                select(Channel).where(Channel.id == plan.channel_id, Channel.user_id == self.user_id)
            )).scalar_one_or_none()
            if not channel:
                raise NotFoundError("Channel not found.")

            selected = set(selected_external_ids) if selected_external_ids is not None else None
            proposals = [
                p for p in plan.proposals
                if selected is None or p.external_product_id in selected
            ]

            existing = set((await self.db.execute(
                select(ChannelProductMapping.external_product_id)
                .where(ChannelProductMapping.channel_id == channel.id)
            )).scalars().all())

            product_ids = {p.product_id for p in proposals}
            known_products = set((await self.db.execute(
                select(Product.id).where(Product.id.in_(product_ids))
            )).scalars().all()) if product_ids else set()

            created = []
            for proposal in proposals:
                if proposal.external_product_id in existing:
                    continue
                if proposal.product_id not in known_products:
                    logger.warning(
                        f"Skipping mapping proposal for unknown product {proposal.product_id} "
                        f"(channel {channel.id})"
                    )
                    continue
                mapping = ChannelProductMapping(
                    channel_id=channel.id,
                    product_id=proposal.product_id,
                    external_product_id=proposal.external_product_id,
                    label=proposal.external_product_name,
                )
                self.db.add(mapping)
                existing.add(proposal.external_product_id)
                created.append(mapping)

            await self.db.flush()
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Mapping task {action_id} approved: {len(created)} mapping(s) created on channel {channel.id}")
        return created

    async def dismiss(self, action_id: str) -> None:
        try:
            result = await self.db.execute(
                update(AgentAction)
                .where(AgentAction.id == action_id)
                .values(
                    status=AGENT_STATUS_DISMISSED,
                    resolved_by=self.user_id,
                    resolved_at=datetime.utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise NotFoundError("Task not found.")
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        logger.info(f"Dismissed agent action {action_id}")

    async def list_actions(self, status: Optional[str] = None, limit: int = 50) -> List[AgentAction]:
        query = select(AgentAction).order_by(AgentAction.created_at.desc())
        if status:
            query = query.where(AgentAction.status == status)
        result = await self.db.execute(query.limit(limit))
        return list(result.scalars().all())
