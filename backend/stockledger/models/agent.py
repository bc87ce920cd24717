"""
Agent action model - recommendations awaiting human approval.
"""

from datetime import datetime
from typing import Optional, Dict, Any

from sqlalchemy import String, Text, DateTime, Index, JSON
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.models.base import Base, UUIDMixin, CreatedAtMixin


AGENT_STATUS_PENDING = "pending_approval"
AGENT_STATUS_EXECUTED = "executed"
AGENT_STATUS_DISMISSED = "dismissed"


class AgentAction(Base, UUIDMixin, CreatedAtMixin):
    """
    A proposed action produced by an automated agent.

    Status moves pending_approval -> executed (via a claim) or
    pending_approval -> dismissed. It never returns to pending.
    """
    __tablename__ = "agent_actions"

    agent_type: Mapped[str] = mapped_column(String(50), nullable=False)  # reorder, invoice_ocr, channel_mapping
    status: Mapped[str] = mapped_column(String(30), default=AGENT_STATUS_PENDING, nullable=False)
    plan: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    rationale: Mapped[Optional[str]] = mapped_column(Text)

    resolved_by: Mapped[Optional[str]] = mapped_column(String(36))
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("idx_agent_action_status", "status", "created_at"),
    )
