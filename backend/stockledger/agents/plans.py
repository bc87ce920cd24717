"""
Agent plan payloads.

Agents write a structured plan into agent_actions.plan and a human approves
or dismisses it. The payload is untrusted until it passes through
`parse_plan`, which picks the variant from the row's agent_type and
validates it. Producers write camelCase keys; snake_case is accepted too.
"""

from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from stockledger.errors import ValidationError


class _PlanModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "ignore"


# --- Reorder ---

class ReorderItem(_PlanModel):
    product_id: str
    product_name: str
    sku: Optional[str] = None
    unit: Optional[str] = None
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    rationale: Optional[str] = None


class ReorderPlan(_PlanModel):
    agent_type: Literal["reorder"] = Field("reorder", alias="agent_type")
    company_id: str
    company_name: Optional[str] = None
    items: List[ReorderItem] = Field(min_length=1)
    total_estimate: Optional[str] = None
    reasoning: str = ""


# --- Invoice OCR ---

class OcrLineItem(_PlanModel):
    description: str
    sku_or_item_code: Optional[str] = None
    quantity: Decimal
    unit_of_measure: Optional[str] = None
    unit_price: Decimal
    tax_percent: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    total_amount: Decimal = Decimal("0")


class InvoiceOcrPlan(_PlanModel):
    """Fields extracted from an uploaded supplier invoice. Reviewed by a human before use."""
    agent_type: Literal["invoice_ocr"] = Field("invoice_ocr", alias="agent_type")
    supplier_name: str
    supplier_gst_number: Optional[str] = None
    supplier_email: Optional[str] = None
    supplier_phone: Optional[str] = None
    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None
    due_date: Optional[str] = None
    purchase_order_number: Optional[str] = None
    subtotal: Decimal = Decimal("0")
    discount_amount: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    total_amount: Decimal = Decimal("0")
    items: List[OcrLineItem] = []


# --- Channel mapping ---

class MappingProposal(_PlanModel):
    product_id: str
    product_name: Optional[str] = None
    sku: Optional[str] = None
    external_product_id: str
    external_product_name: Optional[str] = None
    external_sku: Optional[str] = None
    confidence: Literal["high", "medium", "low"] = "medium"
    rationale: Optional[str] = None


class ChannelMappingPlan(_PlanModel):
    agent_type: Literal["channel_mapping"] = Field("channel_mapping", alias="agent_type")
    channel_id: str
    channel_name: Optional[str] = None
    proposals: List[MappingProposal] = []
    unmatched: List[Dict[str, Any]] = []
    reasoning: str = ""


AgentPlan = Annotated[
    Union[ReorderPlan, InvoiceOcrPlan, ChannelMappingPlan],
    Field(discriminator="agent_type"),
]

AGENT_TYPES = ("reorder", "invoice_ocr", "channel_mapping")

_plan_adapter = TypeAdapter(AgentPlan)


def parse_plan(agent_type: str, payload: Any) -> Union[ReorderPlan, InvoiceOcrPlan, ChannelMappingPlan]:
    """
    Validate a stored plan against the variant named by agent_type.

    Raises:
        ValidationError: unknown agent type or a payload that does not fit.
    """
    if agent_type not in AGENT_TYPES or not isinstance(payload, dict):
        raise ValidationError("Invalid plan data. Unknown agent type or payload.")
    try:
        return _plan_adapter.validate_python({**payload, "agent_type": agent_type})
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid plan data. {e.error_count()} field(s) failed validation.",
            errors=[{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()],
        )
