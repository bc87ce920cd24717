"""
SQLAlchemy models for the stockledger service.
"""

from stockledger.models.base import Base, UUIDMixin, TimestampMixin, CreatedAtMixin

# Channels
from stockledger.models.channel import Channel, ChannelProductMapping

# Master data
from stockledger.models.product import Product, Company

# Inventory
from stockledger.models.inventory import InventoryTransaction

# Agents
from stockledger.models.agent import AgentAction

# Invoices & Payments
from stockledger.models.invoice import PurchaseInvoice, PurchaseInvoiceItem, Payment

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "CreatedAtMixin",
    # Channels
    "Channel",
    "ChannelProductMapping",
    # Master data
    "Product",
    "Company",
    # Inventory
    "InventoryTransaction",
    # Agents
    "AgentAction",
    # Invoices & Payments
    "PurchaseInvoice",
    "PurchaseInvoiceItem",
    "Payment",
]
