"""
Channel models - external storefront connections and product mappings.
"""

from typing import Optional, Dict

from sqlalchemy import String, Text, ForeignKey, Index, UniqueConstraint, JSON
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.models.base import Base, UUIDMixin, TimestampMixin


class Channel(Base, UUIDMixin, TimestampMixin):
    """
    A storefront connection owned by one user.

    `credentials` maps a config field name to a vault token
    (`iv:authTag:ciphertext`). A missing key means the field is not set.
    """
    __tablename__ = "channels"

    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    channel_type: Mapped[str] = mapped_column(String(50), nullable=False)  # woocommerce, shopify, amazon, custom
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)  # pending, connected, disconnected

    store_url: Mapped[Optional[str]] = mapped_column(Text)
    default_pickup_location: Mapped[Optional[str]] = mapped_column(String(255))
    credentials: Mapped[Dict[str, str]] = mapped_column(JSON, default=dict, nullable=False)

    __table_args__ = (
        Index("idx_channel_user", "user_id"),
        Index("idx_channel_type_status", "channel_type", "status"),
    )


class ChannelProductMapping(Base, UUIDMixin, TimestampMixin):
    """Links an external storefront product id to an internal product."""
    __tablename__ = "channel_product_mappings"

    channel_id: Mapped[str] = mapped_column(ForeignKey("channels.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    external_product_id: Mapped[str] = mapped_column(String(255), nullable=False)
    label: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        UniqueConstraint("channel_id", "external_product_id", name="uq_channel_external_product"),
        Index("idx_mapping_product", "product_id"),
    )
