"""
Channel lifecycle service.

Connect, disconnect and reset storefront channels, hand off credentials
from the storefront callback, register webhooks, and keep the product
mappings the webhook gateway resolves against.

Network calls to storefronts never happen inside an open transaction:
channel data is read, the read transaction is ended, then the adapter is
called.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.adapters.base import CREDENTIAL_WEBHOOK_SECRET, BaseChannelAdapter, ExternalProduct
from stockledger.adapters.registry import AdapterRegistry
from stockledger.errors import ConflictError, NotFoundError, ValidationError
from stockledger.models import Channel, ChannelProductMapping, Product
from stockledger.services.credential_vault import decrypt_credentials, encrypt, encrypt_credentials

logger = logging.getLogger(__name__)


class ChannelCreate(BaseModel):
    channel_type: str
    name: str = Field(min_length=1, max_length=255)
    store_url: Optional[str] = None
    default_pickup_location: Optional[str] = None
    # API-key channels submit their credentials up front
    config: Dict[str, str] = {}


class MappingCreate(BaseModel):
    product_id: str
    external_product_id: str = Field(min_length=1)
    label: Optional[str] = None


@dataclass
class PushResult:
    product_id: str
    quantity: int
    pushed: List[str]


def _get_adapter(channel_type: str) -> BaseChannelAdapter:
    adapter = AdapterRegistry.get_adapter(channel_type)
    if adapter is None:
        raise ValidationError(f"Channel type '{channel_type}' is not available.")
    return adapter


def webhook_url(app_base_url: str, channel: Channel) -> str:
    return f"{app_base_url.rstrip('/')}/api/channels/{channel.channel_type}/webhook/{channel.id}"


class ChannelService:
    """Channel operations scoped to one owning user."""

    def __init__(self, db: AsyncSession, user_id: Optional[str] = None):
        self.db = db
        self.user_id = user_id

    async def get_channel(self, channel_id: str) -> Channel:
        result = await self.db.execute(
            select(Channel).where(Channel.id == channel_id, Channel.user_id == self.user_id)
        )
        channel = result.scalar_one_or_none()
        if not channel:
            raise NotFoundError("Channel not found.")
        return channel

    async def list_channels(self) -> List[Channel]:
        result = await self.db.execute(
            select(Channel).where(Channel.user_id == self.user_id).order_by(Channel.created_at.desc())
        )
        return list(result.scalars().all())

    async def create_channel(self, data: ChannelCreate) -> Channel:
        """
        OAuth-style channels start pending until their callback arrives.
        API-key channels are validated, encrypted and connected immediately.
        """
        adapter = _get_adapter(data.channel_type)
        entry = AdapterRegistry.get_catalog_entry(data.channel_type)

        config = {k: v for k, v in data.config.items() if v}
        if data.store_url:
            config.setdefault("storeUrl", data.store_url)

        error = adapter.validate_config(config)
        if error:
            raise ValidationError(error)

        api_key = entry is not None and entry["auth_type"] == "apikey"
        channel = Channel(
            user_id=self.user_id,
            channel_type=data.channel_type,
            name=data.name,
            status="connected" if api_key else "pending",
            store_url=data.store_url or config.get("storeUrl"),
            default_pickup_location=data.default_pickup_location or None,
            credentials=encrypt_credentials(config) if api_key else {},
        )
        self.db.add(channel)
        await self.db.commit()
        logger.info(f"Created {channel.channel_type} channel {channel.id} ({channel.status})")
        return channel

    async def _set_status(self, channel_id: str, status: str) -> Channel:
        channel = await self.get_channel(channel_id)
        await self.db.execute(
            update(Channel)
            .where(Channel.id == channel.id)
            .values(status=status, credentials={}, updated_at=datetime.utcnow())
        )
        await self.db.commit()
        await self.db.refresh(channel)
        logger.info(f"Channel {channel_id} -> {status}")
        return channel

    async def reset_channel(self, channel_id: str) -> Channel:
        """Back to pending with credentials wiped so the connect flow can restart."""
        return await self._set_status(channel_id, "pending")

    async def disconnect_channel(self, channel_id: str) -> Channel:
        return await self._set_status(channel_id, "disconnected")

    async def delete_channel(self, channel_id: str) -> None:
        channel = await self.get_channel(channel_id)
        await self.db.execute(
            delete(ChannelProductMapping).where(ChannelProductMapping.channel_id == channel.id)
        )
        await self.db.execute(delete(Channel).where(Channel.id == channel.id))
        await self.db.commit()
        logger.info(f"Deleted channel {channel_id}")

    async def connect_url(self, channel_id: str, app_base_url: str) -> str:
        channel = await self.get_channel(channel_id)
        adapter = _get_adapter(channel.channel_type)
        config = {"storeUrl": channel.store_url} if channel.store_url else {}
        if channel.channel_type == "woocommerce":
            error = adapter.validate_config(config)
            if error:
                raise ValidationError(error)
        return adapter.build_connect_url(channel.id, config, app_base_url)

    # --- Credential handoff ---

    async def complete_callback(self, channel_type: str, raw_body: str) -> str:
        """
        Store credentials posted back by a storefront and mark the channel
        connected. Only a pending channel can accept them.

        Returns the channel id.
        """
        adapter = _get_adapter(channel_type)
        parsed = adapter.parse_callback(raw_body)
        if parsed is None:
            raise ValidationError("Malformed callback body")

        encrypted = encrypt_credentials(parsed.credentials)
        result = await self.db.execute(
            update(Channel)
            .where(
                Channel.id == parsed.channel_id,
                Channel.channel_type == channel_type,
                Channel.status == "pending",
            )
            .values(status="connected", credentials=encrypted, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise NotFoundError("Channel not found or not awaiting connection.")
        await self.db.commit()
        logger.info(f"Channel {parsed.channel_id} connected via {channel_type} callback")
        return parsed.channel_id

    # --- Storefront calls ---

    async def _connected_channel(self, channel_id: str):
        channel = await self.get_channel(channel_id)
        if channel.status != "connected":
            raise ValidationError("Channel is not connected.")
        credentials = decrypt_credentials(channel.credentials)
        # End the read transaction before talking to the storefront
        await self.db.commit()
        return channel, credentials

    async def register_webhooks(self, channel_id: str, app_base_url: str) -> Channel:
        channel, credentials = await self._connected_channel(channel_id)
        adapter = _get_adapter(channel.channel_type)
        if not adapter.capabilities.uses_webhooks:
            raise ValidationError(f"Webhooks are not supported for {channel.channel_type}")

        result = await adapter.register_webhooks(
            channel.store_url or "",
            credentials,
            webhook_url(app_base_url, channel),
        )

        channel = await self.get_channel(channel_id)
        stored = dict(channel.credentials or {})
        stored[CREDENTIAL_WEBHOOK_SECRET] = encrypt(result["secret"])
        await self.db.execute(
            update(Channel)
            .where(Channel.id == channel.id)
            .values(credentials=stored, updated_at=datetime.utcnow())
        )
        await self.db.commit()
        await self.db.refresh(channel)
        logger.info(f"Registered webhooks for channel {channel_id}")
        return channel

    async def fetch_products(self, channel_id: str, search: Optional[str] = None) -> List[ExternalProduct]:
        channel, credentials = await self._connected_channel(channel_id)
        adapter = _get_adapter(channel.channel_type)
        if not adapter.capabilities.can_fetch_products:
            raise ValidationError(f"Product fetch is not supported for {channel.channel_type}")
        return await adapter.fetch_products(channel.store_url or "", credentials, search)

    async def push_stock(self, channel_id: str, product_id: str) -> PushResult:
        """Push the product's current on-hand quantity to every mapped external product."""
        channel = await self.get_channel(channel_id)
        product = await self.db.get(Product, product_id)
        if not product:
            raise NotFoundError("Product not found.")

        mappings = (await self.db.execute(
            select(ChannelProductMapping.external_product_id).where(
                ChannelProductMapping.channel_id == channel.id,
                ChannelProductMapping.product_id == product.id,
            )
        )).scalars().all()
        if not mappings:
            raise NotFoundError("Product is not mapped on this channel.")

        quantity = product.quantity_on_hand
        channel, credentials = await self._connected_channel(channel_id)
        adapter = _get_adapter(channel.channel_type)
        if not adapter.capabilities.can_push_stock:
            raise ValidationError(f"Stock push is not supported for {channel.channel_type}")

        for external_id in mappings:
            await adapter.push_stock(channel.store_url or "", credentials, external_id, quantity)
        return PushResult(product_id=product.id, quantity=quantity, pushed=list(mappings))

    # --- Mappings ---

    async def add_mapping(self, channel_id: str, data: MappingCreate) -> ChannelProductMapping:
        channel = await self.get_channel(channel_id)
        if not await self.db.get(Product, data.product_id):
            raise NotFoundError("Product not found.")

        mapping = ChannelProductMapping(
            channel_id=channel.id,
            product_id=data.product_id,
            external_product_id=data.external_product_id,
            label=data.label,
        )
        self.db.add(mapping)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("This external product is already mapped on the channel.")
        return mapping

    async def list_mappings(self, channel_id: str) -> List[ChannelProductMapping]:
        channel = await self.get_channel(channel_id)
        result = await self.db.execute(
            select(ChannelProductMapping).where(ChannelProductMapping.channel_id == channel.id)
        )
        return list(result.scalars().all())

    async def delete_mapping(self, mapping_id: str) -> None:
        result = await self.db.execute(
            select(ChannelProductMapping)
            .join(Channel, Channel.id == ChannelProductMapping.channel_id)
            .where(ChannelProductMapping.id == mapping_id, Channel.user_id == self.user_id)
        )
        mapping = result.scalar_one_or_none()
        if not mapping:
            raise NotFoundError("Mapping not found.")
        await self.db.delete(mapping)
        await self.db.commit()
