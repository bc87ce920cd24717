"""
Channels API Router.

Operator endpoints for connecting storefronts, registering webhooks and
maintaining product mappings, plus the unauthenticated callback that
storefronts post generated credentials to.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from stockledger.adapters.base import CREDENTIAL_WEBHOOK_SECRET
from stockledger.adapters.registry import CHANNEL_CATALOG, AdapterRegistry
from stockledger.auth_middleware import get_current_user
from stockledger.config import get_settings
from stockledger.database import get_db
from stockledger.errors import DecryptionError, NotFoundError, ValidationError
from stockledger.services.channels import ChannelCreate, ChannelService, MappingCreate

router = APIRouter()
settings = get_settings()


class ChannelResponse(BaseModel):
    """Channel as shown to its owner. Credentials never leave the server."""
    id: str
    channel_type: str
    name: str
    status: str
    store_url: Optional[str]
    default_pickup_location: Optional[str]
    has_webhooks: bool = False
    created_at: datetime

    class Config:
        from_attributes = True

    @classmethod
    def from_channel(cls, channel) -> "ChannelResponse":
        response = cls.model_validate(channel)
        response.has_webhooks = CREDENTIAL_WEBHOOK_SECRET in (channel.credentials or {})
        return response


class ConfigFieldResponse(BaseModel):
    key: str
    label: str
    type: str
    required: bool
    placeholder: Optional[str] = None
    options: List[dict] = []


class CatalogEntryResponse(BaseModel):
    id: str
    name: str
    description: str
    auth_type: str
    popular: bool
    available: bool
    config_fields: List[ConfigFieldResponse] = []
    capabilities: Optional[dict] = None


class ExternalProductResponse(BaseModel):
    id: str
    name: str
    sku: Optional[str] = None
    stock_quantity: Optional[int] = None
    type: str
    parent_id: Optional[str] = None

    class Config:
        from_attributes = True


class MappingResponse(BaseModel):
    id: str
    channel_id: str
    product_id: str
    external_product_id: str
    label: Optional[str]

    class Config:
        from_attributes = True


class PushStockResponse(BaseModel):
    product_id: str
    quantity: int
    pushed: List[str]


@router.get("/catalog", response_model=List[CatalogEntryResponse])
async def get_catalog():
    """Every known channel type, with connect-wizard fields for implemented ones."""
    entries = []
    for entry in CHANNEL_CATALOG:
        adapter = AdapterRegistry.get_adapter(entry["id"])
        item = CatalogEntryResponse(**entry)
        if adapter is not None:
            item.config_fields = [ConfigFieldResponse(**vars(f)) for f in adapter.config_fields]
            item.capabilities = vars(adapter.capabilities)
        entries.append(item)
    return entries


@router.get("", response_model=List[ChannelResponse])
async def list_channels(
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    channels = await ChannelService(db, user_id).list_channels()
    return [ChannelResponse.from_channel(c) for c in channels]


@router.post("", response_model=ChannelResponse, status_code=201)
async def create_channel(
    body: ChannelCreate,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    channel = await ChannelService(db, user_id).create_channel(body)
    return ChannelResponse.from_channel(channel)


@router.post("/{channel_type}/callback")
async def storefront_callback(
    channel_type: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Credential handoff from the storefront (e.g. WooCommerce wc-auth).
    Answers with bare status codes: 400 malformed, 404 unknown or not
    pending, 500 when credentials cannot be stored.
    """
    if AdapterRegistry.get_adapter(channel_type) is None:
        return Response(status_code=404)

    raw_body = (await request.body()).decode("utf-8", errors="replace")
    try:
        await ChannelService(db).complete_callback(channel_type, raw_body)
    except ValidationError:
        return Response(status_code=400)
    except NotFoundError:
        return Response(status_code=404)
    except (DecryptionError, ValueError):
        return Response(status_code=500)
    return Response(status_code=200)


@router.get("/{channel_id}/connect-url")
async def get_connect_url(
    channel_id: str,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    url = await ChannelService(db, user_id).connect_url(channel_id, settings.APP_BASE_URL)
    return {"url": url}


@router.post("/{channel_id}/reset", response_model=ChannelResponse)
async def reset_channel(
    channel_id: str,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    channel = await ChannelService(db, user_id).reset_channel(channel_id)
    return ChannelResponse.from_channel(channel)


@router.post("/{channel_id}/disconnect", response_model=ChannelResponse)
async def disconnect_channel(
    channel_id: str,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    channel = await ChannelService(db, user_id).disconnect_channel(channel_id)
    return ChannelResponse.from_channel(channel)


@router.delete("/{channel_id}", status_code=204)
async def delete_channel(
    channel_id: str,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await ChannelService(db, user_id).delete_channel(channel_id)
    return Response(status_code=204)


@router.post("/{channel_id}/webhooks", response_model=ChannelResponse)
async def register_webhooks(
    channel_id: str,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    channel = await ChannelService(db, user_id).register_webhooks(channel_id, settings.APP_BASE_URL)
    return ChannelResponse.from_channel(channel)


@router.get("/{channel_id}/products", response_model=List[ExternalProductResponse])
async def fetch_channel_products(
    channel_id: str,
    search: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    products = await ChannelService(db, user_id).fetch_products(channel_id, search)
    return [ExternalProductResponse.model_validate(p) for p in products]


@router.get("/{channel_id}/mappings", response_model=List[MappingResponse])
async def list_mappings(
    channel_id: str,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    mappings = await ChannelService(db, user_id).list_mappings(channel_id)
    return [MappingResponse.model_validate(m) for m in mappings]


@router.post("/{channel_id}/mappings", response_model=MappingResponse, status_code=201)
async def add_mapping(
    channel_id: str,
    body: MappingCreate,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    mapping = await ChannelService(db, user_id).add_mapping(channel_id, body)
    return MappingResponse.model_validate(mapping)


@router.delete("/mappings/{mapping_id}", status_code=204)
async def delete_mapping(
    mapping_id: str,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await ChannelService(db, user_id).delete_mapping(mapping_id)
    return Response(status_code=204)


@router.post("/{channel_id}/push-stock/{product_id}", response_model=PushStockResponse)
async def push_stock(
    channel_id: str,
    product_id: str,
    user_id: str = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await ChannelService(db, user_id).push_stock(channel_id, product_id)
    return PushStockResponse(product_id=result.product_id, quantity=result.quantity, pushed=result.pushed)
