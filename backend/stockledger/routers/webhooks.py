"""
Storefront Webhook Router.

Receives order events from every storefront via one endpoint:
POST /api/channels/{channel_type}/webhook/{channel_id}

The router:
1. Resolves the adapter for the channel type
2. Reads the raw body and signature headers before anything decodes them
3. Loads the connected channel and decrypts its webhook secret
4. Verifies and parses the event (via adapter)
5. Applies each stock change through the reconciliation ledger

Callers only ever see a bare status code. Once the event is verified the
answer is 200, even when individual changes are skipped or fail; those are
logged. The ledger's idempotency key absorbs storefront retries.
"""

import logging

from fastapi import APIRouter, Request, Response
from sqlalchemy import select

from stockledger.adapters.base import CREDENTIAL_WEBHOOK_SECRET, StockChange
from stockledger.adapters.registry import AdapterRegistry
from stockledger.database import async_session_maker
from stockledger.errors import DecryptionError
from stockledger.models import Channel, ChannelProductMapping
from stockledger.services.credential_vault import decrypt
from stockledger.services.inventory_ledger import ReconciliationLedger

router = APIRouter()
logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-wc-webhook-signature"
TOPIC_HEADER = "x-wc-webhook-topic"


async def get_connected_channel(channel_type: str, channel_id: str) -> Channel | None:
    """Fetch a connected channel by id and type. The session closes before returning."""
    async with async_session_maker() as session:
        result = await session.execute(
            select(Channel).where(
                Channel.id == channel_id,
                Channel.channel_type == channel_type,
                Channel.status == "connected",
            )
        )
        return result.scalar_one_or_none()


@router.post("/{channel_type}/webhook/{channel_id}")
async def receive_webhook(request: Request, channel_type: str, channel_id: str):
    # 1. Resolve Adapter
    adapter = AdapterRegistry.get_adapter(channel_type)
    if adapter is None or not adapter.capabilities.uses_webhooks:
        return Response(status_code=404)

    # 2. Raw body and headers, untouched
    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    topic = request.headers.get(TOPIC_HEADER)

    # 3. Channel context
    channel = await get_connected_channel(channel_type, channel_id)
    if not channel:
        return Response(status_code=404)

    token = (channel.credentials or {}).get(CREDENTIAL_WEBHOOK_SECRET)
    if not token:
        logger.warning(f"Webhook received for channel {channel_id} with no webhook secret configured")
        return Response(status_code=422)

    try:
        secret = decrypt(token)
    except DecryptionError:
        logger.error(f"Could not decrypt webhook secret for channel {channel_id}")
        return Response(status_code=500)

    # 4. Verify & parse (Adapter logic)
    try:
        changes = adapter.process_webhook(raw_body, signature, topic, secret)
    except Exception as e:
        logger.warning(f"Rejected webhook for channel {channel_id} (topic={topic}): {e}")
        return Response(status_code=400)

    # 5. Apply each change in its own transaction
    for change in changes:
        await apply_stock_change(channel, change)

    return Response(status_code=200)


async def apply_stock_change(channel: Channel, change: StockChange) -> None:
    """Resolve the mapping and apply one change. Failures are logged, never raised."""
    async with async_session_maker() as session:
        try:
            result = await session.execute(
                select(ChannelProductMapping.product_id).where(
                    ChannelProductMapping.channel_id == channel.id,
                    ChannelProductMapping.external_product_id == change.external_product_id,
                )
            )
            product_id = result.scalar_one_or_none()
            if product_id is None:
                logger.warning(
                    f"Unmapped external product {change.external_product_id} on channel {channel.id} "
                    f"(ref {change.reference_type}/{change.reference_id}), skipping"
                )
                return

            ledger = ReconciliationLedger(session, user_id=channel.user_id)
            outcome = await ledger.apply_change(
                product_id,
                change.quantity,
                change.type,
                change.reference_type,
                change.reference_id,
                notes=f"Auto-synced from {channel.channel_type} webhook (order {change.reference_id})",
            )
            await session.commit()

            if outcome.applied:
                logger.info(
                    f"Applied {change.type} {outcome.applied_delta} to product {product_id} "
                    f"from channel {channel.id} (ref {change.reference_id})"
                )
        except Exception as e:
            await session.rollback()
            logger.error(
                f"Failed to apply stock change for channel {channel.id} "
                f"external={change.external_product_id} ref={change.reference_id}: {e}"
            )
