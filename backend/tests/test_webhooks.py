"""
Tests for the storefront webhook gateway.

Drives POST /api/channels/{type}/webhook/{id} end to end: signature
verification, mapping resolution and replay-safe stock updates.
"""

import base64
import hashlib
import hmac
import json

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from conftest import WEBHOOK_SECRET
from stockledger.models import Channel, ChannelProductMapping, InventoryTransaction, Product
from stockledger.services.credential_vault import encrypt_credentials


def order(order_id=5001, quantity=3, product_id=11):
    return {"id": order_id, "line_items": [{"product_id": product_id, "quantity": quantity}]}


def signed_headers(body: bytes, topic="order.created", secret=WEBHOOK_SECRET):
    signature = base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()
    return {
        "content-type": "application/json",
        "x-wc-webhook-signature": signature,
        "x-wc-webhook-topic": topic,
    }


@pytest_asyncio.fixture
async def mapping(db, product, woo_channel):
    mapping = ChannelProductMapping(channel_id=woo_channel.id, product_id=product.id, external_product_id="11")
    db.add(mapping)
    await db.commit()
    return mapping


async def post_event(client, channel, payload, topic="order.created", secret=WEBHOOK_SECRET):
    body = json.dumps(payload).encode()
    return await client.post(
        f"/api/channels/{channel.channel_type}/webhook/{channel.id}",
        content=body,
        headers=signed_headers(body, topic, secret),
    )


async def stock(db, product_id):
    return (await db.get(Product, product_id, populate_existing=True)).quantity_on_hand


async def txn_count(db):
    return (await db.execute(select(func.count(InventoryTransaction.id)))).scalar_one()


class TestWebhookGateway:

    @pytest.mark.asyncio
    async def test_order_created_decrements_stock(self, client, db, product, woo_channel, mapping):
        resp = await post_event(client, woo_channel, order(quantity=3))

        assert resp.status_code == 200
        assert await stock(db, product.id) == 7
        txn = (await db.execute(select(InventoryTransaction))).scalar_one()
        assert txn.type == "sale_out"
        assert txn.reference_type == "woocommerce_order"
        assert txn.reference_id == "5001"
        assert txn.notes == "Auto-synced from woocommerce webhook (order 5001)"
        assert txn.created_by == woo_channel.user_id

    @pytest.mark.asyncio
    async def test_replayed_event_applies_once(self, client, db, product, woo_channel, mapping):
        first = await post_event(client, woo_channel, order(quantity=3))
        second = await post_event(client, woo_channel, order(quantity=3))

        assert first.status_code == second.status_code == 200
        assert await stock(db, product.id) == 7
        assert await txn_count(db) == 1

    @pytest.mark.asyncio
    async def test_cancellation_restores_stock(self, client, db, product, woo_channel, mapping):
        await post_event(client, woo_channel, order(quantity=3))
        resp = await post_event(client, woo_channel, order(quantity=3), topic="order.cancelled")

        assert resp.status_code == 200
        assert await stock(db, product.id) == 10
        assert await txn_count(db) == 2
        ret = (await db.execute(
            select(InventoryTransaction).where(InventoryTransaction.type == "return")
        )).scalar_one()
        assert ret.quantity == 3
        assert ret.reference_type == "woocommerce_order_cancelled"
        assert ret.reference_id == "5001"

    @pytest.mark.asyncio
    async def test_replayed_cancellation_applies_once(self, client, db, product, woo_channel, mapping):
        await post_event(client, woo_channel, order(quantity=3))
        await post_event(client, woo_channel, order(quantity=3), topic="order.cancelled")
        resp = await post_event(client, woo_channel, order(quantity=3), topic="order.cancelled")

        assert resp.status_code == 200
        assert await stock(db, product.id) == 10
        assert await txn_count(db) == 2

    @pytest.mark.asyncio
    async def test_oversell_is_clamped(self, client, db, product, woo_channel, mapping):
        resp = await post_event(client, woo_channel, order(quantity=50))

        assert resp.status_code == 200
        assert await stock(db, product.id) == 0
        txn = (await db.execute(select(InventoryTransaction))).scalar_one()
        assert txn.quantity == -10

    @pytest.mark.asyncio
    async def test_unmapped_product_is_skipped(self, client, db, product, woo_channel, mapping):
        resp = await post_event(client, woo_channel, order(product_id=999))

        assert resp.status_code == 200
        assert await stock(db, product.id) == 10
        assert await txn_count(db) == 0

    @pytest.mark.asyncio
    async def test_unknown_topic_is_acknowledged(self, client, db, product, woo_channel, mapping):
        resp = await post_event(client, woo_channel, {"id": 1}, topic="product.updated")

        assert resp.status_code == 200
        assert await txn_count(db) == 0


class TestWebhookRejections:

    @pytest.mark.asyncio
    async def test_bad_signature(self, client, db, product, woo_channel, mapping):
        resp = await post_event(client, woo_channel, order(), secret="not-the-secret")

        assert resp.status_code == 400
        assert await stock(db, product.id) == 10

    @pytest.mark.asyncio
    async def test_missing_signature(self, client, woo_channel):
        resp = await client.post(
            f"/api/channels/woocommerce/webhook/{woo_channel.id}",
            content=json.dumps(order()).encode(),
            headers={"x-wc-webhook-topic": "order.created"},
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_channel(self, client, db_engine):
        body = json.dumps(order()).encode()
        resp = await client.post("/api/channels/woocommerce/webhook/missing", content=body,
                                 headers=signed_headers(body))
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_channel_type_without_webhooks(self, client, woo_channel):
        resp = await post_event(client, Channel(id=woo_channel.id, channel_type="amazon"), order())
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_channel_type(self, client, woo_channel):
        resp = await post_event(client, Channel(id=woo_channel.id, channel_type="shopify"), order())
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_disconnected_channel(self, client, db, woo_channel):
        woo_channel.status = "disconnected"
        await db.commit()

        resp = await post_event(client, woo_channel, order())
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_no_webhook_secret(self, client, db, user_id):
        channel = Channel(
            user_id=user_id,
            channel_type="woocommerce",
            name="No hooks yet",
            status="connected",
            store_url="https://shop.example.com",
            credentials=encrypt_credentials({"consumerKey": "ck", "consumerSecret": "cs"}),
        )
        db.add(channel)
        await db.commit()

        resp = await post_event(client, channel, order())
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_undecryptable_secret(self, client, db, user_id):
        channel = Channel(
            user_id=user_id,
            channel_type="woocommerce",
            name="Rotated key",
            status="connected",
            credentials={"webhookSecret": "00:11:22"},
        )
        db.add(channel)
        await db.commit()

        resp = await post_event(client, channel, order())
        assert resp.status_code == 500
