"""
Tests for channel lifecycle: creation, the storefront credential
callback, ownership scoping, webhook registration and stock push.
"""

import json
from unittest.mock import patch

import httpx
import pytest
from sqlalchemy import func, select
from tenacity import wait_none

from stockledger.adapters.registry import AdapterRegistry
from stockledger.adapters.woocommerce import WooCommerceAdapter
from stockledger.errors import ConflictError, NotFoundError, ValidationError
from stockledger.models import Channel, ChannelProductMapping
from stockledger.services.channels import ChannelCreate, ChannelService, MappingCreate
from stockledger.services.credential_vault import (
    decrypt,
    decrypt_credentials,
    encrypt_credentials,
    is_encrypted,
)

AMAZON_CONFIG = {
    "storeUrl": "https://sellingpartnerapi-eu.amazon.com",
    "marketplaceId": "A21TJRUUN4KGV",
    "clientId": "amzn1.client",
    "clientSecret": "shh",
    "refreshToken": "Atzr|refresh",
}


async def pending_woo_channel(db, user_id):
    return await ChannelService(db, user_id).create_channel(ChannelCreate(
        channel_type="woocommerce",
        name="Main Store",
        store_url="https://shop.example.com",
    ))


async def reload(db, channel_id):
    return await db.get(Channel, channel_id, populate_existing=True)


class TestCreateChannel:

    @pytest.mark.asyncio
    async def test_oauth_channel_starts_pending(self, db, user_id):
        channel = await pending_woo_channel(db, user_id)

        assert channel.status == "pending"
        assert channel.credentials == {}
        assert channel.user_id == user_id

    @pytest.mark.asyncio
    async def test_apikey_channel_connects_with_encrypted_credentials(self, db, user_id):
        channel = await ChannelService(db, user_id).create_channel(ChannelCreate(
            channel_type="amazon", name="Amazon IN", config=AMAZON_CONFIG,
        ))

        assert channel.status == "connected"
        assert all(is_encrypted(v) for v in channel.credentials.values())
        assert decrypt_credentials(channel.credentials) == AMAZON_CONFIG

    @pytest.mark.asyncio
    async def test_invalid_config(self, db, user_id):
        with pytest.raises(ValidationError) as exc_info:
            await ChannelService(db, user_id).create_channel(ChannelCreate(
                channel_type="woocommerce", name="No URL",
            ))
        assert exc_info.value.detail == "Store URL is required for WooCommerce"

    @pytest.mark.asyncio
    async def test_unavailable_type(self, db, user_id):
        with pytest.raises(ValidationError):
            await ChannelService(db, user_id).create_channel(ChannelCreate(channel_type="shopify", name="Soon"))


class TestStorefrontCallback:

    @pytest.mark.asyncio
    async def test_callback_connects_pending_channel(self, client, db, user_id):
        channel = await pending_woo_channel(db, user_id)

        resp = await client.post(
            "/api/channels/woocommerce/callback",
            content=f"user_id={channel.id}&consumer_key=ck_live&consumer_secret=cs_live",
            headers={"content-type": "application/x-www-form-urlencoded"},
        )

        assert resp.status_code == 200
        connected = await reload(db, channel.id)
        assert connected.status == "connected"
        assert decrypt_credentials(connected.credentials) == {
            "consumerKey": "ck_live",
            "consumerSecret": "cs_live",
        }

    @pytest.mark.asyncio
    async def test_callback_accepts_json(self, client, db, user_id):
        channel = await pending_woo_channel(db, user_id)

        resp = await client.post(
            "/api/channels/woocommerce/callback",
            content=json.dumps({"user_id": channel.id, "consumer_key": "ck", "consumer_secret": "cs"}),
            headers={"content-type": "application/json"},
        )

        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_callback_only_once(self, client, db, user_id):
        channel = await pending_woo_channel(db, user_id)
        body = f"user_id={channel.id}&consumer_key=ck&consumer_secret=cs"

        first = await client.post("/api/channels/woocommerce/callback", content=body)
        replay = await client.post("/api/channels/woocommerce/callback", content=body.replace("cs", "evil"))

        assert first.status_code == 200
        assert replay.status_code == 404
        stored = decrypt_credentials((await reload(db, channel.id)).credentials)
        assert stored["consumerSecret"] == "cs"

    @pytest.mark.asyncio
    async def test_callback_malformed(self, client, db, user_id):
        channel = await pending_woo_channel(db, user_id)

        resp = await client.post("/api/channels/woocommerce/callback", content=f"user_id={channel.id}")

        assert resp.status_code == 400
        assert (await reload(db, channel.id)).status == "pending"

    @pytest.mark.asyncio
    async def test_callback_unknown_channel(self, client, db_engine):
        resp = await client.post(
            "/api/channels/woocommerce/callback",
            content="user_id=nope&consumer_key=ck&consumer_secret=cs",
        )
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_callback_unknown_type(self, client, db_engine):
        resp = await client.post("/api/channels/etsy/callback", content="user_id=x")
        assert resp.status_code == 404


class TestOwnership:

    @pytest.mark.asyncio
    async def test_other_users_channels_are_invisible(self, db, user_id, woo_channel):
        other = ChannelService(db, "user-2")

        assert await other.list_channels() == []
        with pytest.raises(NotFoundError):
            await other.get_channel(woo_channel.id)
        with pytest.raises(NotFoundError):
            await other.disconnect_channel(woo_channel.id)

    @pytest.mark.asyncio
    async def test_list_channels_over_http(self, client, auth_headers, woo_channel):
        resp = await client.get("/api/channels", headers=auth_headers)

        assert resp.status_code == 200
        [channel] = resp.json()
        assert channel["id"] == woo_channel.id
        assert channel["has_webhooks"] is True
        assert "credentials" not in channel

    @pytest.mark.asyncio
    async def test_requires_auth(self, client, db_engine):
        resp = await client.get("/api/channels")
        assert resp.status_code == 401


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_reset_wipes_credentials(self, db, user_id, woo_channel):
        channel = await ChannelService(db, user_id).reset_channel(woo_channel.id)

        assert channel.status == "pending"
        assert channel.credentials == {}

    @pytest.mark.asyncio
    async def test_disconnect(self, db, user_id, woo_channel):
        channel = await ChannelService(db, user_id).disconnect_channel(woo_channel.id)

        assert channel.status == "disconnected"
        assert channel.credentials == {}

    @pytest.mark.asyncio
    async def test_delete_removes_mappings(self, db, user_id, product, woo_channel):
        service = ChannelService(db, user_id)
        await service.add_mapping(woo_channel.id, MappingCreate(product_id=product.id, external_product_id="11"))

        await service.delete_channel(woo_channel.id)

        assert await reload(db, woo_channel.id) is None
        remaining = await db.execute(select(func.count(ChannelProductMapping.id)))
        assert remaining.scalar_one() == 0

    @pytest.mark.asyncio
    async def test_connect_url(self, db, user_id):
        channel = await pending_woo_channel(db, user_id)

        url = await ChannelService(db, user_id).connect_url(channel.id, "https://ledger.test")

        assert url.startswith("https://shop.example.com/wc-auth/v1/authorize?")
        assert f"user_id={channel.id}" in url


class TestMappings:

    @pytest.mark.asyncio
    async def test_add_list_delete(self, db, user_id, product, woo_channel):
        service = ChannelService(db, user_id)
        mapping = await service.add_mapping(
            woo_channel.id, MappingCreate(product_id=product.id, external_product_id="11", label="Tee")
        )

        assert [m.id for m in await service.list_mappings(woo_channel.id)] == [mapping.id]

        await service.delete_mapping(mapping.id)
        assert await service.list_mappings(woo_channel.id) == []

    @pytest.mark.asyncio
    async def test_duplicate_external_id(self, db, user_id, product, woo_channel):
        service = ChannelService(db, user_id)
        await service.add_mapping(woo_channel.id, MappingCreate(product_id=product.id, external_product_id="11"))

        with pytest.raises(ConflictError):
            await service.add_mapping(woo_channel.id, MappingCreate(product_id=product.id, external_product_id="11"))

    @pytest.mark.asyncio
    async def test_delete_someone_elses_mapping(self, db, user_id, product, woo_channel):
        mapping = await ChannelService(db, user_id).add_mapping(
            woo_channel.id, MappingCreate(product_id=product.id, external_product_id="11")
        )

        with pytest.raises(NotFoundError):
            await ChannelService(db, "user-2").delete_mapping(mapping.id)


class TestStorefrontCalls:

    @pytest.mark.asyncio
    async def test_register_webhooks_stores_encrypted_secret(self, db, user_id):
        channel = Channel(
            user_id=user_id,
            channel_type="woocommerce",
            name="Main Store",
            status="connected",
            store_url="https://shop.example.com",
            credentials=encrypt_credentials({"consumerKey": "ck", "consumerSecret": "cs"}),
        )
        db.add(channel)
        await db.commit()

        delivery_urls = []

        def handler(request):
            delivery_urls.append(json.loads(request.content)["delivery_url"])
            return httpx.Response(201, json={"id": 1})

        adapter = WooCommerceAdapter(transport=httpx.MockTransport(handler), retry_wait=wait_none())
        with patch.object(AdapterRegistry, "get_adapter", return_value=adapter):
            updated = await ChannelService(db, user_id).register_webhooks(channel.id, "https://ledger.test")

        assert delivery_urls == [f"https://ledger.test/api/channels/woocommerce/webhook/{channel.id}"] * 2
        token = updated.credentials["webhookSecret"]
        assert is_encrypted(token)
        assert len(decrypt(token)) == 64
        assert decrypt(updated.credentials["consumerKey"]) == "ck"

    @pytest.mark.asyncio
    async def test_push_stock_to_every_mapping(self, db, user_id, product, woo_channel):
        service = ChannelService(db, user_id)
        await service.add_mapping(woo_channel.id, MappingCreate(product_id=product.id, external_product_id="11"))
        await service.add_mapping(woo_channel.id, MappingCreate(product_id=product.id, external_product_id="12"))

        pushed = {}

        def handler(request):
            pushed[request.url.path.rsplit("/", 1)[-1]] = json.loads(request.content)["stock_quantity"]
            return httpx.Response(200, json={})

        adapter = WooCommerceAdapter(transport=httpx.MockTransport(handler), retry_wait=wait_none())
        with patch.object(AdapterRegistry, "get_adapter", return_value=adapter):
            result = await service.push_stock(woo_channel.id, product.id)

        assert pushed == {"11": 10, "12": 10}
        assert sorted(result.pushed) == ["11", "12"]

    @pytest.mark.asyncio
    async def test_push_unmapped_product(self, db, user_id, product, woo_channel):
        with pytest.raises(NotFoundError):
            await ChannelService(db, user_id).push_stock(woo_channel.id, product.id)

    @pytest.mark.asyncio
    async def test_fetch_requires_connected_channel(self, db, user_id):
        channel = await pending_woo_channel(db, user_id)

        with pytest.raises(ValidationError):
            await ChannelService(db, user_id).fetch_products(channel.id)

    @pytest.mark.asyncio
    async def test_catalog(self, client):
        resp = await client.get("/api/channels/catalog")

        assert resp.status_code == 200
        entries = {e["id"]: e for e in resp.json()}
        assert set(entries) == {"woocommerce", "shopify", "amazon", "custom"}
        assert entries["woocommerce"]["capabilities"]["uses_webhooks"] is True
        assert entries["shopify"]["config_fields"] == []
