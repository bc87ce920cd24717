import base64
import hashlib
import hmac
import json
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from tenacity import wait_none

from stockledger.adapters.woocommerce import WooCommerceAdapter
from stockledger.errors import AuthenticationError, TransientIOError, UpstreamError

SECRET = "whsec-woo"
STORE = "https://shop.example.com"
CREDS = {"consumerKey": "ck_test", "consumerSecret": "cs_test"}


def sign(body: bytes, secret: str = SECRET) -> str:
    return base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()


def make_adapter(handler, max_retries=3):
    return WooCommerceAdapter(
        transport=httpx.MockTransport(handler),
        max_retries=max_retries,
        retry_wait=wait_none(),
    )


ORDER = {
    "id": 1042,
    "line_items": [
        {"product_id": 11, "quantity": 2},
        {"product_id": 12, "quantity": 1},
        {"product_id": 13, "quantity": 0},
    ],
}


class TestProcessWebhook:

    def test_order_created_yields_sales(self):
        body = json.dumps(ORDER).encode()
        changes = WooCommerceAdapter().process_webhook(body, sign(body), "order.created", SECRET)

        assert [(c.external_product_id, c.quantity, c.type) for c in changes] == [
            ("11", -2, "sale_out"),
            ("12", -1, "sale_out"),
        ]
        assert all(c.reference_id == "1042" for c in changes)
        assert all(c.reference_type == "woocommerce_order" for c in changes)

    def test_order_cancelled_yields_returns(self):
        body = json.dumps(ORDER).encode()
        changes = WooCommerceAdapter().process_webhook(body, sign(body), "order.cancelled", SECRET)

        assert [(c.quantity, c.type) for c in changes] == [(2, "return"), (1, "return")]
        assert all(c.reference_type == "woocommerce_order_cancelled" for c in changes)

    def test_unknown_topic_is_ignored(self):
        body = b"ping"
        assert WooCommerceAdapter().process_webhook(body, sign(body), "product.updated", SECRET) == []

    def test_missing_signature(self):
        body = json.dumps(ORDER).encode()
        with pytest.raises(AuthenticationError):
            WooCommerceAdapter().process_webhook(body, None, "order.created", SECRET)

    def test_signature_not_base64(self):
        body = json.dumps(ORDER).encode()
        with pytest.raises(AuthenticationError):
            WooCommerceAdapter().process_webhook(body, "!!not base64!!", "order.created", SECRET)

    def test_signature_with_wrong_secret(self):
        body = json.dumps(ORDER).encode()
        with pytest.raises(AuthenticationError):
            WooCommerceAdapter().process_webhook(body, sign(body, "other"), "order.created", SECRET)

    def test_signature_checked_before_topic(self):
        """A forged event is rejected even when its topic would be ignored."""
        with pytest.raises(AuthenticationError):
            WooCommerceAdapter().process_webhook(b"{}", sign(b"[]"), "product.updated", SECRET)

    def test_body_is_verified_byte_for_byte(self):
        body = json.dumps(ORDER).encode()
        reformatted = json.dumps(ORDER, indent=2).encode()
        with pytest.raises(AuthenticationError):
            WooCommerceAdapter().process_webhook(reformatted, sign(body), "order.created", SECRET)

    def test_malformed_body(self):
        body = b"not json"
        with pytest.raises(AuthenticationError):
            WooCommerceAdapter().process_webhook(body, sign(body), "order.created", SECRET)


class TestConnectFlow:

    def test_validate_config(self):
        adapter = WooCommerceAdapter()
        assert adapter.validate_config({}) == "Store URL is required for WooCommerce"
        assert adapter.validate_config({"storeUrl": "shop"}) == "Store URL must be a valid URL"
        assert adapter.validate_config({"storeUrl": "ftp://shop.example.com"}) == \
            "Store URL must start with http:// or https://"
        assert adapter.validate_config({"storeUrl": STORE}) is None

    def test_build_connect_url(self):
        url = WooCommerceAdapter().build_connect_url(
            "chan-1", {"storeUrl": f"{STORE}/shop/"}, "https://ledger.test/"
        )
        parsed = urlparse(url)
        params = {k: v[0] for k, v in parse_qs(parsed.query).items()}

        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == f"{STORE}/wc-auth/v1/authorize"
        assert params["user_id"] == "chan-1"
        assert params["scope"] == "read_write"
        assert params["callback_url"] == "https://ledger.test/api/channels/woocommerce/callback"
        assert params["return_url"] == "https://ledger.test/channels?connected=woocommerce"

    def test_parse_callback_form(self):
        result = WooCommerceAdapter().parse_callback("user_id=chan-1&consumer_key=ck_1&consumer_secret=cs_1")
        assert result.channel_id == "chan-1"
        assert result.credentials == {"consumerKey": "ck_1", "consumerSecret": "cs_1"}

    def test_parse_callback_json(self):
        body = json.dumps({"user_id": "chan-2", "consumer_key": "ck_2", "consumer_secret": "cs_2"})
        result = WooCommerceAdapter().parse_callback(body)
        assert result.channel_id == "chan-2"
        assert result.credentials["consumerSecret"] == "cs_2"

    @pytest.mark.parametrize("body", ["", "user_id=chan-1&consumer_key=ck", "{broken", "[1, 2]"])
    def test_parse_callback_malformed(self, body):
        assert WooCommerceAdapter().parse_callback(body) is None


class TestFetchProducts:

    @pytest.mark.asyncio
    async def test_pages_and_variations(self):
        seen_auth = []

        def handler(request):
            seen_auth.append(request.headers.get("authorization", ""))
            path = request.url.path
            if path == "/wp-json/wc/v3/products":
                if request.url.params["page"] == "1":
                    return httpx.Response(200, headers={"x-wp-totalpages": "2"}, json=[
                        {"id": 1, "name": "Tee", "sku": "TEE", "stock_quantity": 5, "type": "simple"},
                        {"id": 2, "name": "Hoodie", "sku": "", "type": "variable"},
                    ])
                return httpx.Response(200, headers={"x-wp-totalpages": "2"}, json=[
                    {"id": 3, "name": "Cap", "type": "simple"},
                ])
            if path == "/wp-json/wc/v3/products/2/variations":
                return httpx.Response(200, json=[
                    {"id": 21, "sku": "HOOD-M", "stock_quantity": 4,
                     "attributes": [{"name": "Size", "option": "M"}]},
                ])
            return httpx.Response(404)

        products = await make_adapter(handler).fetch_products(STORE, CREDS)

        assert [p.id for p in products] == ["1", "2", "3", "21"]
        assert products[1].type == "variable"
        assert products[1].sku is None
        variation = products[3]
        assert variation.type == "variation"
        assert variation.parent_id == "2"
        assert variation.name == "Hoodie — Size: M"
        assert variation.stock_quantity == 4
        assert all(h.startswith("Basic ") for h in seen_auth)

    @pytest.mark.asyncio
    async def test_variation_failure_is_not_fatal(self):
        def handler(request):
            if request.url.path.endswith("/variations"):
                return httpx.Response(500)
            return httpx.Response(200, json=[{"id": 2, "name": "Hoodie", "type": "variable"}])

        products = await make_adapter(handler, max_retries=2).fetch_products(STORE, CREDS)

        assert [p.id for p in products] == ["2"]

    @pytest.mark.asyncio
    async def test_search_is_forwarded(self):
        searches = []

        def handler(request):
            searches.append(request.url.params.get("search"))
            return httpx.Response(200, json=[])

        assert await make_adapter(handler).fetch_products(STORE, CREDS, search="tee") == []
        assert searches == ["tee"]

    @pytest.mark.asyncio
    async def test_rejected_credentials(self):
        adapter = make_adapter(lambda request: httpx.Response(401))
        with pytest.raises(AuthenticationError):
            await adapter.fetch_products(STORE, CREDS)

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        with pytest.raises(AuthenticationError):
            await WooCommerceAdapter().fetch_products(STORE, {"consumerKey": "ck"})


class TestPushStock:

    @pytest.mark.asyncio
    async def test_sets_absolute_quantity(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"id": 11})

        await make_adapter(handler).push_stock(STORE, CREDS, "11", 7)

        assert requests[0].method == "PUT"
        assert requests[0].url.path == "/wp-json/wc/v3/products/11"
        assert json.loads(requests[0].content) == {"stock_quantity": 7, "manage_stock": True}

    @pytest.mark.asyncio
    async def test_retries_transient_failures(self):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            if calls["n"] == 1:
                return httpx.Response(503)
            return httpx.Response(200, json={})

        await make_adapter(handler).push_stock(STORE, CREDS, "11", 7)
        assert calls["n"] == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            return httpx.Response(429)

        with pytest.raises(TransientIOError):
            await make_adapter(handler, max_retries=3).push_stock(STORE, CREDS, "11", 7)
        assert calls["n"] == 3

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransientIOError):
            await make_adapter(handler, max_retries=2).push_stock(STORE, CREDS, "11", 7)

    @pytest.mark.asyncio
    async def test_client_error_is_upstream_error(self):
        adapter = make_adapter(lambda request: httpx.Response(404, json={"code": "not_found"}))
        with pytest.raises(UpstreamError):
            await adapter.push_stock(STORE, CREDS, "11", 7)


class TestRegisterWebhooks:

    @pytest.mark.asyncio
    async def test_one_subscription_per_topic(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={"id": len(bodies)})

        result = await make_adapter(handler).register_webhooks(
            STORE, CREDS, "https://ledger.test/api/channels/woocommerce/webhook/chan-1"
        )

        assert [b["topic"] for b in bodies] == ["order.created", "order.cancelled"]
        assert {b["secret"] for b in bodies} == {result["secret"]}
        assert len(result["secret"]) == 64
        assert all(b["delivery_url"].endswith("/webhook/chan-1") for b in bodies)

    @pytest.mark.asyncio
    async def test_not_retried(self):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            return httpx.Response(503)

        with pytest.raises(TransientIOError):
            await make_adapter(handler).register_webhooks(STORE, CREDS, "https://ledger.test/hook")
        assert calls["n"] == 1
