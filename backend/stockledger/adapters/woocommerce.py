import asyncio
import base64
import binascii
import hashlib
import hmac
import json
import logging
import secrets
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import httpx

from stockledger.adapters.base import (
    BaseChannelAdapter,
    CallbackResult,
    ChannelCapabilities,
    ConfigField,
    ExternalProduct,
    StockChange,
)
from stockledger.errors import AuthenticationError, StockLedgerError, UpstreamError

logger = logging.getLogger(__name__)

APP_NAME = "Stockledger"
PER_PAGE = 100
# Reference type per topic: a sale and its cancellation are distinct events
SALE_REFERENCE_TYPE = "woocommerce_order"
CANCEL_REFERENCE_TYPE = "woocommerce_order_cancelled"


class WooCommerceAdapter(BaseChannelAdapter):
    """
    Adapter for WooCommerce (REST API V3).

    Credentials map keys: consumerKey, consumerSecret and, once webhooks are
    registered, webhookSecret.
    """

    config_fields = [
        ConfigField(key="storeUrl", label="Store URL", type="url", placeholder="https://yourstore.com"),
    ]
    capabilities = ChannelCapabilities(can_fetch_products=True, can_push_stock=True, uses_webhooks=True)
    webhook_topics = ["order.created", "order.cancelled"]

    @property
    def channel_type(self) -> str:
        return "woocommerce"

    def _get_client(self, store_url: str, credentials: Dict[str, str]) -> httpx.AsyncClient:
        """Helper to create an authenticated client."""
        key = credentials.get("consumerKey")
        secret = credentials.get("consumerSecret")

        if not store_url or not key or not secret:
            raise AuthenticationError("WooCommerce credentials missing store URL, key, or secret")

        return self._client(
            base_url=f"{store_url.rstrip('/')}/wp-json/wc/v3/",
            auth=(key, secret),
            headers={"Content-Type": "application/json", "User-Agent": f"{APP_NAME}/1.0"},
        )

    def _raise_for_status(self, resp: httpx.Response, action: str):
        if resp.status_code in (401, 403):
            raise AuthenticationError(f"WooCommerce rejected credentials during {action}")
        if resp.status_code >= 400:
            logger.error(f"WooCommerce {action} failed ({resp.status_code}): {resp.text[:200]}")
            raise UpstreamError(
                f"WooCommerce {action} failed ({resp.status_code})",
                upstream_status=resp.status_code,
            )

    # --- Connect flow ---

    def validate_config(self, config: Dict[str, Any]) -> Optional[str]:
        store_url = config.get("storeUrl")
        if not store_url:
            return "Store URL is required for WooCommerce"
        parsed = urlparse(store_url)
        if not parsed.scheme or not parsed.netloc:
            return "Store URL must be a valid URL"
        if parsed.scheme not in ("http", "https"):
            return "Store URL must start with http:// or https://"
        return None

    def build_connect_url(self, channel_id: str, config: Dict[str, str], app_base_url: str) -> str:
        base = app_base_url.rstrip("/")
        parsed = urlparse(config["storeUrl"])
        store_origin = f"{parsed.scheme}://{parsed.netloc}"
        params = urlencode({
            "app_name": APP_NAME,
            "scope": "read_write",
            "user_id": str(channel_id),
            "return_url": f"{base}/channels?connected=woocommerce",
            "callback_url": f"{base}/api/channels/woocommerce/callback",
        })
        return f"{store_origin}/wc-auth/v1/authorize?{params}"

    def parse_callback(self, raw_body: str) -> Optional[CallbackResult]:
        """
        WooCommerce posts the generated keys form-encoded. Some setups send
        JSON instead, so fall back to that when the form has no user_id.
        """
        form = parse_qs(raw_body or "")
        channel_id = (form.get("user_id") or [""])[0]
        consumer_key = (form.get("consumer_key") or [""])[0]
        consumer_secret = (form.get("consumer_secret") or [""])[0]

        if not channel_id and (raw_body or "").lstrip().startswith("{"):
            try:
                payload = json.loads(raw_body)
            except ValueError:
                payload = None
            if isinstance(payload, dict):
                channel_id = str(payload.get("user_id") or "")
                consumer_key = str(payload.get("consumer_key") or "")
                consumer_secret = str(payload.get("consumer_secret") or "")

        if not channel_id or not consumer_key or not consumer_secret:
            return None
        return CallbackResult(
            channel_id=channel_id,
            credentials={"consumerKey": consumer_key, "consumerSecret": consumer_secret},
        )

    # --- Catalog & stock ---

    async def fetch_products(
        self,
        store_url: str,
        credentials: Dict[str, str],
        search: Optional[str] = None,
    ) -> List[ExternalProduct]:
        results: List[ExternalProduct] = []
        variable_parents = []

        async with self._get_client(store_url, credentials) as client:
            page = 1
            total_pages = 1
            while page <= total_pages:
                params = {"per_page": PER_PAGE, "status": "publish", "page": page}
                if search:
                    params["search"] = search
                resp = await self._send(client, "GET", "products", params=params)
                self._raise_for_status(resp, "fetchProducts")

                total_pages = int(resp.headers.get("x-wp-totalpages") or 1)
                for item in resp.json():
                    product_type = "variable" if item.get("type") == "variable" else "simple"
                    results.append(ExternalProduct(
                        id=str(item["id"]),
                        name=item.get("name") or "",
                        sku=item.get("sku") or None,
                        stock_quantity=item.get("stock_quantity"),
                        type=product_type,
                    ))
                    if product_type == "variable":
                        variable_parents.append(item)
                page += 1

            groups = await asyncio.gather(
                *(self._fetch_variations(client, parent) for parent in variable_parents)
            )

        for variations in groups:
            results.extend(variations)
        return results

    async def _fetch_variations(self, client: httpx.AsyncClient, parent: Dict[str, Any]) -> List[ExternalProduct]:
        """Variations of one variable product. Failures skip the product's variations."""
        parent_id = str(parent["id"])
        parent_name = parent.get("name") or ""
        variations: List[ExternalProduct] = []

        page = 1
        total_pages = 1
        try:
            while page <= total_pages:
                resp = await self._send(
                    client,
                    "GET",
                    f"products/{parent_id}/variations",
                    params={"per_page": PER_PAGE, "status": "publish", "page": page},
                )
                if resp.status_code != 200:
                    break
                total_pages = int(resp.headers.get("x-wp-totalpages") or 1)
                for v in resp.json():
                    attr_label = ", ".join(
                        f"{a.get('name')}: {a.get('option')}" for a in v.get("attributes") or []
                    )
                    variations.append(ExternalProduct(
                        id=str(v["id"]),
                        name=f"{parent_name} — {attr_label}" if attr_label else f"{parent_name} #{v['id']}",
                        sku=v.get("sku") or None,
                        stock_quantity=v.get("stock_quantity"),
                        type="variation",
                        parent_id=parent_id,
                    ))
                page += 1
        except (StockLedgerError, ValueError) as e:
            logger.warning(f"Skipping variations for WooCommerce product {parent_id}: {e}")

        return variations

    async def push_stock(
        self,
        store_url: str,
        credentials: Dict[str, str],
        external_product_id: str,
        quantity: int,
    ) -> None:
        async with self._get_client(store_url, credentials) as client:
            resp = await self._send(
                client,
                "PUT",
                f"products/{external_product_id}",
                json={"stock_quantity": quantity, "manage_stock": True},
            )
            self._raise_for_status(resp, "pushStock")
        logger.info(f"Pushed stock {quantity} to WooCommerce product {external_product_id}")

    # --- Webhooks ---

    async def register_webhooks(
        self,
        store_url: str,
        credentials: Dict[str, str],
        callback_url: str,
    ) -> Dict[str, str]:
        """Create one subscription per topic, all signed with a fresh secret."""
        secret = secrets.token_hex(32)

        async with self._get_client(store_url, credentials) as client:
            for topic in self.webhook_topics:
                resp = await self._send(
                    client,
                    "POST",
                    "webhooks",
                    retry=False,
                    json={
                        "name": f"{APP_NAME} — {topic}",
                        "topic": topic,
                        "delivery_url": callback_url,
                        "secret": secret,
                        "status": "active",
                    },
                )
                self._raise_for_status(resp, f"registerWebhook {topic}")
                logger.info(f"Registered WooCommerce webhook {topic} (id={resp.json().get('id')})")

        return {"secret": secret}

    def process_webhook(
        self,
        raw_body: bytes,
        signature: Optional[str],
        topic: Optional[str],
        secret: str,
    ) -> List[StockChange]:
        # Signature is base64(HMAC-SHA256(body, secret)) over the raw bytes.
        if not signature:
            raise AuthenticationError("Missing webhook signature")
        try:
            provided = base64.b64decode(signature, validate=True)
        except (binascii.Error, ValueError):
            raise AuthenticationError("Invalid webhook signature format")

        expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
        if not hmac.compare_digest(provided, expected):
            raise AuthenticationError("Webhook signature mismatch")

        if topic == "order.created":
            sign, txn_type, reference_type = -1, "sale_out", SALE_REFERENCE_TYPE
        elif topic == "order.cancelled":
            sign, txn_type, reference_type = 1, "return", CANCEL_REFERENCE_TYPE
        else:
            return []

        try:
            order = json.loads(raw_body)
            order_id = str(order["id"])
            line_items = order.get("line_items") or []
        except (ValueError, KeyError, TypeError, AttributeError):
            raise AuthenticationError("Malformed webhook body")

        changes = []
        for item in line_items:
            product_id = item.get("product_id")
            quantity = item.get("quantity") or 0
            if not product_id or quantity <= 0:
                continue
            changes.append(StockChange(
                external_product_id=str(product_id),
                quantity=sign * int(quantity),
                type=txn_type,
                reference_id=order_id,
                reference_type=reference_type,
            ))
        return changes
