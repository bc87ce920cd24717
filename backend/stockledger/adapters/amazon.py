"""
Amazon Selling Partner API adapter.

Auth is API-key style: the operator pastes LWA client credentials and a
refresh token, which are exchanged for a short-lived access token before
every catalog read. Amazon offers no order webhooks here and stock is not
pushed back.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from stockledger.adapters.base import (
    BaseChannelAdapter,
    ChannelCapabilities,
    ConfigField,
    ExternalProduct,
)
from stockledger.config import get_settings
from stockledger.errors import AuthenticationError, UpstreamError

logger = logging.getLogger(__name__)

LWA_TOKEN_URL = "https://api.amazon.com/auth/o2/token"
CATALOG_PAGE_SIZE = 20

REGIONS = [
    {"label": "India / Europe (EU)", "value": "https://sellingpartnerapi-eu.amazon.com"},
    {"label": "North America (US, CA, MX)", "value": "https://sellingpartnerapi-na.amazon.com"},
    {"label": "Far East (JP, SG, AU)", "value": "https://sellingpartnerapi-fe.amazon.com"},
]

MARKETPLACES = [
    {"label": "India (IN)", "value": "A21TJRUUN4KGV"},
    {"label": "United States (US)", "value": "ATVPDKIKX0DER"},
    {"label": "Canada (CA)", "value": "A2EUQ1WTGCTBG2"},
    {"label": "United Kingdom (UK)", "value": "A1F83G8C2ARO7P"},
    {"label": "Australia (AU)", "value": "A39IBJ37TRP1C6"},
    {"label": "United Arab Emirates (AE)", "value": "A2VIGQ35RCS4UG"},
]


class AmazonAdapter(BaseChannelAdapter):

    config_fields = [
        ConfigField(key="storeUrl", label="SP-API Endpoint Region", type="select", options=REGIONS),
        ConfigField(key="marketplaceId", label="Marketplace", type="select", options=MARKETPLACES),
        ConfigField(key="clientId", label="LWA Client ID", type="text"),
        ConfigField(key="clientSecret", label="LWA Client Secret", type="password"),
        ConfigField(key="refreshToken", label="LWA Refresh Token", type="password"),
    ]
    capabilities = ChannelCapabilities(can_fetch_products=True, can_push_stock=False, uses_webhooks=False)
    webhook_topics: List[str] = []

    @property
    def channel_type(self) -> str:
        return "amazon"

    def validate_config(self, config: Dict[str, Any]) -> Optional[str]:
        if not config.get("storeUrl"):
            return "SP-API Endpoint URL is required"
        if not config.get("marketplaceId"):
            return "Marketplace ID is required"
        if not config.get("clientId"):
            return "LWA Client ID is required"
        if not config.get("clientSecret"):
            return "LWA Client Secret is required"
        if not config.get("refreshToken"):
            return "LWA Refresh Token is required"
        parsed = urlparse(config["storeUrl"])
        if not parsed.scheme or not parsed.netloc:
            return "SP-API Endpoint must be a valid URL"
        return None

    def build_connect_url(self, channel_id: str, config: Dict[str, str], app_base_url: str) -> str:
        return f"{app_base_url.rstrip('/')}/channels?connected=amazon"

    async def _get_access_token(self, client, credentials: Dict[str, str]) -> str:
        """Exchange the LWA refresh token for an access token."""
        resp = await self._send(
            client,
            "POST",
            LWA_TOKEN_URL,
            data={
                "grant_type": "refresh_token",
                "refresh_token": credentials["refreshToken"],
                "client_id": credentials["clientId"],
                "client_secret": credentials["clientSecret"],
            },
        )
        if resp.status_code in (400, 401, 403):
            # LWA answers invalid_grant / invalid_client with 400
            logger.error(f"Amazon LWA token refresh rejected ({resp.status_code})")
            raise AuthenticationError(f"Failed to refresh Amazon token: {resp.status_code}")
        if resp.status_code != 200:
            raise UpstreamError(f"Failed to refresh Amazon token: {resp.status_code}")

        access_token = resp.json().get("access_token")
        if not access_token:
            raise AuthenticationError("Amazon token response did not include an access token")
        return access_token

    async def fetch_products(
        self,
        store_url: str,
        credentials: Dict[str, str],
        search: Optional[str] = None,
    ) -> List[ExternalProduct]:
        marketplace_id = credentials.get("marketplaceId")
        endpoint = credentials.get("storeUrl") or store_url
        required = ("marketplaceId", "clientId", "clientSecret", "refreshToken")
        if not endpoint or any(not credentials.get(k) for k in required):
            raise AuthenticationError(
                "Missing required Amazon credentials (marketplaceId, clientId, clientSecret, refreshToken)"
            )

        limit = get_settings().AMAZON_CATALOG_LIMIT
        items: List[Dict[str, Any]] = []

        async with self._client() as client:
            access_token = await self._get_access_token(client, credentials)

            page_token = None
            while True:
                params = {
                    "marketplaceIds": marketplace_id,
                    "includedData": "summaries,identifiers",
                    "pageSize": CATALOG_PAGE_SIZE,
                }
                if search and search.strip():
                    params["keywords"] = search.strip()
                if page_token:
                    params["pageToken"] = page_token

                resp = await self._send(
                    client,
                    "GET",
                    f"{endpoint.rstrip('/')}/catalog/2022-04-01/items",
                    params=params,
                    headers={"Accept": "application/json", "x-amz-access-token": access_token},
                )
                if resp.status_code in (401, 403):
                    raise AuthenticationError(f"Failed to fetch Amazon catalog: {resp.status_code}")
                if resp.status_code != 200:
                    logger.error(f"Amazon catalog read failed ({resp.status_code}): {resp.text[:200]}")
                    raise UpstreamError(f"Failed to fetch Amazon catalog: {resp.status_code}")

                result = resp.json()
                items.extend(result.get("items") or [])
                page_token = (result.get("pagination") or {}).get("nextToken")

                if len(items) >= limit or not page_token:
                    break

        return [self._to_external_product(item, marketplace_id) for item in items[:limit]]

    @staticmethod
    def _to_external_product(item: Dict[str, Any], marketplace_id: str) -> ExternalProduct:
        asin = item.get("asin") or ""

        summaries = item.get("summaries") or []
        summary = next((s for s in summaries if s.get("marketplaceId") == marketplace_id), None)
        if summary is None and summaries:
            summary = summaries[0]

        groups = item.get("identifiers") or []
        group = next((g for g in groups if g.get("marketplaceId") == marketplace_id), None)
        if group is None and groups:
            group = groups[0]
        sku = None
        for identifier in (group or {}).get("identifiers") or []:
            if identifier.get("identifierType") == "SKU":
                sku = identifier.get("identifier")
                break

        return ExternalProduct(
            id=asin,
            name=(summary or {}).get("itemName") or asin,
            sku=sku,
            type="simple",
        )
