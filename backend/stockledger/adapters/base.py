"""
BaseChannelAdapter: the universal interface for all storefront channels.

Every supported storefront implements this class. The webhook gateway, the
channel service and the callback route never import a storefront-specific
module. They ask the AdapterRegistry for the adapter matching a channel's
type and call methods on it.

Outbound HTTP goes through `_send`, which applies the configured timeout,
maps network failures, 429 and 5xx responses to TransientIOError, and
retries idempotent calls with exponential backoff.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from stockledger.config import get_settings
from stockledger.errors import TransientIOError, ValidationError

logger = logging.getLogger(__name__)


# Credential map keys shared by the callback route and the adapters.
CREDENTIAL_WEBHOOK_SECRET = "webhookSecret"


# ---------------------------------------------------------------------------
# Standardized data models, channel-neutral
# ---------------------------------------------------------------------------

@dataclass
class ConfigField:
    """A field shown in the connect wizard for a channel type."""
    key: str
    label: str
    type: str                       # url, text, password, select
    required: bool = True
    placeholder: Optional[str] = None
    options: List[Dict[str, str]] = field(default_factory=list)


@dataclass
class ChannelCapabilities:
    can_fetch_products: bool = False
    can_push_stock: bool = False
    uses_webhooks: bool = False


@dataclass
class CallbackResult:
    """Parsed body of a storefront's credential-handoff callback."""
    channel_id: str
    credentials: Dict[str, str]


@dataclass
class ExternalProduct:
    """A product as listed by a storefront."""
    id: str
    name: str
    sku: Optional[str] = None
    stock_quantity: Optional[int] = None
    type: str = "simple"            # simple, variable, variation
    parent_id: Optional[str] = None


@dataclass
class StockChange:
    """One stock delta derived from a verified storefront event."""
    external_product_id: str
    quantity: int                   # negative = sale_out, positive = return
    type: str                       # sale_out, return
    reference_id: str               # remote order id, part of the idempotency key
    reference_type: str             # e.g. woocommerce_order, woocommerce_order_cancelled


class BaseChannelAdapter(ABC):
    """
    Abstract base class for all storefront adapters.

    Optional capabilities (product fetch, stock push, webhooks) default to
    raising ValidationError. Adapters that support them override the
    method and advertise it through `capabilities`.
    """

    config_fields: List[ConfigField] = []
    capabilities: ChannelCapabilities = ChannelCapabilities()
    webhook_topics: List[str] = []

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_retries: Optional[int] = None,
        retry_wait: Any = None,
    ):
        self._transport = transport
        self._max_retries = max_retries
        self._retry_wait = retry_wait

    @property
    @abstractmethod
    def channel_type(self) -> str:
        """Unique identifier: 'woocommerce', 'amazon', ..."""
        pass

    # --- Connect flow ---

    @abstractmethod
    def validate_config(self, config: Dict[str, Any]) -> Optional[str]:
        """Return a human-readable error message, or None if the config is valid."""
        pass

    @abstractmethod
    def build_connect_url(self, channel_id: str, config: Dict[str, str], app_base_url: str) -> str:
        """Build the URL the operator is sent to in order to authorize the channel."""
        pass

    def parse_callback(self, raw_body: str) -> Optional[CallbackResult]:
        """Parse a credential-handoff callback. None when the body is unusable."""
        return None

    # --- Catalog & stock ---

    async def fetch_products(
        self,
        store_url: str,
        credentials: Dict[str, str],
        search: Optional[str] = None,
    ) -> List[ExternalProduct]:
        raise ValidationError(f"Product fetch is not supported for {self.channel_type}")

    async def push_stock(
        self,
        store_url: str,
        credentials: Dict[str, str],
        external_product_id: str,
        quantity: int,
    ) -> None:
        """Set the absolute stock level of one external product."""
        raise ValidationError(f"Stock push is not supported for {self.channel_type}")

    # --- Webhooks ---

    async def register_webhooks(
        self,
        store_url: str,
        credentials: Dict[str, str],
        callback_url: str,
    ) -> Dict[str, str]:
        raise ValidationError(f"Webhooks are not supported for {self.channel_type}")

    def process_webhook(
        self,
        raw_body: bytes,
        signature: Optional[str],
        topic: Optional[str],
        secret: str,
    ) -> List[StockChange]:
        """
        Verify a webhook signature and translate the event into stock changes.

        Raises AuthenticationError when the signature does not match or the
        body cannot be parsed. Unknown topics yield an empty list.
        """
        raise ValidationError(f"Webhooks are not supported for {self.channel_type}")

    # --- HTTP plumbing ---

    def _client(self, **kwargs) -> httpx.AsyncClient:
        settings = get_settings()
        return httpx.AsyncClient(
            timeout=settings.STOREFRONT_TIMEOUT_SECONDS,
            transport=self._transport,
            **kwargs,
        )

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        retry: bool = True,
        **kwargs,
    ) -> httpx.Response:
        """
        Issue one request. 429/5xx and network errors raise TransientIOError;
        other non-2xx responses are returned for the caller to inspect.
        """
        attempts = 1
        if retry:
            attempts = self._max_retries or get_settings().STOREFRONT_MAX_RETRIES

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(TransientIOError),
            wait=self._retry_wait or wait_exponential(multiplier=1, min=1, max=10),
            stop=stop_after_attempt(max(attempts, 1)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._send_once(client, method, url, **kwargs)

    async def _send_once(self, client: httpx.AsyncClient, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await client.request(method, url, **kwargs)
        except (httpx.TimeoutException, httpx.NetworkError) as e:
            raise TransientIOError(f"{self.channel_type} request failed: {type(e).__name__}")

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientIOError(
                f"{self.channel_type} responded {response.status_code}",
                upstream_status=response.status_code,
            )
        return response
