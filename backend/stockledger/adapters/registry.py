"""
AdapterRegistry: resolves the correct storefront adapter for a channel type.

The webhook gateway does not say "call the WooCommerce handler". It says
"get me the adapter for this channel type" and calls process_webhook() on
whatever comes back.

Adding a storefront means one adapter module, one line in get_adapter and
flipping `available` in CHANNEL_CATALOG. Nothing else changes.
"""

from typing import Dict, List, Optional, Type

from stockledger.adapters.base import BaseChannelAdapter


# Every channel type the product knows about, implemented or not.
CHANNEL_CATALOG: List[Dict] = [
    {
        "id": "woocommerce",
        "name": "WooCommerce",
        "description": "Sync orders from your WooCommerce / WordPress store.",
        "auth_type": "oauth",
        "popular": True,
        "available": True,
    },
    {
        "id": "shopify",
        "name": "Shopify",
        "description": "Connect your Shopify storefront to manage orders.",
        "auth_type": "oauth",
        "popular": True,
        "available": False,
    },
    {
        "id": "amazon",
        "name": "Amazon",
        "description": "Pull orders from Amazon Seller Central.",
        "auth_type": "apikey",
        "popular": True,
        "available": True,
    },
    {
        "id": "custom",
        "name": "Custom",
        "description": "Connect any order source via webhook.",
        "auth_type": "apikey",
        "popular": False,
        "available": False,
    },
]

CHANNEL_TYPES = tuple(entry["id"] for entry in CHANNEL_CATALOG)


class AdapterRegistry:
    _REGISTRY: Dict[str, Type[BaseChannelAdapter]] = {}

    @classmethod
    def register(cls, name: str, adapter_cls: Type[BaseChannelAdapter]):
        """Register a new channel adapter."""
        cls._REGISTRY[name] = adapter_cls

    @classmethod
    def get_adapter(cls, channel_type: str, **kwargs) -> Optional[BaseChannelAdapter]:
        """
        Return an instance of the adapter for the given channel type, or
        None when the type is unknown or not implemented yet.
        """
        if channel_type == "woocommerce" and "woocommerce" not in cls._REGISTRY:
            from stockledger.adapters.woocommerce import WooCommerceAdapter
            cls.register("woocommerce", WooCommerceAdapter)

        if channel_type == "amazon" and "amazon" not in cls._REGISTRY:
            from stockledger.adapters.amazon import AmazonAdapter
            cls.register("amazon", AmazonAdapter)

        adapter_class = cls._REGISTRY.get(channel_type)
        if adapter_class is None:
            return None
        return adapter_class(**kwargs)

    @classmethod
    def supported_channels(cls) -> List[str]:
        """Channel types with a working adapter."""
        return [entry["id"] for entry in CHANNEL_CATALOG if entry["available"]]

    @classmethod
    def get_catalog_entry(cls, channel_type: str) -> Optional[Dict]:
        return next((entry for entry in CHANNEL_CATALOG if entry["id"] == channel_type), None)
