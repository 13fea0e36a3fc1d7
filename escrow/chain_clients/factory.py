"""
Factory for creating chain clients.
"""
from functools import lru_cache
from typing import Any, Dict, Type

from django.conf import settings

from .base import ChainClient
from .sui_chain import SuiChainClient


class ChainClientFactory:
    """Factory to create chain clients based on network name."""

    _clients: Dict[str, Type[ChainClient]] = {
        'sui-mainnet': SuiChainClient,
        'sui-testnet': SuiChainClient,
        'sui-devnet': SuiChainClient,
        'sui-localnet': SuiChainClient,
    }

    @classmethod
    def create(cls, network: str, config: Dict[str, Any] = None) -> ChainClient:
        """
        Create a chain client for the specified network.

        Args:
            network: Network name ('sui-testnet', 'sui-mainnet', etc.)
            config: Optional configuration dict (RPC URL, package ids, admin key, etc.)

        Returns:
            ChainClient instance

        Raises:
            ValueError: If network is not supported
        """
        network_lower = network.lower().strip()

        client_class = cls._clients.get(network_lower)
        if client_class is None:
            supported = ', '.join(cls._clients.keys())
            raise ValueError(
                f"Unsupported network: {network}. "
                f"Supported networks: {supported}"
            )

        return client_class(config or {})

    @classmethod
    def register(cls, network: str, client_class: Type[ChainClient]) -> None:
        cls._clients[network.lower().strip()] = client_class

    @classmethod
    def get_supported_networks(cls) -> list[str]:
        return list(cls._clients.keys())


def get_chain_config() -> Dict[str, Any]:
    """Chain client configuration from Django settings."""
    return {
        'network': getattr(settings, 'SUI_NETWORK', 'testnet'),
        'rpc_url': getattr(settings, 'SUI_RPC_URL', ''),
        'package_id': getattr(settings, 'SUI_PACKAGE_ID', ''),
        'dapp_hub_id': getattr(settings, 'SUI_DAPP_HUB_ID', ''),
        'admin_private_key': getattr(settings, 'SUI_ADMIN_PRIVATE_KEY', ''),
        'gas_budget': getattr(settings, 'SUI_GAS_BUDGET', 50_000_000),
        'timeout_seconds': getattr(settings, 'SUI_RPC_TIMEOUT_SECONDS', 30),
        'event_limit': getattr(settings, 'ADMIN_CHAIN_EVENT_LIMIT', 1000),
        'cache_ttl_ms': getattr(settings, 'CHAIN_ORDER_CACHE_TTL_MS', 30000),
        'max_cache_age_ms': getattr(settings, 'CHAIN_ORDER_MAX_CACHE_AGE_MS', 300000),
    }


@lru_cache(maxsize=1)
def get_chain_client() -> ChainClient:
    """Process-wide chain client; its order cache lives as long as the worker."""
    config = get_chain_config()
    return ChainClientFactory.create(f"sui-{config['network']}", config)
