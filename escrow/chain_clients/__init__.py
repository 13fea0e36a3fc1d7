"""
Chain clients for the escrow contracts.
"""
from .base import ChainClient, ChainOrder, ChainOrdersPage, TransactionResult
from .factory import ChainClientFactory, get_chain_client
from .sui_chain import SuiChainClient

__all__ = [
    'ChainClient',
    'ChainOrder',
    'ChainOrdersPage',
    'TransactionResult',
    'ChainClientFactory',
    'SuiChainClient',
    'get_chain_client',
]
