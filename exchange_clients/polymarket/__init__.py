"""
Clients for the relay, the remote order book and chain reads.
"""

from .chain_reader import ChainReader
from .clob_client import BookSession, ClobClient
from .models import (
    ApiCredentials,
    BookOrderStatus,
    MarketInfo,
    PlaceOrderResult,
    RelayState,
    RelaySubmission,
    RelayTransactionStatus,
    SafeCall,
)
from .relay_client import RelayClient

__all__ = [
    "ApiCredentials",
    "BookOrderStatus",
    "BookSession",
    "ChainReader",
    "ClobClient",
    "MarketInfo",
    "PlaceOrderResult",
    "RelayClient",
    "RelayState",
    "RelaySubmission",
    "RelayTransactionStatus",
    "SafeCall",
]
