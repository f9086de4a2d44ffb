"""
Per-market exchange routing classification.
"""

from typing import Dict, Optional

from custody.exceptions import CustodyError
from exchange_clients.polymarket.clob_client import ClobClient
from helpers.unified_logger import get_execution_logger


class MarketRoutingCache:
    """
    Remembers whether a market settles through the neg-risk exchange.

    This is the only state shared between users. Unknown markets are
    looked up once when a client is available and default to standard
    routing otherwise. Entries are corrected when a placement only
    succeeds under the opposite routing.
    """

    def __init__(self, clob: Optional[ClobClient] = None):
        self.clob = clob
        self._neg_risk: Dict[str, bool] = {}
        self.logger = get_execution_logger("routing")

    def get(self, market_id: str) -> Optional[bool]:
        return self._neg_risk.get(market_id)

    def set(self, market_id: str, neg_risk: bool) -> None:
        previous = self._neg_risk.get(market_id)
        self._neg_risk[market_id] = neg_risk
        if previous is not None and previous != neg_risk:
            self.logger.info(f"🔀 Routing for {market_id} corrected: neg_risk={neg_risk}")

    async def resolve(self, market_id: str) -> bool:
        cached = self._neg_risk.get(market_id)
        if cached is not None:
            return cached
        if self.clob is None:
            return False
        try:
            market = await self.clob.get_market(market_id)
        except CustodyError as e:
            self.logger.warning(f"⚠️ Market lookup for {market_id} failed, assuming standard routing: {e.message}")
            return False
        self._neg_risk[market_id] = market.neg_risk
        return market.neg_risk

    def clear(self) -> None:
        self._neg_risk.clear()

    def __len__(self) -> int:
        return len(self._neg_risk)
