"""
Canonical shapes for everything the relay, order book and chain return.

Raw payloads are turned into these dataclasses by exactly one function
per call site (see normalizers.py); nothing downstream inspects raw dicts.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional


class RelayState(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    MINED = "MINED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class SafeCall:
    """One call executed by the Safe (operation 0 = CALL, 1 = DELEGATECALL)."""

    to: str
    data: str
    value: int = 0
    operation: int = 0


@dataclass
class RelaySubmission:
    """Relay answer to a submit: a transaction id to poll, an address, or both."""

    transaction_id: Optional[str] = None
    address: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class RelayTransactionStatus:
    transaction_id: str
    state: RelayState
    transaction_hash: Optional[str] = None
    proxy_address: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class ApiCredentials:
    """Order-book trading credentials (plaintext, never persisted as such)."""

    api_key: str
    api_secret: str
    api_passphrase: str


@dataclass
class PlaceOrderResult:
    success: bool
    remote_order_id: Optional[str] = None
    status: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class BookOrderStatus:
    remote_order_id: str
    status: str
    original_size: Decimal = Decimal("0")
    size_matched: Decimal = Decimal("0")

    @property
    def is_filled(self) -> bool:
        if self.status in ("MATCHED", "FILLED"):
            return True
        return self.original_size > 0 and self.size_matched >= self.original_size

    @property
    def is_cancelled(self) -> bool:
        return self.status in ("CANCELED", "CANCELLED", "CANCELED_MARKET_RESOLVED")


@dataclass
class MarketInfo:
    condition_id: str
    neg_risk: bool = False
    tick_size: Optional[Decimal] = None
