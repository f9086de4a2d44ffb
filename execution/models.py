"""
Order data model.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderType(str, Enum):
    GTC = "GTC"
    GTD = "GTD"
    FOK = "FOK"
    FAK = "FAK"
    LIMIT = "LIMIT"
    MARKET = "MARKET"

    def to_book_type(self) -> str:
        """Order type as understood by the order book."""
        if self in (OrderType.LIMIT, OrderType.GTC):
            return "GTC"
        if self is OrderType.MARKET:
            return "FOK"
        return self.value


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    SUBMITTING = "SUBMITTING"
    LIVE = "LIVE"
    MATCHED = "MATCHED"
    FILLED = "FILLED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


TERMINAL_STATUSES = frozenset({OrderStatus.FILLED, OrderStatus.CANCELLED, OrderStatus.FAILED})


@dataclass
class OrderRequest:
    """Caller-supplied order parameters (not yet persisted)."""

    market_id: str
    token_id: str
    side: OrderSide
    price: Decimal
    size: Decimal
    order_type: OrderType = OrderType.GTC
    expiration: Optional[int] = None

    def __post_init__(self):
        self.side = OrderSide(self.side)
        self.order_type = OrderType(self.order_type)
        self.price = Decimal(str(self.price))
        self.size = Decimal(str(self.size))


@dataclass
class Order:
    id: str
    account_id: str
    market_id: str
    token_id: str
    side: OrderSide
    price: Decimal
    size: Decimal
    order_type: OrderType
    status: OrderStatus = OrderStatus.PENDING
    expiration: Optional[int] = None
    remote_order_id: Optional[str] = None
    filled_size: Decimal = Decimal("0")
    status_message: Optional[str] = None
    created_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    filled_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Order":
        data = dict(row)
        return cls(
            id=str(data["id"]),
            account_id=str(data["account_id"]),
            market_id=data["market_id"],
            token_id=data["token_id"],
            side=OrderSide(data["side"]),
            price=Decimal(str(data["price"])),
            size=Decimal(str(data["size"])),
            order_type=OrderType(data["order_type"]),
            status=OrderStatus(data["status"]),
            expiration=data.get("expiration"),
            remote_order_id=data.get("remote_order_id"),
            filled_size=Decimal(str(data.get("filled_size") or 0)),
            status_message=data.get("status_message"),
            created_at=data.get("created_at"),
            submitted_at=data.get("submitted_at"),
            filled_at=data.get("filled_at"),
            cancelled_at=data.get("cancelled_at"),
        )
