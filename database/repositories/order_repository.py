"""
Order Repository - persistence for submitted orders
"""

from typing import Any, Dict, Iterable, List, Optional
from databases import Database

from execution.models import Order, OrderRequest, OrderStatus


class OrderRepository:
    """Repository for Order data access"""

    # Columns an update may touch; anything else is a programming error
    UPDATABLE_FIELDS = frozenset({
        "status",
        "remote_order_id",
        "filled_size",
        "status_message",
        "submitted_at",
        "filled_at",
        "cancelled_at",
    })

    def __init__(self, db: Database):
        self.db = db

    async def create(self, account_id: str, request: OrderRequest) -> Order:
        """Persist a new order in PENDING status."""
        row = await self.db.fetch_one("""
            INSERT INTO orders (
                account_id, market_id, token_id, side, price, size,
                order_type, expiration, status
            )
            VALUES (
                :account_id, :market_id, :token_id, :side, :price, :size,
                :order_type, :expiration, :status
            )
            RETURNING *
        """, {
            "account_id": str(account_id),
            "market_id": request.market_id,
            "token_id": request.token_id,
            "side": request.side.value,
            "price": request.price,
            "size": request.size,
            "order_type": request.order_type.value,
            "expiration": request.expiration,
            "status": OrderStatus.PENDING.value,
        })
        if not row:
            raise ValueError("Failed to create order")
        return Order.from_row(row)

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        row = await self.db.fetch_one(
            "SELECT * FROM orders WHERE id::text = :order_id",
            {"order_id": str(order_id)},
        )
        return Order.from_row(row) if row else None

    async def get_by_remote_id(self, remote_order_id: str) -> Optional[Order]:
        row = await self.db.fetch_one(
            "SELECT * FROM orders WHERE remote_order_id = :remote_order_id",
            {"remote_order_id": remote_order_id},
        )
        return Order.from_row(row) if row else None

    async def list_by_account(
        self,
        account_id: str,
        statuses: Optional[Iterable[OrderStatus]] = None,
    ) -> List[Order]:
        query = "SELECT * FROM orders WHERE account_id = :account_id"
        params: Dict[str, Any] = {"account_id": str(account_id)}

        if statuses:
            placeholders = []
            for i, status in enumerate(statuses):
                key = f"status_{i}"
                placeholders.append(f":{key}")
                params[key] = OrderStatus(status).value
            query += f" AND status IN ({', '.join(placeholders)})"

        query += " ORDER BY created_at ASC"
        rows = await self.db.fetch_all(query, params)
        return [Order.from_row(row) for row in rows]

    async def update(self, order_id: str, **fields) -> Order:
        """Update selected columns and return the refreshed order."""
        unknown = set(fields) - self.UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update order fields: {sorted(unknown)}")
        if not fields:
            existing = await self.get_by_id(order_id)
            if existing is None:
                raise LookupError(f"Order {order_id} not found")
            return existing

        params: Dict[str, Any] = {"order_id": str(order_id)}
        updates = []
        for name, value in fields.items():
            if isinstance(value, OrderStatus):
                value = value.value
            updates.append(f"{name} = :{name}")
            params[name] = value
        updates.append("updated_at = NOW()")

        row = await self.db.fetch_one(f"""
            UPDATE orders
            SET {', '.join(updates)}
            WHERE id::text = :order_id
            RETURNING *
        """, params)
        if not row:
            raise LookupError(f"Order {order_id} not found")
        return Order.from_row(row)
