"""
Single-order submission, cancellation and reconciliation.

Order placement and cancellation are never retried automatically: neither
is idempotent on the book side. The one exception is a balance-class
rejection, which is retried exactly once under the opposite exchange
routing because a market may have been classified wrongly.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from custody.credentials import CredentialManager
from custody.exceptions import (
    CustodyError,
    NotFoundError,
    OrderRejected,
    ReconciliationUnresolved,
    ValidationError,
)
from custody.keys import AccountKeyring
from custody.models import Account, AccountStatus
from database.repositories import ActivityRepository, OrderRepository
from exchange_clients.polymarket.clob_client import BookSession, ClobClient
from exchange_clients.polymarket.models import BookOrderStatus, PlaceOrderResult
from helpers.unified_logger import get_execution_logger

from .models import Order, OrderRequest, OrderStatus, OrderType
from .rejections import REMEDIATIONS, classify_rejection, is_retryable_with_other_routing
from .routing_cache import MarketRoutingCache

MIN_PRICE = Decimal("0.01")
MAX_PRICE = Decimal("0.99")

ATOMIC_BATCH_CANCEL_MESSAGE = "Cancelled due to atomic batch failure"

OPEN_STATUSES = (OrderStatus.SUBMITTING, OrderStatus.LIVE, OrderStatus.MATCHED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def validate_order_request(request: OrderRequest) -> None:
    """
    Raises:
        ValidationError: price outside [0.01, 0.99], non-positive size, or GTD without expiration
    """
    if not request.market_id or not request.token_id:
        raise ValidationError("Order requires a market id and a token id")
    if request.price < MIN_PRICE or request.price > MAX_PRICE:
        raise ValidationError(
            f"Price {request.price} outside [{MIN_PRICE}, {MAX_PRICE}]",
            remediation="Use a probability price between 0.01 and 0.99.",
        )
    if request.size <= 0:
        raise ValidationError(f"Size must be positive, got {request.size}")
    if request.order_type == OrderType.GTD and not request.expiration:
        raise ValidationError(
            "GTD orders require an expiration",
            remediation="Provide a unix-seconds expiration for GTD orders.",
        )


class OrderGateway:
    """Places and cancels orders for READY accounts and reconciles their state."""

    def __init__(
        self,
        orders: OrderRepository,
        activity: ActivityRepository,
        clob: ClobClient,
        keyring: AccountKeyring,
        credentials: CredentialManager,
        routing: MarketRoutingCache,
    ):
        self.orders = orders
        self.activity = activity
        self.clob = clob
        self.keyring = keyring
        self.credentials = credentials
        self.routing = routing
        self.logger = get_execution_logger("order_gateway")

    # ========================================================================
    # PRECONDITIONS
    # ========================================================================

    @staticmethod
    def require_ready(account: Account) -> None:
        if account.status != AccountStatus.READY or not account.safe_address:
            raise ValidationError(
                f"Account {account.id} is {account.status.value}, not READY",
                remediation="Complete setup (deploy, approvals, credentials) before trading.",
            )

    def session_for(self, account: Account) -> BookSession:
        """Authenticated book session with the account's Safe as funder."""
        return BookSession(
            signer=self.keyring.signer_for(account),
            funder_address=account.safe_address,
            credentials=self.credentials.load(account),
        )

    # ========================================================================
    # SUBMISSION
    # ========================================================================

    async def submit(self, account: Account, request: OrderRequest) -> Order:
        """
        Validate, persist and place one order.

        Returns the LIVE (or MATCHED) order. On rejection the order is
        persisted as FAILED and the error is raised with ``order_id`` in
        its context.
        """
        validate_order_request(request)
        self.require_ready(account)
        session = self.session_for(account)

        order = await self.orders.create(account.id, request)
        return await self.place(account, order, session)

    async def place(self, account: Account, order: Order, session: BookSession) -> Order:
        """Place an already persisted PENDING order."""
        order = await self.orders.update(order.id, status=OrderStatus.SUBMITTING)
        neg_risk = await self.routing.resolve(order.market_id)

        try:
            result = await self._place_with_routing_retry(session, order, neg_risk)
        except CustodyError as e:
            e.context.setdefault("order_id", order.id)
            await self.orders.update(order.id, status=OrderStatus.FAILED, status_message=e.message)
            await self.activity.record(
                account.id,
                "ORDER_FAILED",
                resource="order",
                resource_id=order.id,
                details={"market_id": order.market_id, "side": order.side.value},
                success=False,
                error_message=e.message,
            )
            self.logger.error(f"❌ Order {order.id} failed: {e.message}")
            raise

        status = OrderStatus.MATCHED if (result.status or "").lower() == "matched" else OrderStatus.LIVE
        order = await self.orders.update(
            order.id,
            status=status,
            remote_order_id=result.remote_order_id,
            submitted_at=_utcnow(),
            status_message=None,
        )
        await self.activity.record(
            account.id,
            "ORDER_PLACED",
            resource="order",
            resource_id=order.id,
            details={
                "remote_order_id": result.remote_order_id,
                "market_id": order.market_id,
                "side": order.side.value,
                "price": str(order.price),
                "size": str(order.size),
            },
        )
        self.logger.info(
            f"📈 {order.side.value} {order.size} @ {order.price} live as {result.remote_order_id} ({status.value})"
        )
        return order

    async def _place_once(self, session: BookSession, order: Order, neg_risk: bool) -> PlaceOrderResult:
        return await self.clob.place_order(
            session,
            token_id=order.token_id,
            side=order.side.value,
            price=order.price,
            size=order.size,
            order_type=order.order_type.to_book_type(),
            neg_risk=neg_risk,
            expiration=order.expiration if order.order_type == OrderType.GTD else None,
        )

    async def _place_with_routing_retry(
        self, session: BookSession, order: Order, neg_risk: bool
    ) -> PlaceOrderResult:
        result = await self._place_once(session, order, neg_risk)

        if not result.success:
            kind = classify_rejection(result.error_message)
            if is_retryable_with_other_routing(kind):
                self.logger.warning(
                    f"🔀 Balance-class rejection for {order.market_id} with neg_risk={neg_risk}; "
                    f"retrying once with neg_risk={not neg_risk}"
                )
                retry = await self._place_once(session, order, not neg_risk)
                if retry.success and retry.remote_order_id:
                    self.routing.set(order.market_id, not neg_risk)
                    return retry
                result = retry if retry.error_message else result

        if not result.success or not result.remote_order_id:
            message = result.error_message or "Order book returned no order id"
            kind = classify_rejection(message)
            raise OrderRejected(
                f"Order rejected: {message}",
                kind=kind,
                remediation=REMEDIATIONS[kind],
                context={"market_id": order.market_id},
            )
        return result

    # ========================================================================
    # CANCELLATION
    # ========================================================================

    async def _find_owned_order(self, account: Account, order_id: str) -> Order:
        order = await self.orders.get_by_id(order_id)
        if order is None:
            order = await self.orders.get_by_remote_id(order_id)
        if order is None or order.account_id != account.id:
            raise NotFoundError(f"Order {order_id} not found for account {account.id}")
        return order

    async def _read_book(self, session: BookSession, remote_order_id: str) -> Optional[BookOrderStatus]:
        try:
            return await self.clob.get_order(session, remote_order_id)
        except CustodyError as e:
            self.logger.warning(f"⚠️ Could not read order {remote_order_id} from the book: {e.message}")
            return None

    async def cancel(self, account: Account, order_id: str) -> Order:
        """
        Cancel a LIVE order (by local or remote id) and return its true final state.

        The book is read before and after the cancel so an order that filled
        in the meantime ends up FILLED rather than CANCELLED.
        """
        order = await self._find_owned_order(account, order_id)
        if order.status != OrderStatus.LIVE or not order.remote_order_id:
            raise ValidationError(
                f"Order {order.id} is {order.status.value}; only LIVE orders can be cancelled"
            )

        session = self.session_for(account)
        before = await self._read_book(session, order.remote_order_id)
        if before is not None and before.is_filled:
            self.logger.info(f"Order {order.id} already filled; nothing to cancel")
            return await self._finalize(account, order, before, action="ORDER_FILLED")

        cancel_error: Optional[CustodyError] = None
        try:
            await self.clob.cancel_order(session, order.remote_order_id)
        except CustodyError as e:
            # The order may have filled or been cancelled already; the re-read decides
            cancel_error = e
            self.logger.warning(f"⚠️ Cancel request for {order.remote_order_id} failed: {e.message}")

        after = await self._read_book(session, order.remote_order_id)
        if after is None:
            if cancel_error is not None:
                raise ReconciliationUnresolved(
                    f"Cancel of order {order.id} failed and its book state is unknown",
                    context={"order_id": order.id, "remote_order_id": order.remote_order_id},
                ) from cancel_error
            return await self._mark_cancelled(account, order, Decimal("0"))

        if after.is_filled:
            return await self._finalize(account, order, after, action="ORDER_FILLED")
        if not after.is_cancelled and cancel_error is not None:
            raise ReconciliationUnresolved(
                f"Order {order.id} is still {after.status} after a failed cancel",
                remediation="Retry the cancel or run sync_orders.",
                context={"order_id": order.id, "remote_order_id": order.remote_order_id},
            ) from cancel_error
        return await self._mark_cancelled(account, order, after.size_matched)

    async def _mark_cancelled(self, account: Account, order: Order, filled: Decimal) -> Order:
        message = f"Partially filled ({filled}) before cancel" if filled > 0 else None
        order = await self.orders.update(
            order.id,
            status=OrderStatus.CANCELLED,
            filled_size=filled,
            cancelled_at=_utcnow(),
            status_message=message,
        )
        await self.activity.record(
            account.id,
            "ORDER_CANCELLED",
            resource="order",
            resource_id=order.id,
            details={"remote_order_id": order.remote_order_id, "filled_size": str(filled)},
        )
        self.logger.info(f"🛑 Order {order.id} cancelled" + (f" ({message})" if message else ""))
        return order

    async def _finalize(self, account: Account, order: Order, book: BookOrderStatus, action: str) -> Order:
        filled = book.size_matched if book.size_matched > 0 else order.size
        order = await self.orders.update(
            order.id,
            status=OrderStatus.FILLED,
            filled_size=filled,
            filled_at=_utcnow(),
        )
        await self.activity.record(
            account.id,
            action,
            resource="order",
            resource_id=order.id,
            details={"remote_order_id": order.remote_order_id, "filled_size": str(filled)},
        )
        return order

    async def cancel_remote(self, session: BookSession, remote_order_id: str) -> bool:
        """Best-effort cancel used by batch rollback. Never raises remote errors."""
        try:
            return await self.clob.cancel_order(session, remote_order_id)
        except CustodyError as e:
            self.logger.warning(f"⚠️ Rollback cancel of {remote_order_id} failed: {e.message}")
            return False

    async def cancel_all(self, account: Account) -> List[Order]:
        """
        Cancel every open order of the account on the book.

        Orders the book reports as cancelled become CANCELLED; any other
        LIVE order is reconciled individually.
        """
        session = self.session_for(account)
        canceled = set(await self.clob.cancel_all(session))
        live_orders = await self.orders.list_by_account(account.id, [OrderStatus.LIVE])

        updated: List[Order] = []
        for order in live_orders:
            if order.remote_order_id in canceled:
                updated.append(await self.orders.update(
                    order.id, status=OrderStatus.CANCELLED, cancelled_at=_utcnow()
                ))
            else:
                updated.append(await self._sync_with_session(account, order, session))

        await self.activity.record(
            account.id,
            "ORDERS_CANCELLED_ALL",
            resource="order",
            details={"book_cancelled": len(canceled), "local_live": len(live_orders)},
        )
        self.logger.info(f"🛑 Cancel-all: book cancelled {len(canceled)}, {len(live_orders)} local LIVE orders updated")
        return updated

    # ========================================================================
    # RECONCILIATION
    # ========================================================================

    async def sync_order(self, account: Account, order_id: str) -> Order:
        order = await self._find_owned_order(account, order_id)
        return await self._sync_with_session(account, order, self.session_for(account))

    async def _sync_with_session(self, account: Account, order: Order, session: BookSession) -> Order:
        if order.is_terminal or not order.remote_order_id:
            return order

        book = await self.clob.get_order(session, order.remote_order_id)
        if book is None:
            self.logger.warning(f"Order {order.remote_order_id} unknown to the book; leaving {order.status.value}")
            return order

        if book.is_filled:
            return await self._finalize(account, order, book, action="ORDER_FILLED")
        if book.is_cancelled:
            return await self.orders.update(
                order.id,
                status=OrderStatus.CANCELLED,
                filled_size=book.size_matched,
                cancelled_at=order.cancelled_at or _utcnow(),
            )

        fields = {}
        if order.status != OrderStatus.LIVE:
            fields["status"] = OrderStatus.LIVE
        if book.size_matched != order.filled_size:
            fields["filled_size"] = book.size_matched
        if fields:
            order = await self.orders.update(order.id, **fields)
        return order

    async def sync_account_orders(self, account: Account) -> List[Order]:
        """
        Reconcile every open order of the account with the book, and
        re-cancel orders a batch rollback marked CANCELLED that are still
        live on the book.
        """
        session = self.session_for(account)
        results: List[Order] = []

        for order in await self.orders.list_by_account(account.id, OPEN_STATUSES):
            try:
                results.append(await self._sync_with_session(account, order, session))
            except CustodyError as e:
                self.logger.warning(f"⚠️ Sync of order {order.id} failed: {e.message}")
                results.append(order)

        rolled_back = [
            order
            for order in await self.orders.list_by_account(account.id, [OrderStatus.CANCELLED])
            if order.status_message == ATOMIC_BATCH_CANCEL_MESSAGE and order.remote_order_id
        ]
        for order in rolled_back:
            book = await self._read_book(session, order.remote_order_id)
            if book is not None and not book.is_cancelled and not book.is_filled:
                self.logger.warning(f"♻️ Rolled-back order {order.remote_order_id} still live; cancelling")
                await self.cancel_remote(session, order.remote_order_id)
            if book is not None and book.size_matched != order.filled_size:
                results.append(await self.orders.update(order.id, filled_size=book.size_matched))

        return results
