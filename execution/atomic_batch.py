"""
All-or-nothing multi-order execution.

Orders are validated together, then persisted and placed strictly one
after another. The first failure stops the batch: every order already
accepted by the book is cancelled (best effort) and every persisted
member is marked CANCELLED. Orders after the failing one are never
persisted or sent.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from custody.exceptions import ValidationError
from custody.models import Account
from database.repositories import ActivityRepository, OrderRepository
from helpers.unified_logger import get_execution_logger, log_stage

from .models import Order, OrderRequest, OrderStatus
from .order_gateway import ATOMIC_BATCH_CANCEL_MESSAGE, OrderGateway, validate_order_request


@dataclass
class BatchResult:
    success: bool
    orders: List[Order] = field(default_factory=list)
    error: Optional[str] = None
    failed_index: Optional[int] = None
    uncancelled_remote_ids: List[str] = field(default_factory=list)

    @property
    def remote_order_ids(self) -> List[str]:
        return [order.remote_order_id for order in self.orders if order.remote_order_id]


class AtomicBatchExecutor:
    """Runs up to ``max_batch_size`` orders through the gateway as one unit."""

    def __init__(
        self,
        gateway: OrderGateway,
        orders: OrderRepository,
        activity: ActivityRepository,
        max_batch_size: int = 10,
    ):
        self.gateway = gateway
        self.orders = orders
        self.activity = activity
        self.max_batch_size = max_batch_size
        self.logger = get_execution_logger("atomic_batch")

    def _validate(self, requests: Sequence[OrderRequest]) -> None:
        if not requests:
            raise ValidationError("Batch must contain at least one order")
        if len(requests) > self.max_batch_size:
            raise ValidationError(
                f"Batch of {len(requests)} orders exceeds the limit of {self.max_batch_size}",
                remediation=f"Split the batch into groups of at most {self.max_batch_size}.",
            )
        for index, request in enumerate(requests):
            try:
                validate_order_request(request)
            except ValidationError as e:
                raise ValidationError(
                    f"Order {index} invalid: {e.message}",
                    remediation=e.remediation,
                    context={"index": index},
                ) from e

    async def execute_batch(self, account: Account, requests: Sequence[OrderRequest]) -> BatchResult:
        """
        Place every order or none.

        Raises:
            ValidationError: bad input or account not READY (no remote call made)
        """
        self._validate(requests)
        self.gateway.require_ready(account)
        session = self.gateway.session_for(account)

        log_stage(self.logger, f"Atomic batch of {len(requests)} orders for {account.external_id}", icon="📦")

        persisted: List[Order] = []
        accepted: List[Order] = []
        failure: Optional[Exception] = None
        failed_index: Optional[int] = None

        for index, request in enumerate(requests):
            try:
                order = await self.orders.create(account.id, request)
                persisted.append(order)
                accepted.append(await self.gateway.place(account, order, session))
            except Exception as e:
                failure = e
                failed_index = index
                self.logger.error(f"❌ Batch order {index} failed: {e}")
                break

        if failure is None:
            await self.activity.record(
                account.id,
                "ATOMIC_BATCH_EXECUTED",
                resource="order",
                details={"order_ids": [order.id for order in accepted]},
            )
            self.logger.info(f"✅ Atomic batch placed {len(accepted)} orders")
            return BatchResult(success=True, orders=accepted)

        return await self._rollback(account, session, persisted, accepted, failure, failed_index)

    async def _rollback(
        self,
        account: Account,
        session,
        persisted: List[Order],
        accepted: List[Order],
        failure: Exception,
        failed_index: Optional[int],
    ) -> BatchResult:
        log_stage(self.logger, "Rolling back atomic batch", icon="↩️", border="-", level="WARNING")

        uncancelled: List[str] = []
        for order in accepted:
            if not await self.gateway.cancel_remote(session, order.remote_order_id):
                uncancelled.append(order.remote_order_id)

        now = datetime.now(timezone.utc).replace(tzinfo=None)
        cancelled: List[Order] = []
        for order in persisted:
            cancelled.append(await self.orders.update(
                order.id,
                status=OrderStatus.CANCELLED,
                status_message=ATOMIC_BATCH_CANCEL_MESSAGE,
                cancelled_at=now,
            ))

        await self.activity.record(
            account.id,
            "ATOMIC_BATCH_FAILED",
            resource="order",
            details={
                "failed_index": failed_index,
                "order_ids": [order.id for order in persisted],
                "uncancelled_remote_ids": uncancelled,
            },
            success=False,
            error_message=str(failure),
        )
        if uncancelled:
            self.logger.warning(
                f"⚠️ {len(uncancelled)} rolled-back orders could not be cancelled; "
                "sync_account_orders will retry them"
            )
        return BatchResult(
            success=False,
            orders=cancelled,
            error=str(failure),
            failed_index=failed_index,
            uncancelled_remote_ids=uncancelled,
        )
