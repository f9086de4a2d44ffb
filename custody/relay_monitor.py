"""
Submit/poll primitive for gasless relay transactions.
"""

import asyncio
from typing import Awaitable, Callable, Collection, Optional, Sequence

from eth_account.signers.local import LocalAccount
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from exchange_clients.polymarket.models import (
    RelayState,
    RelaySubmission,
    RelayTransactionStatus,
    SafeCall,
)
from exchange_clients.polymarket.relay_client import RelayClient
from helpers.unified_logger import get_service_logger

from .exceptions import CustodyError, TerminalRemoteRejection, TransientRemoteError


SUCCESS_STATES = frozenset({RelayState.CONFIRMED, RelayState.MINED})


class RelayTransactionMonitor:
    """
    Wraps the relay client with bounded retry on submission and bounded
    polling for a terminal state.

    Submission retries only TransientRemoteError, with exponential backoff
    (base x 2^attempt). Polling never retries beyond ``max_attempts``: a
    poll that errors is logged and counts as an attempt.
    """

    def __init__(
        self,
        relay: RelayClient,
        *,
        submit_max_attempts: int = 3,
        backoff_base_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.relay = relay
        self.submit_max_attempts = submit_max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self._sleep = sleep
        self.logger = get_service_logger("relay_monitor")

    async def _with_backoff(
        self, label: str, operation: Callable[[], Awaitable[RelaySubmission]]
    ) -> RelaySubmission:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.submit_max_attempts),
            wait=wait_exponential(multiplier=self.backoff_base_seconds),
            retry=retry_if_exception_type(TransientRemoteError),
            sleep=self._sleep,
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    self.logger.warning(
                        f"🔁 Retrying relay {label} "
                        f"(attempt {attempt.retry_state.attempt_number}/{self.submit_max_attempts})"
                    )
                return await operation()

    async def deploy(self, signer: LocalAccount) -> RelaySubmission:
        """Request Safe deployment. The relay may answer with an address right away."""
        return await self._with_backoff("deploy", lambda: self.relay.deploy(signer))

    async def submit(
        self,
        signer: LocalAccount,
        safe_address: str,
        calls: Sequence[SafeCall],
        metadata: str = "",
    ) -> RelaySubmission:
        return await self._with_backoff(
            "submit", lambda: self.relay.execute(signer, safe_address, calls, metadata)
        )

    async def await_terminal(
        self,
        transaction_id: str,
        *,
        success_states: Collection[RelayState] = SUCCESS_STATES,
        failure_state: RelayState = RelayState.FAILED,
        max_attempts: int = 60,
        interval_seconds: float = 2.0,
    ) -> Optional[RelayTransactionStatus]:
        """
        Poll until the transaction reaches a terminal state.

        Returns:
            The status on a success state, or None when attempts run out.

        Raises:
            TerminalRemoteRejection: the relay reported ``failure_state``
        """
        for attempt in range(1, max_attempts + 1):
            status: Optional[RelayTransactionStatus] = None
            try:
                status = await self.relay.get_transaction(transaction_id)
            except CustodyError as e:
                self.logger.warning(
                    f"⚠️ Poll {attempt}/{max_attempts} for relay tx {transaction_id} failed: {e.message}"
                )

            if status is not None:
                if status.state in success_states:
                    self.logger.info(
                        f"✅ Relay tx {transaction_id} reached {status.state.value} "
                        f"(hash={status.transaction_hash})"
                    )
                    return status
                if status.state == failure_state:
                    raise TerminalRemoteRejection(
                        f"Relay transaction {transaction_id} failed"
                        + (f": {status.error_message}" if status.error_message else ""),
                        context={"transaction_id": transaction_id, "transaction_hash": status.transaction_hash},
                    )

            if attempt < max_attempts:
                await self._sleep(interval_seconds)

        self.logger.warning(
            f"⏳ Relay tx {transaction_id} not terminal after {max_attempts} polls"
        )
        return None
