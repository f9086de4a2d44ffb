"""
Tests for RelayTransactionMonitor: bounded polling and submission backoff.
"""

import pytest
from unittest.mock import AsyncMock, Mock

from custody.exceptions import TerminalRemoteRejection, TransientRemoteError
from custody.relay_monitor import RelayTransactionMonitor
from exchange_clients.polymarket.models import RelayState, RelaySubmission, RelayTransactionStatus
from exchange_clients.polymarket.normalizers import normalize_relay_transaction


def _status(state: RelayState) -> RelayTransactionStatus:
    return RelayTransactionStatus(transaction_id="tx-1", state=state, transaction_hash="0xabc")


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def relay():
    client = Mock()
    client.get_transaction = AsyncMock()
    client.deploy = AsyncMock()
    client.execute = AsyncMock()
    return client


@pytest.fixture
def monitor(relay, sleeps):
    async def fake_sleep(seconds):
        sleeps.append(seconds)

    return RelayTransactionMonitor(relay, submit_max_attempts=3, backoff_base_seconds=1.0, sleep=fake_sleep)


@pytest.mark.asyncio
async def test_returns_status_on_success_state(monitor, relay):
    relay.get_transaction.side_effect = [
        _status(RelayState.PENDING),
        _status(RelayState.MINED),
    ]

    result = await monitor.await_terminal("tx-1", max_attempts=5, interval_seconds=2.0)

    assert result.state == RelayState.MINED
    assert relay.get_transaction.await_count == 2


@pytest.mark.asyncio
async def test_raises_on_failure_state(monitor, relay):
    relay.get_transaction.return_value = _status(RelayState.FAILED)

    with pytest.raises(TerminalRemoteRejection):
        await monitor.await_terminal("tx-1", max_attempts=5, interval_seconds=2.0)


@pytest.mark.asyncio
async def test_returns_none_after_exhausting_attempts(monitor, relay, sleeps):
    relay.get_transaction.return_value = _status(RelayState.PENDING)

    result = await monitor.await_terminal("tx-1", max_attempts=4, interval_seconds=2.0)

    assert result is None
    assert relay.get_transaction.await_count == 4
    # no sleep after the final attempt
    assert sleeps == [2.0, 2.0, 2.0]


@pytest.mark.asyncio
async def test_poll_errors_count_as_attempts(monitor, relay):
    relay.get_transaction.side_effect = [
        TransientRemoteError("timeout"),
        TransientRemoteError("timeout"),
        _status(RelayState.CONFIRMED),
    ]

    result = await monitor.await_terminal("tx-1", max_attempts=3, interval_seconds=1.0)

    assert result.state == RelayState.CONFIRMED


@pytest.mark.asyncio
async def test_non_json_poll_counts_as_pending_attempt(monitor, relay):
    relay.get_transaction.side_effect = [
        normalize_relay_transaction("tx-1", "<html>bad gateway</html>"),
        _status(RelayState.MINED),
    ]

    result = await monitor.await_terminal("tx-1", max_attempts=2, interval_seconds=1.0)

    assert result.state == RelayState.MINED


@pytest.mark.asyncio
async def test_poll_errors_do_not_extend_the_bound(monitor, relay):
    relay.get_transaction.side_effect = TransientRemoteError("down")

    result = await monitor.await_terminal("tx-1", max_attempts=3, interval_seconds=1.0)

    assert result is None
    assert relay.get_transaction.await_count == 3


@pytest.mark.asyncio
async def test_submit_retries_transient_errors_with_backoff(monitor, relay, sleeps):
    relay.execute.side_effect = [
        TransientRemoteError("502"),
        TransientRemoteError("502"),
        RelaySubmission(transaction_id="tx-9"),
    ]

    submission = await monitor.submit(Mock(), "0xSafe", [Mock()])

    assert submission.transaction_id == "tx-9"
    assert relay.execute.await_count == 3
    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_submit_escalates_after_three_transient_errors(monitor, relay):
    relay.deploy.side_effect = TransientRemoteError("502")

    with pytest.raises(TransientRemoteError):
        await monitor.deploy(Mock())

    assert relay.deploy.await_count == 3


@pytest.mark.asyncio
async def test_submit_does_not_retry_terminal_rejections(monitor, relay):
    relay.deploy.side_effect = TerminalRemoteRejection("bad signature")

    with pytest.raises(TerminalRemoteRejection):
        await monitor.deploy(Mock())

    assert relay.deploy.await_count == 1
