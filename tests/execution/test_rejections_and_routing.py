"""
Tests for rejection classification and the market routing cache.
"""

import pytest

from custody.exceptions import TransientRemoteError
from execution.rejections import (
    BALANCE,
    CORRUPTED_CREDENTIALS,
    OTHER,
    TICK_SIZE,
    classify_rejection,
    is_retryable_with_other_routing,
)
from execution.routing_cache import MarketRoutingCache
from exchange_clients.polymarket.models import MarketInfo
from tests.fakes import FakeClob


@pytest.mark.parametrize(
    "message, kind",
    [
        ("not enough balance / allowance", BALANCE),
        ("Insufficient funds", BALANCE),
        ("illegal base64 data at input byte 12", CORRUPTED_CREDENTIALS),
        ("invalid character '-' in secret", CORRUPTED_CREDENTIALS),
        ("INVALID_ORDER_MIN_TICK_SIZE", TICK_SIZE),
        ("market closed", OTHER),
        (None, OTHER),
    ],
)
def test_classify_rejection(message, kind):
    assert classify_rejection(message) == kind


def test_only_balance_rejections_switch_routing():
    assert is_retryable_with_other_routing(BALANCE)
    assert not is_retryable_with_other_routing(TICK_SIZE)
    assert not is_retryable_with_other_routing(CORRUPTED_CREDENTIALS)
    assert not is_retryable_with_other_routing(OTHER)


@pytest.mark.asyncio
async def test_routing_cache_looks_up_unknown_markets_once():
    clob = FakeClob()
    clob.markets["m"] = MarketInfo("m", neg_risk=True)
    cache = MarketRoutingCache(clob)

    assert await cache.resolve("m") is True
    clob.markets["m"] = MarketInfo("m", neg_risk=False)
    assert await cache.resolve("m") is True
    assert len(cache) == 1


@pytest.mark.asyncio
async def test_routing_cache_defaults_to_standard_when_lookup_fails():
    clob = FakeClob()

    async def failing(condition_id):
        raise TransientRemoteError("down")

    clob.get_market = failing
    cache = MarketRoutingCache(clob)

    assert await cache.resolve("m") is False
    assert cache.get("m") is None


@pytest.mark.asyncio
async def test_routing_cache_without_client_assumes_standard():
    cache = MarketRoutingCache()

    assert await cache.resolve("m") is False
    cache.set("m", True)
    assert await cache.resolve("m") is True
    cache.clear()
    assert cache.get("m") is None
