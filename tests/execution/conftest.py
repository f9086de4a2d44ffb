"""Shared fixtures for order execution tests."""

from types import SimpleNamespace

import pytest_asyncio

from custody.credentials import CredentialManager
from custody.models import AccountStatus
from execution.atomic_batch import AtomicBatchExecutor
from execution.order_gateway import OrderGateway
from execution.routing_cache import MarketRoutingCache
from tests.fakes import (
    VALID_SECRET,
    FakeAccountRepository,
    FakeActivityRepository,
    FakeClob,
    FakeOrderRepository,
    make_cipher,
    make_keyring,
)

SAFE = "0x4444444444444444444444444444444444444444"


@pytest_asyncio.fixture
async def trading():
    """A READY account plus gateway and batch executor over in-memory fakes."""
    cipher = make_cipher()
    keyring = make_keyring(cipher)
    accounts = FakeAccountRepository()
    orders = FakeOrderRepository()
    activity = FakeActivityRepository()
    clob = FakeClob()
    routing = MarketRoutingCache(clob)
    credentials = CredentialManager(accounts, activity, clob, keyring, cipher)

    signer, encrypted_key = keyring.generate()
    account = await accounts.create("trader", signer.address, encrypted_key)
    await accounts.mark_deployed(account.id, SAFE)
    await accounts.set_approvals(account.id, True, True, True)
    account = await accounts.set_credentials(
        account.id,
        cipher.encrypt("api-key"),
        cipher.encrypt(VALID_SECRET),
        cipher.encrypt("api-pass"),
        status=AccountStatus.READY,
    )

    gateway = OrderGateway(orders, activity, clob, keyring, credentials, routing)
    batch = AtomicBatchExecutor(gateway, orders, activity, max_batch_size=10)
    return SimpleNamespace(
        account=account,
        accounts=accounts,
        orders=orders,
        activity=activity,
        clob=clob,
        routing=routing,
        gateway=gateway,
        batch=batch,
    )
