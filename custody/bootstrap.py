"""
Explicit wiring of repositories, remote clients and services.
"""

from dataclasses import dataclass
from typing import Optional

from databases import Database

from database.connection import create_database
from database.credential_cipher import CredentialCipher
from database.repositories import AccountRepository, ActivityRepository, OrderRepository
from exchange_clients.polymarket.chain_reader import ChainReader
from exchange_clients.polymarket.clob_client import ClobClient
from exchange_clients.polymarket.relay_client import RelayClient
from execution.atomic_batch import AtomicBatchExecutor
from execution.order_gateway import OrderGateway
from execution.routing_cache import MarketRoutingCache
from trading_config.settings import Settings

from .approvals import ApprovalManager
from .credentials import CredentialManager
from .keys import AccountKeyring
from .provisioner import AccountProvisioner
from .relay_monitor import RelayTransactionMonitor


@dataclass
class Services:
    settings: Settings
    database: Database
    accounts: AccountRepository
    orders: OrderRepository
    activity: ActivityRepository
    relay: RelayClient
    clob: ClobClient
    chain: ChainReader
    provisioner: AccountProvisioner
    approvals: ApprovalManager
    credentials: CredentialManager
    gateway: OrderGateway
    batches: AtomicBatchExecutor
    routing: MarketRoutingCache

    async def start(self) -> None:
        if not self.database.is_connected:
            await self.database.connect()

    async def close(self) -> None:
        for client in (self.relay, self.clob, self.chain):
            await client.close()
        if self.database.is_connected:
            await self.database.disconnect()

    async def __aenter__(self) -> "Services":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


def build_services(settings: Settings, database: Optional[Database] = None) -> Services:
    """Construct every component once; nothing here touches the network."""
    database = database or create_database(settings)
    cipher = CredentialCipher(settings.credential_encryption_key)
    keyring = AccountKeyring(cipher)

    accounts = AccountRepository(database)
    orders = OrderRepository(database)
    activity = ActivityRepository(database)

    relay = RelayClient(settings)
    clob = ClobClient(settings)
    chain = ChainReader(settings)

    monitor = RelayTransactionMonitor(
        relay,
        submit_max_attempts=settings.relay_submit_max_attempts,
        backoff_base_seconds=settings.relay_backoff_base_seconds,
    )
    approvals = ApprovalManager(
        accounts,
        activity,
        monitor,
        chain,
        keyring,
        poll_max_attempts=settings.approval_poll_max_attempts,
        poll_interval_seconds=settings.approval_poll_interval_seconds,
    )
    credentials = CredentialManager(accounts, activity, clob, keyring, cipher)
    provisioner = AccountProvisioner(
        accounts, activity, monitor, chain, keyring, approvals, credentials, settings
    )

    routing = MarketRoutingCache(clob)
    gateway = OrderGateway(orders, activity, clob, keyring, credentials, routing)
    batches = AtomicBatchExecutor(gateway, orders, activity, max_batch_size=settings.max_batch_size)

    return Services(
        settings=settings,
        database=database,
        accounts=accounts,
        orders=orders,
        activity=activity,
        relay=relay,
        clob=clob,
        chain=chain,
        provisioner=provisioner,
        approvals=approvals,
        credentials=credentials,
        gateway=gateway,
        batches=batches,
        routing=routing,
    )
