"""Shared fixtures for custody service tests."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest

from custody.approvals import ApprovalManager
from custody.credentials import CredentialManager
from custody.provisioner import AccountProvisioner
from tests.fakes import (
    FakeAccountRepository,
    FakeActivityRepository,
    FakeChain,
    FakeClob,
    make_cipher,
    make_keyring,
)
from trading_config.settings import Settings


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        poly_builder_api_key="builder-key",
        poly_builder_secret="c2VjcmV0",
        poly_builder_passphrase="builder-pass",
        deploy_poll_max_attempts=3,
        deploy_poll_interval_seconds=0,
        deploy_recheck_delay_seconds=5,
        approval_poll_max_attempts=3,
        approval_poll_interval_seconds=0,
    )


@pytest.fixture
def stack(settings):
    """Provisioner, approval and credential managers over in-memory fakes."""
    cipher = make_cipher()
    keyring = make_keyring(cipher)
    accounts = FakeAccountRepository()
    activity = FakeActivityRepository()
    chain = FakeChain()
    clob = FakeClob()
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    monitor = Mock()
    monitor.deploy = AsyncMock()
    monitor.submit = AsyncMock()
    monitor.await_terminal = AsyncMock()

    approvals = ApprovalManager(
        accounts, activity, monitor, chain, keyring,
        poll_max_attempts=settings.approval_poll_max_attempts,
        poll_interval_seconds=settings.approval_poll_interval_seconds,
    )
    credentials = CredentialManager(accounts, activity, clob, keyring, cipher)
    provisioner = AccountProvisioner(
        accounts, activity, monitor, chain, keyring, approvals, credentials, settings,
        sleep=fake_sleep,
    )
    return SimpleNamespace(
        cipher=cipher,
        keyring=keyring,
        accounts=accounts,
        activity=activity,
        chain=chain,
        clob=clob,
        monitor=monitor,
        approvals=approvals,
        credentials=credentials,
        provisioner=provisioner,
        settings=settings,
        sleeps=sleeps,
    )
