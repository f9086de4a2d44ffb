"""
Tests for CredentialManager and secret validation.
"""

import pytest

from custody.credentials import validate_secret
from custody.exceptions import (
    CorruptedCredentials,
    TerminalRemoteRejection,
    TransientRemoteError,
    ValidationError,
)
from custody.models import AccountStatus
from exchange_clients.polymarket.models import ApiCredentials
from tests.fakes import VALID_SECRET

SAFE = "0x3333333333333333333333333333333333333333"


async def _deployed(stack, approved=False):
    account = await stack.provisioner.register("creds-user")
    account = await stack.accounts.mark_deployed(account.id, SAFE)
    if approved:
        account = await stack.accounts.set_approvals(account.id, True, True, True)
    return account


# =============================================================================
# validate_secret
# =============================================================================


def test_validate_secret_accepts_url_safe_base64():
    assert validate_secret(VALID_SECRET) == VALID_SECRET


def test_validate_secret_normalizes_whitespace_and_alphabet():
    secret = "ab+/ab-_"
    assert validate_secret(f"  {secret}\n") == "ab-_ab-_"


def test_validate_secret_adds_padding():
    assert validate_secret(VALID_SECRET.rstrip("=")) == VALID_SECRET


@pytest.mark.parametrize("bad", ["", "not base64!", "abcde", "ab$d"])
def test_validate_secret_rejects_malformed(bad):
    with pytest.raises(CorruptedCredentials):
        validate_secret(bad)


# =============================================================================
# create / reset / load
# =============================================================================


@pytest.mark.asyncio
async def test_create_falls_back_to_issue_when_derive_fails(stack):
    account = await _deployed(stack)
    stack.clob.derive_error = TransientRemoteError("404 no key")

    account = await stack.credentials.create(account)

    assert stack.clob.derive_calls == 1
    assert stack.clob.create_calls == 1
    assert account.has_credentials
    # approvals still missing, so not READY yet
    assert account.status == AccountStatus.DEPLOYED
    assert stack.accounts.status_history[-2:] == [AccountStatus.SETTING_UP, AccountStatus.DEPLOYED]


@pytest.mark.asyncio
async def test_create_uses_derived_credentials_and_reaches_ready(stack):
    account = await _deployed(stack, approved=True)
    stack.clob.derive_result = ApiCredentials("derived", VALID_SECRET, "phrase")

    account = await stack.credentials.create(account)

    assert stack.clob.create_calls == 0
    assert account.status == AccountStatus.READY
    assert stack.credentials.load(account).api_key == "derived"


@pytest.mark.asyncio
async def test_create_stores_credentials_encrypted(stack):
    account = await _deployed(stack)

    account = await stack.credentials.create(account)

    assert account.encrypted_api_key != "key-1"
    assert stack.cipher.decrypt(account.encrypted_api_key) == "key-1"


@pytest.mark.asyncio
async def test_create_is_noop_when_credentials_exist(stack):
    account = await _deployed(stack)
    account = await stack.credentials.create(account)

    await stack.credentials.create(account)

    assert stack.clob.create_calls == 1


@pytest.mark.asyncio
async def test_create_requires_deployed_safe(stack):
    account = await stack.provisioner.register("creds-user")

    with pytest.raises(ValidationError):
        await stack.credentials.create(account)


@pytest.mark.asyncio
async def test_both_paths_failing_reverts_to_deployed(stack):
    account = await _deployed(stack)
    stack.clob.derive_error = TransientRemoteError("nope")
    stack.clob.create_error = TransientRemoteError("also nope")

    with pytest.raises(TerminalRemoteRejection):
        await stack.credentials.create(account)

    stored = await stack.accounts.get_by_id(account.id)
    assert stored.status == AccountStatus.DEPLOYED
    assert not stored.has_credentials
    assert "API_CREDENTIALS_CREATED" in stack.activity.actions(success=False)


@pytest.mark.asyncio
async def test_malformed_secret_is_never_persisted(stack):
    account = await _deployed(stack)
    stack.clob.create_result = ApiCredentials("key", "bad secret!", "pass")

    with pytest.raises(CorruptedCredentials):
        await stack.credentials.create(account)

    stored = await stack.accounts.get_by_id(account.id)
    assert not stored.has_credentials
    assert stored.status == AccountStatus.DEPLOYED


@pytest.mark.asyncio
async def test_reset_clears_and_reissues(stack):
    account = await _deployed(stack, approved=True)
    account = await stack.credentials.create(account)
    stack.clob.create_result = ApiCredentials("key-2", VALID_SECRET, "pass-2")

    account = await stack.credentials.reset(account)

    assert stack.credentials.load(account).api_key == "key-2"
    assert account.status == AccountStatus.READY
    assert "API_CREDENTIALS_RESET" in stack.activity.actions()


@pytest.mark.asyncio
async def test_load_flags_corrupted_stored_secret(stack):
    account = await _deployed(stack)
    account = await stack.accounts.set_credentials(
        account.id,
        stack.cipher.encrypt("key"),
        stack.cipher.encrypt("%%%corrupted%%%"),
        stack.cipher.encrypt("pass"),
        status=AccountStatus.DEPLOYED,
    )

    with pytest.raises(CorruptedCredentials) as exc_info:
        stack.credentials.load(account)

    assert "reset_credentials" in exc_info.value.remediation
