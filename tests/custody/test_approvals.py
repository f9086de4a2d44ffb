"""
Tests for ApprovalManager: batching, flag semantics and on-chain verification.
"""

import pytest
from eth_utils import to_bytes

from custody.approvals import APPROVAL_TARGETS, calls_for_flags, outstanding_flags
from custody.exceptions import ReconciliationUnresolved, TransientRemoteError, ValidationError
from custody.models import AccountStatus
from exchange_clients.polymarket.abi import selector
from exchange_clients.polymarket.models import RelayState, RelaySubmission, RelayTransactionStatus
from trading_config.contracts import MAX_UINT256, MIN_APPROVED_ALLOWANCE

SAFE = "0x2222222222222222222222222222222222222222"


async def _deployed(stack, **flags):
    account = await stack.provisioner.register("trader")
    account = await stack.accounts.mark_deployed(account.id, SAFE)
    if flags:
        account = await stack.accounts.set_approvals(
            account.id,
            usdc_approved=flags.get("usdc", False),
            ctf_approved=flags.get("ctf", False),
            neg_risk_approved=flags.get("neg_risk", False),
        )
    return account


def _confirmed():
    return RelayTransactionStatus(transaction_id="tx-a", state=RelayState.CONFIRMED)


def test_six_approval_targets_cover_three_flags():
    assert len(APPROVAL_TARGETS) == 6
    flags = [t.flag for t in APPROVAL_TARGETS]
    assert flags.count("usdc_approved") == 3
    assert flags.count("ctf_approved") == 1
    assert flags.count("neg_risk_approved") == 2


def test_usdc_calls_approve_max_uint():
    calls = calls_for_flags(["usdc_approved"])

    assert len(calls) == 3
    for call in calls:
        data = to_bytes(hexstr=call.data)
        assert data[:4] == selector("approve(address,uint256)")
        assert int.from_bytes(data[-32:], "big") == MAX_UINT256


def test_outstanding_flags_respects_force(stack):
    from custody.models import Account

    account = Account(
        id="a", external_id="x", owner_address=SAFE, encrypted_private_key="k",
        usdc_approved=True, ctf_approved=False, neg_risk_approved=True,
    )
    assert outstanding_flags(account) == ["ctf_approved"]
    assert outstanding_flags(account, force=True) == [
        "usdc_approved", "ctf_approved", "neg_risk_approved",
    ]


@pytest.mark.asyncio
async def test_ensure_sends_one_batch_and_sets_all_flags(stack):
    account = await _deployed(stack)
    stack.monitor.submit.return_value = RelaySubmission(transaction_id="tx-a")
    stack.monitor.await_terminal.return_value = _confirmed()

    account = await stack.approvals.ensure(account)

    assert stack.monitor.submit.await_count == 1
    calls = stack.monitor.submit.await_args.args[2]
    assert len(calls) == 6
    assert account.usdc_approved and account.ctf_approved and account.neg_risk_approved
    assert "APPROVALS_SET" in stack.activity.actions(success=True)


@pytest.mark.asyncio
async def test_ensure_is_noop_when_everything_is_approved(stack):
    account = await _deployed(stack, usdc=True, ctf=True, neg_risk=True)

    await stack.approvals.ensure(account)

    stack.monitor.submit.assert_not_awaited()


@pytest.mark.asyncio
async def test_ensure_only_sends_outstanding_subset(stack):
    account = await _deployed(stack, usdc=True, ctf=True)
    stack.monitor.submit.return_value = RelaySubmission(transaction_id="tx-a")
    stack.monitor.await_terminal.return_value = _confirmed()

    await stack.approvals.ensure(account)

    calls = stack.monitor.submit.await_args.args[2]
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_forced_ensure_resends_everything(stack):
    account = await _deployed(stack, usdc=True, ctf=True, neg_risk=True)
    stack.monitor.submit.return_value = RelaySubmission(transaction_id="tx-a")
    stack.monitor.await_terminal.return_value = _confirmed()

    await stack.approvals.ensure(account, force=True)

    assert len(stack.monitor.submit.await_args.args[2]) == 6


@pytest.mark.asyncio
async def test_ensure_requires_deployed_safe(stack):
    account = await stack.provisioner.register("trader")

    with pytest.raises(ValidationError):
        await stack.approvals.ensure(account)


@pytest.mark.asyncio
async def test_ensure_promotes_to_ready_when_credentials_exist(stack):
    account = await _deployed(stack)
    account = await stack.accounts.set_credentials(
        account.id, "k", "s", "p", status=AccountStatus.DEPLOYED
    )
    stack.monitor.submit.return_value = RelaySubmission(transaction_id="tx-a")
    stack.monitor.await_terminal.return_value = _confirmed()

    account = await stack.approvals.ensure(account)

    assert account.status == AccountStatus.READY


@pytest.mark.asyncio
async def test_unresolved_poll_checks_chain_before_failing(stack):
    account = await _deployed(stack)
    stack.monitor.submit.return_value = RelaySubmission(transaction_id="tx-a")
    stack.monitor.await_terminal.return_value = None
    stack.chain.allowance = MAX_UINT256
    stack.chain.approved_for_all = True

    account = await stack.approvals.ensure(account)

    assert account.approvals_complete


@pytest.mark.asyncio
async def test_unresolved_poll_without_onchain_approvals_raises(stack):
    account = await _deployed(stack)
    stack.monitor.submit.return_value = RelaySubmission(transaction_id="tx-a")
    stack.monitor.await_terminal.return_value = None

    with pytest.raises(ReconciliationUnresolved):
        await stack.approvals.ensure(account)

    stored = await stack.accounts.get_by_id(account.id)
    assert not stored.approvals_complete
    assert "APPROVALS_SET" in stack.activity.actions(success=False)


@pytest.mark.asyncio
async def test_verify_treats_large_allowance_as_approved(stack):
    account = await _deployed(stack)
    stack.chain.allowance = MIN_APPROVED_ALLOWANCE
    stack.chain.approved_for_all = False

    account = await stack.approvals.verify(account)

    assert account.usdc_approved
    assert not account.ctf_approved
    assert not account.neg_risk_approved


@pytest.mark.asyncio
async def test_verify_corrects_drifted_flags(stack):
    account = await _deployed(stack, usdc=True, ctf=True, neg_risk=True)
    stack.chain.allowance = 5
    stack.chain.approved_for_all = True

    account = await stack.approvals.verify(account)

    assert not account.usdc_approved
    assert account.ctf_approved and account.neg_risk_approved


@pytest.mark.asyncio
async def test_verify_read_error_leaves_flags_untouched(stack):
    account = await _deployed(stack, usdc=True, ctf=True, neg_risk=True)
    stack.chain.error = TransientRemoteError("rpc down")

    with pytest.raises(TransientRemoteError):
        await stack.approvals.verify(account)

    assert (await stack.accounts.get_by_id(account.id)).approvals_complete
