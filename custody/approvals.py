"""
Token approvals required before a Safe can trade.

Six (token, spender) approvals are folded into three account flags:

    usdc_approved      USDC.approve(exchange | neg-risk exchange | neg-risk adapter)
    ctf_approved       CTF.setApprovalForAll(exchange)
    neg_risk_approved  CTF.setApprovalForAll(neg-risk exchange | neg-risk adapter)

All outstanding approvals are sent as one relayed batch and the flags are
set together once that batch is confirmed.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from database.repositories import AccountRepository, ActivityRepository
from exchange_clients.polymarket.abi import approve_call, set_approval_for_all_call
from exchange_clients.polymarket.chain_reader import ChainReader
from exchange_clients.polymarket.models import SafeCall
from helpers.unified_logger import get_service_logger
from trading_config.contracts import (
    CTF_ADDRESS,
    CTF_EXCHANGE_ADDRESS,
    MAX_UINT256,
    MIN_APPROVED_ALLOWANCE,
    NEG_RISK_ADAPTER_ADDRESS,
    NEG_RISK_CTF_EXCHANGE_ADDRESS,
    USDC_ADDRESS,
)

from .exceptions import ReconciliationUnresolved, TerminalRemoteRejection, ValidationError
from .keys import AccountKeyring
from .models import Account, AccountStatus
from .relay_monitor import RelayTransactionMonitor


@dataclass(frozen=True)
class ApprovalTarget:
    flag: str
    token: str
    spender: str
    erc20: bool

    def to_call(self) -> SafeCall:
        if self.erc20:
            return approve_call(self.token, self.spender, MAX_UINT256)
        return set_approval_for_all_call(self.token, self.spender, True)


APPROVAL_FLAGS = ("usdc_approved", "ctf_approved", "neg_risk_approved")

APPROVAL_TARGETS = (
    ApprovalTarget("usdc_approved", USDC_ADDRESS, CTF_EXCHANGE_ADDRESS, erc20=True),
    ApprovalTarget("usdc_approved", USDC_ADDRESS, NEG_RISK_CTF_EXCHANGE_ADDRESS, erc20=True),
    ApprovalTarget("usdc_approved", USDC_ADDRESS, NEG_RISK_ADAPTER_ADDRESS, erc20=True),
    ApprovalTarget("ctf_approved", CTF_ADDRESS, CTF_EXCHANGE_ADDRESS, erc20=False),
    ApprovalTarget("neg_risk_approved", CTF_ADDRESS, NEG_RISK_CTF_EXCHANGE_ADDRESS, erc20=False),
    ApprovalTarget("neg_risk_approved", CTF_ADDRESS, NEG_RISK_ADAPTER_ADDRESS, erc20=False),
)


def outstanding_flags(account: Account, force: bool = False) -> List[str]:
    return [flag for flag in APPROVAL_FLAGS if force or not getattr(account, flag)]


def calls_for_flags(flags: List[str]) -> List[SafeCall]:
    return [target.to_call() for target in APPROVAL_TARGETS if target.flag in flags]


class ApprovalManager:
    """Ensures and verifies the trading approvals of a deployed Safe."""

    def __init__(
        self,
        accounts: AccountRepository,
        activity: ActivityRepository,
        monitor: RelayTransactionMonitor,
        chain: ChainReader,
        keyring: AccountKeyring,
        *,
        poll_max_attempts: int = 60,
        poll_interval_seconds: float = 2.0,
    ):
        self.accounts = accounts
        self.activity = activity
        self.monitor = monitor
        self.chain = chain
        self.keyring = keyring
        self.poll_max_attempts = poll_max_attempts
        self.poll_interval_seconds = poll_interval_seconds
        self.logger = get_service_logger("approvals")

    @staticmethod
    def _promoted_status(account: Account, all_approved: bool) -> Optional[AccountStatus]:
        if all_approved and account.has_credentials and account.status == AccountStatus.DEPLOYED:
            return AccountStatus.READY
        return None

    async def ensure(self, account: Account, force: bool = False) -> Account:
        """
        Grant every outstanding approval in one relayed transaction.

        Makes no relay call when nothing is outstanding and ``force`` is false.

        Raises:
            ValidationError: Safe not deployed
            TerminalRemoteRejection: relay rejected or reported failure
            ReconciliationUnresolved: poll ran out and the chain does not show the approvals
        """
        if not account.safe_deployed or not account.safe_address:
            raise ValidationError(
                f"Account {account.id} has no deployed Safe",
                remediation="Deploy the Safe before setting approvals.",
            )

        flags = outstanding_flags(account, force)
        if not flags:
            self.logger.debug(f"All approvals already set for {account.safe_address}")
            return account

        calls = calls_for_flags(flags)
        self.logger.info(
            f"🔐 Setting {len(calls)} approvals ({', '.join(flags)}) for Safe {account.safe_address}"
        )

        transaction_id = None
        try:
            signer = self.keyring.signer_for(account)
            submission = await self.monitor.submit(
                signer, account.safe_address, calls, metadata="Set trading approvals"
            )
            transaction_id = submission.transaction_id
            if not transaction_id:
                raise TerminalRemoteRejection(
                    "Relay accepted the approval batch without a transaction id",
                    context={"safe_address": account.safe_address},
                )
            status = await self.monitor.await_terminal(
                transaction_id,
                max_attempts=self.poll_max_attempts,
                interval_seconds=self.poll_interval_seconds,
            )

            if status is None:
                self.logger.warning(
                    f"⏳ Approval tx {transaction_id} unresolved; reading approvals on-chain"
                )
                account = await self.verify(account)
                if not account.approvals_complete:
                    raise ReconciliationUnresolved(
                        f"Approval transaction {transaction_id} did not confirm "
                        "and the approvals are not visible on-chain",
                        context={"transaction_id": transaction_id},
                    )
            else:
                account = await self.accounts.set_approvals(
                    account.id,
                    usdc_approved=True,
                    ctf_approved=True,
                    neg_risk_approved=True,
                    status=self._promoted_status(account, True),
                )
        except Exception as e:
            await self.activity.record(
                account.id,
                "APPROVALS_SET",
                resource="safe",
                resource_id=account.safe_address,
                details={"flags": flags, "transaction_id": transaction_id},
                success=False,
                error_message=str(e),
            )
            self.logger.error(f"❌ Approvals failed for {account.safe_address}: {e}")
            raise

        await self.activity.record(
            account.id,
            "APPROVALS_SET",
            resource="safe",
            resource_id=account.safe_address,
            details={"flags": flags, "transaction_id": transaction_id, "forced": force},
        )
        self.logger.info(f"✅ Approvals set for Safe {account.safe_address}")
        return account

    async def read_onchain(self, safe_address: str) -> Dict[str, bool]:
        """Read all six approvals and fold them into the three flags."""
        results: Dict[str, List[bool]] = {flag: [] for flag in APPROVAL_FLAGS}
        for target in APPROVAL_TARGETS:
            if target.erc20:
                allowance = await self.chain.get_allowance(target.token, safe_address, target.spender)
                results[target.flag].append(allowance >= MIN_APPROVED_ALLOWANCE)
            else:
                results[target.flag].append(
                    await self.chain.is_approved_for_all(target.token, safe_address, target.spender)
                )
        return {flag: all(values) for flag, values in results.items()}

    async def verify(self, account: Account) -> Account:
        """
        Read approvals back from the chain and persist what is observed.

        Read errors propagate and leave the stored flags untouched.
        """
        if not account.safe_address:
            raise ValidationError(
                f"Account {account.id} has no Safe address",
                remediation="Deploy or recover the Safe first.",
            )

        observed = await self.read_onchain(account.safe_address)
        all_approved = all(observed.values())
        drift = {
            flag: observed[flag]
            for flag in APPROVAL_FLAGS
            if observed[flag] != getattr(account, flag)
        }
        if drift:
            self.logger.warning(f"⚠️ Approval flags drifted for {account.safe_address}: {drift}")

        account = await self.accounts.set_approvals(
            account.id,
            usdc_approved=observed["usdc_approved"],
            ctf_approved=observed["ctf_approved"],
            neg_risk_approved=observed["neg_risk_approved"],
            status=self._promoted_status(account, all_approved),
        )
        await self.activity.record(
            account.id,
            "APPROVALS_VERIFIED",
            resource="safe",
            resource_id=account.safe_address,
            details={"observed": observed, "drift": drift},
        )
        return account
