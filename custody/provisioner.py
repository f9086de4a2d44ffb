"""
Account provisioning state machine.

    CREATED -> DEPLOYING -> DEPLOYED -> SETTING_UP -> READY

Failure reverts: DEPLOYING -> CREATED, SETTING_UP -> DEPLOYED. No call
returns with the account left in DEPLOYING or SETTING_UP.

A Safe address is only persisted when it came back from the deployment
call or holds bytecode on-chain; it is never stored speculatively.
"""

import asyncio
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from eth_utils import is_address, to_checksum_address

from database.repositories import AccountRepository, ActivityRepository
from exchange_clients.polymarket.chain_reader import ChainReader
from helpers.unified_logger import get_service_logger, log_stage
from trading_config.settings import Settings

from .address_predictor import predict_safe_address
from .approvals import ApprovalManager
from .credentials import CredentialManager
from .exceptions import (
    CustodyError,
    DeploymentUnresolved,
    NotFoundError,
    TerminalRemoteRejection,
    ValidationError,
)
from .keys import AccountKeyring
from .models import Account, AccountStatus, DeployResult, SyncResult
from .relay_monitor import SUCCESS_STATES, RelayTransactionMonitor

_ADDRESS_RE = re.compile(r"0x[a-fA-F0-9]{40}")
_ALREADY_DEPLOYED_MARKERS = ("already deployed", "already exists")


def extract_address(text: Optional[str]) -> Optional[str]:
    """First hex address mentioned in ``text``, checksummed."""
    if not text:
        return None
    match = _ADDRESS_RE.search(text)
    return to_checksum_address(match.group(0)) if match else None


def is_already_deployed_error(error: Exception) -> bool:
    text = str(getattr(error, "body", "") or "") + " " + str(error)
    text = text.lower()
    return any(marker in text for marker in _ALREADY_DEPLOYED_MARKERS)


class AccountProvisioner:
    """Owns registration, Safe deployment, recovery and full setup."""

    def __init__(
        self,
        accounts: AccountRepository,
        activity: ActivityRepository,
        monitor: RelayTransactionMonitor,
        chain: ChainReader,
        keyring: AccountKeyring,
        approvals: ApprovalManager,
        credentials: CredentialManager,
        settings: Settings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.accounts = accounts
        self.activity = activity
        self.monitor = monitor
        self.chain = chain
        self.keyring = keyring
        self.approvals = approvals
        self.credentials = credentials
        self.settings = settings
        self._sleep = sleep
        self.logger = get_service_logger("provisioner")

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    async def register(self, external_id: str, private_key: Optional[str] = None) -> Account:
        """Create an account in CREATED status with a new or imported owner key."""
        if not external_id or not external_id.strip():
            raise ValidationError("External id is required")
        external_id = external_id.strip()

        if await self.accounts.get_by_external_id(external_id) is not None:
            raise ValidationError(
                f"Account for '{external_id}' already exists",
                remediation="Use the existing account or choose another external id.",
            )

        if private_key:
            signer, encrypted_key = self.keyring.import_key(private_key)
            action, source = "USER_IMPORTED", "private_key_import"
        else:
            signer, encrypted_key = self.keyring.generate()
            action, source = "USER_CREATED", "generated"

        try:
            account = await self.accounts.create(external_id, signer.address, encrypted_key)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        await self.activity.record(
            account.id,
            action,
            resource="account",
            resource_id=account.id,
            details={"eoaAddress": signer.address, "source": source},
        )
        self.logger.info(f"👤 Registered account {external_id} (owner {signer.address})")
        return account

    async def get_account(self, external_id: str) -> Account:
        account = await self.accounts.get_by_external_id(external_id)
        if account is None:
            raise NotFoundError(
                f"No account for '{external_id}'",
                remediation="Register the user first.",
            )
        return account

    # ========================================================================
    # DEPLOYMENT
    # ========================================================================

    async def deploy(self, account: Account) -> DeployResult:
        """
        Deploy the account's Safe through the relay.

        Idempotent: an already deployed account returns its stored address
        without any remote call.

        Raises:
            TerminalRemoteRejection: relay rejected or reported failure
            DeploymentUnresolved: no candidate address holds bytecode
        """
        if account.safe_deployed and account.safe_address:
            return DeployResult(safe_address=account.safe_address, already_deployed=True)

        predicted = predict_safe_address(account.owner_address)
        account = await self.accounts.update_status(account.id, AccountStatus.DEPLOYING)
        self.logger.info(f"🚀 Deploying Safe for {account.owner_address} (predicted {predicted})")

        try:
            address, transaction_id, pre_existing = await self._deploy_and_confirm(account, predicted)
            account = await self.accounts.mark_deployed(account.id, address)
        except Exception as e:
            await self.accounts.update_status(account.id, AccountStatus.CREATED)
            await self.activity.record(
                account.id,
                "SAFE_DEPLOYED",
                resource="safe",
                resource_id=predicted,
                details={"predicted": predicted},
                success=False,
                error_message=str(e),
            )
            self.logger.error(f"❌ Safe deployment failed for {account.owner_address}: {e}")
            raise

        await self.activity.record(
            account.id,
            "SAFE_DEPLOYED",
            resource="safe",
            resource_id=address,
            details={"transaction_id": transaction_id, "pre_existing": pre_existing},
        )
        self.logger.info(f"✅ Safe deployed at {address}")
        return DeployResult(
            safe_address=address,
            already_deployed=pre_existing,
            transaction_id=transaction_id,
        )

    async def _deploy_and_confirm(
        self, account: Account, predicted: str
    ) -> Tuple[str, Optional[str], bool]:
        """Returns ``(address, transaction_id, pre_existing)``."""
        signer = self.keyring.signer_for(account)

        try:
            submission = await self.monitor.deploy(signer)
        except TerminalRemoteRejection as e:
            if not is_already_deployed_error(e):
                raise
            candidate = extract_address(getattr(e, "body", None)) or extract_address(e.message) or predicted
            if await self.chain.has_code(candidate):
                self.logger.info(f"♻️ Relay reports Safe already deployed at {candidate}")
                return to_checksum_address(candidate), None, True
            raise

        known = submission.address
        if known and await self.chain.has_code(known):
            self.logger.info(f"♻️ Relay returned existing Safe {known}")
            return to_checksum_address(known), submission.transaction_id, True

        if submission.transaction_id:
            status = await self.monitor.await_terminal(
                submission.transaction_id,
                success_states=SUCCESS_STATES,
                max_attempts=self.settings.deploy_poll_max_attempts,
                interval_seconds=self.settings.deploy_poll_interval_seconds,
            )
            if status is not None:
                confirmed = status.proxy_address or known
                if confirmed:
                    return to_checksum_address(confirmed), submission.transaction_id, False
                if await self.chain.has_code(predicted):
                    return predicted, submission.transaction_id, False
            else:
                self.logger.warning(
                    f"⏳ Deployment tx {submission.transaction_id} unresolved; checking candidates on-chain"
                )

        address = await self._resolve_ambiguous(known, predicted)
        return address, submission.transaction_id, False

    async def _resolve_ambiguous(self, known: Optional[str], predicted: str) -> str:
        """
        Check candidate addresses for bytecode: the relay-reported address
        (with one delayed re-check), then the predicted one.
        """
        candidates: List[str] = []
        if known:
            known = to_checksum_address(known)
            candidates.append(known)
            if await self.chain.has_code(known):
                return known
            await self._sleep(self.settings.deploy_recheck_delay_seconds)
            if await self.chain.has_code(known):
                return known

        if predicted not in candidates:
            candidates.append(predicted)
            if await self.chain.has_code(predicted):
                return predicted

        raise DeploymentUnresolved(
            "Safe deployment could not be confirmed at any candidate address "
            f"({', '.join(candidates)})",
            candidates=candidates,
            builder_configured=self.settings.builder_configured,
        )

    # ========================================================================
    # RECOVERY
    # ========================================================================

    async def recover(self, account: Account, candidate_address: Optional[str] = None) -> Optional[Account]:
        """
        Adopt a Safe that already exists on-chain. Read-only towards the relay.

        Returns the updated account, or None when no bytecode was found.
        """
        if candidate_address is not None and not is_address(candidate_address):
            raise ValidationError(f"Invalid candidate address: {candidate_address!r}")

        if account.safe_deployed and account.safe_address:
            known = to_checksum_address(account.safe_address)
            if not candidate_address or to_checksum_address(candidate_address) == known:
                return account

        address = to_checksum_address(candidate_address or predict_safe_address(account.owner_address))
        if not await self.chain.has_code(address):
            self.logger.info(f"🔍 No Safe bytecode at {address} for account {account.id}")
            return None

        # recovery only moves pre-deployment statuses forward
        status = account.status
        if status in (AccountStatus.CREATED, AccountStatus.DEPLOYING):
            status = AccountStatus.DEPLOYED
        account = await self.accounts.mark_deployed(account.id, address, status)
        await self.activity.record(
            account.id,
            "SAFE_RECOVERED",
            resource="safe",
            resource_id=address,
            details={"source": "candidate" if candidate_address else "predicted"},
        )
        self.logger.info(f"♻️ Recovered Safe {address} for account {account.id}")
        return account

    # ========================================================================
    # ORCHESTRATION
    # ========================================================================

    async def full_setup(self, account: Account) -> Account:
        """deploy -> approvals -> credentials. Stops at the first failing step."""
        log_stage(self.logger, f"Full setup for {account.external_id}", icon="🛠️")

        log_stage(self.logger, "Deploy Safe", stage_id="1", border="-")
        await self.deploy(account)
        account = await self._reload(account)

        log_stage(self.logger, "Token approvals", stage_id="2", border="-")
        account = await self.approvals.ensure(account)

        log_stage(self.logger, "Trading credentials", stage_id="3", border="-")
        account = await self.credentials.create(account)

        self.logger.info(f"🏁 Setup finished for {account.external_id}: {account.status.value}")
        return account

    async def sync_state(self, account: Account, continue_setup: bool = False) -> SyncResult:
        """
        Reconcile the local record with chain and remote state.

        Recovery is always tried before deployment. Remote failures are
        reported in the result, never raised.
        """
        actions: List[str] = []
        pending: List[str] = []
        errors: List[str] = []

        account = await self._repair_transient_status(account, actions)

        if not account.safe_deployed:
            try:
                recovered = await self.recover(account)
                if recovered is not None:
                    account = recovered
                    actions.append(f"Recovered existing Safe at {account.safe_address}")
            except CustodyError as e:
                errors.append(f"recover: {e}")

        if not account.safe_deployed:
            if continue_setup:
                try:
                    result = await self.deploy(account)
                    actions.append(f"Deployed Safe at {result.safe_address}")
                except CustodyError as e:
                    errors.append(f"deploy: {e}")
                account = await self._reload(account)
            else:
                pending.append("deploy Safe")

        if account.safe_deployed:
            account = await self._sync_approvals(account, continue_setup, actions, pending, errors)
            account = await self._sync_credentials(account, continue_setup, actions, pending, errors)

            if (
                account.approvals_complete
                and account.has_credentials
                and account.status != AccountStatus.READY
            ):
                account = await self.accounts.update_status(account.id, AccountStatus.READY)
                actions.append("Marked account READY")

        await self.activity.record(
            account.id,
            "STATE_SYNCED",
            resource="account",
            resource_id=account.id,
            details={"actions": actions, "pending": pending},
            success=not errors,
            error_message="; ".join(errors) or None,
        )
        return SyncResult(
            safe_address=account.safe_address,
            deployed=account.safe_deployed,
            credentials_created=account.has_credentials,
            approvals_set=account.approvals_complete,
            status=account.status,
            actions=actions,
            pending=pending,
            errors=errors,
        )

    async def _repair_transient_status(self, account: Account, actions: List[str]) -> Account:
        """Put back an account an interrupted process left in DEPLOYING or SETTING_UP."""
        if account.status == AccountStatus.DEPLOYING:
            target = AccountStatus.DEPLOYED if account.safe_deployed else AccountStatus.CREATED
        elif account.status == AccountStatus.SETTING_UP:
            target = AccountStatus.DEPLOYED
        else:
            return account
        actions.append(f"Reset interrupted status {account.status.value} -> {target.value}")
        return await self.accounts.update_status(account.id, target)

    async def _sync_approvals(
        self,
        account: Account,
        continue_setup: bool,
        actions: List[str],
        pending: List[str],
        errors: List[str],
    ) -> Account:
        if account.approvals_complete:
            return account
        try:
            account = await self.approvals.verify(account)
            if account.approvals_complete:
                actions.append("Approvals confirmed on-chain")
                return account
        except CustodyError as e:
            errors.append(f"verify approvals: {e}")

        if not continue_setup:
            pending.append("set approvals")
            return account
        try:
            account = await self.approvals.ensure(account)
            actions.append("Set token approvals")
        except CustodyError as e:
            errors.append(f"approvals: {e}")
            account = await self._reload(account)
        return account

    async def _sync_credentials(
        self,
        account: Account,
        continue_setup: bool,
        actions: List[str],
        pending: List[str],
        errors: List[str],
    ) -> Account:
        if account.has_credentials:
            return account
        if not continue_setup:
            pending.append("create trading credentials")
            return account
        try:
            account = await self.credentials.create(account)
            actions.append("Created trading credentials")
        except CustodyError as e:
            errors.append(f"credentials: {e}")
            account = await self._reload(account)
        return account

    async def get_status(self, account: Account) -> Dict[str, Any]:
        """Snapshot of the stored lifecycle state. No remote calls."""
        account = await self._reload(account)
        return {
            "accountId": account.id,
            "externalId": account.external_id,
            "ownerAddress": account.owner_address,
            "safeAddress": account.safe_address,
            "predictedSafeAddress": predict_safe_address(account.owner_address),
            "status": account.status.value,
            "deployed": account.safe_deployed,
            "approvals": {
                "usdc": account.usdc_approved,
                "ctf": account.ctf_approved,
                "negRisk": account.neg_risk_approved,
            },
            "credentialsCreated": account.has_credentials,
            "ready": account.status == AccountStatus.READY,
        }

    async def _reload(self, account: Account) -> Account:
        fresh = await self.accounts.get_by_id(account.id)
        if fresh is None:
            raise NotFoundError(f"Account {account.id} disappeared")
        return fresh

