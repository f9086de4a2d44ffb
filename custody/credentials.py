"""
Order-book trading credential issuance and recovery.
"""

import base64
import binascii
import re

from database.credential_cipher import CredentialCipher
from database.repositories import AccountRepository, ActivityRepository
from exchange_clients.polymarket.clob_client import ClobClient
from exchange_clients.polymarket.models import ApiCredentials
from helpers.unified_logger import get_service_logger

from .exceptions import CorruptedCredentials, CustodyError, TerminalRemoteRejection, ValidationError
from .keys import AccountKeyring
from .models import Account, AccountStatus

_URLSAFE_B64 = re.compile(r"^[A-Za-z0-9_-]+={0,2}$")


def validate_secret(secret: str) -> str:
    """
    Check a credential secret is well-formed URL-safe base64.

    Whitespace is stripped and the standard alphabet is mapped to the
    URL-safe one. The secret must decode and re-encode to the same text.

    Returns:
        The normalized (URL-safe, padded) secret.

    Raises:
        CorruptedCredentials: the secret is not valid base64
    """
    cleaned = (secret or "").strip().replace("+", "-").replace("/", "_")
    if not cleaned or not _URLSAFE_B64.match(cleaned):
        raise CorruptedCredentials("Credential secret contains invalid characters")

    body = cleaned.rstrip("=")
    padded = body + "=" * ((-len(body)) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError) as e:
        raise CorruptedCredentials(f"Credential secret is not valid base64: {e}") from e

    if not raw or base64.urlsafe_b64encode(raw).decode("ascii") != padded:
        raise CorruptedCredentials("Credential secret does not round-trip through base64")
    return padded


class CredentialManager:
    """
    Issues trading credentials (derive first, create as fallback) and
    persists them encrypted once their encoding has been validated.
    """

    def __init__(
        self,
        accounts: AccountRepository,
        activity: ActivityRepository,
        clob: ClobClient,
        keyring: AccountKeyring,
        cipher: CredentialCipher,
    ):
        self.accounts = accounts
        self.activity = activity
        self.clob = clob
        self.keyring = keyring
        self.cipher = cipher
        self.logger = get_service_logger("credentials")

    async def _derive_or_create(self, account: Account) -> ApiCredentials:
        signer = self.keyring.signer_for(account)

        credentials = None
        try:
            credentials = await self.clob.derive_api_key(signer)
        except CustodyError as e:
            # New accounts have nothing to derive yet
            self.logger.debug(f"Derive failed for {account.owner_address}, creating instead: {e.message}")

        if credentials is not None:
            self.logger.info(f"🔑 Derived existing credentials for {account.owner_address}")
            return credentials

        try:
            credentials = await self.clob.create_api_key(signer)
        except CustodyError as e:
            raise TerminalRemoteRejection(
                f"Could not derive or create trading credentials: {e.message}",
                context={"owner_address": account.owner_address},
            ) from e

        if credentials is None:
            raise TerminalRemoteRejection(
                "Order book returned incomplete trading credentials",
                context={"owner_address": account.owner_address},
            )
        self.logger.info(f"🔑 Created new credentials for {account.owner_address}")
        return credentials

    async def create(self, account: Account) -> Account:
        """
        Issue credentials for a deployed account. No-op if they already exist.

        DEPLOYED -> SETTING_UP -> READY (all approvals set) or DEPLOYED.
        Any failure reverts SETTING_UP -> DEPLOYED.
        """
        if not account.safe_deployed or not account.safe_address:
            raise ValidationError(
                f"Account {account.id} has no deployed Safe",
                remediation="Deploy the Safe before creating trading credentials.",
            )
        if account.has_credentials:
            self.logger.debug(f"Credentials already present for account {account.id}")
            return account

        account = await self.accounts.update_status(account.id, AccountStatus.SETTING_UP)
        try:
            credentials = await self._derive_or_create(account)
            secret = validate_secret(credentials.api_secret)
            next_status = AccountStatus.READY if account.approvals_complete else AccountStatus.DEPLOYED
            account = await self.accounts.set_credentials(
                account.id,
                self.cipher.encrypt(credentials.api_key),
                self.cipher.encrypt(secret),
                self.cipher.encrypt(credentials.api_passphrase),
                status=next_status,
            )
        except Exception as e:
            await self.accounts.update_status(account.id, AccountStatus.DEPLOYED)
            await self.activity.record(
                account.id,
                "API_CREDENTIALS_CREATED",
                resource="api_credentials",
                success=False,
                error_message=str(e),
            )
            self.logger.error(f"❌ Credential setup failed for account {account.id}: {e}")
            raise

        await self.activity.record(
            account.id,
            "API_CREDENTIALS_CREATED",
            resource="api_credentials",
            details={"status": account.status.value},
        )
        self.logger.info(f"✅ Trading credentials stored for account {account.id} ({account.status.value})")
        return account

    async def reset(self, account: Account) -> Account:
        """Discard stored credentials and issue fresh ones."""
        if not account.safe_deployed or not account.safe_address:
            raise ValidationError(
                f"Account {account.id} has no deployed Safe",
                remediation="Deploy the Safe before resetting trading credentials.",
            )

        account = await self.accounts.clear_credentials(account.id, AccountStatus.DEPLOYED)
        await self.activity.record(account.id, "API_CREDENTIALS_RESET", resource="api_credentials")
        self.logger.warning(f"♻️ Credentials cleared for account {account.id}; re-issuing")
        return await self.create(account)

    def load(self, account: Account) -> ApiCredentials:
        """
        Decrypt and re-validate stored credentials for signing.

        Raises:
            ValidationError: account has no credentials
            CorruptedCredentials: stored values are unreadable or malformed
        """
        if not account.has_credentials:
            raise ValidationError(
                f"Account {account.id} has no trading credentials",
                remediation="Run setup to create trading credentials.",
            )
        try:
            api_key = self.cipher.decrypt(account.encrypted_api_key).strip()
            secret = self.cipher.decrypt(account.encrypted_api_secret)
            passphrase = self.cipher.decrypt(account.encrypted_api_passphrase).strip()
        except ValueError as e:
            raise CorruptedCredentials(
                f"Stored credentials for account {account.id} cannot be decrypted",
                context={"account_id": account.id},
            ) from e

        try:
            secret = validate_secret(secret)
        except CorruptedCredentials as e:
            raise CorruptedCredentials(
                f"Stored credential secret for account {account.id} is corrupted",
                context={"account_id": account.id},
            ) from e

        return ApiCredentials(api_key=api_key, api_secret=secret, api_passphrase=passphrase)
