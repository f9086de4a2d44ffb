"""
Owner key handling: generation, import and decryption into a signer.
"""

from typing import Tuple

from eth_account import Account as EthAccount
from eth_account.signers.local import LocalAccount

from database.credential_cipher import CredentialCipher

from .exceptions import CorruptedCredentials, ValidationError
from .models import Account


class AccountKeyring:
    """Turns encrypted owner keys into signers. Plaintext keys never leave this class."""

    def __init__(self, cipher: CredentialCipher):
        self.cipher = cipher

    def generate(self) -> Tuple[LocalAccount, str]:
        signer = EthAccount.create()
        return signer, self.cipher.encrypt(signer.key.hex())

    def import_key(self, private_key: str) -> Tuple[LocalAccount, str]:
        key = (private_key or "").strip()
        if key and not key.startswith("0x"):
            key = "0x" + key
        try:
            signer = EthAccount.from_key(key)
        except (ValueError, TypeError) as e:
            raise ValidationError(
                f"Invalid private key: {e}",
                remediation="Provide a 32-byte hex private key.",
            ) from e
        return signer, self.cipher.encrypt(signer.key.hex())

    def signer_for(self, account: Account) -> LocalAccount:
        try:
            signer = EthAccount.from_key(self.cipher.decrypt(account.encrypted_private_key))
        except ValueError as e:
            raise CorruptedCredentials(
                f"Owner key for account {account.id} cannot be decrypted",
                remediation="Check CREDENTIAL_ENCRYPTION_KEY matches the key used at registration.",
                context={"account_id": account.id},
            ) from e
        if signer.address.lower() != account.owner_address.lower():
            raise CorruptedCredentials(
                f"Owner key for account {account.id} does not match its owner address",
                remediation="The stored owner key is inconsistent; re-import the correct key.",
                context={"account_id": account.id},
            )
        return signer
