"""
Account Repository - persistence for custodial account records
"""

from typing import List, Optional
from databases import Database

from custody.models import Account, AccountStatus


_RETURNING = "RETURNING *"


class AccountRepository:
    """Repository for Account data access"""

    def __init__(self, db: Database):
        self.db = db

    async def create(
        self,
        external_id: str,
        owner_address: str,
        encrypted_private_key: str,
    ) -> Account:
        """
        Create a new account in CREATED status.

        Raises:
            ValueError: If the external id is already registered
        """
        try:
            row = await self.db.fetch_one(f"""
                INSERT INTO accounts (external_id, owner_address, encrypted_private_key, status)
                VALUES (:external_id, :owner_address, :encrypted_private_key, :status)
                {_RETURNING}
            """, {
                "external_id": external_id,
                "owner_address": owner_address,
                "encrypted_private_key": encrypted_private_key,
                "status": AccountStatus.CREATED.value,
            })
        except Exception as e:
            if 'unique' in str(e).lower() or 'duplicate' in str(e).lower():
                raise ValueError(f"Account for '{external_id}' already exists")
            raise

        if not row:
            raise ValueError("Failed to create account")
        return Account.from_row(row)

    async def get_by_id(self, account_id: str) -> Optional[Account]:
        row = await self.db.fetch_one(
            "SELECT * FROM accounts WHERE id = :account_id",
            {"account_id": str(account_id)},
        )
        return Account.from_row(row) if row else None

    async def get_by_external_id(self, external_id: str) -> Optional[Account]:
        row = await self.db.fetch_one(
            "SELECT * FROM accounts WHERE external_id = :external_id",
            {"external_id": external_id},
        )
        return Account.from_row(row) if row else None

    async def list_all(self) -> List[Account]:
        rows = await self.db.fetch_all("SELECT * FROM accounts ORDER BY created_at DESC")
        return [Account.from_row(row) for row in rows]

    async def update_status(self, account_id: str, status: AccountStatus) -> Account:
        row = await self.db.fetch_one(f"""
            UPDATE accounts
            SET status = :status, updated_at = NOW()
            WHERE id = :account_id
            {_RETURNING}
        """, {"account_id": str(account_id), "status": status.value})
        return self._require(row, account_id)

    async def mark_deployed(
        self,
        account_id: str,
        safe_address: str,
        status: AccountStatus = AccountStatus.DEPLOYED,
    ) -> Account:
        """Persist a verified Safe address. Status defaults to DEPLOYED."""
        row = await self.db.fetch_one(f"""
            UPDATE accounts
            SET safe_address = :safe_address,
                safe_deployed = TRUE,
                safe_deployed_at = COALESCE(safe_deployed_at, NOW()),
                status = :status,
                updated_at = NOW()
            WHERE id = :account_id
            {_RETURNING}
        """, {
            "account_id": str(account_id),
            "safe_address": safe_address,
            "status": status.value,
        })
        return self._require(row, account_id)

    async def set_approvals(
        self,
        account_id: str,
        usdc_approved: bool,
        ctf_approved: bool,
        neg_risk_approved: bool,
        status: Optional[AccountStatus] = None,
    ) -> Account:
        params = {
            "account_id": str(account_id),
            "usdc_approved": usdc_approved,
            "ctf_approved": ctf_approved,
            "neg_risk_approved": neg_risk_approved,
        }
        status_clause = ""
        if status is not None:
            status_clause = "status = :status,"
            params["status"] = status.value

        row = await self.db.fetch_one(f"""
            UPDATE accounts
            SET usdc_approved = :usdc_approved,
                ctf_approved = :ctf_approved,
                neg_risk_approved = :neg_risk_approved,
                {status_clause}
                updated_at = NOW()
            WHERE id = :account_id
            {_RETURNING}
        """, params)
        return self._require(row, account_id)

    async def set_credentials(
        self,
        account_id: str,
        encrypted_api_key: str,
        encrypted_api_secret: str,
        encrypted_api_passphrase: str,
        status: AccountStatus,
    ) -> Account:
        row = await self.db.fetch_one(f"""
            UPDATE accounts
            SET encrypted_api_key = :api_key,
                encrypted_api_secret = :api_secret,
                encrypted_api_passphrase = :api_passphrase,
                api_credentials_created_at = NOW(),
                status = :status,
                updated_at = NOW()
            WHERE id = :account_id
            {_RETURNING}
        """, {
            "account_id": str(account_id),
            "api_key": encrypted_api_key,
            "api_secret": encrypted_api_secret,
            "api_passphrase": encrypted_api_passphrase,
            "status": status.value,
        })
        return self._require(row, account_id)

    async def clear_credentials(self, account_id: str, status: AccountStatus) -> Account:
        row = await self.db.fetch_one(f"""
            UPDATE accounts
            SET encrypted_api_key = NULL,
                encrypted_api_secret = NULL,
                encrypted_api_passphrase = NULL,
                api_credentials_created_at = NULL,
                status = :status,
                updated_at = NOW()
            WHERE id = :account_id
            {_RETURNING}
        """, {"account_id": str(account_id), "status": status.value})
        return self._require(row, account_id)

    @staticmethod
    def _require(row, account_id: str) -> Account:
        if not row:
            raise LookupError(f"Account {account_id} not found")
        return Account.from_row(row)
