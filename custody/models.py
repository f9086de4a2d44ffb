"""
Account data model for the provisioning state machine.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


class AccountStatus(str, Enum):
    CREATED = "CREATED"
    DEPLOYING = "DEPLOYING"
    DEPLOYED = "DEPLOYED"
    SETTING_UP = "SETTING_UP"
    READY = "READY"


@dataclass
class Account:
    """Custodial account record, one per external user."""

    id: str
    external_id: str
    owner_address: str
    encrypted_private_key: str
    status: AccountStatus = AccountStatus.CREATED
    safe_address: Optional[str] = None
    safe_deployed: bool = False
    safe_deployed_at: Optional[datetime] = None
    usdc_approved: bool = False
    ctf_approved: bool = False
    neg_risk_approved: bool = False
    encrypted_api_key: Optional[str] = None
    encrypted_api_secret: Optional[str] = None
    encrypted_api_passphrase: Optional[str] = None
    api_credentials_created_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def has_credentials(self) -> bool:
        return bool(
            self.encrypted_api_key
            and self.encrypted_api_secret
            and self.encrypted_api_passphrase
        )

    @property
    def approvals_complete(self) -> bool:
        return self.usdc_approved and self.ctf_approved and self.neg_risk_approved

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Account":
        data = dict(row)
        return cls(
            id=str(data["id"]),
            external_id=data["external_id"],
            owner_address=data["owner_address"],
            encrypted_private_key=data["encrypted_private_key"],
            status=AccountStatus(data["status"]),
            safe_address=data.get("safe_address"),
            safe_deployed=bool(data.get("safe_deployed")),
            safe_deployed_at=data.get("safe_deployed_at"),
            usdc_approved=bool(data.get("usdc_approved")),
            ctf_approved=bool(data.get("ctf_approved")),
            neg_risk_approved=bool(data.get("neg_risk_approved")),
            encrypted_api_key=data.get("encrypted_api_key"),
            encrypted_api_secret=data.get("encrypted_api_secret"),
            encrypted_api_passphrase=data.get("encrypted_api_passphrase"),
            api_credentials_created_at=data.get("api_credentials_created_at"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


@dataclass
class DeployResult:
    safe_address: str
    already_deployed: bool = False
    transaction_id: Optional[str] = None


@dataclass
class SyncResult:
    """Outcome of sync_state. Never raised; failures are reported in ``actions``."""

    safe_address: Optional[str]
    deployed: bool
    credentials_created: bool
    approvals_set: bool
    status: AccountStatus
    actions: List[str] = field(default_factory=list)
    pending: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        parts = ["; ".join(self.actions) if self.actions else "Account already in sync"]
        if self.pending:
            parts.append("Next: " + ", ".join(self.pending))
        if self.errors:
            parts.append("Errors: " + "; ".join(self.errors))
        return ". ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "safeAddress": self.safe_address,
            "deployed": self.deployed,
            "credentialsCreated": self.credentials_created,
            "approvalsSet": self.approvals_set,
            "status": self.status.value,
            "message": self.message,
            "actions": list(self.actions),
            "pending": list(self.pending),
            "errors": list(self.errors),
        }
