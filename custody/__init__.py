"""
Custodial account provisioning.

Services are wired together in ``custody.bootstrap.build_services``.
"""

from .exceptions import (
    CorruptedCredentials,
    CustodyError,
    DeploymentUnresolved,
    NotFoundError,
    OrderRejected,
    ReconciliationUnresolved,
    TerminalRemoteRejection,
    TransientRemoteError,
    ValidationError,
)
from .models import Account, AccountStatus, DeployResult, SyncResult

__all__ = [
    "Account",
    "AccountStatus",
    "CorruptedCredentials",
    "CustodyError",
    "DeployResult",
    "DeploymentUnresolved",
    "NotFoundError",
    "OrderRejected",
    "ReconciliationUnresolved",
    "SyncResult",
    "TerminalRemoteRejection",
    "TransientRemoteError",
    "ValidationError",
]
