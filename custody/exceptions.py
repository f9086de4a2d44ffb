"""
Error taxonomy for custody and execution flows.

Every error carries a ``remediation`` (the next action a user should take)
and a ``context`` dict with structured details for logs and callers.
"""

from typing import Any, Dict, List, Optional


class CustodyError(Exception):
    """Base class for all custody/execution errors."""

    default_remediation = "Inspect the logs and retry the operation."

    def __init__(
        self,
        message: str,
        *,
        remediation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.remediation = remediation or self.default_remediation
        self.context = context or {}

    def __str__(self) -> str:
        return f"{self.message} ({self.remediation})"


class ValidationError(CustodyError):
    """Bad input or a precondition not met. Nothing remote was touched."""

    default_remediation = "Fix the request and try again."


class NotFoundError(CustodyError):
    default_remediation = "Check the identifier and try again."


class TransientRemoteError(CustodyError):
    """Network/RPC/relay failure that may succeed on retry."""

    default_remediation = "Retry the operation; the remote service may be temporarily unavailable."


class TerminalRemoteRejection(CustodyError):
    """The remote service explicitly rejected the request."""

    default_remediation = "Review the rejection reason; retrying unchanged will not help."


class OrderRejected(TerminalRemoteRejection):
    """
    Order placement rejected by the order book.

    ``kind`` is one of ``balance``, ``corrupted_credentials``, ``tick_size``
    or ``other`` (see execution.rejections).
    """

    def __init__(self, message: str, *, kind: str = "other", **kwargs):
        super().__init__(message, **kwargs)
        self.kind = kind


class CorruptedCredentials(CustodyError):
    """Stored or freshly issued trading credentials are malformed."""

    default_remediation = "Call reset_credentials to re-issue trading credentials."


class ReconciliationUnresolved(CustodyError):
    """Sources of truth still disagree after bounded retries."""

    default_remediation = "Run sync_state to reconcile with on-chain state."


class DeploymentUnresolved(ReconciliationUnresolved):
    """Deployment could not be confirmed at any candidate address."""

    def __init__(
        self,
        message: str,
        *,
        candidates: List[str],
        builder_configured: bool,
        **kwargs,
    ):
        context = dict(kwargs.pop("context", None) or {})
        context.update({"candidates": candidates, "builder_configured": builder_configured})
        remediation = kwargs.pop("remediation", None)
        if remediation is None:
            remediation = (
                "Wait a few minutes and call recover/sync_state; "
                + ("relay credentials are configured." if builder_configured
                   else "relay builder credentials are NOT configured.")
            )
        super().__init__(message, remediation=remediation, context=context, **kwargs)
        self.candidates = candidates
        self.builder_configured = builder_configured
