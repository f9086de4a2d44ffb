"""
Classification of order-book rejection messages.

The order book reports failures as free text, so classification is a
substring match. Kept here so the heuristics live in one place.
"""

from typing import Optional

BALANCE = "balance"
CORRUPTED_CREDENTIALS = "corrupted_credentials"
TICK_SIZE = "tick_size"
OTHER = "other"

_CORRUPTED_MARKERS = ("invalid character", "base64", "invalid_signature")
_TICK_MARKERS = ("min_tick_size", "tick")
_BALANCE_MARKERS = ("balance", "allowance", "insufficient", "not enough")

REMEDIATIONS = {
    BALANCE: "Fund the Safe with USDC (BUY) or outcome tokens (SELL) and check approvals.",
    CORRUPTED_CREDENTIALS: "Call reset_credentials to re-issue trading credentials.",
    TICK_SIZE: "Round the price to the market's tick size.",
    OTHER: "Review the rejection reason; retrying unchanged will not help.",
}


def classify_rejection(message: Optional[str]) -> str:
    """Map a rejection message to BALANCE, CORRUPTED_CREDENTIALS, TICK_SIZE or OTHER."""
    text = (message or "").lower()
    if any(marker in text for marker in _CORRUPTED_MARKERS):
        return CORRUPTED_CREDENTIALS
    if any(marker in text for marker in _TICK_MARKERS):
        return TICK_SIZE
    if any(marker in text for marker in _BALANCE_MARKERS):
        return BALANCE
    return OTHER


def is_retryable_with_other_routing(kind: str) -> bool:
    """Balance-class rejections may mean the order was signed for the wrong exchange."""
    return kind == BALANCE
