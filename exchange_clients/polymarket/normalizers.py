"""
Normalization of raw relay / order-book payloads.

One function per external call site. Each accepts whatever the remote
service returned and produces a single canonical dataclass.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from .models import (
    ApiCredentials,
    BookOrderStatus,
    MarketInfo,
    PlaceOrderResult,
    RelayState,
    RelaySubmission,
    RelayTransactionStatus,
)


_RELAY_STATES = {
    "STATE_NEW": RelayState.PENDING,
    "STATE_EXECUTED": RelayState.PENDING,
    "STATE_MINED": RelayState.MINED,
    "STATE_CONFIRMED": RelayState.CONFIRMED,
    "STATE_FAILED": RelayState.FAILED,
    "STATE_INVALID": RelayState.FAILED,
}


def _decimal(value: Any) -> Decimal:
    if value in (None, ""):
        return Decimal("0")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def _first(payload: Dict[str, Any], *keys: str) -> Optional[Any]:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


def normalize_relay_submission(payload: Optional[Dict[str, Any]]) -> RelaySubmission:
    """Relay ``/submit`` response (deploy or execute)."""
    payload = payload or {}
    return RelaySubmission(
        transaction_id=_first(payload, "transactionID", "transactionId", "id"),
        address=_first(payload, "proxyAddress", "proxyWallet", "address"),
        raw=payload,
    )


def normalize_relay_state(raw_state: Optional[str]) -> RelayState:
    if not raw_state:
        return RelayState.PENDING
    state = str(raw_state).upper()
    if state in _RELAY_STATES:
        return _RELAY_STATES[state]
    if state in RelayState.__members__:
        return RelayState[state]
    return RelayState.PENDING


def normalize_relay_transaction(
    transaction_id: str,
    payload: Any,
) -> RelayTransactionStatus:
    """Relay ``/transaction`` response. The relay answers with a list or a single object."""
    if isinstance(payload, list):
        payload = payload[0] if payload else {}
    if not isinstance(payload, dict):
        payload = {}
    return RelayTransactionStatus(
        transaction_id=transaction_id,
        state=normalize_relay_state(payload.get("state")),
        transaction_hash=_first(payload, "transactionHash", "hash"),
        proxy_address=_first(payload, "proxyAddress", "proxyWallet"),
        error_message=_first(payload, "errorMsg", "error"),
    )


def normalize_api_credentials(payload: Optional[Dict[str, Any]]) -> Optional[ApiCredentials]:
    """``/auth/derive-api-key`` and ``/auth/api-key`` responses. None when incomplete."""
    payload = payload or {}
    api_key = _first(payload, "apiKey", "key", "api_key")
    secret = _first(payload, "secret", "api_secret")
    passphrase = _first(payload, "passphrase", "api_passphrase")
    if not (api_key and secret and passphrase):
        return None
    return ApiCredentials(api_key=str(api_key), api_secret=str(secret), api_passphrase=str(passphrase))


def normalize_place_order(payload: Any) -> PlaceOrderResult:
    """``POST /order`` response. A response without an order id is a failure."""
    if not isinstance(payload, dict):
        return PlaceOrderResult(success=False, error_message=str(payload) if payload else "Empty response")

    remote_id = _first(payload, "orderID", "orderId", "id")
    error = _first(payload, "errorMsg", "error", "message")
    if remote_id and payload.get("success", True) is not False:
        return PlaceOrderResult(
            success=True,
            remote_order_id=str(remote_id),
            status=payload.get("status"),
        )
    return PlaceOrderResult(
        success=False,
        remote_order_id=str(remote_id) if remote_id else None,
        status=payload.get("status"),
        error_message=str(error) if error else "No order ID returned",
    )


def normalize_book_order(remote_order_id: str, payload: Any) -> Optional[BookOrderStatus]:
    """``GET /data/order/{id}`` response. None when the book does not know the order."""
    if not isinstance(payload, dict) or not payload:
        return None
    return BookOrderStatus(
        remote_order_id=str(_first(payload, "id", "orderID") or remote_order_id),
        status=str(payload.get("status") or "UNKNOWN").upper(),
        original_size=_decimal(_first(payload, "original_size", "size")),
        size_matched=_decimal(payload.get("size_matched")),
    )


def normalize_market(condition_id: str, payload: Any) -> MarketInfo:
    """``GET /markets/{condition_id}`` response."""
    payload = payload if isinstance(payload, dict) else {}
    neg_risk = _first(payload, "neg_risk", "negRisk")
    tick = _first(payload, "minimum_tick_size", "tick_size")
    return MarketInfo(
        condition_id=condition_id,
        neg_risk=bool(neg_risk) if neg_risk is not None else False,
        tick_size=_decimal(tick) if tick is not None else None,
    )
