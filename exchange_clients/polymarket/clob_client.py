"""
Remote order-book (CLOB) client.

Level-1 auth (owner EIP-712 signature) is used to derive/issue trading
credentials; level-2 auth (HMAC with those credentials) for everything
that touches orders. The funder (Safe) address is an explicit part of
each authenticated session rather than process-wide state.
"""

import base64
import hashlib
import hmac
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

import aiohttp
from eth_account.messages import encode_typed_data
from eth_account.signers.local import LocalAccount

from helpers.unified_logger import get_exchange_logger
from trading_config.settings import Settings

from .base import BaseHttpClient, RemoteHttpError
from .models import ApiCredentials, BookOrderStatus, MarketInfo, PlaceOrderResult
from .normalizers import (
    normalize_api_credentials,
    normalize_book_order,
    normalize_market,
    normalize_place_order,
)
from .order_signer import build_signed_order

CLOB_AUTH_MESSAGE = "This message attests that I control the given wallet"

CLOB_AUTH_TYPES = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
    ],
    "ClobAuth": [
        {"name": "address", "type": "address"},
        {"name": "timestamp", "type": "string"},
        {"name": "nonce", "type": "uint256"},
        {"name": "message", "type": "string"},
    ],
}


def _b64decode_secret(secret: str) -> bytes:
    padded = secret + "=" * ((-len(secret)) % 4)
    return base64.urlsafe_b64decode(padded)


@dataclass
class BookSession:
    """Authenticated order-book context for one account."""

    signer: LocalAccount
    funder_address: str
    credentials: ApiCredentials

    @property
    def signer_address(self) -> str:
        return self.signer.address


class ClobClient(BaseHttpClient):
    """Client for the remote order-book service."""

    def __init__(self, settings: Settings, session: Optional[aiohttp.ClientSession] = None):
        super().__init__(settings.clob_api_url, timeout=settings.http_timeout_seconds, session=session)
        self.chain_id = settings.chain_id
        self.logger = get_exchange_logger("clob")

    # ========================================================================
    # AUTH
    # ========================================================================

    def _l1_headers(self, signer: LocalAccount, nonce: int = 0) -> Dict[str, str]:
        timestamp = str(int(time.time()))
        signable = encode_typed_data(full_message={
            "types": CLOB_AUTH_TYPES,
            "primaryType": "ClobAuth",
            "domain": {"name": "ClobAuthDomain", "version": "1", "chainId": self.chain_id},
            "message": {
                "address": signer.address,
                "timestamp": timestamp,
                "nonce": nonce,
                "message": CLOB_AUTH_MESSAGE,
            },
        })
        signature = signer.sign_message(signable).signature.hex()
        if not signature.startswith("0x"):
            signature = "0x" + signature
        return {
            "POLY_ADDRESS": signer.address,
            "POLY_SIGNATURE": signature,
            "POLY_TIMESTAMP": timestamp,
            "POLY_NONCE": str(nonce),
        }

    @staticmethod
    def _l2_headers(session: BookSession, method: str, path: str, body: str = "") -> Dict[str, str]:
        timestamp = str(int(time.time()))
        message = f"{timestamp}{method.upper()}{path}{body}"
        digest = hmac.new(
            _b64decode_secret(session.credentials.api_secret),
            message.encode("utf-8"),
            hashlib.sha256,
        ).digest()
        return {
            "POLY_ADDRESS": session.signer_address,
            "POLY_SIGNATURE": base64.urlsafe_b64encode(digest).decode("utf-8"),
            "POLY_TIMESTAMP": timestamp,
            "POLY_API_KEY": session.credentials.api_key,
            "POLY_PASSPHRASE": session.credentials.api_passphrase,
        }

    # ========================================================================
    # CREDENTIALS
    # ========================================================================

    async def derive_api_key(self, signer: LocalAccount, nonce: int = 0) -> Optional[ApiCredentials]:
        """Recover previously issued credentials. None when the book returned nothing usable."""
        _, payload = await self._request(
            "GET", "/auth/derive-api-key", headers=self._l1_headers(signer, nonce)
        )
        return normalize_api_credentials(payload if isinstance(payload, dict) else None)

    async def create_api_key(self, signer: LocalAccount, nonce: int = 0) -> Optional[ApiCredentials]:
        """Issue new credentials."""
        _, payload = await self._request(
            "POST", "/auth/api-key", headers=self._l1_headers(signer, nonce)
        )
        return normalize_api_credentials(payload if isinstance(payload, dict) else None)

    # ========================================================================
    # MARKETS
    # ========================================================================

    async def get_market(self, condition_id: str) -> MarketInfo:
        _, payload = await self._request("GET", f"/markets/{condition_id}")
        return normalize_market(condition_id, payload)

    # ========================================================================
    # ORDERS
    # ========================================================================

    async def place_order(
        self,
        session: BookSession,
        *,
        token_id: str,
        side: str,
        price: Decimal,
        size: Decimal,
        order_type: str,
        neg_risk: bool,
        expiration: Optional[int] = None,
    ) -> PlaceOrderResult:
        """
        Sign and post an order on behalf of ``session.funder_address``.

        Explicit rejections (4xx) come back as an unsuccessful result with
        the book's message; transport failures raise TransientRemoteError.
        """
        order = build_signed_order(
            session.signer,
            funder_address=session.funder_address,
            token_id=token_id,
            side=side,
            price=price,
            size=size,
            neg_risk=neg_risk,
            chain_id=self.chain_id,
            expiration=expiration,
        )
        path = "/order"
        body = self.dump_body({
            "order": order,
            "owner": session.credentials.api_key,
            "orderType": order_type,
        })
        try:
            _, payload = await self._request(
                "POST", path, body=body, headers=self._l2_headers(session, "POST", path, body)
            )
        except RemoteHttpError as e:
            return PlaceOrderResult(success=False, error_message=e.body or e.message)
        return normalize_place_order(payload)

    async def get_order(self, session: BookSession, remote_order_id: str) -> Optional[BookOrderStatus]:
        path = f"/data/order/{remote_order_id}"
        _, payload = await self._request(
            "GET", path, headers=self._l2_headers(session, "GET", path), allow_not_found=True
        )
        return normalize_book_order(remote_order_id, payload)

    async def cancel_order(self, session: BookSession, remote_order_id: str) -> bool:
        """Cancel one order. True when the book reports it among the cancelled ids."""
        path = "/order"
        body = self.dump_body({"orderID": remote_order_id})
        _, payload = await self._request(
            "DELETE", path, body=body, headers=self._l2_headers(session, "DELETE", path, body)
        )
        canceled = payload.get("canceled", []) if isinstance(payload, dict) else []
        return remote_order_id in canceled

    async def cancel_all(self, session: BookSession) -> List[str]:
        path = "/cancel-all"
        _, payload = await self._request(
            "DELETE", path, headers=self._l2_headers(session, "DELETE", path)
        )
        canceled: Any = payload.get("canceled", []) if isinstance(payload, dict) else []
        return [str(order_id) for order_id in canceled]
