"""
Gasless relay client.

Submits Safe deployments and Safe transactions signed by the account owner,
authenticated with builder HMAC headers, and reads back transaction state.
"""

import base64
import hashlib
import hmac
import time
from typing import Dict, List, Optional, Sequence

import aiohttp
from eth_account.messages import encode_defunct, encode_typed_data
from eth_account.signers.local import LocalAccount
from eth_utils import keccak, to_bytes, to_checksum_address

from custody.address_predictor import predict_safe_address
from custody.exceptions import ValidationError
from helpers.unified_logger import get_exchange_logger
from trading_config.contracts import (
    SAFE_FACTORY_ADDRESS,
    SAFE_FACTORY_NAME,
    SAFE_MULTISEND_ADDRESS,
    ZERO_ADDRESS,
)
from trading_config.settings import Settings, decode_builder_secret

from .abi import encode_multisend
from .base import BaseHttpClient
from .models import RelaySubmission, RelayTransactionStatus, SafeCall
from .normalizers import normalize_relay_submission, normalize_relay_transaction


SAFE_TX_TYPES = {
    "EIP712Domain": [
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "SafeTx": [
        {"name": "to", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "data", "type": "bytes"},
        {"name": "operation", "type": "uint8"},
        {"name": "safeTxGas", "type": "uint256"},
        {"name": "baseGas", "type": "uint256"},
        {"name": "gasPrice", "type": "uint256"},
        {"name": "gasToken", "type": "address"},
        {"name": "refundReceiver", "type": "address"},
        {"name": "nonce", "type": "uint256"},
    ],
}

CREATE_PROXY_TYPES = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "CreateProxy": [
        {"name": "paymentToken", "type": "address"},
        {"name": "payment", "type": "uint256"},
        {"name": "paymentReceiver", "type": "address"},
    ],
}


def build_hmac_signature(secret: bytes, timestamp: str, method: str, path: str, body: str = "") -> str:
    """URL-safe base64 HMAC-SHA256 over ``timestamp + method + path + body``."""
    message = f"{timestamp}{method.upper()}{path}{body}"
    digest = hmac.new(secret, message.encode("utf-8"), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8")


def safe_tx_hash(chain_id: int, safe_address: str, call: SafeCall, nonce: int) -> bytes:
    """EIP-712 hash of a Safe transaction with zero gas refund parameters."""
    signable = encode_typed_data(full_message={
        "types": SAFE_TX_TYPES,
        "primaryType": "SafeTx",
        "domain": {
            "chainId": chain_id,
            "verifyingContract": to_checksum_address(safe_address),
        },
        "message": {
            "to": to_checksum_address(call.to),
            "value": call.value,
            "data": to_bytes(hexstr=call.data) if call.data else b"",
            "operation": call.operation,
            "safeTxGas": 0,
            "baseGas": 0,
            "gasPrice": 0,
            "gasToken": ZERO_ADDRESS,
            "refundReceiver": ZERO_ADDRESS,
            "nonce": nonce,
        },
    })
    return keccak(b"\x19" + signable.version + signable.header + signable.body)


def sign_safe_tx_hash(signer: LocalAccount, tx_hash: bytes) -> str:
    """
    eth_sign-style Safe signature: r ++ s ++ (v + 4).

    The +4 tells the Safe the hash was signed with the personal-message prefix.
    """
    signed = signer.sign_message(encode_defunct(primitive=tx_hash))
    v = signed.v + 4
    return "0x" + (
        signed.r.to_bytes(32, "big") + signed.s.to_bytes(32, "big") + bytes([v])
    ).hex()


class RelayClient(BaseHttpClient):
    """Client for the gasless transaction relay."""

    def __init__(self, settings: Settings, session: Optional[aiohttp.ClientSession] = None):
        super().__init__(settings.relayer_url, timeout=settings.http_timeout_seconds, session=session)
        self.settings = settings
        self.chain_id = settings.chain_id
        self.logger = get_exchange_logger("relay")

    # ========================================================================
    # AUTH
    # ========================================================================

    def _builder_headers(self, method: str, path: str, body: str = "") -> Dict[str, str]:
        if not self.settings.builder_configured:
            raise ValidationError(
                "Relay builder credentials are not configured",
                remediation="Set POLY_BUILDER_API_KEY, POLY_BUILDER_SECRET and POLY_BUILDER_PASSPHRASE.",
            )
        timestamp = str(int(time.time()))
        return {
            "POLY_BUILDER_API_KEY": self.settings.poly_builder_api_key,
            "POLY_BUILDER_PASSPHRASE": self.settings.poly_builder_passphrase,
            "POLY_BUILDER_TIMESTAMP": timestamp,
            "POLY_BUILDER_SIGNATURE": build_hmac_signature(
                decode_builder_secret(self.settings), timestamp, method, path, body
            ),
        }

    async def _submit(self, payload: Dict) -> RelaySubmission:
        path = "/submit"
        body = self.dump_body(payload)
        _, response = await self._request(
            "POST", path, body=body, headers=self._builder_headers("POST", path, body)
        )
        submission = normalize_relay_submission(response if isinstance(response, dict) else {})
        self.logger.debug(
            f"Relay submit accepted: tx={submission.transaction_id} address={submission.address}"
        )
        return submission

    # ========================================================================
    # OPERATIONS
    # ========================================================================

    async def get_nonce(self, owner_address: str) -> int:
        _, payload = await self._request(
            "GET", "/nonce", params={"address": owner_address, "type": "SAFE"}
        )
        if isinstance(payload, dict):
            return int(payload.get("nonce", 0))
        return int(payload or 0)

    async def deploy(self, signer: LocalAccount) -> RelaySubmission:
        """Request deployment of the Safe owned by ``signer``."""
        signable = encode_typed_data(full_message={
            "types": CREATE_PROXY_TYPES,
            "primaryType": "CreateProxy",
            "domain": {
                "name": SAFE_FACTORY_NAME,
                "chainId": self.chain_id,
                "verifyingContract": SAFE_FACTORY_ADDRESS,
            },
            "message": {
                "paymentToken": ZERO_ADDRESS,
                "payment": 0,
                "paymentReceiver": ZERO_ADDRESS,
            },
        })
        signature = signer.sign_message(signable).signature.hex()
        if not signature.startswith("0x"):
            signature = "0x" + signature

        return await self._submit({
            "from": signer.address,
            "to": SAFE_FACTORY_ADDRESS,
            "proxyWallet": predict_safe_address(signer.address),
            "data": "0x",
            "signature": signature,
            "signatureParams": {
                "paymentToken": ZERO_ADDRESS,
                "payment": "0",
                "paymentReceiver": ZERO_ADDRESS,
            },
            "type": "SAFE-CREATE",
        })

    async def execute(
        self,
        signer: LocalAccount,
        safe_address: str,
        calls: Sequence[SafeCall],
        metadata: str = "",
    ) -> RelaySubmission:
        """Execute ``calls`` from the Safe as one relayed transaction."""
        if not calls:
            raise ValidationError("No calls to execute")

        if len(calls) == 1:
            call = calls[0]
        else:
            call = SafeCall(
                to=SAFE_MULTISEND_ADDRESS,
                data=encode_multisend(calls),
                operation=1,
            )

        nonce = await self.get_nonce(signer.address)
        signature = sign_safe_tx_hash(
            signer, safe_tx_hash(self.chain_id, safe_address, call, nonce)
        )

        return await self._submit({
            "from": signer.address,
            "to": to_checksum_address(call.to),
            "proxyWallet": to_checksum_address(safe_address),
            "data": call.data,
            "nonce": str(nonce),
            "signature": signature,
            "signatureParams": {
                "gasPrice": "0",
                "operation": str(call.operation),
                "safeTxnGas": "0",
                "baseGas": "0",
                "gasToken": ZERO_ADDRESS,
                "refundReceiver": ZERO_ADDRESS,
            },
            "type": "SAFE",
            "metadata": metadata,
        })

    async def get_transaction(self, transaction_id: str) -> RelayTransactionStatus:
        _, payload = await self._request(
            "GET", "/transaction", params={"id": transaction_id}
        )
        return normalize_relay_transaction(transaction_id, payload)


__all__: List[str] = [
    "RelayClient",
    "build_hmac_signature",
    "safe_tx_hash",
    "sign_safe_tx_hash",
]
