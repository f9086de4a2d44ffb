"""
EIP-712 order construction and signing for the CTF exchanges.

The order is made by the Safe (funder) and signed by its owner EOA
(signature type POLY_GNOSIS_SAFE). ``neg_risk`` picks which exchange
contract the signature is bound to.
"""

import random
import time
from decimal import Decimal, ROUND_DOWN
from typing import Any, Dict, Optional

from eth_account.messages import encode_typed_data
from eth_account.signers.local import LocalAccount
from eth_utils import to_checksum_address

from trading_config.contracts import (
    CTF_EXCHANGE_ADDRESS,
    NEG_RISK_CTF_EXCHANGE_ADDRESS,
    USDC_DECIMALS,
    ZERO_ADDRESS,
)

SIGNATURE_TYPE_POLY_GNOSIS_SAFE = 2
SIDE_CODES = {"BUY": 0, "SELL": 1}

ORDER_TYPES = {
    "EIP712Domain": [
        {"name": "name", "type": "string"},
        {"name": "version", "type": "string"},
        {"name": "chainId", "type": "uint256"},
        {"name": "verifyingContract", "type": "address"},
    ],
    "Order": [
        {"name": "salt", "type": "uint256"},
        {"name": "maker", "type": "address"},
        {"name": "signer", "type": "address"},
        {"name": "taker", "type": "address"},
        {"name": "tokenId", "type": "uint256"},
        {"name": "makerAmount", "type": "uint256"},
        {"name": "takerAmount", "type": "uint256"},
        {"name": "expiration", "type": "uint256"},
        {"name": "nonce", "type": "uint256"},
        {"name": "feeRateBps", "type": "uint256"},
        {"name": "side", "type": "uint8"},
        {"name": "signatureType", "type": "uint8"},
    ],
}


def exchange_for(neg_risk: bool) -> str:
    return NEG_RISK_CTF_EXCHANGE_ADDRESS if neg_risk else CTF_EXCHANGE_ADDRESS


def to_base_units(amount: Decimal) -> int:
    scaled = (Decimal(amount) * (Decimal(10) ** USDC_DECIMALS)).quantize(Decimal(1), rounding=ROUND_DOWN)
    return int(scaled)


def order_amounts(side: str, price: Decimal, size: Decimal) -> Dict[str, int]:
    """Maker/taker amounts in 6-decimal base units."""
    notional = to_base_units(Decimal(price) * Decimal(size))
    shares = to_base_units(Decimal(size))
    if side == "BUY":
        return {"makerAmount": notional, "takerAmount": shares}
    return {"makerAmount": shares, "takerAmount": notional}


def build_signed_order(
    signer: LocalAccount,
    *,
    funder_address: str,
    token_id: str,
    side: str,
    price: Decimal,
    size: Decimal,
    neg_risk: bool,
    chain_id: int,
    expiration: Optional[int] = None,
    fee_rate_bps: int = 0,
    nonce: int = 0,
) -> Dict[str, Any]:
    """Build and sign an order; returns the JSON-ready ``order`` object."""
    side = side.upper()
    amounts = order_amounts(side, price, size)
    salt = random.randint(1, int(time.time() * 1000))

    message = {
        "salt": salt,
        "maker": to_checksum_address(funder_address),
        "signer": signer.address,
        "taker": ZERO_ADDRESS,
        "tokenId": int(token_id),
        "makerAmount": amounts["makerAmount"],
        "takerAmount": amounts["takerAmount"],
        "expiration": int(expiration or 0),
        "nonce": nonce,
        "feeRateBps": fee_rate_bps,
        "side": SIDE_CODES[side],
        "signatureType": SIGNATURE_TYPE_POLY_GNOSIS_SAFE,
    }
    signable = encode_typed_data(full_message={
        "types": ORDER_TYPES,
        "primaryType": "Order",
        "domain": {
            "name": "Polymarket CTF Exchange",
            "version": "1",
            "chainId": chain_id,
            "verifyingContract": exchange_for(neg_risk),
        },
        "message": message,
    })
    signature = signer.sign_message(signable).signature.hex()
    if not signature.startswith("0x"):
        signature = "0x" + signature

    return {
        "salt": salt,
        "maker": message["maker"],
        "signer": message["signer"],
        "taker": ZERO_ADDRESS,
        "tokenId": str(token_id),
        "makerAmount": str(amounts["makerAmount"]),
        "takerAmount": str(amounts["takerAmount"]),
        "expiration": str(message["expiration"]),
        "nonce": str(nonce),
        "feeRateBps": str(fee_rate_bps),
        "side": side,
        "signatureType": SIGNATURE_TYPE_POLY_GNOSIS_SAFE,
        "signature": signature,
    }
