"""
Deterministic Safe address prediction (CREATE2).
"""

from eth_abi import encode
from eth_utils import is_address, keccak, to_bytes, to_checksum_address

from trading_config.contracts import SAFE_FACTORY_ADDRESS, SAFE_INIT_CODE_HASH
from .exceptions import ValidationError


def create2_address(deployer: str, salt: bytes, init_code_hash: bytes) -> str:
    """keccak256(0xff ++ deployer ++ salt ++ init_code_hash)[12:], checksummed."""
    payload = b"\xff" + to_bytes(hexstr=deployer) + salt + init_code_hash
    return to_checksum_address(keccak(payload)[12:])


def safe_salt(owner_address: str) -> bytes:
    return keccak(encode(["address"], [to_checksum_address(owner_address)]))


def predict_safe_address(
    owner_address: str,
    factory_address: str = SAFE_FACTORY_ADDRESS,
    init_code_hash: str = SAFE_INIT_CODE_HASH,
) -> str:
    """
    Predict the Safe address the factory will deploy for ``owner_address``.

    Pure function: the same owner always maps to the same address.
    """
    if not owner_address or not is_address(owner_address):
        raise ValidationError(
            f"Invalid owner address: {owner_address!r}",
            remediation="Provide a 20-byte hex address.",
        )
    return create2_address(
        factory_address,
        safe_salt(owner_address),
        to_bytes(hexstr=init_code_hash),
    )
