"""
Minimal ABI helpers for the handful of contract calls we build or read.
"""

from typing import Iterable, List, Sequence

from eth_abi import decode, encode
from eth_utils import keccak, to_bytes, to_checksum_address

from .models import SafeCall


def selector(signature: str) -> bytes:
    """4-byte function selector, e.g. ``selector("approve(address,uint256)")``."""
    return keccak(text=signature)[:4]


def encode_call(signature: str, arg_types: Sequence[str], args: Sequence) -> str:
    return "0x" + (selector(signature) + encode(list(arg_types), list(args))).hex()


def approve_call(token: str, spender: str, amount: int) -> SafeCall:
    return SafeCall(
        to=to_checksum_address(token),
        data=encode_call(
            "approve(address,uint256)",
            ["address", "uint256"],
            [to_checksum_address(spender), amount],
        ),
    )


def set_approval_for_all_call(token: str, operator: str, approved: bool = True) -> SafeCall:
    return SafeCall(
        to=to_checksum_address(token),
        data=encode_call(
            "setApprovalForAll(address,bool)",
            ["address", "bool"],
            [to_checksum_address(operator), approved],
        ),
    )


def allowance_data(owner: str, spender: str) -> str:
    return encode_call(
        "allowance(address,address)",
        ["address", "address"],
        [to_checksum_address(owner), to_checksum_address(spender)],
    )


def is_approved_for_all_data(owner: str, operator: str) -> str:
    return encode_call(
        "isApprovedForAll(address,address)",
        ["address", "address"],
        [to_checksum_address(owner), to_checksum_address(operator)],
    )


def decode_uint256(result_hex: str) -> int:
    raw = to_bytes(hexstr=result_hex) if result_hex and result_hex != "0x" else b""
    if not raw:
        return 0
    return decode(["uint256"], raw.rjust(32, b"\x00"))[0]


def decode_bool(result_hex: str) -> bool:
    return decode_uint256(result_hex) != 0


def encode_multisend(calls: Iterable[SafeCall]) -> str:
    """
    Pack calls for the Safe MultiSend contract.

    Each call: operation (1 byte) ++ to (20) ++ value (32) ++ data length (32) ++ data.
    """
    packed: List[bytes] = []
    for call in calls:
        data = to_bytes(hexstr=call.data) if call.data else b""
        packed.append(
            call.operation.to_bytes(1, "big")
            + to_bytes(hexstr=call.to)
            + call.value.to_bytes(32, "big")
            + len(data).to_bytes(32, "big")
            + data
        )
    return encode_call("multiSend(bytes)", ["bytes"], [b"".join(packed)])
