"""
Read-only chain access over JSON-RPC with fallback endpoints.
"""

import asyncio
import itertools
from typing import Any, List, Optional

import aiohttp
from eth_utils import to_checksum_address
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from custody.exceptions import TransientRemoteError
from helpers.unified_logger import get_exchange_logger
from trading_config.settings import Settings

from .abi import allowance_data, decode_bool, decode_uint256, is_approved_for_all_data


class ChainReader:
    """
    Thin JSON-RPC reader. Each call tries every configured endpoint in
    order; if all fail, the round is retried with exponential backoff.
    """

    def __init__(self, settings: Settings, session: Optional[aiohttp.ClientSession] = None):
        self.rpc_urls: List[str] = settings.rpc_urls
        self.max_attempts = settings.rpc_max_attempts
        self.backoff_base = settings.rpc_backoff_base_seconds
        self.timeout = settings.http_timeout_seconds
        self._session = session
        self._ids = itertools.count(1)
        self.logger = get_exchange_logger("chain")

    async def get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _call_endpoint(self, url: str, method: str, params: List[Any]) -> Any:
        session = await self.get_session()
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        async with session.post(url, json=payload) as response:
            if response.status != 200:
                raise TransientRemoteError(f"RPC {url} returned HTTP {response.status}")
            body = await response.json(content_type=None)
        if not isinstance(body, dict):
            raise TransientRemoteError(f"RPC {url} returned malformed body")
        if body.get("error"):
            raise TransientRemoteError(f"RPC {url} error: {body['error']}")
        return body.get("result")

    async def _rpc_round(self, method: str, params: List[Any]) -> Any:
        last_error: Optional[Exception] = None
        for url in self.rpc_urls:
            try:
                return await self._call_endpoint(url, method, params)
            except (aiohttp.ClientError, asyncio.TimeoutError, TransientRemoteError) as e:
                last_error = e
                self.logger.warning(f"⚠️ RPC {method} via {url} failed: {e}")
        raise TransientRemoteError(
            f"All RPC endpoints failed for {method}: {last_error}",
            context={"endpoints": list(self.rpc_urls)},
        )

    async def rpc(self, method: str, params: List[Any]) -> Any:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_base),
            retry=retry_if_exception_type(TransientRemoteError),
            reraise=True,
        ):
            with attempt:
                return await self._rpc_round(method, params)

    # ========================================================================
    # READS
    # ========================================================================

    async def get_code(self, address: str) -> str:
        result = await self.rpc("eth_getCode", [to_checksum_address(address), "latest"])
        return result or "0x"

    async def has_code(self, address: str) -> bool:
        """True when the address holds contract bytecode."""
        code = await self.get_code(address)
        return code not in ("0x", "0x0", "")

    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        result = await self.rpc(
            "eth_call",
            [{"to": to_checksum_address(token), "data": allowance_data(owner, spender)}, "latest"],
        )
        return decode_uint256(result)

    async def is_approved_for_all(self, token: str, owner: str, operator: str) -> bool:
        result = await self.rpc(
            "eth_call",
            [{"to": to_checksum_address(token), "data": is_approved_for_all_data(owner, operator)}, "latest"],
        )
        return decode_bool(result)
