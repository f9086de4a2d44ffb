"""
Shared HTTP plumbing for the relay, order-book and RPC clients.
"""

import asyncio
import json
from typing import Any, Dict, Optional, Tuple

import aiohttp

from custody.exceptions import TerminalRemoteRejection, TransientRemoteError


class RemoteHttpError(TerminalRemoteRejection):
    """Non-retryable HTTP error (4xx). ``body`` keeps the response text for classification."""

    def __init__(self, message: str, *, status: int, body: str, **kwargs):
        super().__init__(message, **kwargs)
        self.status = status
        self.body = body


class BaseHttpClient:
    """
    Owns one aiohttp session per client and maps transport failures onto
    the custody error taxonomy (5xx/timeouts are transient, 4xx terminal).
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session

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

    @staticmethod
    def dump_body(body: Any) -> str:
        """Serialize a JSON body exactly once so signatures cover the bytes we send."""
        if body is None:
            return ""
        return json.dumps(body, separators=(",", ":"))

    async def _request(
        self,
        method: str,
        path: str,
        *,
        body: str = "",
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        allow_not_found: bool = False,
    ) -> Tuple[int, Any]:
        """
        Perform one HTTP request and return ``(status, payload)``.

        Raises:
            TransientRemoteError: network errors, timeouts and 5xx responses
            RemoteHttpError: other 4xx responses (404 too unless ``allow_not_found``)
        """
        session = await self.get_session()
        url = f"{self.base_url}{path}"
        request_headers = {"Content-Type": "application/json"}
        request_headers.update(headers or {})

        try:
            async with session.request(
                method,
                url,
                data=body or None,
                params=params,
                headers=request_headers,
            ) as response:
                text = await response.text()
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientRemoteError(
                f"{method} {path} failed: {e!r}",
                context={"url": url},
            ) from e

        payload: Any = None
        if text:
            try:
                payload = json.loads(text)
            except ValueError:
                payload = text

        if status == 404 and allow_not_found:
            return status, None
        if status >= 500 or status == 429:
            raise TransientRemoteError(
                f"{method} {path} returned {status}: {text[:300]}",
                context={"url": url, "status": status},
            )
        if status >= 400:
            raise RemoteHttpError(
                f"{method} {path} returned {status}: {text[:300]}",
                status=status,
                body=text,
                context={"url": url, "status": status},
            )
        return status, payload
