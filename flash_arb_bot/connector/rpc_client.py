"""
JSON-RPC client for an Ethereum execution node.
Handles calls, fee data, nonce and gas queries, raw transaction
broadcast and receipt polling.
"""

import asyncio
import itertools
import json
import time
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp


class RpcError(Exception):
    """JSON-RPC error response. `data` carries revert data when present."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data


@dataclass
class FeeData:
    """Current EIP-1559 fee parameters, in wei."""
    base_fee: int
    max_priority_fee: int

    @property
    def max_fee(self) -> int:
        return self.base_fee * 2 + self.max_priority_fee


@dataclass
class Receipt:
    """Mined transaction receipt."""
    tx_hash: str
    status: int
    block_number: int
    gas_used: int
    effective_gas_price: int
    logs: list[dict[str, Any]]

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class RateLimiter:
    """Simple rate limiter with a sliding window."""

    def __init__(self, max_requests: int, window_seconds: float):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.requests: list[float] = []
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a request can be made."""
        async with self._lock:
            now = time.time()
            # Remove old requests outside window
            self.requests = [t for t in self.requests if now - t < self.window_seconds]

            if len(self.requests) >= self.max_requests:
                # Wait until oldest request expires
                sleep_time = self.window_seconds - (now - self.requests[0])
                if sleep_time > 0:
                    await asyncio.sleep(sleep_time)
                self.requests = self.requests[1:]

            self.requests.append(time.time())


def _to_int(value: Optional[str]) -> int:
    if value is None:
        return 0
    return int(value, 16)


class RpcClient:
    """JSON-RPC 2.0 client over HTTP."""

    def __init__(
        self,
        rpc_url: str,
        timeout_seconds: int = 10,
        max_retries: int = 3,
        retry_backoff_base: float = 1.5,
        max_requests_per_second: int = 25,
    ):
        self.rpc_url = rpc_url
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.max_retries = max_retries
        self.retry_backoff_base = retry_backoff_base
        self._session: Optional[aiohttp.ClientSession] = None
        self._ids = itertools.count(1)
        self._limiter = RateLimiter(max_requests_per_second, 1)

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def request(self, method: str, params: Optional[list] = None) -> Any:
        """Make a JSON-RPC request with retry logic. Node errors are not retried."""
        session = await self._get_session()
        body = json.dumps({
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        })

        for attempt in range(self.max_retries):
            await self._limiter.acquire()
            try:
                async with session.post(
                    self.rpc_url,
                    headers={"Content-Type": "application/json"},
                    data=body,
                ) as response:
                    if response.status == 429:
                        # Rate limited - exponential backoff
                        await asyncio.sleep(self.retry_backoff_base ** attempt)
                        continue

                    response.raise_for_status()
                    payload = await response.json()

            except (aiohttp.ClientError, asyncio.TimeoutError):
                if attempt == self.max_retries - 1:
                    raise
                await asyncio.sleep(self.retry_backoff_base ** attempt)
                continue

            if "error" in payload:
                error = payload["error"]
                raise RpcError(
                    error.get("code", -1),
                    error.get("message", ""),
                    error.get("data"),
                )
            return payload.get("result")

        raise RpcError(429, f"Rate limited after {self.max_retries} attempts")

    # === Reads ===

    async def call(self, to: str, data: str, block: str = "latest") -> str:
        """eth_call returning the raw hex result."""
        return await self.request("eth_call", [{"to": to, "data": data}, block])

    async def block_number(self) -> int:
        return _to_int(await self.request("eth_blockNumber"))

    async def get_fee_data(self) -> FeeData:
        block = await self.request("eth_getBlockByNumber", ["latest", False])
        priority = await self.request("eth_maxPriorityFeePerGas")
        return FeeData(
            base_fee=_to_int(block.get("baseFeePerGas")),
            max_priority_fee=_to_int(priority),
        )

    async def estimate_gas(self, tx: dict[str, Any]) -> int:
        return _to_int(await self.request("eth_estimateGas", [tx]))

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return _to_int(await self.request("eth_getTransactionCount", [address, block]))

    async def get_balance(self, address: str, block: str = "latest") -> int:
        return _to_int(await self.request("eth_getBalance", [address, block]))

    # === Writes ===

    async def send_raw_transaction(self, raw_tx: str) -> str:
        return await self.request("eth_sendRawTransaction", [raw_tx])

    async def get_receipt(self, tx_hash: str) -> Optional[Receipt]:
        data = await self.request("eth_getTransactionReceipt", [tx_hash])
        if data is None:
            return None
        return Receipt(
            tx_hash=data.get("transactionHash", tx_hash),
            status=_to_int(data.get("status")),
            block_number=_to_int(data.get("blockNumber")),
            gas_used=_to_int(data.get("gasUsed")),
            effective_gas_price=_to_int(data.get("effectiveGasPrice")),
            logs=data.get("logs", []),
        )

    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout: float,
        poll_interval: float = 1.0,
    ) -> Receipt:
        """
        Poll for a receipt until mined.
        Raises asyncio.TimeoutError once timeout elapses.
        """
        async def _poll() -> Receipt:
            while True:
                receipt = await self.get_receipt(tx_hash)
                if receipt is not None:
                    return receipt
                await asyncio.sleep(poll_interval)

        return await asyncio.wait_for(_poll(), timeout)
