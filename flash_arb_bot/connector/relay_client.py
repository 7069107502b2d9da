"""
Private bundle relay client.
Simulates and submits signed transaction bundles for inclusion in a
specific upcoming block without exposing them to the public mempool.
"""

import asyncio
import itertools
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

import aiohttp

from .auth import TransactionSigner
from .rpc_client import RateLimiter, RpcError


@dataclass
class BundleSimulation:
    """Outcome of simulating a bundle against a target block."""
    success: bool
    gas_used: int = 0
    error: Optional[str] = None
    results: list[dict[str, Any]] = field(default_factory=list)


class BundleRelay(ABC):
    """Anything that can simulate and accept bundles for a target block."""

    @abstractmethod
    async def simulate_bundle(self, signed_txs: list[str], block_number: int) -> BundleSimulation:
        ...

    @abstractmethod
    async def send_bundle(self, signed_txs: list[str], target_block: int) -> str:
        """Submit for inclusion in target_block. Returns the bundle hash."""
        ...

    async def close(self) -> None:
        return None


class BundleRelayClient(BundleRelay):
    """JSON-RPC client for a Flashbots-compatible relay."""

    def __init__(
        self,
        signer: TransactionSigner,
        relay_url: str = "https://relay.flashbots.net",
        timeout_seconds: int = 10,
        max_retries: int = 3,
        retry_backoff_base: float = 1.5,
    ):
        self.signer = signer
        self.relay_url = relay_url
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.max_retries = max_retries
        self.retry_backoff_base = retry_backoff_base
        self._session: Optional[aiohttp.ClientSession] = None
        self._ids = itertools.count(1)
        self._limiter = RateLimiter(10, 1)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def _request(self, method: str, params: list) -> Any:
        """Signed relay request with retry on transport errors."""
        session = await self._get_session()
        body = json.dumps({
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        })
        headers = {"Content-Type": "application/json"}
        headers.update(self.signer.get_relay_headers(body))

        for attempt in range(self.max_retries):
            await self._limiter.acquire()
            try:
                async with session.post(self.relay_url, headers=headers, data=body) as response:
                    if response.status == 429:
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
                raise RpcError(error.get("code", -1), error.get("message", ""), error.get("data"))
            return payload.get("result")

        raise RpcError(429, f"Relay rate limited after {self.max_retries} attempts")

    async def simulate_bundle(self, signed_txs: list[str], block_number: int) -> BundleSimulation:
        result = await self._request("eth_callBundle", [{
            "txs": signed_txs,
            "blockNumber": hex(block_number),
            "stateBlockNumber": "latest",
        }])
        if not result:
            return BundleSimulation(success=False, error="Relay returned no simulation result")

        tx_results = result.get("results") or []
        for tx_result in tx_results:
            error = tx_result.get("error") or tx_result.get("revert")
            if error:
                return BundleSimulation(
                    success=False,
                    gas_used=int(result.get("totalGasUsed", 0)),
                    error=str(error),
                    results=tx_results,
                )

        return BundleSimulation(
            success=True,
            gas_used=int(result.get("totalGasUsed", 0)),
            results=tx_results,
        )

    async def send_bundle(self, signed_txs: list[str], target_block: int) -> str:
        result = await self._request("eth_sendBundle", [{
            "txs": signed_txs,
            "blockNumber": hex(target_block),
        }])
        return (result or {}).get("bundleHash", "")
