"""
WebSocket client for new block headers.
Subscribes to `newHeads` and notifies a callback on every block.
"""

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import websockets
from websockets.exceptions import ConnectionClosed


@dataclass
class BlockHeader:
    """Minimal block header from a newHeads notification."""
    number: int
    hash: str
    timestamp: int
    base_fee: int


class BlockHeaderListener:
    """Block header subscription with automatic reconnect."""

    def __init__(
        self,
        ws_url: str,
        reconnect_delay: int = 5,
        ping_interval: int = 30,
    ):
        self.ws_url = ws_url
        self.reconnect_delay = reconnect_delay
        self.ping_interval = ping_interval

        self._ws = None
        self._running = False
        self._subscription_id: Optional[str] = None

        # Callbacks
        self._on_block: Optional[Callable[[BlockHeader], Awaitable[None]]] = None
        self._on_error: Optional[Callable[[Exception], None]] = None
        self._on_disconnected: Optional[Callable[[], None]] = None

        self._last_message_time = 0.0
        self.latest_block: Optional[BlockHeader] = None

    def on_block(self, callback: Callable[[BlockHeader], Awaitable[None]]) -> None:
        """Register coroutine callback for new blocks."""
        self._on_block = callback

    def on_error(self, callback: Callable[[Exception], None]) -> None:
        """Register callback for errors."""
        self._on_error = callback

    def on_disconnected(self, callback: Callable[[], None]) -> None:
        """Register callback for disconnection."""
        self._on_disconnected = callback

    async def connect(self) -> None:
        """Connect and stream headers until disconnect() is called."""
        self._running = True

        while self._running:
            try:
                await self._connect_and_subscribe()
                await self._message_loop()
            except ConnectionClosed:
                if self._on_disconnected:
                    self._on_disconnected()
                if self._running:
                    await asyncio.sleep(self.reconnect_delay)
            except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
                if self._on_error:
                    self._on_error(e)
                if self._running:
                    await asyncio.sleep(self.reconnect_delay)

    async def _connect_and_subscribe(self) -> None:
        self._ws = await websockets.connect(
            self.ws_url,
            ping_interval=self.ping_interval,
            ping_timeout=self.ping_interval * 2,
        )
        await self._ws.send(json.dumps({
            "jsonrpc": "2.0",
            "id": 1,
            "method": "eth_subscribe",
            "params": ["newHeads"],
        }))

    async def _message_loop(self) -> None:
        async for message in self._ws:
            self._last_message_time = time.time()

            try:
                data = json.loads(message)
            except json.JSONDecodeError:
                continue
            await self._handle_message(data)

    async def _handle_message(self, data: dict[str, Any]) -> None:
        if data.get("id") == 1 and "result" in data:
            self._subscription_id = data["result"]
            return

        if data.get("method") != "eth_subscription":
            return

        header = parse_header(data.get("params", {}).get("result", {}))
        self.latest_block = header
        if self._on_block:
            await self._on_block(header)

    async def disconnect(self) -> None:
        """Stop streaming and close the socket."""
        self._running = False
        if self._ws is not None:
            await self._ws.close()

        if self._on_disconnected:
            self._on_disconnected()

    @property
    def last_message_age(self) -> float:
        """Seconds since last message received."""
        if self._last_message_time == 0:
            return float("inf")
        return time.time() - self._last_message_time


def parse_header(result: dict[str, Any]) -> BlockHeader:
    return BlockHeader(
        number=int(result.get("number", "0x0"), 16),
        hash=result.get("hash", ""),
        timestamp=int(result.get("timestamp", "0x0"), 16),
        base_fee=int(result.get("baseFeePerGas", "0x0"), 16),
    )
