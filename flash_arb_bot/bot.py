"""
Main arbitrage bot orchestration.
Coordinates scanning, gating and submission for flash-loan arbitrage.
"""

import asyncio
import signal
import time
from typing import Optional

from .config import Config, load_config_from_env
from .connector import (
    BlockHeader,
    BlockHeaderListener,
    BundleRelay,
    BundleRelayClient,
    ContractGateway,
    RpcClient,
    RpcContractGateway,
    TransactionSigner,
)
from .exec import (
    ArbitrageExecutor,
    ExecutionMutex,
    PrivateSubmissionChannel,
    PublicSubmissionChannel,
    SettlementRecord,
    SubmissionChannel,
)
from .monitor import Logger, MetricsCollector
from .risk import CircuitBreaker, CircuitState, SlippageGuard
from .signals import Opportunity, OpportunityScanner, filter_profitable
from .storage import Database
from .venues import VenueAdapter, build_venues


class ArbitrageBot:
    """
    Flash-loan arbitrage bot.

    Strategy:
    1. Read every configured venue and price both orientations of each pair
    2. Keep the best opportunity per token pair
    3. Re-validate, simulate and price the loan request
    4. Submit through the private relay or the public mempool
    5. Feed the outcome to the circuit breaker and persist it

    `venues`, `gateway` and `relay` can be injected to run against an
    in-process ledger instead of a node.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        venues: Optional[list[VenueAdapter]] = None,
        gateway: Optional[ContractGateway] = None,
        relay: Optional[BundleRelay] = None,
        mutex: Optional[ExecutionMutex] = None,
        logger: Optional[Logger] = None,
    ):
        self.config = config or load_config_from_env()

        # Validate configuration
        errors = self.config.validate()
        if errors:
            raise ValueError(f"Configuration errors: {errors}")

        chain = self.config.chain
        trading = self.config.trading

        self.logger = logger or Logger(
            name="flash_arb_bot",
            level=self.config.log_level,
            log_file=self.config.log_file,
        )

        self.signer = TransactionSigner(
            private_key=self.config.private_key,
            chain_id=chain.chain_id,
            relay_signing_key=self.config.submission.relay_signing_key,
        )

        self.rpc = RpcClient(
            rpc_url=chain.rpc_url,
            timeout_seconds=chain.rpc_timeout_seconds,
            max_retries=chain.max_retries,
            retry_backoff_base=chain.retry_backoff_base,
        )

        self.gateway = gateway or RpcContractGateway(
            rpc=self.rpc,
            signer=self.signer,
            contract_address=chain.contract_address,
            gas_limit=trading.gas_limit,
        )

        self.venues = venues if venues is not None else build_venues(
            self.config.venues, self.rpc, chain.quoter_address,
        )

        self.listener: Optional[BlockHeaderListener] = None
        if chain.ws_url:
            self.listener = BlockHeaderListener(
                ws_url=chain.ws_url,
                reconnect_delay=chain.ws_reconnect_delay_seconds,
                ping_interval=chain.ws_ping_interval_seconds,
            )

        self.scanner = OpportunityScanner(
            venues=self.venues,
            token_in=trading.scan_token,
            amount_in=trading.amount_in,
            logger=self.logger,
        )

        self.guard = SlippageGuard(
            venues=self.venues,
            slippage_tolerance_pct=trading.slippage_tolerance_pct,
            premium_bps=trading.premium_bps,
            max_price_impact_pct=trading.max_price_impact_pct,
            enforce_price_impact=trading.enforce_price_impact,
            logger=self.logger,
        )

        self.breaker = CircuitBreaker(
            max_failures=self.config.risk.max_failures,
            reset_timeout=self.config.risk.reset_timeout_seconds,
            logger=self.logger,
        )

        if relay is None and isinstance(self.gateway, BundleRelay):
            relay = self.gateway
        self.relay = relay
        self.channel = self._build_channel()

        self.metrics = MetricsCollector()
        self.database = Database(self.config.db_path)

        self.mutex = mutex
        self.executor: Optional[ArbitrageExecutor] = None

        # State
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._block_event = asyncio.Event()
        self._gas_cost_hint = 0

        self.breaker.on_state_change(self._on_circuit_change)

    def _build_channel(self) -> SubmissionChannel:
        submission = self.config.submission
        timeout = self.config.trading.confirmation_timeout_seconds

        if submission.channel == "public":
            return PublicSubmissionChannel(self.gateway, confirmation_timeout=timeout)

        if self.relay is None:
            self.relay = BundleRelayClient(
                signer=self.signer,
                relay_url=submission.relay_url,
                timeout_seconds=self.config.chain.rpc_timeout_seconds,
                max_retries=self.config.chain.max_retries,
            )
        return PrivateSubmissionChannel(
            self.gateway,
            self.relay,
            bundle_blocks=submission.bundle_blocks,
            confirmation_timeout=timeout,
        )

    async def setup(self) -> None:
        """Pick the lock backend and build the executor. Idempotent."""
        if self.executor is not None:
            return

        if self.mutex is None:
            self.mutex = await ExecutionMutex.create(
                redis_url=self.config.lock.redis_url,
                key_prefix=self.config.lock.key_prefix,
                default_ttl_ms=self.config.lock.lock_ttl_ms,
                logger=self.logger,
            )

        trading = self.config.trading
        self.executor = ArbitrageExecutor(
            gateway=self.gateway,
            guard=self.guard,
            breaker=self.breaker,
            mutex=self.mutex,
            channel=self.channel,
            min_profit=trading.min_profit,
            min_net_profit=trading.min_net_profit,
            max_opportunity_age_seconds=trading.max_opportunity_age_seconds,
            max_fee_profit_ratio=trading.max_fee_profit_ratio,
            lock_ttl_ms=self.config.lock.lock_ttl_ms,
            dry_run=trading.dry_run,
            logger=self.logger,
            metrics=self.metrics,
        )

    async def start(self) -> None:
        """Start the arbitrage bot."""
        self._running = True

        self.logger.startup({
            "venues": [v.venue_id for v in self.venues],
            "scan_token": self.config.trading.scan_token,
            "amount_in": str(self.config.trading.amount_in),
            "channel": self.channel.name,
            "block_driven": self.listener is not None,
            "dry_run": self.config.trading.dry_run,
        })

        try:
            await self.setup()

            loops = [self._scan_loop(), self._state_save_loop()]
            if self.listener is not None:
                self._setup_ws_callbacks()
                loops.append(self.listener.connect())

            await asyncio.gather(*loops)

        except asyncio.CancelledError:
            self.logger.info("bot_cancelled")
        except Exception as e:
            self.logger.error("bot_error", error=str(e))
            raise
        finally:
            await self._cleanup()

    async def stop(self) -> None:
        """Stop the arbitrage bot gracefully."""
        self.logger.info("bot_stopping")
        self._running = False
        self._shutdown_event.set()
        self._block_event.set()

        if self.listener is not None:
            await self.listener.disconnect()

        await self._save_state()
        self.logger.shutdown()

    def _setup_ws_callbacks(self) -> None:
        """Wake the scan loop on every new block."""

        async def on_block(header: BlockHeader) -> None:
            self._gas_cost_hint = header.base_fee * self.config.trading.gas_limit
            self._block_event.set()

        def on_disconnected() -> None:
            if self._running:
                self.logger.ws_disconnected()
                self.metrics.record_ws_reconnect()

        def on_error(e: Exception) -> None:
            self.logger.error("ws_error", error=str(e))

        self.listener.on_block(on_block)
        self.listener.on_disconnected(on_disconnected)
        self.listener.on_error(on_error)
        self.logger.listener_started(self.config.chain.ws_url)

    def _on_circuit_change(self, old: CircuitState, new: CircuitState) -> None:
        self.database.save_state("circuit", self.breaker.get_status())

    async def run_cycle(self) -> list[SettlementRecord]:
        """
        One scan and execute pass.
        Returns the settlement records written this cycle.
        """
        await self.setup()

        if self.breaker.is_open:
            self.logger.debug(
                "trading_paused",
                cooldown_remaining=round(self.breaker.cooldown_remaining(), 1),
            )
            return []

        start = time.time()
        opportunities = await self.scanner.scan()
        duration_ms = (time.time() - start) * 1000

        self.metrics.record_scan(len(opportunities), len(self.scanner.last_errors), duration_ms)
        self.logger.scan_completed(len(self.venues), len(opportunities), duration_ms)

        candidates = filter_profitable(
            opportunities,
            gas_cost=self._gas_cost_hint,
            min_net_profit=self.config.trading.min_net_profit,
        )

        records = []
        for opportunity in self._best_per_pair(candidates):
            record = await self.executor.execute(opportunity)
            self.database.save_settlement(record)
            records.append(record)

            if self.breaker.is_open:
                break

        return records

    def _best_per_pair(self, opportunities: list[Opportunity]) -> list[Opportunity]:
        """Input is ranked best first; keep the first route per lock key."""
        seen = set()
        best = []
        for opportunity in opportunities:
            if opportunity.lock_key in seen:
                continue
            seen.add(opportunity.lock_key)
            best.append(opportunity)
        return best

    async def _wait_next_cycle(self) -> None:
        if self.breaker.is_open:
            delay = min(self.config.risk.paused_poll_seconds, self.breaker.cooldown_remaining())
            await asyncio.sleep(max(delay, 0.0))
            return

        # block-driven when a listener is attached, polling otherwise
        try:
            await asyncio.wait_for(
                self._block_event.wait(),
                timeout=self.config.trading.scan_interval_seconds,
            )
        except asyncio.TimeoutError:
            pass
        self._block_event.clear()

    async def _scan_loop(self) -> None:
        """Main loop - scan for opportunities and execute."""
        while self._running:
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error("scan_loop_error", error=str(e))

            await self._wait_next_cycle()

    async def _save_state(self) -> None:
        """Save state to database."""
        self.database.save_state("last_session_metrics", self.metrics.get_session_metrics())
        self.database.save_state("circuit", self.breaker.get_status())
        self.logger.info("state_saved")

    async def _state_save_loop(self) -> None:
        """Periodic state saves."""
        interval = 60  # Save every minute

        while self._running:
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                await self._save_state()

    async def _cleanup(self) -> None:
        """Cleanup resources."""
        if self.mutex is not None:
            await self.mutex.close()
        if self.relay is not None:
            await self.relay.close()
        await self.rpc.close()
        self.logger.info("cleanup_complete")

    def get_status(self) -> dict:
        """Get current bot status."""
        return {
            "running": self._running,
            "circuit": self.breaker.get_status(),
            "channel": self.channel.name,
            "lock_distributed": self.mutex.is_distributed if self.mutex else None,
            "metrics": self.metrics.get_session_metrics(),
            "latest_block": (
                self.listener.latest_block.number
                if self.listener and self.listener.latest_block else None
            ),
        }


async def run_bot(config: Optional[Config] = None) -> None:
    """Run the arbitrage bot with signal handling."""
    bot = ArbitrageBot(config)

    # Setup signal handlers
    loop = asyncio.get_running_loop()

    def signal_handler():
        asyncio.create_task(bot.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await bot.start()
    except KeyboardInterrupt:
        await bot.stop()
