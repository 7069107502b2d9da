"""
Configuration management for the flash-loan arbitrage bot.
All secrets via environment variables. All tunable parameters externalized.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

VENUE_KINDS = ("constant_product", "concentrated")
CHANNELS = ("private", "public")


@dataclass
class VenueConfig:
    """Configuration for a single venue to monitor."""
    name: str
    kind: str  # constant_product or concentrated
    address: str  # pair / pool contract
    router: str  # contract the arbitrage contract swaps through
    token0: str
    token1: str
    fee: Optional[int] = None  # bps for constant_product, pips for concentrated

    @property
    def venue_id(self) -> str:
        if self.kind == "concentrated":
            return f"{self.name}-{self.effective_fee}"
        return self.name

    @property
    def effective_fee(self) -> int:
        if self.fee is not None:
            return self.fee
        return 3000 if self.kind == "concentrated" else 30


@dataclass
class ChainConfig:
    """Node and contract connection configuration."""
    rpc_url: str = "http://127.0.0.1:8545"
    ws_url: str = ""  # enables block-driven scanning when set
    chain_id: int = 1
    contract_address: str = ""
    quoter_address: str = "0x61fFE014bA17989E743c5F6cB21bF9697530B21e"  # QuoterV2
    rpc_timeout_seconds: int = 10
    max_retries: int = 3
    retry_backoff_base: float = 1.5
    ws_reconnect_delay_seconds: int = 5
    ws_ping_interval_seconds: int = 30


@dataclass
class TradingConfig:
    """Trading parameters. Amounts are integer base units of the scan token."""
    scan_token: str = ""  # borrowed asset; every route starts and ends here
    amount_in: int = 10 ** 18
    min_profit: int = 0  # enforced on-chain
    min_net_profit: int = 0  # gross profit minus estimated gas, enforced off-chain
    slippage_tolerance_pct: float = 2.0
    max_price_impact_pct: float = 1.0
    enforce_price_impact: bool = False  # otherwise impact is recorded, not gated
    premium_bps: int = 5  # lender premium
    max_opportunity_age_seconds: float = 3.0
    max_fee_profit_ratio: float = 0.5  # reject if fee > ratio * expected profit
    gas_limit: int = 800_000
    confirmation_timeout_seconds: float = 60.0
    scan_interval_seconds: float = 2.0
    dry_run: bool = False  # simulate only, never submit

    @property
    def slippage_tolerance_bps(self) -> int:
        return int(round(self.slippage_tolerance_pct * 100))


@dataclass
class RiskConfig:
    """Circuit breaker parameters."""
    max_failures: int = 5
    reset_timeout_seconds: float = 60.0
    paused_poll_seconds: float = 10.0


@dataclass
class LockConfig:
    """Execution mutex parameters."""
    redis_url: str = ""  # empty: in-process backend
    lock_ttl_ms: int = 15_000
    key_prefix: str = "arb_lock"


@dataclass
class SubmissionConfig:
    """Transaction delivery parameters."""
    channel: str = "private"
    relay_url: str = "https://relay.flashbots.net"
    relay_signing_key: Optional[str] = field(
        default_factory=lambda: os.environ.get("RELAY_SIGNING_KEY")
    )
    bundle_blocks: int = 3


@dataclass
class Config:
    """Main configuration container."""
    # Secrets from environment
    private_key: str = field(default_factory=lambda: os.environ.get("PRIVATE_KEY", ""))

    # Sub-configs
    chain: ChainConfig = field(default_factory=ChainConfig)
    trading: TradingConfig = field(default_factory=TradingConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    lock: LockConfig = field(default_factory=LockConfig)
    submission: SubmissionConfig = field(default_factory=SubmissionConfig)

    # Venues to monitor
    venues: list[VenueConfig] = field(default_factory=list)

    # Logging
    log_level: str = field(default_factory=lambda: os.environ.get("LOG_LEVEL", "INFO"))
    log_file: str = field(default_factory=lambda: os.environ.get("LOG_FILE", "arb_bot.log"))

    # Database
    db_path: str = field(default_factory=lambda: os.environ.get("DB_PATH", "arb_bot.db"))

    def validate(self) -> list[str]:
        """Validate configuration. Returns list of errors."""
        errors = []

        if not self.private_key:
            errors.append("PRIVATE_KEY is required")
        if not self.chain.contract_address:
            errors.append("CONTRACT_ADDRESS is required")
        if not self.trading.scan_token:
            errors.append("SCAN_TOKEN is required")
        if len(self.venues) < 2:
            errors.append("At least two venues must be configured")
        for venue in self.venues:
            if venue.kind not in VENUE_KINDS:
                errors.append(f"Venue {venue.name}: unknown kind {venue.kind}")
            if self.trading.scan_token and self.trading.scan_token not in (venue.token0, venue.token1):
                errors.append(f"Venue {venue.name} does not trade {self.trading.scan_token}")
        venue_ids = [v.venue_id for v in self.venues]
        if len(set(venue_ids)) != len(venue_ids):
            errors.append("Venue ids must be unique")
        if self.trading.amount_in <= 0:
            errors.append("amount_in must be positive")
        if self.trading.min_profit < 0:
            errors.append("min_profit cannot be negative")
        if not 0 <= self.trading.slippage_tolerance_pct < 100:
            errors.append("slippage_tolerance_pct must be in [0, 100)")
        if not 0 < self.trading.max_price_impact_pct < 100:
            errors.append("max_price_impact_pct must be in (0, 100)")
        if self.trading.max_opportunity_age_seconds <= 0:
            errors.append("max_opportunity_age_seconds must be positive")
        if self.trading.max_fee_profit_ratio <= 0:
            errors.append("max_fee_profit_ratio must be positive")
        if self.risk.max_failures < 1:
            errors.append("max_failures must be at least 1")
        if self.submission.channel not in CHANNELS:
            errors.append(f"SUBMISSION_CHANNEL must be one of {', '.join(CHANNELS)}")
        if self.submission.bundle_blocks < 1:
            errors.append("bundle_blocks must be at least 1")

        return errors


def parse_venues(venues_str: str) -> list[VenueConfig]:
    """
    Parse venue definitions.
    Format: VENUES=name:kind:address:router:token0:token1[:fee],...
    """
    venues = []
    for venue_def in venues_str.split(","):
        parts = venue_def.strip().split(":")
        if len(parts) < 6:
            continue
        venues.append(VenueConfig(
            name=parts[0],
            kind=parts[1],
            address=parts[2],
            router=parts[3],
            token0=parts[4],
            token1=parts[5],
            fee=int(parts[6]) if len(parts) > 6 and parts[6] else None,
        ))
    return venues


def _env_bool(name: str) -> bool:
    return os.environ.get(name, "").lower() in ("1", "true", "yes")


def load_config_from_env() -> Config:
    """Load configuration from environment variables."""
    config = Config()

    config.venues = parse_venues(os.environ.get("VENUES", ""))

    # Chain
    if os.environ.get("RPC_URL"):
        config.chain.rpc_url = os.environ["RPC_URL"]
    if os.environ.get("WS_URL"):
        config.chain.ws_url = os.environ["WS_URL"]
    if os.environ.get("CHAIN_ID"):
        config.chain.chain_id = int(os.environ["CHAIN_ID"])
    if os.environ.get("CONTRACT_ADDRESS"):
        config.chain.contract_address = os.environ["CONTRACT_ADDRESS"]
    if os.environ.get("QUOTER_ADDRESS"):
        config.chain.quoter_address = os.environ["QUOTER_ADDRESS"]

    # Trading
    if os.environ.get("SCAN_TOKEN"):
        config.trading.scan_token = os.environ["SCAN_TOKEN"]
    if os.environ.get("SCAN_AMOUNT"):
        config.trading.amount_in = int(os.environ["SCAN_AMOUNT"])
    if os.environ.get("MIN_PROFIT"):
        config.trading.min_profit = int(os.environ["MIN_PROFIT"])
    if os.environ.get("MIN_NET_PROFIT"):
        config.trading.min_net_profit = int(os.environ["MIN_NET_PROFIT"])
    if os.environ.get("SLIPPAGE_TOLERANCE"):
        config.trading.slippage_tolerance_pct = float(os.environ["SLIPPAGE_TOLERANCE"])
    if os.environ.get("MAX_PRICE_IMPACT"):
        config.trading.max_price_impact_pct = float(os.environ["MAX_PRICE_IMPACT"])
    if os.environ.get("PREMIUM_BPS"):
        config.trading.premium_bps = int(os.environ["PREMIUM_BPS"])
    if os.environ.get("MAX_OPPORTUNITY_AGE"):
        config.trading.max_opportunity_age_seconds = float(os.environ["MAX_OPPORTUNITY_AGE"])
    if os.environ.get("MAX_FEE_PROFIT_RATIO"):
        config.trading.max_fee_profit_ratio = float(os.environ["MAX_FEE_PROFIT_RATIO"])
    if os.environ.get("GAS_LIMIT"):
        config.trading.gas_limit = int(os.environ["GAS_LIMIT"])
    if os.environ.get("CONFIRMATION_TIMEOUT"):
        config.trading.confirmation_timeout_seconds = float(os.environ["CONFIRMATION_TIMEOUT"])
    if os.environ.get("SCAN_INTERVAL"):
        config.trading.scan_interval_seconds = float(os.environ["SCAN_INTERVAL"])
    config.trading.enforce_price_impact = _env_bool("ENFORCE_PRICE_IMPACT")
    config.trading.dry_run = _env_bool("DRY_RUN")

    # Risk
    if os.environ.get("MAX_FAILURES"):
        config.risk.max_failures = int(os.environ["MAX_FAILURES"])
    if os.environ.get("RESET_TIMEOUT"):
        config.risk.reset_timeout_seconds = float(os.environ["RESET_TIMEOUT"])
    if os.environ.get("PAUSED_POLL"):
        config.risk.paused_poll_seconds = float(os.environ["PAUSED_POLL"])

    # Lock
    if os.environ.get("REDIS_URL"):
        config.lock.redis_url = os.environ["REDIS_URL"]
    if os.environ.get("LOCK_TTL_MS"):
        config.lock.lock_ttl_ms = int(os.environ["LOCK_TTL_MS"])

    # Submission
    if os.environ.get("SUBMISSION_CHANNEL"):
        config.submission.channel = os.environ["SUBMISSION_CHANNEL"].lower()
    if os.environ.get("RELAY_URL"):
        config.submission.relay_url = os.environ["RELAY_URL"]
    if os.environ.get("BUNDLE_BLOCKS"):
        config.submission.bundle_blocks = int(os.environ["BUNDLE_BLOCKS"])

    return config
