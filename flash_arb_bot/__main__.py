"""
Entry point for running the arbitrage bot.
Usage: python -m flash_arb_bot [--dry-run] [--check]
"""

import argparse
import asyncio
import sys
from typing import Optional

from .bot import run_bot
from .config import Config, load_config_from_env


def _describe(config: Config) -> None:
    """Print the venues and submission settings a run would use."""
    trading = config.trading
    print(f"Scan token: {trading.scan_token} amount_in={trading.amount_in}")
    for index, venue in enumerate(config.venues):
        print(f"  [{index}] {venue.venue_id} ({venue.kind}, fee {venue.effective_fee}) {venue.address}")
    print(f"Channel: {config.submission.channel}  dry_run={trading.dry_run}")
    print(f"Lock backend: {config.lock.redis_url or 'in-process'}")


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(prog="flash_arb_bot")
    parser.add_argument("--dry-run", action="store_true", help="simulate only, never submit")
    parser.add_argument("--check", action="store_true", help="validate configuration and exit")
    args = parser.parse_args(argv)

    try:
        config = load_config_from_env()
        if args.dry_run:
            config.trading.dry_run = True

        errors = config.validate()
        if errors:
            print("Configuration errors:", file=sys.stderr)
            for error in errors:
                print(f"  - {error}", file=sys.stderr)
            return 1

        if args.check:
            _describe(config)
            return 0

        asyncio.run(run_bot(config))
        return 0

    except KeyboardInterrupt:
        print("\nShutdown requested")
        return 0
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
