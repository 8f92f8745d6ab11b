"""
Exchange Portfolio - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line access to holdings, token prices and the full
portfolio valuation.

- Provides argparse-based CLI
- Loads configuration from the environment (.env supported)
- Prints JSON to stdout

============================================================
USAGE
============================================================
python -m exchange_portfolio holdings
python -m exchange_portfolio prices ada bnb btc
python -m exchange_portfolio valuation --log-level DEBUG

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, List, Optional

from .config import PortfolioEngineConfig
from .errors import PortfolioEngineError
from .service import PortfolioService
from .symbols import to_pair_symbols, to_token


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="exchange-portfolio",
        description="Exchange account valuation and ticker prices",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  holdings   - Held assets worth more than the materiality threshold
  prices     - Latest prices for the given tokens
  valuation  - Full valuation snapshot

Examples:
  %(prog)s holdings
  %(prog)s prices ada bnb
  %(prog)s valuation --env-file .env.production
        """
    )

    parser.add_argument(
        "command",
        choices=["holdings", "prices", "valuation"],
        help="Operation to run",
    )

    parser.add_argument(
        "tokens",
        nargs="*",
        help="Tokens for the prices command (e.g. ada bnb)",
    )

    parser.add_argument(
        "--env-file",
        type=str,
        default=None,
        metavar="PATH",
        help="Dotenv file to load (default: .env)",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Logging level (default: WARNING)",
    )

    parser.add_argument(
        "--sync-time",
        action="store_true",
        help="Align request timestamps with the exchange clock first",
    )

    return parser


def validate_args(args: argparse.Namespace) -> List[str]:
    """
    Validate CLI arguments.

    Returns:
        List of validation errors
    """
    errors = []
    if args.command == "prices" and not args.tokens:
        errors.append("prices requires at least one token (e.g. ada bnb)")
    if args.command != "prices" and args.tokens:
        errors.append(f"{args.command} takes no tokens")
    return errors


# ============================================================
# COMMANDS
# ============================================================

async def run_command(service: PortfolioService, args: argparse.Namespace) -> Any:
    """Run the selected command and return a JSON-serializable result."""
    if args.sync_time:
        await service.client.sync_server_time()

    if args.command == "holdings":
        holdings = await service.fetch_holdings()
        return [
            {
                "token": holding["asset"].lower(),
                "type": holding["type"],
                "amount": holding["total_amount"],
            }
            for holding in holdings
        ]

    if args.command == "prices":
        reference = service.reference_asset
        symbols = to_pair_symbols(args.tokens, reference)
        prices = await service.fetch_token_prices(symbols)
        return [
            {"token": to_token(item["token"], reference), "price": item["price"]}
            for item in prices
        ]

    snapshot = await service.calculate_total_assets()
    return snapshot.to_dict()


async def async_main(args: argparse.Namespace) -> int:
    """
    Async main entry point.

    Returns:
        Exit code
    """
    try:
        config = PortfolioEngineConfig.from_env(args.env_file)
    except PortfolioEngineError as e:
        logging.error(f"Invalid configuration: {e}")
        return 2

    async with PortfolioService.from_config(config) as service:
        try:
            result = await run_command(service, args)
        except PortfolioEngineError as e:
            logging.error(f"{args.command} failed: {e}")
            print(json.dumps({"error": type(e).__name__, "message": str(e)}), file=sys.stderr)
            return 1

    print(json.dumps(result, indent=2, default=str))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    return asyncio.run(async_main(args))


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
