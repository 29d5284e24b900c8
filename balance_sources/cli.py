"""
Balance Sources - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line entry point for one snapshot pass.

- Loads a YAML source config (and .env overrides)
- Resolves the snapshot height
- Streams scaled balances as JSON lines

============================================================
USAGE
============================================================
python -m balance_sources.cli --config astroport.yaml --height 12345678
python -m balance_sources.cli --config neutron.yaml --multiplier untrn=1.5
python -m balance_sources.cli --list-protocols

Config file:

    source:
      protocol: astroport
      endpoint: https://rest.example.org
      concurrency_limit: 3
      pagination_limit: 30
      assets:
        atom-ntrn:
          denom: ibc/C4CF...
          pair_contract: neutron1...
    multipliers:
      atom-ntrn: 1.5

============================================================
"""

import argparse
import asyncio
import json
import logging
import sys
from decimal import Decimal, InvalidOperation
from typing import IO, List, Optional

from dotenv import load_dotenv

from balance_sources import __version__
from balance_sources.config import SourceConfig, load_yaml
from balance_sources.exceptions import BalanceSourceError
from balance_sources.models import HolderBalance
from balance_sources.orchestrator import aggregate
from balance_sources.registry import list_protocols


logger = logging.getLogger(__name__)


# ============================================================
# CLI ARGUMENT PARSER
# ============================================================

def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="balance-sources",
        description="Stream height-pinned, multiplier-scaled holder balances",
    )

    parser.add_argument(
        "--config", "-c",
        type=str,
        metavar="PATH",
        help="YAML source config",
    )

    parser.add_argument(
        "--height",
        type=int,
        metavar="BLOCK",
        help="Snapshot height (default: latest block)",
    )

    parser.add_argument(
        "--multiplier", "-m",
        action="append",
        default=[],
        metavar="ASSET=RATE",
        help="Reward multiplier for an asset (repeatable, overrides config)",
    )

    parser.add_argument(
        "--output", "-o",
        type=str,
        metavar="PATH",
        help="Write JSON lines here instead of stdout",
    )

    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default="INFO",
        help="Logging level (default: INFO)",
    )

    parser.add_argument(
        "--list-protocols",
        action="store_true",
        help="List registered protocols and exit",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    return parser


# ============================================================
# CLI VALIDATION
# ============================================================

def parse_multipliers(values: List[str]) -> tuple[dict[str, Decimal], List[str]]:
    """Parse ASSET=RATE pairs; returns (multipliers, errors)."""
    multipliers: dict[str, Decimal] = {}
    errors = []
    for value in values:
        asset_id, sep, rate = value.partition("=")
        if not sep or not asset_id:
            errors.append(f"--multiplier must look like ASSET=RATE, got {value!r}")
            continue
        try:
            multipliers[asset_id] = Decimal(rate)
        except InvalidOperation:
            errors.append(f"Invalid rate for {asset_id}: {rate!r}")
    return multipliers, errors


def validate_args(args: argparse.Namespace) -> List[str]:
    """Validate CLI arguments."""
    errors = []
    if not args.config:
        errors.append("--config is required")
    if args.height is not None and args.height < 1:
        errors.append("--height must be a positive block height")
    return errors


# ============================================================
# MAIN ENTRY POINT
# ============================================================

async def async_main(args: argparse.Namespace, out: IO[str]) -> int:
    """Run one pass; returns the exit code."""
    try:
        data = load_yaml(args.config)
        config = SourceConfig.from_dict(data.get("source", data), env=True)

        multipliers = dict(data.get("multipliers") or {})
        cli_multipliers, _ = parse_multipliers(args.multiplier)
        multipliers.update(cli_multipliers)

        def write_batch(records: list[HolderBalance]) -> None:
            for record in records:
                out.write(json.dumps(record.to_dict()) + "\n")
            out.flush()

        result = await aggregate(config, multipliers, write_batch, height=args.height)
        logger.info(f"Summary: {json.dumps(result.to_dict())}")
        return 0

    except BalanceSourceError as e:
        logger.error(f"Fatal error: {e}")
        return 1
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


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

    if args.list_protocols:
        for protocol in list_protocols():
            print(protocol)
        return 0

    errors = validate_args(args)
    _, multiplier_errors = parse_multipliers(args.multiplier)
    errors.extend(multiplier_errors)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 2

    load_dotenv()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s | %(levelname)-5s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )

    try:
        if args.output:
            with open(args.output, "w") as out:
                return asyncio.run(async_main(args, out))
        return asyncio.run(async_main(args, sys.stdout))
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        return 130


# ============================================================
# MODULE EXECUTION
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
