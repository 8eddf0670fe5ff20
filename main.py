# main.py

"""Entry point for the shelfprice engine (ingestion, suggestion, deals)."""

import argparse
import asyncio
import logging
import sys

from shelfprice.config.logging_config import setup_logging
from shelfprice.config.settings import Settings

logger = logging.getLogger("shelfprice.main")


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    chains = ", ".join(c["name"] for c in Settings.STORE_CHAINS)

    parser = argparse.ArgumentParser(
        prog="shelfprice",
        description="Retail price ledger and cheapest-store suggestions.",
        epilog=f"Known chains: {chains}",
    )
    action = parser.add_mutually_exclusive_group(required=True)
    action.add_argument(
        "--ingest",
        default=None,
        metavar="PATH",
        help="Ingest scraped offers from a JSON file or directory.",
    )
    action.add_argument(
        "--suggest",
        default=None,
        metavar="USER_ID",
        help="Print the cheapest store for the user's cart.",
    )
    action.add_argument(
        "--deals",
        default=None,
        metavar="SECTION",
        help="List current deals: top, our-choice or a chain name.",
    )
    action.add_argument(
        "--product",
        default=None,
        metavar="PUBLIC_ID",
        help="Show a product and its price history.",
    )
    parser.add_argument(
        "--unifier",
        choices=["gemini", "rules"],
        default="gemini",
        help="Normalization oracle for --ingest (default: gemini).",
    )
    parser.add_argument(
        "--db",
        default=None,
        dest="db_path",
        help="Price database path (default: data/prices.db).",
    )
    parser.add_argument(
        "-f",
        "--format",
        choices=["json", "table"],
        default="json",
        dest="output_format",
        help="Output format for read commands (default: json).",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help=f"Deals per page (default: {Settings.DEAL_PAGE_LIMIT}).",
    )
    parser.add_argument(
        "--offset",
        type=int,
        default=0,
        help="Deals to skip before the page starts (default: 0).",
    )
    return parser


def main() -> None:
    """Route to the selected command and exit with its code."""
    log_file = setup_logging()
    logger.info("shelfprice starting, log file: %s", log_file)

    args = _build_parser().parse_args()

    from shelfprice.cli.runner import (
        run_deals,
        run_ingest,
        run_product,
        run_suggest,
    )

    try:
        if args.ingest is not None:
            exit_code = asyncio.run(
                run_ingest(args.ingest, args.unifier, args.db_path)
            )
        elif args.suggest is not None:
            exit_code = asyncio.run(
                run_suggest(args.suggest, args.output_format, args.db_path)
            )
        elif args.deals is not None:
            exit_code = asyncio.run(
                run_deals(
                    args.deals,
                    args.output_format,
                    args.offset,
                    args.limit,
                    args.db_path,
                )
            )
        else:
            exit_code = asyncio.run(
                run_product(args.product, args.output_format, args.db_path)
            )
    except Exception:
        logger.critical("Fatal error during run", exc_info=True)
        raise
    finally:
        logger.info("shelfprice shutting down")
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
