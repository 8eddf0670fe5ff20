# shelfprice/cli/runner.py

"""Headless CLI: ingest offers, suggest a store or browse current deals."""

import json
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from shelfprice.errors import ConfigurationError
from shelfprice.models.cart import NotFound, StoreOption, Suggestion
from shelfprice.models.deals import DealPage, ProductDetails, ProductOffer
from shelfprice.services.catalog_resolver import CatalogResolver
from shelfprice.services.deal_browser import DealBrowser
from shelfprice.services.ingestion import IngestionPipeline
from shelfprice.services.offer_normalizer import OfferNormalizer
from shelfprice.services.price_ledger import PriceLedger
from shelfprice.services.suggestion_engine import SuggestionEngine
from shelfprice.services.unifier import (
    GeminiUnifier,
    RuleBasedUnifier,
    Unifier,
)
from shelfprice.storage.offer_loader import load_offers
from shelfprice.storage.price_db import PriceDB

logger = logging.getLogger("shelfprice.cli")

# Stderr console for status messages so stdout stays clean for JSON
_err = Console(stderr=True)

EXIT_OK = 0
EXIT_EMPTY = 1
EXIT_CONFIG = 2


def build_unifier(name: str) -> Unifier:
    """Instantiate the oracle selected on the command line."""
    if name == "rules":
        return RuleBasedUnifier()
    if name == "gemini":
        return GeminiUnifier()
    raise ConfigurationError(f"Unknown unifier '{name}'")


def _option_to_dict(option: StoreOption) -> dict[str, object]:
    return {
        "chain": option.chain.name,
        "totalBgn": option.total_bgn,
        "totalEur": option.total_eur,
        "coveredItems": option.covered_items,
        "totalItems": option.total_items,
        "items": [
            {
                "productId": i.product_public_id,
                "name": i.product_name,
                "quantity": i.quantity,
                "unitPriceBgn": i.unit_price_bgn,
                "unitPriceEur": i.unit_price_eur,
                "discount": i.discount,
            }
            for i in option.items
        ],
    }


def suggestion_to_dict(suggestion: Suggestion) -> dict[str, object]:
    """Serialise a suggestion to plain dicts for JSON output."""
    return {
        "cartId": suggestion.cart_public_id,
        "best": (
            _option_to_dict(suggestion.best) if suggestion.best else None
        ),
        "alternatives": [
            _option_to_dict(o) for o in suggestion.alternatives
        ],
        "unpricedItems": suggestion.unpriced_items,
    }


def _print_table(suggestion: Suggestion) -> None:
    """Render a Rich table of ranked store options to stdout."""
    table = Table(
        title="Store Options",
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("#", style="dim", width=4)
    table.add_column("Chain", style="magenta")
    table.add_column("Items", justify="center")
    table.add_column("Total BGN", justify="right", style="green")
    table.add_column("Total EUR", justify="right", style="green")

    options: list[StoreOption] = []
    if suggestion.best is not None:
        options.append(suggestion.best)
    options.extend(suggestion.alternatives)

    for idx, option in enumerate(options, 1):
        table.add_row(
            str(idx),
            option.chain.name,
            f"{option.covered_items}/{option.total_items}",
            f"{option.total_bgn:,.2f}",
            f"{option.total_eur:,.2f}",
        )

    Console().print(table)


def _dump_json(data: dict[str, object]) -> None:
    json.dump(data, sys.stdout, ensure_ascii=False, indent=2)
    sys.stdout.write("\n")


async def run_ingest(
    path: str,
    unifier_name: str,
    db_path: str | None = None,
) -> int:
    """Run one ingestion cycle from offer files; returns an exit code."""
    try:
        unifier = build_unifier(unifier_name)
        db = PriceDB(Path(db_path) if db_path else None)
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        _err.print(f"[red]Configuration error: {exc}[/red]")
        return EXIT_CONFIG

    try:
        offers = load_offers(Path(path))
        if not offers:
            _err.print(f"[yellow]No offers found at {path}.[/yellow]")
            return EXIT_EMPTY

        _err.print(
            f"[bold]Ingesting:[/bold] {len(offers)} offers  "
            f"[dim]unifier={unifier.name}[/dim]"
        )
        pipeline = IngestionPipeline(
            OfferNormalizer(db, unifier),
            CatalogResolver(db),
            PriceLedger(db),
        )
        report = await pipeline.run_cycle(offers)
    finally:
        db.close()

    for error_msg in report.errors:
        _err.print(f"[red]Error: {error_msg}[/red]")

    if report.unified_count == 0:
        _err.print("[yellow]Nothing was ingested.[/yellow]")
        return EXIT_EMPTY

    _err.print(
        f"[green]✓ {report.products_resolved} products,"
        f" {report.prices_written} price records"
        f" from {report.raw_count} offers"
        f" ({report.dropped_count} dropped)[/green]"
    )
    return EXIT_OK


async def run_suggest(
    user_id: str,
    output_format: str,
    db_path: str | None = None,
) -> int:
    """Print the cheapest store for ``user_id``'s cart; returns an exit code."""
    try:
        db = PriceDB(Path(db_path) if db_path else None)
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        _err.print(f"[red]Configuration error: {exc}[/red]")
        return EXIT_CONFIG

    try:
        result = await SuggestionEngine(db).suggest_cheapest_store(user_id)
    finally:
        db.close()

    if isinstance(result, NotFound):
        _err.print(
            f"[yellow]No {result.reason} found for user {user_id}.[/yellow]"
        )
        return EXIT_EMPTY

    if result.best is None:
        _err.print("[yellow]Nothing in the cart is currently priced.[/yellow]")
    else:
        _err.print(
            f"[green]✓ Cheapest: {result.best.chain.name}"
            f" ({result.best.total_bgn:,.2f} BGN)[/green]"
        )

    if output_format == "table":
        _print_table(result)
    else:
        _dump_json(suggestion_to_dict(result))

    return EXIT_OK if result.best is not None else EXIT_EMPTY


def _offer_to_dict(offer: ProductOffer) -> dict[str, object]:
    return {
        "productId": offer.product_public_id,
        "name": offer.name,
        "brand": offer.brand,
        "unit": offer.unit,
        "imageUrl": offer.image_url,
        "category": offer.category,
        "chain": offer.chain,
        "priceBgn": offer.price_bgn,
        "priceEur": offer.price_eur,
        "discount": offer.discount,
        "validTo": offer.valid_to.isoformat() if offer.valid_to else None,
    }


def deal_page_to_dict(page: DealPage) -> dict[str, object]:
    """Serialise a deal page to plain dicts for JSON output."""
    return {
        "section": page.section,
        "title": page.title,
        "products": [_offer_to_dict(o) for o in page.offers],
        "pagination": {
            "offset": page.offset,
            "limit": page.limit,
            "hasMore": page.has_more,
        },
    }


def product_details_to_dict(details: ProductDetails) -> dict[str, object]:
    """Serialise product details with their history, oldest first."""
    product = details.product
    return {
        "publicId": product.public_id,
        "name": product.name,
        "brand": product.brand,
        "barcode": product.barcode,
        "imageUrl": product.image_url,
        "unit": product.unit,
        "category": details.category.name if details.category else None,
        "prices": [
            {
                "chain": e.chain.name,
                "priceBgn": e.record.price_bgn,
                "priceEur": e.record.price_eur,
                "discount": e.record.discount,
                "validFrom": e.record.valid_from.isoformat(),
                "validTo": (
                    e.record.valid_to.isoformat()
                    if e.record.valid_to else None
                ),
                "current": e.record.is_valid_at(details.at),
            }
            for e in details.prices
        ],
    }


def _print_deals_table(page: DealPage) -> None:
    """Render one page of a deal listing to stdout."""
    table = Table(title=page.title, show_lines=True, title_style="bold cyan")
    table.add_column("#", style="dim", width=4)
    table.add_column("Product", style="bold", max_width=50)
    table.add_column("Chain", style="magenta")
    table.add_column("BGN", justify="right", style="green")
    table.add_column("EUR", justify="right", style="green")
    table.add_column("Discount", justify="right", style="yellow")

    for idx, offer in enumerate(page.offers, page.offset + 1):
        table.add_row(
            str(idx),
            offer.name,
            offer.chain,
            f"{offer.price_bgn:,.2f}",
            f"{offer.price_eur:,.2f}",
            f"-{offer.discount}%" if offer.discount else "",
        )

    Console().print(table)


def _print_details_table(details: ProductDetails) -> None:
    """Render a product's price history to stdout."""
    table = Table(
        title=details.product.name, show_lines=True, title_style="bold cyan",
    )
    table.add_column("Chain", style="magenta")
    table.add_column("BGN", justify="right", style="green")
    table.add_column("EUR", justify="right", style="green")
    table.add_column("Discount", justify="right", style="yellow")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Now", justify="center")

    for entry in details.prices:
        record = entry.record
        table.add_row(
            entry.chain.name,
            f"{record.price_bgn:,.2f}",
            f"{record.price_eur:,.2f}",
            f"-{record.discount}%" if record.discount else "",
            record.valid_from.date().isoformat(),
            record.valid_to.date().isoformat() if record.valid_to else "",
            "✓" if record.is_valid_at(details.at) else "",
        )

    Console().print(table)


async def run_deals(
    section: str,
    output_format: str,
    offset: int = 0,
    limit: int | None = None,
    db_path: str | None = None,
) -> int:
    """Print one page of a deal listing; returns an exit code."""
    try:
        db = PriceDB(Path(db_path) if db_path else None)
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        _err.print(f"[red]Configuration error: {exc}[/red]")
        return EXIT_CONFIG

    try:
        result = await DealBrowser(db).browse(section, offset, limit)
    except ValueError as exc:
        _err.print(f"[red]{exc}[/red]")
        return EXIT_CONFIG
    finally:
        db.close()

    if isinstance(result, NotFound):
        _err.print(
            f"[yellow]Unknown section '{section}'. Use top, our-choice"
            f" or a chain name.[/yellow]"
        )
        return EXIT_EMPTY

    if output_format == "table":
        _print_deals_table(result)
    else:
        _dump_json(deal_page_to_dict(result))

    if not result.offers:
        _err.print("[yellow]No current offers in this section.[/yellow]")
        return EXIT_EMPTY
    return EXIT_OK


async def run_product(
    public_id: str,
    output_format: str,
    db_path: str | None = None,
) -> int:
    """Print a product's details and price history; returns an exit code."""
    try:
        db = PriceDB(Path(db_path) if db_path else None)
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        _err.print(f"[red]Configuration error: {exc}[/red]")
        return EXIT_CONFIG

    try:
        result = await DealBrowser(db).product_details(public_id)
    finally:
        db.close()

    if isinstance(result, NotFound):
        _err.print(f"[yellow]No product with id {public_id}.[/yellow]")
        return EXIT_EMPTY

    if output_format == "table":
        _print_details_table(result)
    else:
        _dump_json(product_details_to_dict(result))
    return EXIT_OK
