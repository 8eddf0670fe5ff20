# shelfprice/storage/offer_loader.py

"""Load scraped offers from the scrapers' JSON output files."""

import json
import logging
from pathlib import Path
from typing import cast

from shelfprice.models.offer import RawOffer

logger = logging.getLogger("shelfprice.storage")


def load_offer_file(filepath: Path) -> list[RawOffer]:
    """Read one JSON file holding an array of scraped offers.

    Unreadable files, non-array payloads and entries without a chain or
    name are skipped with a warning.
    """
    try:
        with open(filepath, encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Failed to read %s: %s", filepath.name, exc)
        return []

    if not isinstance(data, list):
        logger.warning(
            "Skipping %s: expected a JSON array of offers",
            filepath.name,
        )
        return []

    items: list[object] = cast(list[object], data)
    offers: list[RawOffer] = []
    skipped = 0
    for entry in items:
        if not isinstance(entry, dict):
            skipped += 1
            continue
        offer = RawOffer.from_dict(entry)
        if not offer.chain or not offer.name:
            skipped += 1
            continue
        offers.append(offer)

    if skipped:
        logger.info(
            "Skipped %d malformed offers in %s", skipped, filepath.name,
        )
    return offers


def load_offers(path: Path) -> list[RawOffer]:
    """Load offers from a file or from every ``*.json`` file in a directory."""
    if path.is_file():
        return load_offer_file(path)
    if not path.is_dir():
        logger.warning("Offers path not found: %s", path)
        return []

    offers: list[RawOffer] = []
    files = sorted(path.glob("*.json"))
    for filepath in files:
        offers.extend(load_offer_file(filepath))

    logger.info(
        "Loaded %d offers from %d files in %s",
        len(offers),
        len(files),
        path,
    )
    return offers
