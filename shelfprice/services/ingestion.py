# shelfprice/services/ingestion.py

"""One ingestion cycle: normalize raw offers, then record their prices."""

import asyncio
import logging
from dataclasses import dataclass, field

from shelfprice.config.settings import Settings
from shelfprice.errors import StorageError
from shelfprice.models.offer import RawOffer, UnifiedProduct
from shelfprice.services.catalog_resolver import CatalogResolver
from shelfprice.services.offer_normalizer import OfferNormalizer
from shelfprice.services.price_ledger import PriceLedger
from shelfprice.utils.batching import chunk

logger = logging.getLogger("shelfprice.ingestion")


@dataclass
class IngestionReport:
    """Outcome of ``IngestionPipeline.run_cycle``."""

    raw_count: int = 0
    unified_count: int = 0
    dropped_count: int = 0
    products_resolved: int = 0
    prices_written: int = 0
    errors: list[str] = field(default_factory=lambda: list[str]())


class IngestionPipeline:
    """Drives OfferNormalizer, CatalogResolver and PriceLedger."""

    def __init__(
        self,
        normalizer: OfferNormalizer,
        resolver: CatalogResolver,
        ledger: PriceLedger,
        batch_size: int | None = None,
        concurrency: int | None = None,
    ) -> None:
        self._normalizer = normalizer
        self._resolver = resolver
        self._ledger = ledger
        self.batch_size = (
            Settings.INGEST_BATCH_SIZE if batch_size is None else batch_size
        )
        self.concurrency = (
            Settings.INGEST_CONCURRENCY if concurrency is None else concurrency
        )
        if self.batch_size <= 0 or self.concurrency <= 0:
            raise ValueError(
                "batch_size and concurrency must be positive, got "
                f"{self.batch_size} and {self.concurrency}"
            )

    async def _ingest_one(
        self,
        unified: UnifiedProduct,
        semaphore: asyncio.Semaphore,
        report: IngestionReport,
    ) -> None:
        async with semaphore:
            try:
                product = await self._resolver.resolve(unified)
            except StorageError as exc:
                logger.error(
                    "Could not resolve product '%s': %s",
                    unified.name,
                    exc,
                    exc_info=True,
                )
                report.errors.append(f"{unified.name}: {exc}")
                return
            report.products_resolved += 1
            report.prices_written += await self._ledger.ingest(
                product, unified.chain_prices,
            )

    async def run_cycle(self, raw_offers: list[RawOffer]) -> IngestionReport:
        """Normalize ``raw_offers`` and persist every resulting price."""
        report = IngestionReport(raw_count=len(raw_offers))
        if not raw_offers:
            logger.info("No offers to ingest")
            return report

        unified = await self._normalizer.unify_and_filter(raw_offers)
        stats = self._normalizer.stats
        report.unified_count = len(unified)
        report.dropped_count = stats.invalid_count + stats.unclassified_count
        if stats.failed_batches:
            report.errors.append(
                f"{stats.failed_batches} normalization batch(es) failed"
            )

        semaphore = asyncio.Semaphore(self.concurrency)
        for index, group in enumerate(chunk(unified, self.batch_size), 1):
            await asyncio.gather(
                *(self._ingest_one(u, semaphore, report) for u in group)
            )
            logger.debug(
                "Ingested chunk %d (%d products)", index, len(group),
            )

        logger.info(
            "Ingestion cycle done: %d raw, %d unified, %d resolved, "
            "%d prices written, %d errors",
            report.raw_count,
            report.unified_count,
            report.products_resolved,
            report.prices_written,
            len(report.errors),
        )
        return report
