# tests/test_settings.py

"""Tests for the central Settings values."""

import unittest

from shelfprice.config.settings import Settings


class TestSettings(unittest.TestCase):
    """Sanity checks on configured defaults."""

    def test_batching_defaults(self) -> None:
        """Oracle batches are 20 offers, 3 in flight, 35s apart."""
        self.assertEqual(Settings.UNIFY_BATCH_SIZE, 20)
        self.assertEqual(Settings.UNIFY_CONCURRENCY, 3)
        self.assertEqual(Settings.UNIFY_BATCH_DELAY, 35.0)

    def test_ingest_defaults(self) -> None:
        """Ingestion runs chunks of 50 with 10 products in flight."""
        self.assertEqual(Settings.INGEST_BATCH_SIZE, 50)
        self.assertEqual(Settings.INGEST_CONCURRENCY, 10)

    def test_store_chain_registry(self) -> None:
        """Every chain entry carries a name and base URL."""
        names = {c["name"] for c in Settings.STORE_CHAINS}
        self.assertEqual(names, {"Lidl", "Kaufland", "Billa", "TMarket"})
        for chain in Settings.STORE_CHAINS:
            self.assertTrue(chain["base_url"].startswith("https://"))

    def test_catch_all_category_is_excluded_name(self) -> None:
        """The fallback category is one the filter removes."""
        self.assertIn(Settings.DEFAULT_OTHER_CATEGORY, Settings.OTHER_CATEGORIES)
        self.assertNotIn(
            Settings.DEFAULT_OTHER_CATEGORY, Settings.SEED_CATEGORIES,
        )

    def test_rate_positive(self) -> None:
        """The BGN/EUR rate is a positive number."""
        self.assertGreater(Settings.BGN_TO_EUR_RATE, 0)


if __name__ == "__main__":
    unittest.main()
