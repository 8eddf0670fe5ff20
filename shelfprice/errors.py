# shelfprice/errors.py

"""Exception hierarchy shared by the ingestion and suggestion paths."""


class ShelfPriceError(Exception):
    """Base class for all shelfprice errors."""


class ConfigurationError(ShelfPriceError):
    """Missing credentials or connection settings at startup."""


class OracleError(ShelfPriceError):
    """The normalization oracle failed to answer a batch."""


class StorageError(ShelfPriceError):
    """A read or write against the price database failed."""
