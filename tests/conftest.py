# tests/conftest.py

"""Shared pytest fixtures for all shelfprice tests."""

from collections.abc import Generator
from unittest.mock import AsyncMock, patch

import pytest


@pytest.fixture(autouse=True)
def mock_cooldown() -> Generator[AsyncMock, None, None]:
    """Patch the batch-wave cooldown globally so waves run instantly."""
    with patch(
        "shelfprice.utils.batching._cooldown", new_callable=AsyncMock,
    ) as cooldown:
        yield cooldown
