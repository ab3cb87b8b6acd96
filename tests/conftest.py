"""
Global pytest fixtures for the leasecost test suite.
"""

import os
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set test environment BEFORE any package imports
os.environ["TESTING"] = "true"

from leasecost.core.config import Settings  # noqa: E402
from leasecost.shared.adapters.base import CostQueryClient  # noqa: E402


@pytest.fixture
def settings() -> Settings:
    return Settings(TESTING=True)


@pytest.fixture
def mock_client() -> AsyncMock:
    """CostQueryClient whose query_grouped_cost is an AsyncMock."""
    client = AsyncMock(spec=CostQueryClient)
    client.query_grouped_cost.return_value = []
    return client


@pytest.fixture
def mock_logger() -> MagicMock:
    return MagicMock()
