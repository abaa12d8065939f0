"""
Pytest fixtures for the lot costing test suite.

Provides:
- Structured logging configuration and log capture
- Stock lot factories
- Deterministic clock
"""

import json
import logging
from datetime import date
from io import StringIO

import pytest

from costing_engines.valuation import ProductCostingProfile, StockLot
from costing_kernel.domain.clock import DeterministicClock
from costing_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from tests.factories import PRODUCT_ID, make_lot


# ---------------------------------------------------------------------------
# Logging fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture costing_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            allocator.allocate(lots, Decimal("7"), CostingPolicy.FIFO)
            logs = captured_logs()
            assert any(r["message"] == "lot_allocation_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("costing_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# ---------------------------------------------------------------------------
# Lot fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def two_lots() -> list[StockLot]:
    """Older lot A (5 @ 10.00) and newer lot B (10 @ 12.00)."""
    return [
        make_lot("A", date(2024, 1, 1), "5", "10.00"),
        make_lot("B", date(2024, 2, 1), "10", "12.00"),
    ]


@pytest.fixture
def fifo_product() -> ProductCostingProfile:
    return ProductCostingProfile(product_id=PRODUCT_ID)


@pytest.fixture
def lifo_product() -> ProductCostingProfile:
    return ProductCostingProfile(product_id=PRODUCT_ID, costing_policy="lifo")


# ---------------------------------------------------------------------------
# Clock fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()
