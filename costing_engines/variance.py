"""
costing_engines.variance -- Physical vs accounting cost variance of a lot consumption.

Responsibility:
    Compare the cost of the lots actually consumed (physical) against the
    FIFO-mandated allocation (accounting), decide whether the difference
    is significant, and describe how a selection deviates from FIFO.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import costing_kernel and costing_engines.valuation.
    Consumed by the lot selection controller and the order-line costing
    service.

Invariants enforced:
    - variance == physical_cost - accounting_cost, so evaluating a set
      against itself yields zero and no variance.
    - has_variance is |variance| > 0.01 (strict); 0.01 itself is noise.
    - Equivalence of two allocation sets is a value comparison of sorted
      (lot_id, quantity_used) pairs within the allocation epsilon. Order of
      entries never matters.

Failure modes:
    - CurrencyMismatchError if the two sets are in different currencies.
    - Division-by-zero safe: variance_percentage is 0 when the accounting
      cost is zero.

Audit relevance:
    A significant variance forces a justification note at finalization;
    the result is recorded on the order line costing.

Usage:
    from costing_engines.variance import CostVarianceEvaluator

    evaluator = CostVarianceEvaluator()
    result = evaluator.evaluate(physical=manual_set, accounting=fifo_set)
    if result.has_variance:
        ...  # note required
"""

from __future__ import annotations

import time
from decimal import Decimal

from costing_engines.tracer import traced_engine
from costing_engines.valuation.costing import (
    CostVarianceResult,
    FifoDeviation,
    FifoDeviationKind,
)
from costing_engines.valuation.stock_lot import AllocationSet
from costing_kernel.domain.tolerances import DEFAULT_TOLERANCES, Tolerances
from costing_kernel.exceptions import CurrencyMismatchError
from costing_kernel.logging_config import get_logger

logger = get_logger("engines.variance")


def allocations_equivalent(
    a: AllocationSet,
    b: AllocationSet,
    tolerances: Tolerances = DEFAULT_TOLERANCES,
) -> bool:
    """True if both sets consume the same quantities from the same lots.

    Both sides are sorted by lot id; quantities match within the
    allocation epsilon. Consumption method and provenance are ignored.
    """
    if len(a) != len(b):
        return False
    left = sorted(a, key=lambda alloc: alloc.lot_id)
    right = sorted(b, key=lambda alloc: alloc.lot_id)
    for x, y in zip(left, right):
        if x.lot_id != y.lot_id:
            return False
        if abs(x.quantity_used - y.quantity_used) > tolerances.allocation_epsilon:
            return False
    return True


def detect_fifo_deviation(
    selected: AllocationSet,
    fifo: AllocationSet,
    tolerances: Tolerances = DEFAULT_TOLERANCES,
) -> FifoDeviation:
    """Describe how ``selected`` departs from the FIFO allocation ``fifo``."""
    selected_ids = set(selected.lot_ids)
    fifo_ids = set(fifo.lot_ids)

    if selected_ids != fifo_ids:
        unexpected = tuple(sorted(selected_ids - fifo_ids))
        skipped = tuple(sorted(fifo_ids - selected_ids))
        return FifoDeviation(
            kind=FifoDeviationKind.DIFFERENT_LOTS,
            message=(
                "Manual selection deviates from FIFO: different lots were used "
                f"(unexpected: {', '.join(unexpected) or '-'}; "
                f"skipped: {', '.join(skipped) or '-'})"
            ),
            unexpected_lot_ids=unexpected,
            skipped_lot_ids=skipped,
        )

    if not allocations_equivalent(selected, fifo, tolerances):
        return FifoDeviation(
            kind=FifoDeviationKind.DIFFERENT_QUANTITIES,
            message=(
                "Manual selection deviates from FIFO: the FIFO lots were used "
                "in different quantities"
            ),
        )

    return FifoDeviation(
        kind=FifoDeviationKind.NONE,
        message="Selection complies with FIFO",
    )


class CostVarianceEvaluator:
    """
    Pure evaluator of physical vs accounting cost.

    Contract:
        No I/O, no clock, fully deterministic.
    Guarantees:
        - ``accounting`` is treated as the FIFO baseline.
        - Percentage = variance / accounting_cost x 100.
    Non-goals:
        - Rounding costs to the currency's minor unit. Costs stay at full
          Decimal precision; display code rounds.
    """

    def __init__(self, tolerances: Tolerances = DEFAULT_TOLERANCES):
        self.tolerances = tolerances

    @traced_engine("cost_variance", "1.0", fingerprint_fields=("physical", "accounting"))
    def evaluate(
        self,
        physical: AllocationSet,
        accounting: AllocationSet,
    ) -> CostVarianceResult:
        """
        Evaluate the variance of ``physical`` against ``accounting``.

        Raises:
            CurrencyMismatchError: If the sets are in different currencies.
        """
        t0 = time.monotonic()

        if physical.currency != accounting.currency:
            logger.error("cost_variance_currency_mismatch", extra={
                "physical_currency": physical.currency.code,
                "accounting_currency": accounting.currency.code,
            })
            raise CurrencyMismatchError(physical.currency.code, accounting.currency.code)

        physical_cost = physical.total_cost
        accounting_cost = accounting.total_cost
        variance = physical_cost - accounting_cost

        if accounting_cost.is_zero:
            percentage = Decimal("0")
        else:
            percentage = (variance.amount / accounting_cost.amount) * Decimal("100")

        has_variance = abs(variance.amount) > self.tolerances.variance

        duration_ms = round((time.monotonic() - t0) * 1000, 2)
        logger.info("cost_variance_evaluated", extra={
            "product_id": physical.product_id,
            "physical_cost": str(physical_cost.amount),
            "accounting_cost": str(accounting_cost.amount),
            "variance": str(variance.amount),
            "has_variance": has_variance,
            "currency": physical.currency.code,
            "duration_ms": duration_ms,
        })

        return CostVarianceResult(
            physical_cost=physical_cost,
            accounting_cost=accounting_cost,
            variance=variance,
            variance_percentage=percentage,
            has_variance=has_variance,
        )

    def is_equivalent(self, a: AllocationSet, b: AllocationSet) -> bool:
        return allocations_equivalent(a, b, self.tolerances)

    def fifo_deviation(self, selected: AllocationSet, fifo: AllocationSet) -> FifoDeviation:
        return detect_fifo_deviation(selected, fifo, self.tolerances)
