"""
costing_engines.valuation.costing -- Variance results and order-line costing.

Responsibility:
    Value objects produced by the variance evaluator and the lot
    selection controller: the physical-vs-accounting cost comparison,
    the FIFO deviation report, the final OrderLineCosting, and the
    OrderLine that carries it.

Architecture position:
    Engines -- pure value objects, zero I/O.

Invariants enforced:
    - CostVarianceResult.variance == physical_cost - accounting_cost.
    - An OrderLine's costing always belongs to the line's product. Changing
      the product yields a new line with every costing field cleared at
      once; costing is never partially carried over.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum

from costing_engines.valuation.stock_lot import AllocationSet, ConsumptionMethod
from costing_kernel.domain.values import Money, to_decimal
from costing_kernel.exceptions import ProductMismatchError
from costing_kernel.logging_config import get_logger

logger = get_logger("engines.valuation.costing")


@dataclass(frozen=True, slots=True)
class CostVarianceResult:
    """
    Physical vs accounting (FIFO) cost of one order line.

    Derived on demand and never stored on its own.
    """

    physical_cost: Money
    accounting_cost: Money
    variance: Money
    variance_percentage: Decimal
    has_variance: bool

    @property
    def is_favorable(self) -> bool:
        """True if the lots actually used were cheaper than FIFO."""
        return self.variance.is_negative

    @property
    def absolute_variance(self) -> Money:
        return abs(self.variance)


class FifoDeviationKind(str, Enum):
    """How a selection differs from the FIFO allocation."""

    NONE = "none"
    DIFFERENT_LOTS = "different_lots"
    DIFFERENT_QUANTITIES = "different_quantities"


@dataclass(frozen=True, slots=True)
class FifoDeviation:
    """Report of a selection's deviation from the FIFO allocation."""

    kind: FifoDeviationKind
    message: str
    unexpected_lot_ids: tuple[str, ...] = ()
    skipped_lot_ids: tuple[str, ...] = ()

    @property
    def has_deviation(self) -> bool:
        return self.kind is not FifoDeviationKind.NONE


@dataclass(frozen=True, slots=True)
class OrderLineCosting:
    """
    Final lot costing of one order line.

    Contract:
        Produced only by a successful finalization (or automatic costing);
        immutable afterwards. ``justification_note`` is None whenever the
        variance is within tolerance.
    """

    product_id: str
    quantity: Decimal
    physical: AllocationSet
    accounting: AllocationSet
    variance: CostVarianceResult
    lot_selection_method: ConsumptionMethod
    fifo_deviation: FifoDeviation
    justification_note: str | None = None
    variance_reason: str | None = None
    requires_approval: bool = False
    finalized_by: str | None = None
    finalized_at: datetime | None = None

    @property
    def physical_cost(self) -> Money:
        return self.physical.total_cost

    @property
    def physical_cost_per_unit(self) -> Money:
        return self.physical.cost_per_unit

    @property
    def accounting_cost(self) -> Money:
        return self.accounting.total_cost

    @property
    def accounting_cost_per_unit(self) -> Money:
        return self.accounting.cost_per_unit

    @property
    def cost_variance(self) -> Money:
        return self.variance.variance

    @property
    def has_cost_variance(self) -> bool:
        return self.variance.has_variance


@dataclass(frozen=True, slots=True)
class OrderLine:
    """An order line as far as lot costing is concerned."""

    line_id: str
    product_id: str
    quantity: Decimal
    costing: OrderLineCosting | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.quantity, Decimal):
            object.__setattr__(self, "quantity", to_decimal(self.quantity))

    @property
    def has_costing(self) -> bool:
        return self.costing is not None

    def change_product(self, product_id: str) -> OrderLine:
        """Return a line for ``product_id``; all lot costing is dropped together."""
        if product_id == self.product_id:
            return self
        if self.costing is not None:
            logger.info("order_line_costing_superseded", extra={
                "line_id": self.line_id,
                "previous_product_id": self.product_id,
                "product_id": product_id,
                "previous_method": self.costing.lot_selection_method.value,
            })
        return replace(self, product_id=product_id, costing=None)

    def attach_costing(self, costing: OrderLineCosting) -> OrderLine:
        """Return a copy of the line carrying ``costing``.

        Raises:
            ProductMismatchError: If the costing was made for another product.
        """
        if costing.product_id != self.product_id:
            logger.error("order_line_costing_product_mismatch", extra={
                "line_id": self.line_id,
                "line_product_id": self.product_id,
                "costing_product_id": costing.product_id,
            })
            raise ProductMismatchError(self.line_id, self.product_id, costing.product_id)
        return replace(self, costing=costing)
