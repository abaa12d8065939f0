"""
Valuation - Pure lot, allocation and order-line costing value objects.

The allocator and variance evaluator that produce these live in
costing_engines.consumption and costing_engines.variance.
"""

from costing_engines.valuation.costing import (
    CostVarianceResult,
    FifoDeviation,
    FifoDeviationKind,
    OrderLine,
    OrderLineCosting,
)
from costing_engines.valuation.stock_lot import (
    AllocationSet,
    ConsumptionMethod,
    CostingPolicy,
    LotAllocation,
    ProductCostingProfile,
    StockLot,
)

__all__ = [
    "AllocationSet",
    "ConsumptionMethod",
    "CostVarianceResult",
    "CostingPolicy",
    "FifoDeviation",
    "FifoDeviationKind",
    "LotAllocation",
    "OrderLine",
    "OrderLineCosting",
    "ProductCostingProfile",
    "StockLot",
]
