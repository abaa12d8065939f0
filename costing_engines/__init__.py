"""
Costing engines -- pure lot allocation and variance calculations.

Engines take lot snapshots and allocation sets as parameters and return
frozen value objects. They never read configuration, a clock, or storage.
"""

from costing_engines.consumption import (
    LotConsumptionAllocator,
    filter_available_lots,
    order_lots,
)
from costing_engines.tracer import traced_engine
from costing_engines.valuation import (
    AllocationSet,
    ConsumptionMethod,
    CostingPolicy,
    CostVarianceResult,
    FifoDeviation,
    FifoDeviationKind,
    LotAllocation,
    OrderLine,
    OrderLineCosting,
    ProductCostingProfile,
    StockLot,
)
from costing_engines.variance import (
    CostVarianceEvaluator,
    allocations_equivalent,
    detect_fifo_deviation,
)

__all__ = [
    "AllocationSet",
    "ConsumptionMethod",
    "CostVarianceEvaluator",
    "CostVarianceResult",
    "CostingPolicy",
    "FifoDeviation",
    "FifoDeviationKind",
    "LotAllocation",
    "LotConsumptionAllocator",
    "OrderLine",
    "OrderLineCosting",
    "ProductCostingProfile",
    "StockLot",
    "allocations_equivalent",
    "detect_fifo_deviation",
    "filter_available_lots",
    "order_lots",
    "traced_engine",
]
