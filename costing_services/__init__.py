"""
Costing services -- stateful lot selection and order-line costing.
"""

from costing_services.lot_selection import (
    AutoSelection,
    FinalizeOutcome,
    InvariantViolation,
    LotSelectionController,
    ManualSelection,
    SelectionMode,
    ViolationKind,
)
from costing_services.order_costing import (
    LotRepository,
    OrderLineCostingService,
    OrderLinePersister,
    ProductCatalog,
)

__all__ = [
    "AutoSelection",
    "FinalizeOutcome",
    "InvariantViolation",
    "LotRepository",
    "LotSelectionController",
    "ManualSelection",
    "OrderLineCostingService",
    "OrderLinePersister",
    "ProductCatalog",
    "SelectionMode",
    "ViolationKind",
]
