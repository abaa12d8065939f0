"""Pure domain values for the costing kernel (zero I/O)."""

from costing_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from costing_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from costing_kernel.domain.tolerances import (
    ALLOCATION_EPSILON,
    DEFAULT_TOLERANCES,
    QUANTITY_MATCH_TOLERANCE,
    VARIANCE_TOLERANCE,
    Tolerances,
)
from costing_kernel.domain.values import Currency, Money, to_decimal

__all__ = [
    "ALLOCATION_EPSILON",
    "Clock",
    "Currency",
    "CurrencyInfo",
    "CurrencyRegistry",
    "DEFAULT_TOLERANCES",
    "DeterministicClock",
    "Money",
    "QUANTITY_MATCH_TOLERANCE",
    "SystemClock",
    "Tolerances",
    "VARIANCE_TOLERANCE",
    "to_decimal",
]
