"""
Tolerances -- numeric thresholds shared by allocation, matching and variance.

The default values are part of the behavioural contract with every other
consumer of lot costing data (UI, persistence, reconciliation reports):

    allocation_epsilon  1e-9   outstanding need at or below this ends the walk
    quantity_match      0.001  |selected - requested| must be strictly below
    variance            0.01   |physical - accounting| must exceed to count

The variance threshold is a fixed amount in the lot currency's unit. It is
not derived from the currency's minor unit.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

ALLOCATION_EPSILON = Decimal("1e-9")
QUANTITY_MATCH_TOLERANCE = Decimal("0.001")
VARIANCE_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True, slots=True)
class Tolerances:
    """Bundle of the three costing tolerances."""

    allocation_epsilon: Decimal = ALLOCATION_EPSILON
    quantity_match: Decimal = QUANTITY_MATCH_TOLERANCE
    variance: Decimal = VARIANCE_TOLERANCE

    def __post_init__(self) -> None:
        for name in ("allocation_epsilon", "quantity_match", "variance"):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                value = Decimal(str(value))
                object.__setattr__(self, name, value)
            if value < 0:
                raise ValueError(f"Tolerance {name} cannot be negative, got {value}")

    @property
    def is_standard(self) -> bool:
        """True when every tolerance equals the contractual default."""
        return self == DEFAULT_TOLERANCES


DEFAULT_TOLERANCES = Tolerances()
