"""
costing_engines.valuation.stock_lot -- Lot and allocation value objects.

Responsibility:
    Define the immutable value objects for purchased stock lots, single
    lot allocations (lot consumptions), ordered allocation sets, and the
    product costing profile that selects FIFO / LIFO suggestions.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import costing_kernel (values, tolerances, exceptions, logging).

Invariants enforced:
    - StockLot.remaining_quantity >= 0 and unit cost >= 0.
    - LotAllocation.quantity_used > 0.
    - Every allocation in an AllocationSet shares the set's currency.
    - All value objects are frozen dataclasses; the allocator can never
      change a lot's remaining quantity.

Failure modes:
    - InvalidLotError from StockLot.__post_init__ on negative quantity/cost.
    - InvalidCurrencyError from StockLot.create on an unknown currency.
    - ValueError from LotAllocation.__post_init__ if quantity_used <= 0.
    - CurrencyMismatchError from AllocationSet.__post_init__.

Audit relevance:
    Unit cost and purchase date are copied onto each allocation when it
    is made. Later edits to a lot never re-derive the cost of a finalized
    order line.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from costing_kernel.domain.currency import CurrencyRegistry
from costing_kernel.domain.tolerances import ALLOCATION_EPSILON
from costing_kernel.domain.values import Currency, Money, to_decimal
from costing_kernel.exceptions import (
    CurrencyMismatchError,
    InvalidCurrencyError,
    InvalidLotError,
)
from costing_kernel.logging_config import get_logger

logger = get_logger("engines.valuation.stock_lot")


class CostingPolicy(str, Enum):
    """Costing method configured on a product."""

    FIFO = "fifo"        # First-in, first-out
    LIFO = "lifo"        # Last-in, first-out
    AVERAGE = "average"  # Suggested as FIFO; no weighted-average allocation

    @property
    def allocation_policy(self) -> CostingPolicy:
        """Policy actually used to order lots. AVERAGE allocates as FIFO."""
        if self is CostingPolicy.LIFO:
            return CostingPolicy.LIFO
        return CostingPolicy.FIFO


class ConsumptionMethod(str, Enum):
    """How a lot consumption was chosen."""

    AUTO_FIFO = "auto-fifo"
    AUTO_LIFO = "auto-lifo"
    MANUAL = "manual"

    @classmethod
    def for_policy(cls, policy: CostingPolicy) -> ConsumptionMethod:
        if policy.allocation_policy is CostingPolicy.LIFO:
            return cls.AUTO_LIFO
        return cls.AUTO_FIFO


@dataclass(frozen=True, slots=True)
class StockLot:
    """
    Immutable purchase batch of one product at one unit cost.

    ``remaining_quantity`` is a snapshot taken by the inventory ledger when
    the lots were fetched. Only the ledger changes it, never this package.
    """

    lot_id: str
    lot_number: str
    product_id: str
    purchase_date: date
    unit_cost: Money
    remaining_quantity: Decimal
    supplier_reference: str | None = None
    invoice_reference: str | None = None
    note: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.purchase_date, datetime):
            object.__setattr__(self, "purchase_date", self.purchase_date.date())
        if not isinstance(self.remaining_quantity, Decimal):
            object.__setattr__(
                self, "remaining_quantity", to_decimal(self.remaining_quantity)
            )

        if self.remaining_quantity < 0:
            logger.error("stock_lot_negative_quantity", extra={
                "lot_id": self.lot_id,
                "product_id": self.product_id,
                "remaining_quantity": str(self.remaining_quantity),
            })
            raise InvalidLotError(
                self.lot_id,
                f"remaining quantity cannot be negative, got {self.remaining_quantity}",
            )
        if self.unit_cost.is_negative:
            logger.error("stock_lot_negative_cost", extra={
                "lot_id": self.lot_id,
                "product_id": self.product_id,
                "unit_cost": str(self.unit_cost.amount),
            })
            raise InvalidLotError(
                self.lot_id, f"unit cost cannot be negative, got {self.unit_cost}"
            )

    @property
    def currency(self) -> Currency:
        return self.unit_cost.currency

    @property
    def is_available(self) -> bool:
        """True if the lot still has stock and may be an allocation candidate."""
        return self.remaining_quantity > 0

    @property
    def remaining_value(self) -> Money:
        return self.unit_cost * self.remaining_quantity

    @classmethod
    def create(
        cls,
        lot_id: str,
        lot_number: str,
        product_id: str,
        purchase_date: date,
        unit_cost: Decimal | str | int,
        currency: str,
        remaining_quantity: Decimal | str | int,
        supplier_reference: str | None = None,
        invoice_reference: str | None = None,
        note: str | None = None,
    ) -> StockLot:
        """Factory taking primitive cost and currency values.

        Raises:
            InvalidCurrencyError: If ``currency`` is not a known ISO 4217 code.
            InvalidLotError: If quantity or cost is negative.
        """
        if not CurrencyRegistry.is_valid(currency):
            logger.error("stock_lot_invalid_currency", extra={
                "lot_id": lot_id,
                "currency": currency,
            })
            raise InvalidCurrencyError(currency)
        cost = Money.of(unit_cost, currency)

        return cls(
            lot_id=lot_id,
            lot_number=lot_number,
            product_id=product_id,
            purchase_date=purchase_date,
            unit_cost=cost,
            remaining_quantity=to_decimal(remaining_quantity),
            supplier_reference=supplier_reference,
            invoice_reference=invoice_reference,
            note=note,
        )


@dataclass(frozen=True, slots=True)
class LotAllocation:
    """
    One line of a proposed or final consumption (a *lot consumption*).

    Provenance (``consumed_by`` / ``consumed_at``) is empty on proposals and
    stamped when a selection is finalized.
    """

    lot_id: str
    lot_number: str
    quantity_used: Decimal
    unit_cost: Money
    purchase_date: date
    consumption_method: ConsumptionMethod
    consumed_by: str | None = None
    consumed_at: datetime | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.quantity_used, Decimal):
            object.__setattr__(self, "quantity_used", to_decimal(self.quantity_used))
        if self.quantity_used <= 0:
            raise ValueError(
                f"Allocated quantity must be positive, got {self.quantity_used} "
                f"for lot {self.lot_id}"
            )

    @property
    def total_cost(self) -> Money:
        return self.unit_cost * self.quantity_used

    @classmethod
    def from_lot(
        cls,
        lot: StockLot,
        quantity_used: Decimal,
        consumption_method: ConsumptionMethod,
    ) -> LotAllocation:
        """Capture cost and purchase date from the lot at allocation time."""
        return cls(
            lot_id=lot.lot_id,
            lot_number=lot.lot_number,
            quantity_used=quantity_used,
            unit_cost=lot.unit_cost,
            purchase_date=lot.purchase_date,
            consumption_method=consumption_method,
        )


@dataclass(frozen=True, slots=True)
class AllocationSet:
    """
    Ordered allocations for one requested quantity of one product.

    Order is consumption order. Sets produced by the allocator never exceed
    ``requested_quantity`` and fall short of it only when stock runs out.
    Manually edited sets may over- or under-allocate; the lot selection
    controller refuses to finalize those.
    """

    product_id: str | None
    requested_quantity: Decimal
    currency: Currency
    allocations: tuple[LotAllocation, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.requested_quantity, Decimal):
            object.__setattr__(
                self, "requested_quantity", to_decimal(self.requested_quantity)
            )
        if isinstance(self.currency, str):
            object.__setattr__(self, "currency", Currency(self.currency))
        if not isinstance(self.allocations, tuple):
            object.__setattr__(self, "allocations", tuple(self.allocations))
        for allocation in self.allocations:
            if allocation.unit_cost.currency != self.currency:
                raise CurrencyMismatchError(
                    self.currency.code, allocation.unit_cost.currency.code
                )

    def __iter__(self):
        return iter(self.allocations)

    def __len__(self) -> int:
        return len(self.allocations)

    @property
    def is_empty(self) -> bool:
        return not self.allocations

    @property
    def allocated_quantity(self) -> Decimal:
        return sum((a.quantity_used for a in self.allocations), Decimal("0"))

    @property
    def shortfall(self) -> Decimal:
        """Requested quantity left uncovered (zero when fully allocated)."""
        missing = self.requested_quantity - self.allocated_quantity
        return missing if missing > ALLOCATION_EPSILON else Decimal("0")

    @property
    def is_complete(self) -> bool:
        """True unless available stock was insufficient for the request."""
        return self.shortfall == 0

    @property
    def total_cost(self) -> Money:
        total = Money.zero(self.currency)
        for allocation in self.allocations:
            total = total + allocation.total_cost
        return total

    @property
    def cost_per_unit(self) -> Money:
        """Total cost spread over the requested quantity (zero if none requested)."""
        if self.requested_quantity == 0:
            return Money.zero(self.currency)
        return self.total_cost / self.requested_quantity

    @property
    def lot_ids(self) -> tuple[str, ...]:
        return tuple(a.lot_id for a in self.allocations)

    def quantity_for(self, lot_id: str) -> Decimal:
        """Quantity allocated from ``lot_id`` (zero if the lot is not used)."""
        return sum(
            (a.quantity_used for a in self.allocations if a.lot_id == lot_id),
            Decimal("0"),
        )

    def with_method(self, method: ConsumptionMethod) -> AllocationSet:
        """Copy with every allocation tagged with ``method``."""
        return replace(
            self,
            allocations=tuple(
                replace(a, consumption_method=method) for a in self.allocations
            ),
        )

    def with_provenance(self, consumed_by: str | None, consumed_at: datetime) -> AllocationSet:
        """Copy with who/when stamped on every allocation."""
        return replace(
            self,
            allocations=tuple(
                replace(a, consumed_by=consumed_by, consumed_at=consumed_at)
                for a in self.allocations
            ),
        )

    @classmethod
    def empty(
        cls,
        product_id: str | None,
        requested_quantity: Decimal,
        currency: Currency | str,
    ) -> AllocationSet:
        return cls(
            product_id=product_id,
            requested_quantity=requested_quantity,
            currency=currency,
        )


@dataclass(frozen=True, slots=True)
class ProductCostingProfile:
    """Costing configuration of a product, as read from the product catalog."""

    product_id: str
    costing_policy: CostingPolicy = CostingPolicy.FIFO
    require_lot_approval: bool = False
    name: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.costing_policy, str) and not isinstance(
            self.costing_policy, CostingPolicy
        ):
            object.__setattr__(
                self, "costing_policy", CostingPolicy(self.costing_policy.lower())
            )

    @property
    def suggestion_policy(self) -> CostingPolicy:
        return self.costing_policy.allocation_policy
