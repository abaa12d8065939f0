"""
Module: costing_engines.consumption
Responsibility:
    Allocate a requested quantity of one product across its available
    stock lots, oldest-first (FIFO) or newest-first (LIFO), and cost
    explicit manual lot selections.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import costing_kernel and costing_engines.valuation.

Invariants enforced:
    - Determinism: lots are ordered by purchase date, then lot id
      ascending, so identical snapshots always yield identical sets.
    - Completeness: the allocated quantity equals
      min(quantity_needed, total remaining) -- the walk stops once the
      outstanding need is within the allocation epsilon (1e-9).
    - Purity: input lots are frozen and never modified; the inventory
      ledger alone decrements remaining quantities.

Failure modes:
    - Not an error: no lots, a non-positive request, or insufficient stock.
      These return an empty or partial AllocationSet the caller inspects
      (``AllocationSet.is_complete`` / ``shortfall``).
    - LotProductMismatchError / CurrencyMismatchError when the lots passed
      in do not share one product and one currency.
    - LotNotFoundError / LotOverdrawnError / InvalidQuantityError from
      ``from_selection`` for selections that cannot be costed.

Usage:
    from costing_engines.consumption import LotConsumptionAllocator
    from costing_engines.valuation import CostingPolicy

    allocator = LotConsumptionAllocator()
    fifo = allocator.allocate(lots, Decimal("7"), CostingPolicy.FIFO)
    if not fifo.is_complete:
        ...  # stock shortfall, fifo.shortfall units uncovered
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping, Sequence
from decimal import Decimal

from costing_engines.tracer import traced_engine
from costing_engines.valuation.stock_lot import (
    AllocationSet,
    ConsumptionMethod,
    CostingPolicy,
    LotAllocation,
    StockLot,
)
from costing_kernel.domain.tolerances import DEFAULT_TOLERANCES, Tolerances
from costing_kernel.domain.values import Currency, to_decimal
from costing_kernel.exceptions import (
    CurrencyMismatchError,
    InvalidQuantityError,
    LotNotFoundError,
    LotOverdrawnError,
    LotProductMismatchError,
)
from costing_kernel.logging_config import get_logger

logger = get_logger("engines.consumption")

# Currency of an empty set when neither lots nor caller name one.
_NO_CURRENCY = "XXX"


def filter_available_lots(lots: Iterable[StockLot]) -> list[StockLot]:
    """Drop lots with no remaining stock; they are never allocation candidates."""
    return [lot for lot in lots if lot.is_available]


def order_lots(lots: Iterable[StockLot], policy: CostingPolicy) -> list[StockLot]:
    """Consumption order for ``policy``.

    FIFO sorts by purchase date ascending, LIFO descending. Ties on the
    date are broken by lot id ascending under both policies.
    """
    by_id = sorted(lots, key=lambda lot: lot.lot_id)
    newest_first = policy.allocation_policy is CostingPolicy.LIFO
    # list.sort is stable in both directions, so the lot id order survives.
    return sorted(by_id, key=lambda lot: lot.purchase_date, reverse=newest_first)


class LotConsumptionAllocator:
    """
    Greedy lot allocator.

    Contract:
        Pure functions over an in-memory lot snapshot. No I/O, no clock.
    Guarantees:
        - Returned allocations are in consumption order.
        - Every allocation has quantity_used > 0 and never exceeds its
          lot's remaining quantity.
        - Unit cost and purchase date are copied from the lot.
    Non-goals:
        - Weighted-average allocation: AVERAGE is ordered as FIFO.
        - Filtering depleted lots: callers pass available lots only
          (see ``filter_available_lots``).
        - Multi-product allocation.
    """

    def __init__(self, tolerances: Tolerances = DEFAULT_TOLERANCES):
        self.tolerances = tolerances

    @traced_engine(
        "lot_consumption", "1.0",
        fingerprint_fields=("lots", "quantity_needed", "policy"),
    )
    def allocate(
        self,
        lots: Sequence[StockLot],
        quantity_needed: Decimal | int | str,
        policy: CostingPolicy,
        currency: Currency | str | None = None,
    ) -> AllocationSet:
        """
        Allocate ``quantity_needed`` across ``lots`` under ``policy``.

        Preconditions:
            All lots belong to the same product and currency and have
            remaining_quantity > 0.

        Postconditions:
            sum(quantity_used) == min(quantity_needed, sum(remaining)).
            Empty set when there are no lots or quantity_needed <= 0.

        Args:
            lots: Available lots of one product.
            quantity_needed: Quantity to cover.
            policy: FIFO, LIFO, or AVERAGE (allocated as FIFO).
            currency: Currency of the result when ``lots`` is empty.

        Raises:
            LotProductMismatchError: Lots of more than one product.
            CurrencyMismatchError: Lots in more than one currency.
        """
        t0 = time.monotonic()
        quantity = to_decimal(quantity_needed)
        policy = CostingPolicy(policy)
        effective = policy.allocation_policy
        method = ConsumptionMethod.for_policy(effective)

        product_id, set_currency = self._check_snapshot(lots, currency)

        logger.info("lot_allocation_started", extra={
            "product_id": product_id,
            "quantity_needed": str(quantity),
            "policy": policy.value,
            "effective_policy": effective.value,
            "lot_count": len(lots),
        })

        if not lots or quantity <= 0:
            logger.info("lot_allocation_empty", extra={
                "product_id": product_id,
                "quantity_needed": str(quantity),
                "lot_count": len(lots),
            })
            return AllocationSet.empty(product_id, quantity, set_currency)

        allocations: list[LotAllocation] = []
        outstanding = quantity

        for lot in order_lots(lots, effective):
            if outstanding <= self.tolerances.allocation_epsilon:
                break

            take = min(lot.remaining_quantity, outstanding)
            if take <= 0:
                continue

            allocations.append(LotAllocation.from_lot(lot, take, method))
            outstanding -= take

            logger.debug("lot_consumed", extra={
                "lot_id": lot.lot_id,
                "lot_number": lot.lot_number,
                "quantity_used": str(take),
                "unit_cost": str(lot.unit_cost.amount),
                "outstanding": str(outstanding),
            })

        result = AllocationSet(
            product_id=product_id,
            requested_quantity=quantity,
            currency=set_currency,
            allocations=tuple(allocations),
        )

        if not result.is_complete:
            logger.warning("lot_allocation_insufficient_stock", extra={
                "product_id": product_id,
                "quantity_needed": str(quantity),
                "allocated_quantity": str(result.allocated_quantity),
                "shortfall": str(result.shortfall),
            })

        duration_ms = round((time.monotonic() - t0) * 1000, 2)
        logger.info("lot_allocation_completed", extra={
            "product_id": product_id,
            "policy": effective.value,
            "lots_consumed": len(allocations),
            "allocated_quantity": str(result.allocated_quantity),
            "total_cost": str(result.total_cost.amount),
            "currency": result.currency.code,
            "duration_ms": duration_ms,
        })

        return result

    def from_selection(
        self,
        lots: Sequence[StockLot],
        selections: Mapping[str, Decimal] | Iterable[tuple[str, Decimal]],
        quantity_needed: Decimal | int | str,
        method: ConsumptionMethod = ConsumptionMethod.MANUAL,
        currency: Currency | str | None = None,
    ) -> AllocationSet:
        """
        Cost an explicit ``(lot_id, quantity)`` selection.

        Allocations keep the order of ``selections``; zero quantities are
        dropped.

        Raises:
            LotNotFoundError: A selected lot id is not among ``lots``.
            LotOverdrawnError: A quantity exceeds the lot's remaining stock.
            InvalidQuantityError: A selected quantity is negative.
        """
        product_id, set_currency = self._check_snapshot(lots, currency)
        by_id = {lot.lot_id: lot for lot in lots}
        pairs = selections.items() if isinstance(selections, Mapping) else selections

        allocations: list[LotAllocation] = []
        for lot_id, raw_quantity in pairs:
            lot = by_id.get(lot_id)
            if lot is None:
                logger.error("lot_selection_unknown_lot", extra={
                    "lot_id": lot_id,
                    "product_id": product_id,
                })
                raise LotNotFoundError(lot_id)

            quantity = to_decimal(raw_quantity)
            if quantity < 0:
                raise InvalidQuantityError(str(quantity))
            if quantity == 0:
                continue
            if quantity > lot.remaining_quantity:
                logger.error("lot_selection_overdrawn", extra={
                    "lot_id": lot_id,
                    "requested": str(quantity),
                    "remaining": str(lot.remaining_quantity),
                })
                raise LotOverdrawnError(
                    lot_id, lot.lot_number, str(quantity), str(lot.remaining_quantity)
                )

            allocations.append(LotAllocation.from_lot(lot, quantity, method))

        return AllocationSet(
            product_id=product_id,
            requested_quantity=to_decimal(quantity_needed),
            currency=set_currency,
            allocations=tuple(allocations),
        )

    def total_available(self, lots: Iterable[StockLot]) -> Decimal:
        """Total remaining quantity across ``lots``."""
        return sum(
            (lot.remaining_quantity for lot in lots if lot.is_available),
            Decimal("0"),
        )

    def has_sufficient_stock(
        self,
        lots: Iterable[StockLot],
        quantity_needed: Decimal | int | str,
    ) -> bool:
        return self.total_available(lots) >= to_decimal(quantity_needed)

    def _check_snapshot(
        self,
        lots: Sequence[StockLot],
        currency: Currency | str | None,
    ) -> tuple[str | None, Currency]:
        """Verify one product and one currency; return both."""
        if not lots:
            return None, Currency(currency.code if isinstance(currency, Currency) else currency or _NO_CURRENCY)

        first = lots[0]
        for lot in lots[1:]:
            if lot.product_id != first.product_id:
                logger.error("lot_allocation_product_mismatch", extra={
                    "lot_id": lot.lot_id,
                    "expected_product_id": first.product_id,
                    "actual_product_id": lot.product_id,
                })
                raise LotProductMismatchError(lot.lot_id, first.product_id, lot.product_id)
            if lot.currency != first.currency:
                logger.error("lot_allocation_currency_mismatch", extra={
                    "lot_id": lot.lot_id,
                    "expected_currency": first.currency.code,
                    "actual_currency": lot.currency.code,
                })
                raise CurrencyMismatchError(first.currency.code, lot.currency.code)

        return first.product_id, first.currency
