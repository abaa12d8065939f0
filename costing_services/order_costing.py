"""
costing_services.order_costing -- Lot costing of order lines.

Responsibility:
    Connect order lines to the lot selection engines: open an interactive
    lot selection for a line, cost a line automatically by its product's
    costing policy, commit a finalized selection, and supersede costing
    when a line's product changes.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Inbound collaborators (LotRepository, ProductCatalog) and the outbound
    OrderLinePersister are Protocols injected via the constructor. The
    service holds no storage of its own.

Invariants enforced:
    - Accounting cost is always the FIFO allocation; physical cost follows
      the product's policy (LIFO for LIFO products, FIFO otherwise).
    - A committed costing belongs to the line's product.
    - Changing a line's product clears all its costing at once.

Failure modes:
    - NoAvailableLotsError from open_lot_selection() when the product has
      no lot with remaining stock.
    - InvalidQuantityError from calculate_automatic_costing() on a negative
      line quantity. Insufficient stock is not an error: the partial costing
      is returned and its AllocationSets report the shortfall.
    - LotSelectionRefusedError from commit_selection() when finalize()
      refuses the selection.

Audit relevance:
    Every committed costing is handed to the persister together with its
    provenance (actor, time), variance and justification.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from costing_config.schema import CostingSettings
from costing_engines.consumption import LotConsumptionAllocator, filter_available_lots
from costing_engines.valuation import (
    ConsumptionMethod,
    CostingPolicy,
    OrderLine,
    OrderLineCosting,
    ProductCostingProfile,
    StockLot,
)
from costing_engines.variance import CostVarianceEvaluator
from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.exceptions import (
    InvalidQuantityError,
    LotSelectionRefusedError,
    NoAvailableLotsError,
    ProductMismatchError,
)
from costing_kernel.logging_config import LogContext, get_logger
from costing_services.lot_selection import (
    LIFO_VARIANCE_REASON,
    LotSelectionController,
)

logger = get_logger("services.order_costing")


class LotRepository(Protocol):
    """Source of lot snapshots for a product."""

    def fetch_available_lots(self, product_id: str) -> Sequence[StockLot]:
        ...


class ProductCatalog(Protocol):
    """Source of product costing profiles. Returns None for unknown products."""

    def costing_profile(self, product_id: str) -> ProductCostingProfile | None:
        ...


class OrderLinePersister(Protocol):
    """Stores an order line with its costing.

    Responsible for the atomic write and for decrementing the consumed
    lots' remaining quantities.
    """

    def save(self, line: OrderLine) -> None:
        ...


class OrderLineCostingService:
    """
    Lot costing orchestration for order lines.

    Contract:
        Receives its collaborators and resolved settings via constructor
        injection; never reads configuration files.
    Guarantees:
        - ``open_lot_selection`` returns a started controller.
        - ``commit_selection`` persists exactly one line per accepted
          selection and nothing on refusal.
    Non-goals:
        - Stock reservation between opening and committing a selection.
    """

    def __init__(
        self,
        lot_repository: LotRepository,
        product_catalog: ProductCatalog,
        persister: OrderLinePersister,
        *,
        clock: Clock | None = None,
        settings: CostingSettings | None = None,
    ):
        self.lot_repository = lot_repository
        self.product_catalog = product_catalog
        self.persister = persister
        self.clock = clock or SystemClock()
        self.settings = settings or CostingSettings()
        self.allocator = LotConsumptionAllocator(self.settings.tolerances)
        self.evaluator = CostVarianceEvaluator(self.settings.tolerances)

    def open_lot_selection(self, line: OrderLine) -> LotSelectionController:
        """
        Start a lot selection for ``line``.

        Raises:
            NoAvailableLotsError: If the product has no lot with stock left.
        """
        with LogContext.bind(order_line_id=line.line_id, product_id=line.product_id):
            profile = self._profile(line.product_id)
            lots = self._available_lots(line.product_id)
            if not lots:
                logger.warning("lot_selection_no_available_lots", extra={
                    "product_id": line.product_id,
                    "line_id": line.line_id,
                })
                raise NoAvailableLotsError(line.product_id)

            controller = LotSelectionController(
                clock=self.clock, tolerances=self.settings.tolerances
            )
            controller.start(profile, line.quantity, lots, currency=self.settings.currency)
            return controller

    def calculate_automatic_costing(
        self,
        line: OrderLine,
        actor_id: str | None = None,
    ) -> OrderLineCosting:
        """
        Cost ``line`` without user interaction.

        Accounting uses FIFO. Physical uses the product's policy, so LIFO
        products may carry a variance; it is recorded with a system reason
        and needs no justification note.

        When stock cannot cover the line the costing covers what is
        available; ``costing.accounting.is_complete`` is False and
        ``shortfall`` holds the uncovered quantity.

        Raises:
            InvalidQuantityError: If the line quantity is negative.
        """
        with LogContext.bind(
            order_line_id=line.line_id, product_id=line.product_id, actor_id=actor_id
        ):
            if line.quantity < 0:
                logger.error("automatic_costing_negative_quantity", extra={
                    "line_id": line.line_id,
                    "quantity": str(line.quantity),
                })
                raise InvalidQuantityError(str(line.quantity))

            profile = self._profile(line.product_id)
            lots = self._available_lots(line.product_id)

            currency = self.settings.currency
            accounting = self.allocator.allocate(
                lots, line.quantity, CostingPolicy.FIFO, currency=currency
            )
            policy = profile.suggestion_policy
            if policy is CostingPolicy.FIFO:
                physical = accounting
            else:
                physical = self.allocator.allocate(
                    lots, line.quantity, policy, currency=currency
                )

            if not accounting.is_complete:
                logger.warning("automatic_costing_insufficient_stock", extra={
                    "product_id": line.product_id,
                    "requested_quantity": str(line.quantity),
                    "allocated_quantity": str(accounting.allocated_quantity),
                    "shortfall": str(accounting.shortfall),
                })

            variance = self.evaluator.evaluate(physical, accounting)
            deviation = self.evaluator.fifo_deviation(physical, accounting)
            finalized_at = self.clock.now()

            costing = OrderLineCosting(
                product_id=line.product_id,
                quantity=line.quantity,
                physical=physical.with_provenance(actor_id, finalized_at),
                accounting=accounting,
                variance=variance,
                lot_selection_method=ConsumptionMethod.for_policy(policy),
                fifo_deviation=deviation,
                variance_reason=LIFO_VARIANCE_REASON if variance.has_variance else None,
                requires_approval=profile.require_lot_approval and deviation.has_deviation,
                finalized_by=actor_id,
                finalized_at=finalized_at,
            )

            logger.info("automatic_costing_calculated", extra={
                "product_id": line.product_id,
                "costing_policy": profile.costing_policy.value,
                "physical_cost": str(variance.physical_cost.amount),
                "accounting_cost": str(variance.accounting_cost.amount),
                "has_variance": variance.has_variance,
            })
            return costing

    def commit_selection(
        self,
        line: OrderLine,
        controller: LotSelectionController,
        actor_id: str | None = None,
    ) -> OrderLine:
        """
        Finalize ``controller`` and persist the costed line.

        Raises:
            LotSelectionRefusedError: If the selection cannot be finalized.
            ProductMismatchError: If the selection was made for another product.
                Checked before finalizing, so the session stays open.
        """
        with LogContext.bind(
            order_line_id=line.line_id, product_id=line.product_id, actor_id=actor_id
        ):
            if controller.is_started:
                selected_product_id = controller.state.context.product.product_id
                if selected_product_id != line.product_id:
                    logger.error("lot_selection_product_mismatch", extra={
                        "line_id": line.line_id,
                        "line_product_id": line.product_id,
                        "selection_product_id": selected_product_id,
                    })
                    raise ProductMismatchError(
                        line.line_id, line.product_id, selected_product_id
                    )

            outcome = controller.finalize(actor_id)
            if not outcome.accepted:
                logger.warning("lot_selection_commit_refused", extra={
                    "line_id": line.line_id,
                    "violations": ",".join(v.kind.value for v in outcome.violations),
                })
                raise LotSelectionRefusedError(outcome.violations)

            costed = line.attach_costing(outcome.costing)
            self.persister.save(costed)

            logger.info("lot_selection_committed", extra={
                "line_id": line.line_id,
                "lot_selection_method": outcome.costing.lot_selection_method.value,
                "lots_consumed": len(outcome.costing.physical),
            })
            return costed

    def change_line_product(self, line: OrderLine, product_id: str) -> OrderLine:
        """Point ``line`` at ``product_id``; existing costing is superseded."""
        with LogContext.bind(order_line_id=line.line_id, product_id=product_id):
            changed = line.change_product(product_id)
            if changed is not line and line.has_costing:
                self.persister.save(changed)
            return changed

    def _profile(self, product_id: str) -> ProductCostingProfile:
        profile = self.product_catalog.costing_profile(product_id)
        if profile is None:
            policies = self.settings.policies
            logger.info("costing_profile_defaulted", extra={
                "product_id": product_id,
                "costing_policy": CostingPolicy.FIFO.value,
                "require_lot_approval": policies.require_lot_approval_default,
            })
            return ProductCostingProfile(
                product_id=product_id,
                costing_policy=CostingPolicy.FIFO,
                require_lot_approval=policies.require_lot_approval_default,
            )
        return profile

    def _available_lots(self, product_id: str) -> list[StockLot]:
        return filter_available_lots(self.lot_repository.fetch_available_lots(product_id))
