"""
costing_services.lot_selection -- Interactive lot selection for one order line.

Responsibility:
    Drive a lot selection session: propose the FIFO allocation, let the
    user switch to manual editing, validate the working selection, and on
    finalization classify it and produce the OrderLineCosting.

Architecture position:
    Services -- stateful, session-scoped orchestration over engines.
    Composes LotConsumptionAllocator and CostVarianceEvaluator. Receives
    a Clock for provenance timestamps; never reads configuration or
    storage.

    The session state is an explicit value: ``AutoSelection`` or
    ``ManualSelection`` (frozen), replaced on every transition.

        start() ──► AutoSelection ──switch_to_manual()──► ManualSelection
                        ▲                                     │
                        └──────────switch_to_auto()───────────┘
        finalize() ──► accepted: session closed │ refused: state unchanged

Invariants enforced:
    - A selection finalizes only when |selected - required| < 0.001.
    - A selection whose cost differs from FIFO by more than 0.01 finalizes
      only with a non-blank justification note.
    - Manual quantities are clamped to [0, lot remaining quantity].
    - A finalized session accepts no further edits until start() is
      called again.

Failure modes:
    - SelectionNotStartedError for any call before start().
    - SelectionFinalizedError for edits after a successful finalize().
    - SelectionModeError for edit_lot_quantity() outside manual mode.
    - LotNotFoundError for edits to a lot that is not offered.
    - InvalidQuantityError from start() on a negative quantity.
    - Invariant violations are NOT raised: finalize() returns a refused
      FinalizeOutcome listing them.

Audit relevance:
    Finalized physical allocations carry the acting user and the clock
    time. The justification note and a system variance reason are kept
    on the costing whenever physical cost departs from FIFO.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum

from costing_engines.consumption import LotConsumptionAllocator, filter_available_lots
from costing_engines.valuation import (
    AllocationSet,
    ConsumptionMethod,
    CostingPolicy,
    CostVarianceResult,
    OrderLineCosting,
    ProductCostingProfile,
    StockLot,
)
from costing_engines.variance import CostVarianceEvaluator
from costing_kernel.domain.clock import Clock, SystemClock
from costing_kernel.domain.tolerances import DEFAULT_TOLERANCES, Tolerances
from costing_kernel.domain.values import Currency, to_decimal
from costing_kernel.exceptions import (
    InvalidQuantityError,
    LotNotFoundError,
    SelectionFinalizedError,
    SelectionModeError,
    SelectionNotStartedError,
)
from costing_kernel.logging_config import get_logger

logger = get_logger("services.lot_selection")

MANUAL_VARIANCE_REASON = "Manual lot selection - deviation from FIFO"
LIFO_VARIANCE_REASON = "Automatic LIFO costing policy"


class SelectionMode(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


class ViolationKind(str, Enum):
    """Finalization rule a selection breaks."""

    QUANTITY_MISMATCH = "quantity_mismatch"
    JUSTIFICATION_REQUIRED = "justification_required"


@dataclass(frozen=True, slots=True)
class InvariantViolation:
    """One reason a selection cannot be finalized."""

    kind: ViolationKind
    message: str
    expected: Decimal | None = None
    actual: Decimal | None = None
    difference: Decimal | None = None


@dataclass(frozen=True, slots=True)
class FinalizeOutcome:
    """Result of finalize(): either a costing or the violations, never both."""

    costing: OrderLineCosting | None = None
    violations: tuple[InvariantViolation, ...] = ()

    @property
    def accepted(self) -> bool:
        return self.costing is not None

    @classmethod
    def accept(cls, costing: OrderLineCosting) -> FinalizeOutcome:
        return cls(costing=costing)

    @classmethod
    def refuse(cls, violations: Iterable[InvariantViolation]) -> FinalizeOutcome:
        return cls(violations=tuple(violations))


@dataclass(frozen=True, slots=True)
class SelectionContext:
    """What a session was started with. Fixed for the session's lifetime."""

    product: ProductCostingProfile
    quantity_needed: Decimal
    lots: tuple[StockLot, ...]
    baseline: AllocationSet

    @property
    def currency(self) -> Currency:
        return self.baseline.currency

    def lot(self, lot_id: str) -> StockLot | None:
        for lot in self.lots:
            if lot.lot_id == lot_id:
                return lot
        return None


@dataclass(frozen=True, slots=True)
class AutoSelection:
    """The proposal is the FIFO baseline, untouched."""

    context: SelectionContext
    note: str | None = None

    @property
    def mode(self) -> SelectionMode:
        return SelectionMode.AUTO

    @property
    def working_set(self) -> AllocationSet:
        return self.context.baseline


@dataclass(frozen=True, slots=True)
class ManualSelection:
    """User-edited quantities, kept as ordered (lot_id, quantity) pairs.

    Pairs with quantity zero are kept so an edit can be undone in place,
    but never appear in the working set.
    """

    context: SelectionContext
    selections: tuple[tuple[str, Decimal], ...] = field(default_factory=tuple)
    note: str | None = None

    @property
    def mode(self) -> SelectionMode:
        return SelectionMode.MANUAL

    @property
    def working_set(self) -> AllocationSet:
        return LotConsumptionAllocator().from_selection(
            self.context.lots,
            self.selections,
            self.context.quantity_needed,
            ConsumptionMethod.MANUAL,
            currency=self.context.currency,
        )

    def with_quantity(self, lot_id: str, quantity: Decimal) -> ManualSelection:
        """Upsert ``lot_id``; an existing entry keeps its position."""
        pairs = list(self.selections)
        for i, (existing, _) in enumerate(pairs):
            if existing == lot_id:
                pairs[i] = (lot_id, quantity)
                break
        else:
            pairs.append((lot_id, quantity))
        return replace(self, selections=tuple(pairs))


def _is_blank(note: str | None) -> bool:
    return note is None or not note.strip()


class LotSelectionController:
    """
    Session-scoped lot selection state machine.

    Contract:
        One instance per selection dialog; not shared between threads.
        All inputs are snapshots. Nothing is persisted here; the caller
        stores the OrderLineCosting from an accepted FinalizeOutcome.
    Guarantees:
        - ``start`` and ``switch_to_auto`` are idempotent.
        - ``finalize`` never returns a partial result.
    Non-goals:
        - Reserving stock. Another session may consume the same lots; the
          persistence layer reconciles that on save.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        tolerances: Tolerances = DEFAULT_TOLERANCES,
    ):
        self.clock = clock or SystemClock()
        self.tolerances = tolerances
        self.allocator = LotConsumptionAllocator(tolerances)
        self.evaluator = CostVarianceEvaluator(tolerances)
        self._state: AutoSelection | ManualSelection | None = None
        self._finalized = False

    # =========================================================================
    # Read-only view
    # =========================================================================

    @property
    def state(self) -> AutoSelection | ManualSelection | None:
        return self._state

    @property
    def is_started(self) -> bool:
        return self._state is not None

    @property
    def is_finalized(self) -> bool:
        return self._finalized

    @property
    def mode(self) -> SelectionMode:
        return self._require_state("read mode").mode

    @property
    def working_set(self) -> AllocationSet:
        return self._require_state("read working set").working_set

    @property
    def baseline(self) -> AllocationSet:
        return self._require_state("read baseline").context.baseline

    @property
    def note(self) -> str | None:
        return self._require_state("read note").note

    @property
    def variance(self) -> CostVarianceResult:
        """Live variance of the working set against the FIFO baseline."""
        state = self._require_state("preview variance")
        return self.evaluator.evaluate(state.working_set, state.context.baseline)

    # =========================================================================
    # Transitions
    # =========================================================================

    def start(
        self,
        product: ProductCostingProfile,
        quantity_needed: Decimal | int | str,
        available_lots: Sequence[StockLot],
        currency: Currency | str | None = None,
    ) -> AllocationSet:
        """
        Open a selection for ``quantity_needed`` of ``product``.

        Depleted lots are dropped. The FIFO allocation becomes both the
        baseline and the working set; the note is cleared.

        Returns:
            The proposed (FIFO) working set.

        Raises:
            InvalidQuantityError: If ``quantity_needed`` is negative.
        """
        quantity = to_decimal(quantity_needed)
        if quantity < 0:
            logger.error("lot_selection_negative_quantity", extra={
                "product_id": product.product_id,
                "quantity_needed": str(quantity),
            })
            raise InvalidQuantityError(str(quantity))

        lots = tuple(filter_available_lots(available_lots))
        baseline = self.allocator.allocate(
            lots, quantity, CostingPolicy.FIFO, currency=currency
        )
        self._state = AutoSelection(
            context=SelectionContext(
                product=product,
                quantity_needed=quantity,
                lots=lots,
                baseline=baseline,
            ),
        )
        self._finalized = False

        logger.info("lot_selection_started", extra={
            "product_id": product.product_id,
            "quantity_needed": str(quantity),
            "lot_count": len(lots),
            "costing_policy": product.costing_policy.value,
            "baseline_complete": baseline.is_complete,
        })
        return baseline

    def switch_to_manual(self) -> None:
        """Make the current working set editable. No-op in manual mode."""
        state = self._require_open("switch to manual")
        if isinstance(state, ManualSelection):
            return
        self._state = ManualSelection(
            context=state.context,
            selections=tuple((a.lot_id, a.quantity_used) for a in state.working_set),
            note=state.note,
        )
        logger.info("lot_selection_mode_changed", extra={
            "product_id": state.context.product.product_id,
            "mode": SelectionMode.MANUAL.value,
        })

    def switch_to_auto(self) -> None:
        """Discard manual edits and the note; restore the FIFO proposal."""
        state = self._require_open("switch to auto")
        previous = state.mode
        self._state = AutoSelection(context=state.context)
        if previous is not SelectionMode.AUTO:
            logger.info("lot_selection_mode_changed", extra={
                "product_id": state.context.product.product_id,
                "mode": SelectionMode.AUTO.value,
            })

    def edit_lot_quantity(self, lot_id: str, quantity: Decimal | int | str) -> Decimal:
        """
        Set the quantity taken from ``lot_id``.

        The quantity is clamped to ``[0, lot.remaining_quantity]``.

        Returns:
            The quantity actually recorded.

        Raises:
            SelectionModeError: Outside manual mode.
            LotNotFoundError: ``lot_id`` is not one of the offered lots.
        """
        state = self._require_open("edit lot quantity")
        if not isinstance(state, ManualSelection):
            raise SelectionModeError("edit lot quantity", state.mode.value)

        lot = state.context.lot(lot_id)
        if lot is None:
            logger.error("lot_selection_unknown_lot", extra={
                "lot_id": lot_id,
                "product_id": state.context.product.product_id,
            })
            raise LotNotFoundError(lot_id)

        requested = to_decimal(quantity)
        clamped = max(Decimal("0"), min(requested, lot.remaining_quantity))
        if clamped != requested:
            logger.warning("lot_quantity_clamped", extra={
                "lot_id": lot_id,
                "requested": str(requested),
                "clamped": str(clamped),
                "remaining": str(lot.remaining_quantity),
            })

        self._state = state.with_quantity(lot_id, clamped)
        logger.debug("lot_quantity_edited", extra={
            "lot_id": lot_id,
            "quantity": str(clamped),
        })
        return clamped

    def set_justification_note(self, note: str | None) -> None:
        state = self._require_open("set justification note")
        self._state = replace(state, note=note)

    # =========================================================================
    # Validation and finalization
    # =========================================================================

    def validate(self) -> tuple[InvariantViolation, ...]:
        """Violations that would refuse finalize() right now."""
        state = self._require_state("validate")
        return self._violations(state, self.variance)

    def finalize(self, actor_id: str | None = None) -> FinalizeOutcome:
        """
        Finalize the working set into an OrderLineCosting.

        On refusal the session is left as it was so the user can fix it.
        On success the session is closed.
        """
        state = self._require_open("finalize")
        context = state.context
        working = state.working_set
        variance = self.evaluator.evaluate(working, context.baseline)

        violations = self._violations(state, variance)
        if violations:
            logger.warning("lot_selection_refused", extra={
                "product_id": context.product.product_id,
                "violations": ",".join(v.kind.value for v in violations),
                "selected_quantity": str(working.allocated_quantity),
                "quantity_needed": str(context.quantity_needed),
            })
            return FinalizeOutcome.refuse(violations)

        method = self._classify(state, working)
        finalized_at = self.clock.now()
        physical = working.with_method(method).with_provenance(actor_id, finalized_at)
        deviation = self.evaluator.fifo_deviation(working, context.baseline)

        variance_reason = None
        if variance.has_variance:
            if method is ConsumptionMethod.AUTO_LIFO:
                variance_reason = LIFO_VARIANCE_REASON
            else:
                variance_reason = MANUAL_VARIANCE_REASON

        costing = OrderLineCosting(
            product_id=context.product.product_id,
            quantity=context.quantity_needed,
            physical=physical,
            accounting=context.baseline,
            variance=variance,
            lot_selection_method=method,
            fifo_deviation=deviation,
            justification_note=state.note.strip() if variance.has_variance else None,
            variance_reason=variance_reason,
            requires_approval=(
                context.product.require_lot_approval and deviation.has_deviation
            ),
            finalized_by=actor_id,
            finalized_at=finalized_at,
        )
        self._finalized = True

        logger.info("lot_selection_finalized", extra={
            "product_id": context.product.product_id,
            "lot_selection_method": method.value,
            "physical_cost": str(variance.physical_cost.amount),
            "accounting_cost": str(variance.accounting_cost.amount),
            "variance": str(variance.variance.amount),
            "has_variance": variance.has_variance,
            "requires_approval": costing.requires_approval,
        })
        return FinalizeOutcome.accept(costing)

    def _violations(
        self,
        state: AutoSelection | ManualSelection,
        variance: CostVarianceResult,
    ) -> tuple[InvariantViolation, ...]:
        violations: list[InvariantViolation] = []
        expected = state.context.quantity_needed
        actual = state.working_set.allocated_quantity
        difference = actual - expected

        if abs(difference) >= self.tolerances.quantity_match:
            violations.append(InvariantViolation(
                kind=ViolationKind.QUANTITY_MISMATCH,
                message=(
                    f"Selected quantity {actual} does not match the required "
                    f"quantity {expected}"
                ),
                expected=expected,
                actual=actual,
                difference=difference,
            ))

        if variance.has_variance and _is_blank(state.note):
            violations.append(InvariantViolation(
                kind=ViolationKind.JUSTIFICATION_REQUIRED,
                message=(
                    f"Cost differs from FIFO by {variance.variance.amount} "
                    f"{variance.variance.currency.code}; a justification note is required"
                ),
            ))

        return tuple(violations)

    def _classify(
        self,
        state: AutoSelection | ManualSelection,
        working: AllocationSet,
    ) -> ConsumptionMethod:
        context = state.context
        if self.evaluator.is_equivalent(working, context.baseline):
            return ConsumptionMethod.AUTO_FIFO
        if context.product.suggestion_policy is CostingPolicy.LIFO:
            lifo = self.allocator.allocate(
                context.lots,
                context.quantity_needed,
                CostingPolicy.LIFO,
                currency=context.currency,
            )
            if self.evaluator.is_equivalent(working, lifo):
                return ConsumptionMethod.AUTO_LIFO
        return ConsumptionMethod.MANUAL

    def _require_state(self, operation: str) -> AutoSelection | ManualSelection:
        if self._state is None:
            raise SelectionNotStartedError(operation)
        return self._state

    def _require_open(self, operation: str) -> AutoSelection | ManualSelection:
        state = self._require_state(operation)
        if self._finalized:
            raise SelectionFinalizedError(operation)
        return state
