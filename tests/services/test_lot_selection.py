"""
Tests for the Lot Selection Controller.

Covers:
- Starting a selection (FIFO proposal)
- Mode transitions and idempotence
- Manual edits with clamping
- Finalization gating (quantity match, justification)
- Method classification and provenance
- Closed sessions after finalization
"""

from datetime import date
from decimal import Decimal

import pytest

from costing_engines.valuation import (
    ConsumptionMethod,
    FifoDeviationKind,
    ProductCostingProfile,
)
from costing_kernel.domain.clock import DeterministicClock
from costing_kernel.domain.values import Money
from costing_kernel.exceptions import (
    InvalidQuantityError,
    LotNotFoundError,
    SelectionFinalizedError,
    SelectionModeError,
    SelectionNotStartedError,
)
from costing_services.lot_selection import (
    MANUAL_VARIANCE_REASON,
    AutoSelection,
    LotSelectionController,
    ManualSelection,
    SelectionMode,
    ViolationKind,
)
from tests.factories import PRODUCT_ID, make_lot


@pytest.fixture
def controller(deterministic_clock):
    return LotSelectionController(clock=deterministic_clock)


class TestStart:
    """start() proposes the FIFO allocation."""

    def test_start_proposes_fifo(self, controller, fifo_product, two_lots):
        assert controller.is_started is False

        proposal = controller.start(fifo_product, Decimal("7"), two_lots)

        assert [(a.lot_id, a.quantity_used) for a in proposal] == [
            ("A", Decimal("5")),
            ("B", Decimal("2")),
        ]
        assert controller.is_started is True
        assert controller.mode == SelectionMode.AUTO
        assert isinstance(controller.state, AutoSelection)
        assert controller.working_set == controller.baseline
        assert controller.note is None

    def test_start_drops_depleted_lots(self, controller, fifo_product, two_lots):
        depleted = make_lot("C", date(2023, 1, 1), "0", "1.00")

        controller.start(fifo_product, Decimal("3"), [depleted, *two_lots])

        assert [lot.lot_id for lot in controller.state.context.lots] == ["A", "B"]

    def test_negative_quantity_rejected(self, controller, fifo_product, two_lots):
        with pytest.raises(InvalidQuantityError):
            controller.start(fifo_product, Decimal("-1"), two_lots)

    def test_start_is_idempotent(self, controller, fifo_product, two_lots):
        first = controller.start(fifo_product, Decimal("7"), two_lots)
        second = controller.start(fifo_product, Decimal("7"), two_lots)

        assert first == second
        assert controller.mode == SelectionMode.AUTO

    def test_start_resets_manual_state(self, controller, fifo_product, two_lots):
        controller.start(fifo_product, Decimal("7"), two_lots)
        controller.switch_to_manual()
        controller.edit_lot_quantity("B", Decimal("7"))
        controller.set_justification_note("damaged packaging")

        controller.start(fifo_product, Decimal("7"), two_lots)

        assert controller.mode == SelectionMode.AUTO
        assert controller.note is None
        assert controller.working_set == controller.baseline


class TestNotStarted:
    """Every operation requires start()."""

    @pytest.mark.parametrize("call", [
        lambda c: c.switch_to_manual(),
        lambda c: c.switch_to_auto(),
        lambda c: c.edit_lot_quantity("A", Decimal("1")),
        lambda c: c.set_justification_note("note"),
        lambda c: c.finalize(),
        lambda c: c.validate(),
        lambda c: c.working_set,
    ])
    def test_raises_before_start(self, controller, call):
        with pytest.raises(SelectionNotStartedError):
            call(controller)


class TestModeTransitions:
    """Switching between auto and manual."""

    def test_switch_to_manual_keeps_working_set(self, controller, fifo_product, two_lots):
        controller.start(fifo_product, Decimal("7"), two_lots)

        controller.switch_to_manual()

        assert controller.mode == SelectionMode.MANUAL
        assert isinstance(controller.state, ManualSelection)
        assert [(a.lot_id, a.quantity_used) for a in controller.working_set] == [
            ("A", Decimal("5")),
            ("B", Decimal("2")),
        ]

    def test_switch_to_auto_discards_edits_and_note(self, controller, fifo_product, two_lots):
        controller.start(fifo_product, Decimal("7"), two_lots)
        controller.switch_to_manual()
        controller.edit_lot_quantity("A", Decimal("0"))
        controller.edit_lot_quantity("B", Decimal("7"))
        controller.set_justification_note("customer asked for fresh stock")

        controller.switch_to_auto()

        assert controller.mode == SelectionMode.AUTO
        assert controller.working_set == controller.baseline
        assert controller.note is None

    def test_switch_to_auto_is_idempotent(self, controller, fifo_product, two_lots):
        controller.start(fifo_product, Decimal("7"), two_lots)
        controller.switch_to_manual()

        controller.switch_to_auto()
        once = controller.state
        controller.switch_to_auto()

        assert controller.state == once

    def test_edit_requires_manual_mode(self, controller, fifo_product, two_lots):
        controller.start(fifo_product, Decimal("7"), two_lots)

        with pytest.raises(SelectionModeError):
            controller.edit_lot_quantity("A", Decimal("1"))


class TestManualEdits:
    """edit_lot_quantity upserts and clamps."""

    def setup_method(self):
        self.controller = LotSelectionController(clock=DeterministicClock())
        self.product = ProductCostingProfile(product_id=PRODUCT_ID)
        self.lots = [
            make_lot("A", date(2024, 1, 1), "5", "10.00"),
            make_lot("B", date(2024, 2, 1), "10", "12.00"),
        ]
        self.controller.start(self.product, Decimal("7"), self.lots)
        self.controller.switch_to_manual()

    def test_quantity_clamped_to_remaining(self):
        recorded = self.controller.edit_lot_quantity("A", Decimal("8"))

        assert recorded == Decimal("5")
        assert self.controller.working_set.quantity_for("A") == Decimal("5")

    def test_negative_quantity_clamped_to_zero(self):
        recorded = self.controller.edit_lot_quantity("A", Decimal("-3"))

        assert recorded == Decimal("0")
        assert "A" not in self.controller.working_set.lot_ids

    def test_edit_replaces_existing_entry(self):
        self.controller.edit_lot_quantity("B", Decimal("3"))

        assert [(a.lot_id, a.quantity_used) for a in self.controller.working_set] == [
            ("A", Decimal("5")),
            ("B", Decimal("3")),
        ]

    def test_unknown_lot_rejected(self):
        with pytest.raises(LotNotFoundError):
            self.controller.edit_lot_quantity("Z", Decimal("1"))

    def test_variance_preview_follows_edits(self):
        self.controller.edit_lot_quantity("A", Decimal("0"))
        self.controller.edit_lot_quantity("B", Decimal("7"))

        assert self.controller.variance.variance == Money.of("10.00", "TRY")


class TestFinalizeGating:
    """Finalization is refused unless quantity matches and variance is justified."""

    def setup_method(self):
        self.controller = LotSelectionController(clock=DeterministicClock())
        self.product = ProductCostingProfile(product_id=PRODUCT_ID)
        self.lots = [
            make_lot("A", date(2024, 1, 1), "5", "10.00"),
            make_lot("B", date(2024, 2, 1), "10", "12.00"),
        ]

    def test_auto_selection_finalizes(self):
        self.controller.start(self.product, Decimal("7"), self.lots)

        outcome = self.controller.finalize("user-1")

        assert outcome.accepted is True
        assert outcome.violations == ()

    def test_quantity_off_by_more_than_tolerance_refused(self):
        """Need 5 but 5.002 selected: refused."""
        self.controller.start(self.product, Decimal("5"), self.lots)
        self.controller.switch_to_manual()
        self.controller.edit_lot_quantity("A", Decimal("4.998"))
        self.controller.edit_lot_quantity("B", Decimal("0.004"))
        self.controller.set_justification_note("split across lots")

        outcome = self.controller.finalize()

        assert outcome.accepted is False
        assert outcome.costing is None
        kinds = [v.kind for v in outcome.violations]
        assert ViolationKind.QUANTITY_MISMATCH in kinds
        mismatch = outcome.violations[kinds.index(ViolationKind.QUANTITY_MISMATCH)]
        assert mismatch.expected == Decimal("5")
        assert mismatch.actual == Decimal("5.002")
        assert mismatch.difference == Decimal("0.002")

    def test_quantity_within_tolerance_accepted(self):
        self.controller.start(self.product, Decimal("5"), self.lots)
        self.controller.switch_to_manual()
        self.controller.edit_lot_quantity("A", Decimal("4.9995"))

        outcome = self.controller.finalize()

        assert outcome.accepted is True

    def test_underselection_refused(self):
        self.controller.start(self.product, Decimal("7"), self.lots)
        self.controller.switch_to_manual()
        self.controller.edit_lot_quantity("B", Decimal("0"))

        outcome = self.controller.finalize()

        assert [v.kind for v in outcome.violations] == [
            ViolationKind.QUANTITY_MISMATCH,
            ViolationKind.JUSTIFICATION_REQUIRED,
        ]

    def test_insufficient_stock_cannot_finalize(self):
        self.controller.start(self.product, Decimal("20"), self.lots)

        outcome = self.controller.finalize()

        assert outcome.accepted is False

    @pytest.mark.parametrize("note", [None, "", "   "])
    def test_variance_without_note_refused(self, note):
        self.controller.start(self.product, Decimal("7"), self.lots)
        self.controller.switch_to_manual()
        self.controller.edit_lot_quantity("A", Decimal("0"))
        self.controller.edit_lot_quantity("B", Decimal("7"))
        self.controller.set_justification_note(note)

        outcome = self.controller.finalize()

        assert [v.kind for v in outcome.violations] == [ViolationKind.JUSTIFICATION_REQUIRED]

    def test_refusal_leaves_session_editable(self):
        self.controller.start(self.product, Decimal("7"), self.lots)
        self.controller.switch_to_manual()
        self.controller.edit_lot_quantity("A", Decimal("0"))
        self.controller.edit_lot_quantity("B", Decimal("7"))

        assert self.controller.finalize().accepted is False

        self.controller.set_justification_note("older lot reserved for another order")
        outcome = self.controller.finalize()

        assert outcome.accepted is True
        assert outcome.costing.justification_note == "older lot reserved for another order"

    def test_validate_previews_violations(self):
        self.controller.start(self.product, Decimal("7"), self.lots)
        self.controller.switch_to_manual()
        self.controller.edit_lot_quantity("A", Decimal("0"))

        kinds = {v.kind for v in self.controller.validate()}

        assert kinds == {
            ViolationKind.QUANTITY_MISMATCH,
            ViolationKind.JUSTIFICATION_REQUIRED,
        }
        assert self.controller.is_finalized is False


class TestClassification:
    """Finalized selections are classified auto-fifo / auto-lifo / manual."""

    def setup_method(self):
        self.clock = DeterministicClock()
        self.controller = LotSelectionController(clock=self.clock)
        self.lots = [
            make_lot("A", date(2024, 1, 1), "5", "10.00"),
            make_lot("B", date(2024, 2, 1), "10", "12.00"),
        ]

    def test_untouched_proposal_is_auto_fifo(self):
        self.controller.start(ProductCostingProfile(PRODUCT_ID), Decimal("7"), self.lots)

        costing = self.controller.finalize("user-1").costing

        assert costing.lot_selection_method == ConsumptionMethod.AUTO_FIFO
        assert costing.has_cost_variance is False
        assert costing.justification_note is None
        assert costing.variance_reason is None
        assert costing.fifo_deviation.kind == FifoDeviationKind.NONE

    def test_manual_edit_matching_fifo_is_auto_fifo(self):
        self.controller.start(ProductCostingProfile(PRODUCT_ID), Decimal("7"), self.lots)
        self.controller.switch_to_manual()
        self.controller.edit_lot_quantity("B", Decimal("2"))

        costing = self.controller.finalize().costing

        assert costing.lot_selection_method == ConsumptionMethod.AUTO_FIFO

    def test_lifo_product_selecting_lifo_is_auto_lifo(self):
        product = ProductCostingProfile(PRODUCT_ID, costing_policy="lifo")
        self.controller.start(product, Decimal("7"), self.lots)
        self.controller.switch_to_manual()
        self.controller.edit_lot_quantity("A", Decimal("0"))
        self.controller.edit_lot_quantity("B", Decimal("7"))
        self.controller.set_justification_note("LIFO product")

        costing = self.controller.finalize().costing

        assert costing.lot_selection_method == ConsumptionMethod.AUTO_LIFO
        assert costing.cost_variance == Money.of("10.00", "TRY")

    def test_fifo_product_selecting_lifo_is_manual(self):
        self.controller.start(ProductCostingProfile(PRODUCT_ID), Decimal("7"), self.lots)
        self.controller.switch_to_manual()
        self.controller.edit_lot_quantity("A", Decimal("0"))
        self.controller.edit_lot_quantity("B", Decimal("7"))
        self.controller.set_justification_note("  fresher stock requested  ")

        costing = self.controller.finalize("user-1").costing

        assert costing.lot_selection_method == ConsumptionMethod.MANUAL
        assert costing.physical_cost == Money.of("84.00", "TRY")
        assert costing.accounting_cost == Money.of("74.00", "TRY")
        assert costing.physical_cost_per_unit == Money.of("12.00", "TRY")
        assert costing.justification_note == "fresher stock requested"
        assert costing.variance_reason == MANUAL_VARIANCE_REASON
        assert costing.fifo_deviation.kind == FifoDeviationKind.DIFFERENT_LOTS

    def test_note_dropped_when_no_variance(self):
        """Same-cost lots: a different lot choice carries no variance and no note."""
        lots = [
            make_lot("A", date(2024, 1, 1), "5", "10.00"),
            make_lot("B", date(2024, 2, 1), "5", "10.00"),
        ]
        self.controller.start(ProductCostingProfile(PRODUCT_ID), Decimal("3"), lots)
        self.controller.switch_to_manual()
        self.controller.edit_lot_quantity("A", Decimal("0"))
        self.controller.edit_lot_quantity("B", Decimal("3"))
        self.controller.set_justification_note("not needed")

        costing = self.controller.finalize().costing

        assert costing.lot_selection_method == ConsumptionMethod.MANUAL
        assert costing.has_cost_variance is False
        assert costing.justification_note is None

    def test_provenance_stamped_on_physical_allocations(self):
        self.controller.start(ProductCostingProfile(PRODUCT_ID), Decimal("7"), self.lots)

        costing = self.controller.finalize("user-42").costing

        assert all(a.consumed_by == "user-42" for a in costing.physical)
        assert all(a.consumed_at == self.clock.now() for a in costing.physical)
        assert costing.finalized_by == "user-42"
        assert costing.finalized_at == self.clock.now()
        assert all(a.consumed_by is None for a in costing.accounting)

    def test_physical_allocations_tagged_with_method(self):
        self.controller.start(ProductCostingProfile(PRODUCT_ID), Decimal("7"), self.lots)
        self.controller.switch_to_manual()
        self.controller.edit_lot_quantity("A", Decimal("4"))
        self.controller.edit_lot_quantity("B", Decimal("3"))
        self.controller.set_justification_note("partial lot damaged")

        costing = self.controller.finalize().costing

        assert {a.consumption_method for a in costing.physical} == {ConsumptionMethod.MANUAL}

    def test_approval_required_for_deviation_when_flagged(self):
        product = ProductCostingProfile(PRODUCT_ID, require_lot_approval=True)
        self.controller.start(product, Decimal("7"), self.lots)
        self.controller.switch_to_manual()
        self.controller.edit_lot_quantity("A", Decimal("0"))
        self.controller.edit_lot_quantity("B", Decimal("7"))
        self.controller.set_justification_note("fresher stock")

        assert self.controller.finalize().costing.requires_approval is True

    def test_no_approval_for_fifo_selection(self):
        product = ProductCostingProfile(PRODUCT_ID, require_lot_approval=True)
        self.controller.start(product, Decimal("7"), self.lots)

        assert self.controller.finalize().costing.requires_approval is False


class TestFinalizedSession:
    """A finalized session is closed until start() is called again."""

    def test_edits_after_finalize_rejected(self, controller, fifo_product, two_lots):
        controller.start(fifo_product, Decimal("7"), two_lots)
        assert controller.finalize().accepted

        with pytest.raises(SelectionFinalizedError):
            controller.switch_to_manual()
        with pytest.raises(SelectionFinalizedError):
            controller.finalize()

    def test_start_reopens_session(self, controller, fifo_product, two_lots):
        controller.start(fifo_product, Decimal("7"), two_lots)
        controller.finalize()

        controller.start(fifo_product, Decimal("3"), two_lots)

        assert controller.is_finalized is False
        assert controller.finalize().accepted is True

    def test_finalize_logged(self, controller, fifo_product, two_lots, captured_logs):
        controller.start(fifo_product, Decimal("7"), two_lots)
        controller.finalize()

        finalized = [r for r in captured_logs() if r["message"] == "lot_selection_finalized"]
        assert len(finalized) == 1
        assert finalized[0]["lot_selection_method"] == "auto-fifo"
