"""
Property-based tests for lot allocation and variance.

Verifies, for arbitrary lot snapshots and requests:
- Allocated quantity equals min(requested, available)
- Allocations follow FIFO / LIFO order and never overdraw a lot
- Input lots are never modified
- A set evaluated against itself has no variance
"""

from datetime import date, timedelta
from decimal import Decimal

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from costing_engines.consumption import LotConsumptionAllocator
from costing_engines.valuation import CostingPolicy
from costing_engines.variance import CostVarianceEvaluator, allocations_equivalent
from tests.factories import make_lot

quantities = st.decimals(
    min_value=Decimal("0"), max_value=Decimal("1000"), places=3,
    allow_nan=False, allow_infinity=False,
)
costs = st.decimals(
    min_value=Decimal("0"), max_value=Decimal("500"), places=2,
    allow_nan=False, allow_infinity=False,
)
lot_specs = st.lists(
    st.tuples(st.integers(min_value=0, max_value=60), quantities, costs),
    min_size=0,
    max_size=8,
)
policies = st.sampled_from([CostingPolicy.FIFO, CostingPolicy.LIFO, CostingPolicy.AVERAGE])


def _lots(specs):
    base = date(2024, 1, 1)
    return [
        make_lot(f"L{i:02d}", base + timedelta(days=offset), qty, cost)
        for i, (offset, qty, cost) in enumerate(specs)
        if qty > 0
    ]


class TestAllocationProperties:
    """Invariants that hold for every snapshot."""

    @given(specs=lot_specs, requested=quantities, policy=policies)
    @settings(max_examples=200, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    def test_completeness(self, specs, requested, policy):
        lots = _lots(specs)
        available = sum((lot.remaining_quantity for lot in lots), Decimal("0"))

        result = LotConsumptionAllocator().allocate(lots, requested, policy)

        assert result.allocated_quantity == min(requested, available)

    @given(specs=lot_specs, requested=quantities, policy=policies)
    @settings(max_examples=200, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    def test_order_and_bounds(self, specs, requested, policy):
        lots = _lots(specs)
        by_id = {lot.lot_id: lot for lot in lots}

        result = LotConsumptionAllocator().allocate(lots, requested, policy)

        keys = [(by_id[a.lot_id].purchase_date, a.lot_id) for a in result]
        if policy is CostingPolicy.LIFO:
            dates = [k[0] for k in keys]
            assert dates == sorted(dates, reverse=True)
        else:
            assert keys == sorted(keys)
        for allocation in result:
            assert Decimal("0") < allocation.quantity_used <= by_id[allocation.lot_id].remaining_quantity

    @given(specs=lot_specs, requested=quantities, policy=policies)
    @settings(max_examples=100, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    def test_no_mutation(self, specs, requested, policy):
        lots = _lots(specs)
        before = [(lot.lot_id, lot.remaining_quantity) for lot in lots]

        LotConsumptionAllocator().allocate(lots, requested, policy)

        assert [(lot.lot_id, lot.remaining_quantity) for lot in lots] == before

    @given(specs=lot_specs, requested=quantities, policy=policies)
    @settings(max_examples=100, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    def test_self_variance_is_zero(self, specs, requested, policy):
        allocation = LotConsumptionAllocator().allocate(_lots(specs), requested, policy)

        result = CostVarianceEvaluator().evaluate(allocation, allocation)

        assert result.variance.is_zero
        assert result.has_variance is False
        assert allocations_equivalent(allocation, allocation)
