"""Tests for order weight computation from line items."""

import pytest

from dispatch.engine.weights import WeightCalculator
from dispatch.settings import BatchingPolicy


@pytest.fixture()
def calculator(orders, catalog):
    return WeightCalculator(orders, catalog, BatchingPolicy())


class TestComputeWeight:
    def test_sums_quantity_times_unit_weight(self, orders, calculator):
        orders.add_order("ord-001", line_items=[("rice-sack", 4), ("water-case", 2)])
        assert calculator.compute_weight("ord-001") == 124.0

    def test_missing_product_weight_defaults_to_one(self, orders, calculator):
        orders.add_order("ord-001", line_items=[("mystery-box", 7)])
        assert calculator.compute_weight("ord-001") == 7.0

    def test_non_positive_unit_weight_defaults_to_one(self, orders, catalog, calculator):
        catalog.set_weight("broken-scale", 0)
        orders.add_order("ord-001", line_items=[("broken-scale", 3)])
        assert calculator.compute_weight("ord-001") == 3.0

    def test_order_without_items_weighs_the_minimum(self, orders, calculator):
        orders.add_order("ord-001")
        assert calculator.compute_weight("ord-001") == 1.0

    def test_non_positive_quantities_are_skipped(self, orders, calculator):
        orders.add_order("ord-001", line_items=[("rice-sack", 0), ("water-case", -2), ("cement-bag", 1)])
        assert calculator.compute_weight("ord-001") == 40.0

    def test_tiny_weights_are_floored(self, orders, catalog, calculator):
        catalog.set_weight("feather", 0.01)
        orders.add_order("ord-001", line_items=[("feather", 5)])
        assert calculator.compute_weight("ord-001") == 1.0

    def test_result_is_rounded_to_grams(self, orders, catalog, calculator):
        catalog.set_weight("bolt", 0.1)
        orders.add_order("ord-001", line_items=[("bolt", 33)])
        assert calculator.compute_weight("ord-001") == 3.3

    def test_recomputation_is_stable(self, orders, calculator):
        orders.add_order("ord-001", line_items=[("rice-sack", 3), ("mystery-box", 2)])
        assert calculator.compute_weight("ord-001") == calculator.compute_weight("ord-001") == 77.0

    def test_policy_default_unit_weight(self, orders, catalog):
        orders.add_order("ord-001", line_items=[("mystery-box", 2)])
        calculator = WeightCalculator(orders, catalog, BatchingPolicy(default_unit_weight=2.5))
        assert calculator.compute_weight("ord-001") == 5.0
