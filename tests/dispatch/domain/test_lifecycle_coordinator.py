"""Tests for batch lifecycle transitions and their propagation to member orders."""

import pytest
from protean.exceptions import ObjectNotFoundError, ValidationError

from dispatch.batch.batch import BatchStatus
from dispatch.collaborators.ports import DeliveryState


@pytest.fixture()
def ready_batch(approve):
    """A ready batch with three approved members of 1200 kg each."""
    batch_id = approve("ord-1", weight=1200.0)
    approve("ord-2", weight=1200.0)
    approve("ord-3", weight=1200.0)
    return batch_id


def _delivery_states(orders, batch_id):
    return {o.id: o.delivery_state for o in orders.orders_in_batch(batch_id)}


class TestThreshold:
    def test_evaluate_threshold_promotes_a_filled_batch(self, approve, overwrite, lifecycle):
        batch_id = approve("ord-1", weight=1000.0)
        overwrite(batch_id, total_weight=3600.0)
        assert lifecycle.evaluate_threshold(batch_id) == BatchStatus.READY_FOR_DELIVERY.value

    def test_evaluate_threshold_leaves_light_batch_pending(self, approve, lifecycle):
        batch_id = approve("ord-1", weight=1000.0)
        assert lifecycle.evaluate_threshold(batch_id) == BatchStatus.PENDING.value


class TestAssignDriver:
    def test_picks_driver_from_roster(self, ready_batch, lifecycle, batches, roster):
        driver_id = lifecycle.assign_driver(ready_batch)
        assert driver_id == "driver-1"
        assert batches.get(ready_batch).driver_id == "driver-1"
        assert batches.get(ready_batch).status == BatchStatus.ASSIGNED.value
        assert "driver-1" in roster.busy

    def test_explicit_driver(self, ready_batch, lifecycle, batches):
        assert lifecycle.assign_driver(ready_batch, driver_id="driver-77") == "driver-77"
        assert batches.get(ready_batch).driver_id == "driver-77"

    def test_members_become_assigned(self, ready_batch, lifecycle, orders):
        lifecycle.assign_driver(ready_batch)
        assert set(_delivery_states(orders, ready_batch).values()) == {DeliveryState.ASSIGNED.value}

    def test_pending_batch_is_refused(self, approve, lifecycle, roster):
        batch_id = approve("ord-1", weight=100.0)
        with pytest.raises(ValidationError) as exc:
            lifecycle.assign_driver(batch_id)
        assert "status" in exc.value.messages
        assert roster.busy == set()

    def test_no_driver_available(self, ready_batch, lifecycle, roster, batches):
        roster.configure([])
        with pytest.raises(ValidationError) as exc:
            lifecycle.assign_driver(ready_batch)
        assert "driver_id" in exc.value.messages
        assert batches.get(ready_batch).status == BatchStatus.READY_FOR_DELIVERY.value

    def test_failed_propagation_releases_driver(self, ready_batch, lifecycle, orders, roster, batches):
        original = orders.set_delivery_state
        calls = []

        def fails_on_second(order_id, state):
            calls.append(order_id)
            if len(calls) == 2:
                raise ConnectionError("order store dropped the connection")
            original(order_id, state)

        orders.set_delivery_state = fails_on_second

        with pytest.raises(ConnectionError):
            lifecycle.assign_driver(ready_batch)

        orders.set_delivery_state = original
        assert batches.get(ready_batch).status == BatchStatus.READY_FOR_DELIVERY.value
        assert roster.busy == set()
        assert set(_delivery_states(orders, ready_batch).values()) == {DeliveryState.PENDING.value}

    def test_missing_batch(self, lifecycle):
        with pytest.raises(ObjectNotFoundError):
            lifecycle.assign_driver("batch-404")

    def test_publishes_driver_assigned(self, ready_batch, lifecycle, notifier):
        lifecycle.assign_driver(ready_batch)
        assert notifier.names()[-1] == "DriverAssigned"


class TestDispatchReadyBatches:
    def test_assigns_drivers_while_they_last(self, approve, lifecycle, roster):
        first = approve("a-1", zone="Lapasan", weight=3600.0)
        second = approve("b-1", zone="Carmen", weight=3600.0)
        third = approve("c-1", zone="Gusa", weight=3600.0)

        dispatched = lifecycle.dispatch_ready_batches()

        assert dispatched == {first: "driver-1", second: "driver-2"}
        assert third not in dispatched

    def test_nothing_ready(self, approve, lifecycle):
        approve("a-1", weight=100.0)
        assert lifecycle.dispatch_ready_batches() == {}


class TestDelivery:
    def test_start_delivery_propagates(self, ready_batch, lifecycle, orders, batches):
        lifecycle.assign_driver(ready_batch)
        lifecycle.start_delivery(ready_batch)
        assert batches.get(ready_batch).status == BatchStatus.DELIVERING.value
        assert set(_delivery_states(orders, ready_batch).values()) == {DeliveryState.DELIVERING.value}

    def test_start_delivery_requires_driver(self, ready_batch, lifecycle):
        with pytest.raises(ValidationError):
            lifecycle.start_delivery(ready_batch)

    def test_batch_delivered_only_when_every_member_is(self, ready_batch, lifecycle, batches):
        lifecycle.assign_driver(ready_batch)
        lifecycle.start_delivery(ready_batch)

        assert lifecycle.record_order_delivered("ord-1") == BatchStatus.DELIVERING.value
        assert lifecycle.record_order_delivered("ord-2") == BatchStatus.DELIVERING.value
        assert lifecycle.record_order_delivered("ord-3") == BatchStatus.DELIVERED.value
        assert batches.get(ready_batch).status == BatchStatus.DELIVERED.value

    def test_unapproved_members_do_not_hold_back_delivery(self, ready_batch, lifecycle, orders):
        lifecycle.assign_driver(ready_batch)
        lifecycle.start_delivery(ready_batch)
        orders.set_approval_state("ord-3", "rejected")

        lifecycle.record_order_delivered("ord-1")
        assert lifecycle.record_order_delivered("ord-2") == BatchStatus.DELIVERED.value

    def test_delivery_releases_driver(self, ready_batch, lifecycle, roster):
        driver_id = lifecycle.assign_driver(ready_batch)
        lifecycle.start_delivery(ready_batch)
        for order_id in ("ord-1", "ord-2", "ord-3"):
            lifecycle.record_order_delivered(order_id)
        assert driver_id not in roster.busy

    def test_order_cannot_be_delivered_before_departure(self, ready_batch, lifecycle, orders):
        lifecycle.assign_driver(ready_batch)
        with pytest.raises(ValidationError):
            lifecycle.record_order_delivered("ord-1")
        assert orders.get_order("ord-1").delivery_state == DeliveryState.ASSIGNED.value

    def test_unbatched_order_cannot_be_delivered(self, orders, lifecycle):
        orders.add_order("ord-loose", zone="Lapasan", weight=1.0)
        with pytest.raises(ValidationError) as exc:
            lifecycle.record_order_delivered("ord-loose")
        assert "order" in exc.value.messages

    def test_lifecycle_events_are_published(self, ready_batch, lifecycle, notifier):
        lifecycle.assign_driver(ready_batch)
        lifecycle.start_delivery(ready_batch)
        for order_id in ("ord-1", "ord-2", "ord-3"):
            lifecycle.record_order_delivered(order_id)
        assert notifier.names()[-3:] == ["DriverAssigned", "DeliveryStarted", "BatchDelivered"]


class TestCancellation:
    def test_cancel_releases_members(self, approve, lifecycle, orders, batches):
        batch_id = approve("ord-1", weight=100.0)
        approve("ord-2", weight=100.0)

        assert lifecycle.cancel_batch(batch_id, "Truck breakdown") == 2

        batch = batches.get(batch_id)
        assert batch.status == BatchStatus.CANCELLED.value
        assert batch.total_weight == 0.0
        assert orders.get_order("ord-1").batch_id is None
        assert {o.id for o in orders.approved_without_batch()} == {"ord-1", "ord-2"}

    def test_released_orders_are_rebatched_by_the_sweep(self, approve, lifecycle, engine, batches):
        batch_id = approve("ord-1", weight=100.0)
        lifecycle.cancel_batch(batch_id, "Road closure")

        report = engine.sweep_unassigned()

        assert report.assigned["ord-1"] != batch_id
        assert batches.get(report.assigned["ord-1"]).status == BatchStatus.PENDING.value

    def test_ready_batch_cannot_be_cancelled(self, ready_batch, lifecycle, orders):
        with pytest.raises(ValidationError):
            lifecycle.cancel_batch(ready_batch, "Too late")
        assert orders.get_order("ord-1").batch_id == ready_batch

    def test_publishes_cancelled_with_count(self, approve, lifecycle, notifier):
        batch_id = approve("ord-1", weight=100.0)
        lifecycle.cancel_batch(batch_id, "Typhoon signal raised")
        event = notifier.events[-1]
        assert type(event).__name__ == "BatchCancelled"
        assert event.released_order_count == 1
