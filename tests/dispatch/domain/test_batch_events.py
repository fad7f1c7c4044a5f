"""Tests for the events raised by Batch operations."""

from dispatch.batch.batch import Batch
from dispatch.batch.events import (
    BatchCancelled,
    BatchDelivered,
    BatchesMerged,
    BatchOpened,
    BatchReadyForDelivery,
    BatchWeightCorrected,
    DeliveryStarted,
    DriverAssigned,
    OrderBatched,
    OrderWithdrawn,
)


def _open(weight=1200.0, order_id="ord-001"):
    return Batch.open(
        zone="Lapasan",
        initial_weight=weight,
        min_threshold=3500.0,
        max_capacity=5000.0,
        order_id=order_id,
    )


class TestOpeningEvents:
    def test_open_raises_opened_and_batched(self):
        batch = _open()
        assert isinstance(batch._events[0], BatchOpened)
        assert isinstance(batch._events[1], OrderBatched)

    def test_opened_event_fields(self):
        batch = _open()
        event = batch._events[0]
        assert event.batch_id == str(batch.id)
        assert event.zone == "Lapasan"
        assert event.initial_weight == 1200.0
        assert event.max_capacity == 5000.0
        assert event.opened_at is not None

    def test_batched_event_carries_order(self):
        batch = _open()
        event = batch._events[1]
        assert event.order_id == "ord-001"
        assert event.weight == 1200.0
        assert event.total_weight == 1200.0


class TestMembershipEvents:
    def test_add_weight_raises_order_batched(self):
        batch = _open()
        batch._events.clear()
        batch.add_weight(300.0, order_id="ord-002")
        assert len(batch._events) == 1
        event = batch._events[0]
        assert isinstance(event, OrderBatched)
        assert event.total_weight == 1500.0

    def test_threshold_crossing_raises_ready_after_batched(self):
        batch = _open(weight=3000.0)
        batch._events.clear()
        batch.add_weight(600.0, order_id="ord-002")
        assert [type(e) for e in batch._events] == [OrderBatched, BatchReadyForDelivery]
        assert batch._events[1].total_weight == 3600.0

    def test_remove_weight_raises_withdrawn(self):
        batch = _open()
        batch._events.clear()
        batch.remove_weight(200.0, order_id="ord-001")
        event = batch._events[0]
        assert isinstance(event, OrderWithdrawn)
        assert event.weight == 200.0
        assert event.total_weight == 1000.0

    def test_absorb_raises_merged_on_survivor_only(self):
        survivor, absorbed = _open(), _open(weight=500.0)
        survivor._events.clear()
        absorbed._events.clear()
        survivor.absorb(absorbed)
        event = survivor._events[0]
        assert isinstance(event, BatchesMerged)
        assert event.absorbed_batch_id == str(absorbed.id)
        assert event.absorbed_weight == 500.0
        assert absorbed._events == []

    def test_correct_weight_raises_corrected(self):
        batch = _open()
        batch._events.clear()
        batch.correct_weight(1100.0)
        event = batch._events[0]
        assert isinstance(event, BatchWeightCorrected)
        assert event.previous_weight == 1200.0
        assert event.corrected_weight == 1100.0


class TestLifecycleEvents:
    def test_delivery_lifecycle_events(self):
        batch = _open(weight=3600.0)
        batch._events.clear()
        batch.assign_driver("driver-1")
        batch.start_delivery()
        batch.mark_delivered()
        assert [type(e) for e in batch._events] == [DriverAssigned, DeliveryStarted, BatchDelivered]
        assert all(e.driver_id == "driver-1" for e in batch._events)

    def test_cancel_event_carries_reason_and_count(self):
        batch = _open()
        batch._events.clear()
        batch.cancel("Road closure", released_order_count=3)
        event = batch._events[0]
        assert isinstance(event, BatchCancelled)
        assert event.reason == "Road closure"
        assert event.released_order_count == 3

    def test_events_are_versioned(self):
        batch = _open()
        assert all(type(e).__version__ == "v1" for e in batch._events)
