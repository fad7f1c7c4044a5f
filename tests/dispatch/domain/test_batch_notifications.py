"""Tests for relaying committed batch events to the notification service."""

from dispatch.batch.batch import Batch
from dispatch.batch.repository import BatchUnitOfWork


def _open(policy, batches):
    batch = Batch.open(
        zone="Lapasan",
        initial_weight=10.0,
        min_threshold=policy.min_threshold,
        max_capacity=policy.max_capacity,
        order_id="o-1",
    )
    with BatchUnitOfWork(policy):
        batches.add(batch)
    return str(batch.id)


class TestBatchNotificationRelay:
    def test_publishes_in_order(self, services, policy, batches, notifier):
        _open(policy, batches)
        assert notifier.names() == ["BatchOpened", "OrderBatched"]

    def test_events_carry_the_batch(self, services, policy, batches, notifier):
        batch_id = _open(policy, batches)
        assert {str(e.batch_id) for e in notifier.events} == {batch_id}

    def test_failing_notifier_does_not_undo_the_batch(self, services, policy, batches, notifier):
        notifier.configure(should_succeed=False)

        batch_id = _open(policy, batches)

        assert notifier.events == []
        assert batches.get(batch_id).total_weight == 10.0

    def test_nothing_is_published_before_commit(self, services, policy, batches, notifier):
        batch = Batch.open(zone="Lapasan", initial_weight=10.0, min_threshold=80.0, max_capacity=100.0)
        with BatchUnitOfWork(policy):
            batches.add(batch)
            assert notifier.events == []
        assert notifier.names() == ["BatchOpened"]
