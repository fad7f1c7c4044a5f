"""Batch lifecycle — commands and handler for driver assignment and delivery progress."""

from protean import handle
from protean.fields import Identifier, String

from dispatch.batch.batch import Batch
from dispatch.domain import dispatch
from dispatch.services import get_services


@dispatch.command(part_of="Batch")
class AssignDriver:
    """Bind a driver to a ready batch; one is picked from the roster when omitted."""

    batch_id = Identifier(required=True)
    driver_id = Identifier()


@dispatch.command(part_of="Batch")
class DispatchReadyBatches:
    """Give every ready batch an available driver."""

    requested_by = String(max_length=100, default="scheduler")


@dispatch.command(part_of="Batch")
class StartDelivery:
    batch_id = Identifier(required=True)


@dispatch.command(part_of="Batch")
class RecordOrderDelivered:
    """Record one delivered order; the batch completes when all approved members are."""

    order_id = Identifier(required=True)


@dispatch.command(part_of="Batch")
class CancelBatch:
    """Cancel a pending batch and release its orders for re-batching."""

    batch_id = Identifier(required=True)
    reason = String(required=True, max_length=500)


@dispatch.command_handler(part_of=Batch)
class LifecycleHandler:
    @handle(AssignDriver)
    def assign_driver(self, command):
        return get_services().lifecycle.assign_driver(command.batch_id, driver_id=command.driver_id)

    @handle(DispatchReadyBatches)
    def dispatch_ready_batches(self, command):
        return get_services().lifecycle.dispatch_ready_batches()

    @handle(StartDelivery)
    def start_delivery(self, command):
        get_services().lifecycle.start_delivery(command.batch_id)

    @handle(RecordOrderDelivered)
    def record_order_delivered(self, command):
        return get_services().lifecycle.record_order_delivered(command.order_id)

    @handle(CancelBatch)
    def cancel_batch(self, command):
        return get_services().lifecycle.cancel_batch(command.batch_id, command.reason)
