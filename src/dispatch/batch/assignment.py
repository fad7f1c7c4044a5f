"""Order assignment — commands and handler.

Processed synchronously; the handler returns the batch id (or the sweep
report) so HTTP and CLI callers can answer immediately.
"""

from protean import handle
from protean.fields import Identifier, String

from dispatch.batch.batch import Batch
from dispatch.domain import dispatch
from dispatch.services import get_services


@dispatch.command(part_of="Batch")
class AssignOrder:
    """Put an approved order into a batch of its zone."""

    order_id = Identifier(required=True)


@dispatch.command(part_of="Batch")
class SweepUnassignedOrders:
    """Retry assignment for every approved order still without a batch."""

    requested_by = String(max_length=100, default="scheduler")


@dispatch.command_handler(part_of=Batch)
class AssignmentHandler:
    @handle(AssignOrder)
    def assign_order(self, command):
        return get_services().assignment.assign_order(command.order_id)

    @handle(SweepUnassignedOrders)
    def sweep_unassigned(self, command):
        return get_services().assignment.sweep_unassigned()
