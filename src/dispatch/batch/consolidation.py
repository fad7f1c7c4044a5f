"""Batch repair — commands and handler for consolidation and the explicit repairs."""

from protean import handle
from protean.fields import Identifier, String

from dispatch.batch.batch import Batch
from dispatch.domain import dispatch
from dispatch.services import get_services


@dispatch.command(part_of="Batch")
class RunConsolidation:
    """Merge, split and re-weigh batches from member-order ground truth."""

    requested_by = String(max_length=100, default="scheduler")


@dispatch.command(part_of="Batch")
class ReresolveUnknownZones:
    """Re-batch unknown-zone orders whose address now resolves to a zone."""

    requested_by = String(max_length=100, default="operator")


@dispatch.command(part_of="Batch")
class WithdrawOrder:
    """Remove a rejected order from its batch."""

    order_id = Identifier(required=True)


@dispatch.command_handler(part_of=Batch)
class ConsolidationHandler:
    @handle(RunConsolidation)
    def run_consolidation(self, command):
        return get_services().consolidation.run()

    @handle(ReresolveUnknownZones)
    def reresolve_unknown_zones(self, command):
        return get_services().consolidation.reresolve_unknown_zones()

    @handle(WithdrawOrder)
    def withdraw_order(self, command):
        return get_services().consolidation.withdraw_order(command.order_id)
