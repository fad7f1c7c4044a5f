"""Batch domain events — immutable facts about batch membership and status.

All events are past tense and versioned. They are handed to the notification
service after the change that raised them has been committed.
"""

from protean.fields import DateTime, Float, Identifier, Integer, String, Text

from dispatch.domain import dispatch


@dispatch.event(part_of="Batch")
class BatchOpened:
    """A new batch was opened for a zone."""

    __version__ = "v1"

    batch_id = Identifier(required=True)
    zone = String(required=True)
    initial_weight = Float(required=True)
    max_capacity = Float(required=True)
    opened_at = DateTime(required=True)


@dispatch.event(part_of="Batch")
class OrderBatched:
    """An order's weight was added to a batch."""

    __version__ = "v1"

    batch_id = Identifier(required=True)
    order_id = Identifier()
    weight = Float(required=True)
    total_weight = Float(required=True)
    batched_at = DateTime(required=True)


@dispatch.event(part_of="Batch")
class OrderWithdrawn:
    """An order's weight was removed from a batch."""

    __version__ = "v1"

    batch_id = Identifier(required=True)
    order_id = Identifier()
    weight = Float(required=True)
    total_weight = Float(required=True)
    withdrawn_at = DateTime(required=True)


@dispatch.event(part_of="Batch")
class BatchReadyForDelivery:
    """A batch reached its minimum threshold and can take a driver."""

    __version__ = "v1"

    batch_id = Identifier(required=True)
    zone = String(required=True)
    total_weight = Float(required=True)
    ready_at = DateTime(required=True)


@dispatch.event(part_of="Batch")
class DriverAssigned:
    """A driver was bound to a ready batch."""

    __version__ = "v1"

    batch_id = Identifier(required=True)
    driver_id = Identifier(required=True)
    zone = String(required=True)
    assigned_at = DateTime(required=True)


@dispatch.event(part_of="Batch")
class DeliveryStarted:
    """The assigned driver started delivering the batch."""

    __version__ = "v1"

    batch_id = Identifier(required=True)
    driver_id = Identifier(required=True)
    started_at = DateTime(required=True)


@dispatch.event(part_of="Batch")
class BatchDelivered:
    """Every approved member order of the batch was delivered."""

    __version__ = "v1"

    batch_id = Identifier(required=True)
    driver_id = Identifier()
    delivered_at = DateTime(required=True)


@dispatch.event(part_of="Batch")
class BatchCancelled:
    """A pending batch was cancelled before any driver commitment."""

    __version__ = "v1"

    batch_id = Identifier(required=True)
    reason = String(required=True)
    released_order_count = Integer(default=0)
    cancelled_at = DateTime(required=True)


@dispatch.event(part_of="Batch")
class BatchesMerged:
    """Another batch of the same zone was absorbed into this one."""

    __version__ = "v1"

    batch_id = Identifier(required=True)
    absorbed_batch_id = Identifier(required=True)
    absorbed_weight = Float(required=True)
    total_weight = Float(required=True)
    merged_at = DateTime(required=True)


@dispatch.event(part_of="Batch")
class BatchSplit:
    """Most-recently-added orders were peeled off into another batch."""

    __version__ = "v1"

    batch_id = Identifier(required=True)
    new_batch_id = Identifier(required=True)
    moved_order_ids = Text(required=True)  # JSON list of order ids
    moved_weight = Float(required=True)
    total_weight = Float(required=True)
    split_at = DateTime(required=True)


@dispatch.event(part_of="Batch")
class BatchWeightCorrected:
    """The stored total weight drifted and was reset from member orders."""

    __version__ = "v1"

    batch_id = Identifier(required=True)
    previous_weight = Float(required=True)
    corrected_weight = Float(required=True)
    corrected_at = DateTime(required=True)
