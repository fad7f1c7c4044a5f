"""Batch aggregate — a capacity-bounded group of same-zone orders for one dispatch run.

State Machine:
    PENDING → READY_FOR_DELIVERY → ASSIGNED → DELIVERING → DELIVERED
    PENDING → CANCELLED

PENDING → READY_FOR_DELIVERY is automatic: it fires whenever the total weight
reaches the minimum threshold after a weight increase.
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, Identifier, String

from dispatch.batch.events import (
    BatchCancelled,
    BatchDelivered,
    BatchesMerged,
    BatchOpened,
    BatchReadyForDelivery,
    BatchSplit,
    BatchWeightCorrected,
    DeliveryStarted,
    DriverAssigned,
    OrderBatched,
    OrderWithdrawn,
)
from dispatch.domain import dispatch
from dispatch.errors import CapacityExceeded

# Weights are kg with three decimals; anything below this is rounding noise
WEIGHT_EPSILON = 1e-6


class BatchStatus(Enum):
    PENDING = "pending"
    READY_FOR_DELIVERY = "ready_for_delivery"
    ASSIGNED = "assigned"
    DELIVERING = "delivering"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


_VALID_TRANSITIONS = {
    BatchStatus.PENDING: {BatchStatus.READY_FOR_DELIVERY, BatchStatus.CANCELLED},
    BatchStatus.READY_FOR_DELIVERY: {BatchStatus.ASSIGNED},
    BatchStatus.ASSIGNED: {BatchStatus.DELIVERING},
    BatchStatus.DELIVERING: {BatchStatus.DELIVERED},
    BatchStatus.DELIVERED: set(),  # terminal
    BatchStatus.CANCELLED: set(),  # terminal
}

_DRIVER_STATUSES = {BatchStatus.ASSIGNED, BatchStatus.DELIVERING, BatchStatus.DELIVERED}

# Membership can still change through withdrawal and repair
_MUTABLE_STATUSES = {BatchStatus.PENDING, BatchStatus.READY_FOR_DELIVERY}


def _weight(value: float) -> float:
    return round(float(value), 3)


@dispatch.aggregate
class Batch:
    zone = String(required=True, max_length=255)
    status = String(choices=BatchStatus, default=BatchStatus.PENDING.value)
    total_weight = Float(default=0.0)
    min_threshold = Float(required=True)
    max_capacity = Float(required=True)
    driver_id = Identifier()
    cancellation_reason = String(max_length=500)
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def weight_cannot_be_negative(self):
        if self.total_weight is not None and self.total_weight < 0:
            raise ValidationError({"total_weight": ["Batch weight cannot be negative"]})

    @invariant.post
    def driver_only_once_assigned(self):
        has_driver_status = BatchStatus(self.status) in _DRIVER_STATUSES
        if has_driver_status and not self.driver_id:
            raise ValidationError({"driver_id": ["An assigned batch must have a driver"]})
        if self.driver_id and not has_driver_status:
            raise ValidationError({"driver_id": ["Only assigned batches can have a driver"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def open(
        cls,
        zone: str,
        initial_weight: float,
        min_threshold: float,
        max_capacity: float,
        order_id: str | None = None,
    ):
        """Open a pending batch around its first order."""
        initial_weight = _weight(initial_weight)
        if initial_weight > max_capacity + WEIGHT_EPSILON:
            raise CapacityExceeded(
                "Initial weight exceeds batch capacity",
                zone=zone,
                weight=initial_weight,
                max_capacity=max_capacity,
            )

        now = datetime.now(UTC)
        batch = cls(
            zone=zone,
            status=BatchStatus.PENDING.value,
            total_weight=initial_weight,
            min_threshold=min_threshold,
            max_capacity=max_capacity,
            created_at=now,
            updated_at=now,
        )
        batch.raise_(
            BatchOpened(
                batch_id=str(batch.id),
                zone=zone,
                initial_weight=initial_weight,
                max_capacity=max_capacity,
                opened_at=now,
            )
        )
        if order_id is not None:
            batch.raise_(
                OrderBatched(
                    batch_id=str(batch.id),
                    order_id=order_id,
                    weight=initial_weight,
                    total_weight=initial_weight,
                    batched_at=now,
                )
            )
        batch._evaluate_threshold()
        return batch

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def remaining_capacity(self) -> float:
        return _weight(self.max_capacity - self.total_weight)

    @property
    def reaches_threshold(self) -> bool:
        return self.total_weight + WEIGHT_EPSILON >= self.min_threshold

    @property
    def is_open(self) -> bool:
        """Pending and still able to take more weight."""
        return self.status == BatchStatus.PENDING.value and self.total_weight < self.max_capacity - WEIGHT_EPSILON

    def fits(self, weight: float) -> bool:
        return self.total_weight + weight <= self.max_capacity + WEIGHT_EPSILON

    # -------------------------------------------------------------------
    # State transition helper
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status: BatchStatus) -> None:
        current = BatchStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise ValidationError({"status": [f"Cannot transition from {current.value} to {target_status.value}"]})

    def _assert_status(self, allowed: set, action: str) -> None:
        if BatchStatus(self.status) not in allowed:
            raise ValidationError({"status": [f"Cannot {action} a batch in {self.status} status"]})

    def _evaluate_threshold(self) -> None:
        if self.status == BatchStatus.PENDING.value and self.reaches_threshold:
            self.mark_ready()

    # -------------------------------------------------------------------
    # Membership
    # -------------------------------------------------------------------
    def add_weight(self, delta: float, order_id: str | None = None) -> None:
        """Add an order's weight; refuses to pass the capacity ceiling."""
        self._assert_status({BatchStatus.PENDING}, "add orders to")
        delta = _weight(delta)
        if delta <= 0:
            raise ValidationError({"weight": ["Order weight must be positive"]})
        if not self.fits(delta):
            raise CapacityExceeded(
                "Adding weight would exceed batch capacity",
                batch_id=str(self.id),
                total_weight=self.total_weight,
                delta=delta,
                max_capacity=self.max_capacity,
            )

        now = datetime.now(UTC)
        self.total_weight = _weight(self.total_weight + delta)
        self.updated_at = now
        self.raise_(
            OrderBatched(
                batch_id=str(self.id),
                order_id=order_id,
                weight=delta,
                total_weight=self.total_weight,
                batched_at=now,
            )
        )
        self._evaluate_threshold()

    def remove_weight(self, delta: float, order_id: str | None = None) -> None:
        """Take a withdrawn order's weight out of the batch."""
        self._assert_status(_MUTABLE_STATUSES, "withdraw orders from")
        now = datetime.now(UTC)
        self.total_weight = _weight(max(self.total_weight - delta, 0.0))
        self.updated_at = now
        self.raise_(
            OrderWithdrawn(
                batch_id=str(self.id),
                order_id=order_id,
                weight=_weight(delta),
                total_weight=self.total_weight,
                withdrawn_at=now,
            )
        )

    def absorb(self, other: "Batch") -> None:
        """Take over another pending batch of the same zone."""
        if other.id == self.id:
            raise ValidationError({"batch": ["A batch cannot absorb itself"]})
        if other.zone != self.zone:
            raise ValidationError({"zone": ["Only batches of the same zone can be merged"]})
        self._assert_status({BatchStatus.PENDING}, "merge into")
        other._assert_status({BatchStatus.PENDING}, "merge")
        if not self.fits(other.total_weight):
            raise CapacityExceeded(
                "Merged weight would exceed batch capacity",
                batch_id=str(self.id),
                absorbed_batch_id=str(other.id),
            )

        now = datetime.now(UTC)
        absorbed_weight = other.total_weight
        self.total_weight = _weight(self.total_weight + absorbed_weight)
        self.updated_at = now
        other.total_weight = 0.0
        other.updated_at = now
        self.raise_(
            BatchesMerged(
                batch_id=str(self.id),
                absorbed_batch_id=str(other.id),
                absorbed_weight=absorbed_weight,
                total_weight=self.total_weight,
                merged_at=now,
            )
        )
        self._evaluate_threshold()

    def shed(self, weight: float, new_batch_id: str, moved_order_ids: list[str]) -> None:
        """Record that orders were peeled off into another batch."""
        self._assert_status(_MUTABLE_STATUSES, "split")
        now = datetime.now(UTC)
        self.total_weight = _weight(max(self.total_weight - weight, 0.0))
        self.updated_at = now
        self.raise_(
            BatchSplit(
                batch_id=str(self.id),
                new_batch_id=new_batch_id,
                moved_order_ids=json.dumps(moved_order_ids),
                moved_weight=_weight(weight),
                total_weight=self.total_weight,
                split_at=now,
            )
        )

    def correct_weight(self, true_weight: float) -> bool:
        """Overwrite the cached total with the member-order sum.

        Returns True when the stored value had drifted.
        """
        true_weight = _weight(true_weight)
        if abs(true_weight - self.total_weight) <= WEIGHT_EPSILON:
            return False

        now = datetime.now(UTC)
        previous = self.total_weight
        self.total_weight = true_weight
        self.updated_at = now
        self.raise_(
            BatchWeightCorrected(
                batch_id=str(self.id),
                previous_weight=previous,
                corrected_weight=true_weight,
                corrected_at=now,
            )
        )
        return True

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    def mark_ready(self) -> None:
        self._assert_can_transition(BatchStatus.READY_FOR_DELIVERY)
        if not self.reaches_threshold:
            raise ValidationError({"total_weight": ["Batch has not reached its minimum threshold"]})

        now = datetime.now(UTC)
        self.status = BatchStatus.READY_FOR_DELIVERY.value
        self.updated_at = now
        self.raise_(
            BatchReadyForDelivery(
                batch_id=str(self.id),
                zone=self.zone,
                total_weight=self.total_weight,
                ready_at=now,
            )
        )

    def assign_driver(self, driver_id: str) -> None:
        self._assert_can_transition(BatchStatus.ASSIGNED)
        if not driver_id:
            raise ValidationError({"driver_id": ["A driver is required"]})

        now = datetime.now(UTC)
        with atomic_change(self):
            self.status = BatchStatus.ASSIGNED.value
            self.driver_id = driver_id
            self.updated_at = now
        self.raise_(
            DriverAssigned(
                batch_id=str(self.id),
                driver_id=driver_id,
                zone=self.zone,
                assigned_at=now,
            )
        )

    def start_delivery(self) -> None:
        self._assert_can_transition(BatchStatus.DELIVERING)
        now = datetime.now(UTC)
        self.status = BatchStatus.DELIVERING.value
        self.updated_at = now
        self.raise_(
            DeliveryStarted(
                batch_id=str(self.id),
                driver_id=self.driver_id,
                started_at=now,
            )
        )

    def mark_delivered(self) -> None:
        self._assert_can_transition(BatchStatus.DELIVERED)
        now = datetime.now(UTC)
        self.status = BatchStatus.DELIVERED.value
        self.updated_at = now
        self.raise_(
            BatchDelivered(
                batch_id=str(self.id),
                driver_id=self.driver_id,
                delivered_at=now,
            )
        )

    def cancel(self, reason: str, released_order_count: int = 0) -> None:
        self._assert_can_transition(BatchStatus.CANCELLED)
        if not reason or not reason.strip():
            raise ValidationError({"reason": ["A cancellation reason is required"]})

        now = datetime.now(UTC)
        self.status = BatchStatus.CANCELLED.value
        self.cancellation_reason = reason
        self.total_weight = 0.0
        self.updated_at = now
        self.raise_(
            BatchCancelled(
                batch_id=str(self.id),
                reason=reason,
                released_order_count=released_order_count,
                cancelled_at=now,
            )
        )
