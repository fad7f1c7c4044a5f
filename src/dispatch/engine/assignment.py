"""Assignment engine — puts a newly-approved order into the right batch.

Find-or-create for a zone runs inside the zone's critical section, so two
orders of the same zone never both conclude that no batch exists, while
different zones proceed in parallel. Assignment is all-or-nothing: on any
failure the transaction rolls back and the order stays unassigned, to be
picked up again by ``sweep_unassigned``.
"""

from dataclasses import dataclass, field

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from dispatch.batch.batch import Batch
from dispatch.batch.repository import BatchRepository, BatchUnitOfWork
from dispatch.collaborators.ports import OrderRecord, OrderStore
from dispatch.engine.weights import WeightCalculator
from dispatch.errors import (
    BatchConflict,
    CapacityExceeded,
    DispatchError,
    RepositoryUnavailable,
    TransientContention,
)
from dispatch.settings import BatchingPolicy
from dispatch.zoning.resolver import ZoneResolver

logger = structlog.get_logger(__name__)

# One retry of the candidate search after losing a create race
_CREATE_ATTEMPTS = 2


@dataclass
class SweepReport:
    assigned: dict[str, str] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)


class AssignmentEngine:
    def __init__(
        self,
        orders: OrderStore,
        resolver: ZoneResolver,
        weights: WeightCalculator,
        policy: BatchingPolicy,
    ):
        self.orders = orders
        self.resolver = resolver
        self.weights = weights
        self.policy = policy

    def assign_order(self, order_id: str) -> str:
        """Assign an approved order to a batch and return the batch id.

        Calling it again for an already-assigned order returns the existing
        batch id without touching any batch.
        """
        order = self.orders.get_order(order_id)
        if not order.is_approved:
            raise ValidationError({"order": [f"Order {order_id} is not approved"]})
        if order.batch_id:
            logger.debug("order_already_assigned", order_id=order_id, batch_id=order.batch_id)
            return order.batch_id

        zone, weight = self._freeze(order)
        if weight > self.policy.max_capacity:
            raise ValidationError(
                {"weight": [f"Order weight {weight} exceeds batch capacity {self.policy.max_capacity}"]}
            )

        try:
            with BatchUnitOfWork(self.policy) as uow:
                batch_id = self._assign_in_zone(uow, order_id, zone, weight)
        except CapacityExceeded as exc:
            logger.error("capacity_exceeded", order_id=order_id, zone=zone, weight=weight, context=exc.context)
            raise
        except (TransientContention, RepositoryUnavailable) as exc:
            logger.warning("order_assignment_deferred", order_id=order_id, zone=zone, error=str(exc))
            raise

        logger.info("order_assigned", order_id=order_id, zone=zone, weight=weight, batch_id=batch_id)
        return batch_id

    def _freeze(self, order: OrderRecord) -> tuple[str, float]:
        zone = order.zone or self.resolver.resolve(order.address)
        weight = order.weight if order.weight and order.weight > 0 else self.weights.compute_weight(order.id)
        if zone != order.zone or weight != order.weight:
            self.orders.freeze(order.id, zone, weight)
        return zone, weight

    def _assign_in_zone(self, uow: BatchUnitOfWork, order_id: str, zone: str, weight: float) -> str:
        repo = current_domain.repository_for(Batch)
        repo.lock_zone(zone)

        # A concurrent call may have assigned the order while we waited
        current = self.orders.get_order(order_id)
        if current.batch_id:
            return current.batch_id

        batch = self._reserve(repo, zone, weight, order_id)
        batch_id = str(batch.id)
        self.orders.set_batch_ref(order_id, batch_id)
        uow.on_rollback(lambda: self.orders.set_batch_ref(order_id, None))
        return batch_id

    def _reserve(self, repo: BatchRepository, zone: str, weight: float, order_id: str) -> Batch:
        for attempt in range(1, _CREATE_ATTEMPTS + 1):
            batch = repo.find_candidate(zone, weight)
            if batch is not None:
                return repo.add_weight(batch, weight, order_id=order_id)
            try:
                return repo.create_batch(zone, weight, order_id=order_id)
            except BatchConflict as exc:
                logger.info("batch_create_conflict", zone=zone, attempt=attempt, context=exc.context)

        raise TransientContention("Batch creation kept conflicting", zone=zone, order_id=order_id)

    def sweep_unassigned(self) -> SweepReport:
        """Retry every approved order that has no batch."""
        report = SweepReport()
        for order in self.orders.approved_without_batch():
            try:
                report.assigned[order.id] = self.assign_order(order.id)
            except (DispatchError, ValidationError) as exc:
                report.failed[order.id] = str(exc)

        logger.info("sweep_completed", assigned=len(report.assigned), failed=len(report.failed))
        return report
