"""Lifecycle coordinator — batch status transitions and their propagation to orders.

Every transition locks the batch row (bounded wait), changes the aggregate and
mirrors the new delivery state onto approved member orders. The resulting
events are published once the transaction has committed, and member-order
updates are undone if it rolls back.
"""

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from dispatch.batch.batch import Batch, BatchStatus
from dispatch.batch.repository import BatchUnitOfWork
from dispatch.collaborators.ports import DeliveryState, DriverRoster, OrderStore
from dispatch.errors import DispatchError
from dispatch.settings import BatchingPolicy

logger = structlog.get_logger(__name__)


class LifecycleCoordinator:
    def __init__(self, orders: OrderStore, roster: DriverRoster, policy: BatchingPolicy):
        self.orders = orders
        self.roster = roster
        self.policy = policy

    def _propagate(self, uow: BatchUnitOfWork, batch: Batch, state: DeliveryState) -> int:
        count = 0
        for order in self.orders.orders_in_batch(str(batch.id)):
            if not order.is_approved:
                continue
            self.orders.set_delivery_state(order.id, state.value)
            uow.on_rollback(
                lambda order_id=order.id, previous=order.delivery_state: self.orders.set_delivery_state(
                    order_id, previous
                )
            )
            count += 1
        return count

    def evaluate_threshold(self, batch_id: str) -> str:
        """Move a pending batch to ready once it has reached its minimum threshold."""
        with BatchUnitOfWork(self.policy):
            repo = current_domain.repository_for(Batch)
            batch = repo.lock(batch_id, wait=True)
            if batch.status == BatchStatus.PENDING.value and batch.reaches_threshold:
                batch.mark_ready()
                repo.add(batch)
        return batch.status

    def assign_driver(self, batch_id: str, driver_id: str | None = None) -> str:
        """Bind a driver to a ready batch, picking one from the roster when not given."""
        with BatchUnitOfWork(self.policy) as uow:
            repo = current_domain.repository_for(Batch)
            batch = repo.lock(batch_id, wait=True)
            if batch.status != BatchStatus.READY_FOR_DELIVERY.value:
                raise ValidationError({"status": [f"Cannot assign a driver to a batch in {batch.status} status"]})

            if driver_id is None:
                driver_id = self.roster.pick_available_driver(batch.zone)
                if driver_id is None:
                    raise ValidationError({"driver_id": [f"No driver available for zone {batch.zone}"]})
                picked = driver_id
                uow.on_rollback(lambda: self.roster.release_driver(picked))

            batch.assign_driver(driver_id)
            repo.add(batch)
            members = self._propagate(uow, batch, DeliveryState.ASSIGNED)

        logger.info("driver_assigned", batch_id=batch_id, driver_id=driver_id, orders=members)
        return driver_id

    def dispatch_ready_batches(self) -> dict[str, str]:
        """Give every ready batch a driver, oldest first, while drivers last."""
        assigned = {}
        ready = current_domain.repository_for(Batch).list_batches(statuses=[BatchStatus.READY_FOR_DELIVERY.value])
        for batch in ready:
            try:
                assigned[str(batch.id)] = self.assign_driver(str(batch.id))
            except (ValidationError, DispatchError) as exc:
                logger.info("batch_dispatch_skipped", batch_id=str(batch.id), zone=batch.zone, reason=str(exc))
        return assigned

    def start_delivery(self, batch_id: str) -> None:
        with BatchUnitOfWork(self.policy) as uow:
            repo = current_domain.repository_for(Batch)
            batch = repo.lock(batch_id, wait=True)
            batch.start_delivery()
            repo.add(batch)
            self._propagate(uow, batch, DeliveryState.DELIVERING)
        logger.info("delivery_started", batch_id=batch_id, driver_id=batch.driver_id)

    def record_order_delivered(self, order_id: str) -> str:
        """Mark one order delivered; the batch follows once every approved member is.

        Returns the batch status after the update.
        """
        order = self.orders.get_order(order_id)
        if not order.batch_id:
            raise ValidationError({"order": [f"Order {order_id} is not part of a batch"]})

        released_driver = None
        with BatchUnitOfWork(self.policy) as uow:
            repo = current_domain.repository_for(Batch)
            batch = repo.lock(order.batch_id, wait=True)
            if batch.status != BatchStatus.DELIVERING.value:
                raise ValidationError(
                    {"status": [f"Orders can only be delivered while their batch is delivering, not {batch.status}"]}
                )

            self.orders.set_delivery_state(order_id, DeliveryState.DELIVERED.value)
            uow.on_rollback(lambda: self.orders.set_delivery_state(order_id, order.delivery_state))

            members = [m for m in self.orders.orders_in_batch(str(batch.id)) if m.is_approved]
            if all(m.delivery_state == DeliveryState.DELIVERED.value for m in members):
                batch.mark_delivered()
                repo.add(batch)
                released_driver = batch.driver_id

        if released_driver:
            self.roster.release_driver(released_driver)
            logger.info("batch_delivered", batch_id=str(batch.id), driver_id=released_driver)
        return batch.status

    def cancel_batch(self, batch_id: str, reason: str) -> int:
        """Cancel a pending batch and detach its orders so the sweep re-batches them.

        Returns the number of orders released.
        """
        with BatchUnitOfWork(self.policy) as uow:
            repo = current_domain.repository_for(Batch)
            batch = repo.lock(batch_id, wait=True)
            members = self.orders.orders_in_batch(str(batch.id))
            batch.cancel(reason, released_order_count=len(members))
            repo.add(batch)

            for member in members:
                self.orders.set_batch_ref(member.id, None)
                self.orders.set_delivery_state(member.id, DeliveryState.PENDING.value)
                uow.on_rollback(
                    lambda m=member: (
                        self.orders.set_batch_ref(m.id, m.batch_id),
                        self.orders.set_delivery_state(m.id, m.delivery_state),
                    )
                )

        logger.info("batch_cancelled", batch_id=batch_id, reason=reason, released=len(members))
        return len(members)
