"""Consolidation / repair job — restores batch invariants from member-order ground truth.

Per zone, in one transaction, touching only the batches it can lock without
waiting:

1. recompute each batch's weight from its approved member orders
2. split over-capacity pending/ready batches, peeling off the most recently
   added orders into new batches of the same zone, then promote pending
   batches that now reach their threshold
3. merge pending batches, lightest fitting pair first, into the older one
4. delete batches left without member orders
5. write every recomputed total back

Running it twice in a row changes nothing the second time. The explicit
repairs (zone re-resolution, withdrawal of rejected orders) and the
read-only invariant audit live here too.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from itertools import combinations

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from dispatch.batch.batch import WEIGHT_EPSILON, Batch, BatchStatus
from dispatch.batch.repository import BatchRepository, BatchUnitOfWork
from dispatch.collaborators.ports import DeliveryState, OrderRecord, OrderStore, approved_weight
from dispatch.engine.assignment import AssignmentEngine
from dispatch.errors import DispatchError, RepositoryUnavailable, TransientContention
from dispatch.settings import BatchingPolicy
from dispatch.zoning.resolver import ZoneResolver, is_sentinel

logger = structlog.get_logger(__name__)

_SPLITTABLE = {BatchStatus.PENDING.value, BatchStatus.READY_FOR_DELIVERY.value}
_DELETABLE_WHEN_EMPTY = {
    BatchStatus.PENDING.value,
    BatchStatus.READY_FOR_DELIVERY.value,
    BatchStatus.CANCELLED.value,
}

# Delivery state each batch status implies for its approved members
_EXPECTED_DELIVERY_STATES = {
    BatchStatus.PENDING.value: {DeliveryState.PENDING.value},
    BatchStatus.READY_FOR_DELIVERY.value: {DeliveryState.PENDING.value},
    BatchStatus.ASSIGNED.value: {DeliveryState.ASSIGNED.value},
    BatchStatus.DELIVERING.value: {DeliveryState.DELIVERING.value, DeliveryState.DELIVERED.value},
    BatchStatus.DELIVERED.value: {DeliveryState.DELIVERED.value},
}

_EPOCH = datetime.min.replace(tzinfo=UTC)


@dataclass
class ConsolidationReport:
    corrected: list[str] = field(default_factory=list)
    split: dict[str, list[str]] = field(default_factory=dict)
    merged: list[tuple[str, str]] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    detached: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    deferred_zones: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.corrected or self.split or self.merged or self.deleted or self.detached)

    def summary(self) -> dict:
        return {
            "corrected": len(self.corrected),
            "split": len(self.split),
            "merged": len(self.merged),
            "deleted": len(self.deleted),
            "detached": len(self.detached),
            "skipped": len(self.skipped),
            "deferred_zones": len(self.deferred_zones),
        }


@dataclass(frozen=True)
class Violation:
    kind: str
    detail: str
    batch_id: str | None = None
    zone: str | None = None
    order_id: str | None = None


class ConsolidationJob:
    def __init__(
        self,
        orders: OrderStore,
        resolver: ZoneResolver,
        assignment: AssignmentEngine,
        policy: BatchingPolicy,
    ):
        self.orders = orders
        self.resolver = resolver
        self.assignment = assignment
        self.policy = policy

    # -------------------------------------------------------------------
    # Consolidation
    # -------------------------------------------------------------------
    def run(self) -> ConsolidationReport:
        report = ConsolidationReport()
        zones = sorted({b.zone for b in current_domain.repository_for(Batch).list_batches()})
        for zone in zones:
            try:
                with BatchUnitOfWork(self.policy) as uow:
                    self._consolidate_zone(uow, zone, report)
            except (TransientContention, RepositoryUnavailable) as exc:
                logger.warning("zone_consolidation_deferred", zone=zone, error=str(exc))
                report.deferred_zones.append(zone)

        logger.info("consolidation_completed", zones=len(zones), **report.summary())
        return report

    def _consolidate_zone(self, uow: BatchUnitOfWork, zone: str, report: ConsolidationReport) -> None:
        repo = current_domain.repository_for(Batch)
        live: list[Batch] = []
        for listed in repo.list_batches(zone):
            batch = repo.lock(str(listed.id))
            if batch is None:
                report.skipped.append(str(listed.id))
                continue
            live.append(batch)

        members = {str(b.id): self.orders.orders_in_batch(str(b.id)) for b in live}

        for batch in live:
            if repo.recompute_weight(batch, members[str(batch.id)]):
                report.corrected.append(str(batch.id))

        for batch in list(live):
            if batch.status in _SPLITTABLE and batch.total_weight > batch.max_capacity + WEIGHT_EPSILON:
                live.extend(self._split(uow, repo, batch, members, report))

        # Corrected weights can put a pending batch over its threshold
        for batch in live:
            if batch.status == BatchStatus.PENDING.value and batch.reaches_threshold:
                batch.mark_ready()

        self._merge_pending(uow, repo, live, members, report)

        for batch in list(live):
            batch_id = str(batch.id)
            if batch.status in _DELETABLE_WHEN_EMPTY and not members[batch_id]:
                repo.remove(batch)
                live.remove(batch)
                report.deleted.append(batch_id)

        for batch in live:
            repo.add(batch)

    def _move(self, uow: BatchUnitOfWork, order: OrderRecord, batch_id: str | None) -> None:
        self.orders.set_batch_ref(order.id, batch_id)
        uow.on_rollback(lambda: self.orders.set_batch_ref(order.id, order.batch_id))

    def _split(
        self,
        uow: BatchUnitOfWork,
        repo: BatchRepository,
        batch: Batch,
        members: dict[str, list[OrderRecord]],
        report: ConsolidationReport,
    ) -> list[Batch]:
        batch_id = str(batch.id)
        approved = [m for m in members[batch_id] if m.is_approved]
        newest_first = sorted(approved, key=lambda m: m.batched_at or _EPOCH, reverse=True)

        peeled: list[OrderRecord] = []
        remaining = batch.total_weight
        for order in newest_first:
            if remaining <= batch.max_capacity + WEIGHT_EPSILON:
                break
            peeled.append(order)
            remaining -= order.weight or 0.0

        created: list[Batch] = []
        for order in reversed(peeled):
            weight = order.weight or 0.0
            if weight > batch.max_capacity + WEIGHT_EPSILON:
                # Too heavy for any batch; left for the sweep to reject
                batch.remove_weight(weight, order_id=order.id)
                self._move(uow, order, None)
                report.detached.append(order.id)
                continue

            target = next((b for b in created if b.fits(weight) and b.status == BatchStatus.PENDING.value), None)
            if target is None:
                target = Batch.open(
                    zone=batch.zone,
                    initial_weight=weight,
                    min_threshold=batch.min_threshold,
                    max_capacity=batch.max_capacity,
                    order_id=order.id,
                )
                repo.add(target)
                created.append(target)
                members[str(target.id)] = []
            else:
                target.add_weight(weight, order_id=order.id)

            self._move(uow, order, str(target.id))
            members[str(target.id)].append(order)

        for target in created:
            moved = members[str(target.id)]
            batch.shed(target.total_weight, str(target.id), [m.id for m in moved])

        moved_ids = {m.id for m in peeled}
        members[batch_id] = [m for m in members[batch_id] if m.id not in moved_ids]
        report.split[batch_id] = [str(t.id) for t in created]
        logger.info("batch_split", batch_id=batch_id, new_batches=len(created), moved_orders=len(peeled))
        return created

    def _merge_pending(
        self,
        uow: BatchUnitOfWork,
        repo: BatchRepository,
        live: list[Batch],
        members: dict[str, list[OrderRecord]],
        report: ConsolidationReport,
    ) -> None:
        while True:
            # Empty batches are deleted rather than merged
            pending = [b for b in live if b.status == BatchStatus.PENDING.value and members[str(b.id)]]
            best = None
            for first, second in combinations(pending, 2):
                combined = first.total_weight + second.total_weight
                if combined > min(first.max_capacity, second.max_capacity) + WEIGHT_EPSILON:
                    continue
                if best is None or combined < best[0]:
                    best = (combined, first, second)
            if best is None:
                return

            _, first, second = best
            survivor, absorbed = sorted((first, second), key=lambda b: (b.created_at, str(b.id)))
            survivor.absorb(absorbed)

            survivor_id, absorbed_id = str(survivor.id), str(absorbed.id)
            for order in members[absorbed_id]:
                self._move(uow, order, survivor_id)
            members[survivor_id].extend(members.pop(absorbed_id))

            repo.remove(absorbed)
            live.remove(absorbed)
            report.merged.append((survivor_id, absorbed_id))
            logger.info("batches_merged", survivor=survivor_id, absorbed=absorbed_id, zone=survivor.zone)

    # -------------------------------------------------------------------
    # Explicit repairs
    # -------------------------------------------------------------------
    def reresolve_unknown_zones(self) -> dict[str, str]:
        """Re-batch orders parked in the unknown zone whose address now resolves.

        Returns order id → new batch id for every order that was re-assigned.
        """
        unknown = self.policy.unknown_zone
        released: list[str] = []
        parked = current_domain.repository_for(Batch).list_batches(unknown, [BatchStatus.PENDING.value])
        for listed in parked:
            try:
                released.extend(self._release_resolvable(str(listed.id)))
            except (TransientContention, RepositoryUnavailable, ObjectNotFoundError) as exc:
                logger.warning("zone_reresolution_deferred", batch_id=str(listed.id), error=str(exc))

        reassigned = {}
        for order_id in released:
            try:
                reassigned[order_id] = self.assignment.assign_order(order_id)
            except (DispatchError, ValidationError) as exc:
                # Approved and unassigned, so the sweep retries it
                logger.warning("reresolved_order_unassigned", order_id=order_id, error=str(exc))

        logger.info("zone_reresolution_completed", released=len(released), reassigned=len(reassigned))
        return reassigned

    def _release_resolvable(self, batch_id: str) -> list[str]:
        released = []
        with BatchUnitOfWork(self.policy) as uow:
            repo = current_domain.repository_for(Batch)
            batch = repo.lock(batch_id, wait=True)
            if batch.status != BatchStatus.PENDING.value:
                return released

            members = self.orders.orders_in_batch(batch_id)
            for order in members:
                if not order.is_approved:
                    continue
                zone = self.resolver.resolve(order.address)
                if is_sentinel(zone) or zone == self.policy.unknown_zone:
                    continue
                batch.remove_weight(order.weight or 0.0, order_id=order.id)
                self._move(uow, order, None)
                self.orders.freeze(order.id, zone, order.weight)
                uow.on_rollback(
                    lambda o=order: self.orders.freeze(o.id, o.zone or self.policy.unknown_zone, o.weight)
                )
                released.append(order.id)

            if released and len(released) == len(members):
                repo.remove(batch)
            elif released:
                repo.add(batch)

        return released

    def withdraw_order(self, order_id: str) -> str | None:
        """Remove a rejected or cancelled order from its batch.

        Returns the batch the order was removed from, or None when it was not
        in one.
        """
        order = self.orders.get_order(order_id)
        if order.is_approved:
            raise ValidationError({"order": [f"Order {order_id} is approved; only rejected orders can be withdrawn"]})
        if not order.batch_id:
            return None

        batch_id = order.batch_id
        with BatchUnitOfWork(self.policy) as uow:
            repo = current_domain.repository_for(Batch)
            try:
                batch = repo.lock(batch_id, wait=True)
            except ObjectNotFoundError:
                # Batch already gone; only the dangling reference is left
                self._move(uow, order, None)
                return batch_id
            if batch.status not in _SPLITTABLE:
                raise ValidationError(
                    {"status": [f"Orders cannot be withdrawn from a batch in {batch.status} status"]}
                )

            others = [m for m in self.orders.orders_in_batch(batch_id) if m.id != order_id]
            true_weight = approved_weight(others)
            if batch.total_weight - true_weight > WEIGHT_EPSILON:
                batch.remove_weight(batch.total_weight - true_weight, order_id=order_id)
            batch.correct_weight(true_weight)

            self._move(uow, order, None)
            self.orders.set_delivery_state(order_id, DeliveryState.PENDING.value)
            uow.on_rollback(lambda: self.orders.set_delivery_state(order_id, order.delivery_state))

            if others:
                repo.add(batch)
            else:
                repo.remove(batch)

        logger.info("order_withdrawn", order_id=order_id, batch_id=batch_id)
        return batch_id

    # -------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------
    def audit(self) -> list[Violation]:
        """Report every batch invariant currently violated. Reads only."""
        violations: list[Violation] = []
        batches = current_domain.repository_for(Batch).list_batches()
        known = {str(b.id) for b in batches}

        for batch in batches:
            batch_id = str(batch.id)
            members = self.orders.orders_in_batch(batch_id)
            approved = [m for m in members if m.is_approved]

            if batch.total_weight > batch.max_capacity + WEIGHT_EPSILON:
                violations.append(
                    Violation(
                        "over_capacity",
                        f"total {batch.total_weight} exceeds capacity {batch.max_capacity}",
                        batch_id,
                        batch.zone,
                    )
                )

            true_weight = approved_weight(approved)
            if abs(true_weight - batch.total_weight) > WEIGHT_EPSILON:
                violations.append(
                    Violation(
                        "weight_drift",
                        f"stored {batch.total_weight}, member orders sum to {round(true_weight, 3)}",
                        batch_id,
                        batch.zone,
                    )
                )

            expected_states = _EXPECTED_DELIVERY_STATES.get(batch.status, set())
            for member in members:
                if member.zone and member.zone != batch.zone:
                    violations.append(
                        Violation(
                            "zone_mismatch",
                            f"order zone {member.zone} differs from batch zone",
                            batch_id,
                            batch.zone,
                            member.id,
                        )
                    )
                if member.is_approved and expected_states and member.delivery_state not in expected_states:
                    violations.append(
                        Violation(
                            "delivery_state_mismatch",
                            f"order is {member.delivery_state} while batch is {batch.status}",
                            batch_id,
                            batch.zone,
                            member.id,
                        )
                    )

        open_by_zone: dict[str, list[Batch]] = {}
        for batch in batches:
            if batch.is_open:
                open_by_zone.setdefault(batch.zone, []).append(batch)
        for zone, open_batches in open_by_zone.items():
            for first, second in combinations(open_batches, 2):
                if first.fits(second.total_weight):
                    violations.append(
                        Violation(
                            "duplicate_open_batches",
                            f"batches {first.id} and {second.id} could be merged",
                            str(first.id),
                            zone,
                        )
                    )
                    break

        for order in self.orders.approved_without_batch():
            violations.append(Violation("unassigned_order", "approved order has no batch", order_id=order.id))

        for zone in {b.zone for b in batches}:
            for order in self.orders.orders_in_zone(zone):
                if order.batch_id and order.batch_id not in known:
                    violations.append(
                        Violation(
                            "dangling_batch_reference",
                            f"order references missing batch {order.batch_id}",
                            order.batch_id,
                            zone,
                            order.id,
                        )
                    )

        if violations:
            logger.warning("batch_audit_violations", count=len(violations))
        return violations
