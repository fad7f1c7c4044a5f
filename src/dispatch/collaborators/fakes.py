"""Fake collaborators — deterministic in-process adapters for tests and development.

Each fake can be seeded and configured to fail so the engine's retryable
and best-effort paths can be exercised.
"""

import threading
from datetime import UTC, datetime

from protean.exceptions import ObjectNotFoundError

from dispatch.collaborators.ports import (
    ApprovalState,
    DeliveryState,
    DriverRoster,
    LineItem,
    NotificationService,
    OrderRecord,
    OrderStore,
    ProductCatalog,
)
from dispatch.errors import RepositoryUnavailable


class FakeOrderStore(OrderStore):
    """Thread-safe dictionary of orders."""

    def __init__(self):
        self._lock = threading.RLock()
        self._orders: dict[str, OrderRecord] = {}
        self._items: dict[str, list[LineItem]] = {}
        self.should_succeed = True
        self.failure_reason = "Order store unavailable"
        self.fail_on_set_batch_ref = False

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "Order store unavailable",
        fail_on_set_batch_ref: bool = False,
    ):
        """Configure the fake order store behavior for testing."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.fail_on_set_batch_ref = fail_on_set_batch_ref

    def _check(self):
        if not self.should_succeed:
            raise RepositoryUnavailable(self.failure_reason)

    def _record(self, order_id: str) -> OrderRecord:
        try:
            return self._orders[order_id]
        except KeyError:
            raise ObjectNotFoundError(f"Order with id {order_id} does not exist") from None

    @staticmethod
    def _copy(order: OrderRecord) -> OrderRecord:
        return OrderRecord(**{**order.__dict__, "address": dict(order.address)})

    # -------------------------------------------------------------------
    # Seeding
    # -------------------------------------------------------------------
    def add_order(
        self,
        order_id: str,
        approval_state: str = ApprovalState.APPROVED.value,
        zone: str | None = None,
        weight: float | None = None,
        address: dict | None = None,
        line_items: list[tuple[str, int]] | None = None,
        batch_id: str | None = None,
    ) -> OrderRecord:
        order = OrderRecord(
            id=order_id,
            approval_state=approval_state,
            zone=zone,
            weight=weight,
            address=dict(address or {}),
            batch_id=batch_id,
            batched_at=datetime.now(UTC) if batch_id else None,
        )
        with self._lock:
            self._orders[order_id] = order
            self._items[order_id] = [LineItem(product_id=p, quantity=q) for p, q in (line_items or [])]
        return self._copy(order)

    def set_approval_state(self, order_id: str, state: str) -> None:
        with self._lock:
            self._record(order_id).approval_state = state

    def update_address(self, order_id: str, address: dict) -> None:
        with self._lock:
            self._record(order_id).address = dict(address)

    def corrupt_weight(self, order_id: str, weight: float) -> None:
        """Overwrite a frozen weight, simulating drift in the order system."""
        with self._lock:
            self._record(order_id).weight = weight

    # -------------------------------------------------------------------
    # OrderStore
    # -------------------------------------------------------------------
    def get_order(self, order_id: str) -> OrderRecord:
        self._check()
        with self._lock:
            return self._copy(self._record(order_id))

    def line_items(self, order_id: str) -> list[LineItem]:
        self._check()
        with self._lock:
            self._record(order_id)
            return list(self._items.get(order_id, []))

    def freeze(self, order_id: str, zone: str, weight: float) -> None:
        self._check()
        with self._lock:
            order = self._record(order_id)
            order.zone = zone
            order.weight = weight

    def set_batch_ref(self, order_id: str, batch_id: str | None) -> None:
        self._check()
        if self.fail_on_set_batch_ref and batch_id is not None:
            raise RepositoryUnavailable(self.failure_reason, order_id=order_id)
        with self._lock:
            order = self._record(order_id)
            if batch_id is None:
                order.batched_at = None
            elif order.batch_id is None:
                order.batched_at = datetime.now(UTC)
            # Moves between batches keep the time the order was first batched
            order.batch_id = batch_id

    def set_delivery_state(self, order_id: str, state: str) -> None:
        self._check()
        DeliveryState(state)
        with self._lock:
            self._record(order_id).delivery_state = state

    def orders_in_batch(self, batch_id: str) -> list[OrderRecord]:
        self._check()
        with self._lock:
            return [self._copy(o) for o in self._orders.values() if o.batch_id == batch_id]

    def approved_without_batch(self) -> list[OrderRecord]:
        self._check()
        with self._lock:
            return [self._copy(o) for o in self._orders.values() if o.is_approved and o.batch_id is None]

    def orders_in_zone(self, zone: str) -> list[OrderRecord]:
        self._check()
        with self._lock:
            return [self._copy(o) for o in self._orders.values() if o.zone == zone]

    def all_orders(self) -> list[OrderRecord]:
        with self._lock:
            return [self._copy(o) for o in self._orders.values()]


class FakeProductCatalog(ProductCatalog):
    def __init__(self, weights: dict[str, float | None] | None = None):
        self.weights = dict(weights or {})

    def set_weight(self, product_id: str, weight: float | None) -> None:
        self.weights[product_id] = weight

    def get_unit_weight(self, product_id: str) -> float | None:
        return self.weights.get(product_id)


class FakeDriverRoster(DriverRoster):
    """Pool of driver ids; a picked driver is unavailable until released."""

    def __init__(self, drivers: list[str] | None = None):
        self._lock = threading.Lock()
        self._available = list(drivers if drivers is not None else ["driver-1", "driver-2", "driver-3"])
        self.busy: set[str] = set()

    def configure(self, drivers: list[str]):
        with self._lock:
            self._available = list(drivers)
            self.busy = set()

    def pick_available_driver(self, zone: str) -> str | None:
        with self._lock:
            if not self._available:
                return None
            driver_id = self._available.pop(0)
            self.busy.add(driver_id)
            return driver_id

    def release_driver(self, driver_id: str) -> None:
        with self._lock:
            if driver_id in self.busy:
                self.busy.discard(driver_id)
                self._available.append(driver_id)


class RecordingNotifier(NotificationService):
    """Keeps every published event in memory."""

    def __init__(self):
        self.events: list = []
        self.should_succeed = True

    def configure(self, should_succeed: bool = True):
        self.should_succeed = should_succeed

    def publish(self, event) -> None:
        if not self.should_succeed:
            raise ConnectionError("Notification service unavailable")
        self.events.append(event)

    def names(self) -> list[str]:
        return [type(e).__name__ for e in self.events]
