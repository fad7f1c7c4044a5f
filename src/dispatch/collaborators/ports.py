"""Collaborator ports — the services the dispatch engine calls but does not own.

The engine programs against these interfaces; adapters are swapped via
configuration (see ``dispatch.collaborators``).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class ApprovalState(Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class DeliveryState(Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    DELIVERING = "delivering"
    DELIVERED = "delivered"


@dataclass(frozen=True)
class LineItem:
    product_id: str
    quantity: int


@dataclass
class OrderRecord:
    """The slice of an order the engine reads and writes."""

    id: str
    approval_state: str = ApprovalState.PENDING.value
    zone: str | None = None
    weight: float | None = None
    batch_id: str | None = None
    delivery_state: str = DeliveryState.PENDING.value
    batched_at: datetime | None = None
    address: dict = field(default_factory=dict)

    @property
    def is_approved(self) -> bool:
        return self.approval_state == ApprovalState.APPROVED.value


def approved_weight(members: list[OrderRecord]) -> float:
    """Weight a batch should carry: the sum over its approved member orders."""
    return sum(m.weight or 0.0 for m in members if m.is_approved)


class OrderStore(ABC):
    """Order management subsystem."""

    @abstractmethod
    def get_order(self, order_id: str) -> OrderRecord:
        """Return a snapshot of the order.

        Raises:
            ObjectNotFoundError: when no such order exists.
        """
        ...

    @abstractmethod
    def line_items(self, order_id: str) -> list[LineItem]: ...

    @abstractmethod
    def freeze(self, order_id: str, zone: str, weight: float) -> None:
        """Record the resolved zone and computed weight on the order."""
        ...

    @abstractmethod
    def set_batch_ref(self, order_id: str, batch_id: str | None) -> None:
        """Link the order to a batch (or detach it with ``None``).

        ``batched_at`` is stamped when an unbatched order is linked and kept when
        the order moves from one batch to another.
        """
        ...

    @abstractmethod
    def set_delivery_state(self, order_id: str, state: str) -> None: ...

    @abstractmethod
    def orders_in_batch(self, batch_id: str) -> list[OrderRecord]:
        """Every order referencing the batch, regardless of approval state."""
        ...

    @abstractmethod
    def approved_without_batch(self) -> list[OrderRecord]: ...

    @abstractmethod
    def orders_in_zone(self, zone: str) -> list[OrderRecord]: ...


class ProductCatalog(ABC):
    @abstractmethod
    def get_unit_weight(self, product_id: str) -> float | None:
        """Return the recorded unit weight in kg, or None when unknown."""
        ...


class DriverRoster(ABC):
    @abstractmethod
    def pick_available_driver(self, zone: str) -> str | None:
        """Reserve and return an available driver for the zone, if any."""
        ...

    @abstractmethod
    def release_driver(self, driver_id: str) -> None: ...


class NotificationService(ABC):
    @abstractmethod
    def publish(self, event) -> None:
        """Deliver a lifecycle event. Callers treat failures as best-effort."""
        ...
