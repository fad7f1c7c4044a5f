"""Per-user state tracking for Locust load test scenarios.

Each Locust user instance maintains its own state — no cross-user sharing.
"""

from dataclasses import dataclass, field


@dataclass
class ApprovalState:
    """Tracks the orders a simulated order desk has approved and where they landed."""

    order_ids: list[str] = field(default_factory=list)
    batch_ids: set[str] = field(default_factory=set)
    deferred: int = 0


@dataclass
class DispatcherState:
    """Tracks batches a simulated dispatcher has taken out for delivery."""

    batch_id: str | None = None
    driver_id: str | None = None
