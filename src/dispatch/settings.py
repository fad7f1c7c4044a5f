"""Batching policy — every tunable threshold of the dispatch engine in one place.

Values come from environment variables so deployments can tune capacity and
lock timeouts without touching engine code.
"""

import os
from dataclasses import dataclass

UNKNOWN_ZONE = "unknown-zone"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True)
class BatchingPolicy:
    """Capacity, threshold and locking parameters for batching."""

    # Weight at which a pending batch becomes eligible for a driver
    min_threshold: float = 3500.0

    # Hard ceiling; a batch total never exceeds it
    max_capacity: float = 5000.0

    # Used for products with no recorded weight
    default_unit_weight: float = 1.0

    # Floor for a computed order weight
    minimum_order_weight: float = 1.0

    unknown_zone: str = UNKNOWN_ZONE

    # Seconds to wait for the per-zone mutex before giving up
    zone_lock_timeout: float = 5.0

    # Seconds lifecycle operations wait for a batch row lock
    row_lock_timeout: float = 5.0

    def validate(self) -> None:
        if self.max_capacity <= 0:
            raise ValueError("max_capacity must be > 0")

        if self.min_threshold <= 0:
            raise ValueError("min_threshold must be > 0")

        if self.min_threshold > self.max_capacity:
            raise ValueError("min_threshold must be <= max_capacity")

        if self.default_unit_weight <= 0:
            raise ValueError("default_unit_weight must be > 0")

        if self.minimum_order_weight <= 0:
            raise ValueError("minimum_order_weight must be > 0")

        if self.zone_lock_timeout <= 0 or self.row_lock_timeout <= 0:
            raise ValueError("lock timeouts must be > 0")

        if not self.unknown_zone:
            raise ValueError("unknown_zone must not be empty")

    @classmethod
    def from_env(cls) -> "BatchingPolicy":
        defaults = cls()
        policy = cls(
            min_threshold=_env_float("DISPATCH_MIN_THRESHOLD", defaults.min_threshold),
            max_capacity=_env_float("DISPATCH_MAX_CAPACITY", defaults.max_capacity),
            default_unit_weight=_env_float("DISPATCH_DEFAULT_UNIT_WEIGHT", defaults.default_unit_weight),
            zone_lock_timeout=_env_float("DISPATCH_ZONE_LOCK_TIMEOUT", defaults.zone_lock_timeout),
            row_lock_timeout=_env_float("DISPATCH_ROW_LOCK_TIMEOUT", defaults.row_lock_timeout),
        )
        policy.validate()
        return policy
