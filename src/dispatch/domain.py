"""Dispatch bounded context — batching approved orders for truck dispatch.

Groups approved delivery orders into zone-clustered, weight-bounded batches,
drives batch status from pending through delivery, and repairs batch drift.
Batch storage and the external collaborators (order store, product catalog,
driver roster, notification service) sit behind ports with pluggable adapters.
"""

import structlog
from protean.domain import Domain

dispatch = Domain(name="dispatch")

logger = structlog.get_logger(__name__)
