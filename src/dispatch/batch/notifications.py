"""Relays committed batch events to the notification service.

Runs after the batch transaction has committed. Delivery is best effort: a
failing notification service is logged and never undoes the batch change.
"""

import structlog
from protean.utils.mixins import handle

from dispatch.batch.batch import Batch
from dispatch.domain import dispatch
from dispatch.services import get_services

logger = structlog.get_logger(__name__)


@dispatch.event_handler(part_of=Batch)
class BatchNotificationRelay:
    """Forwards every batch event to the configured notification service."""

    @handle("$any")
    def relay(self, event) -> None:
        try:
            get_services().notifier.publish(event)
        except Exception as exc:
            logger.warning(
                "event_publish_failed",
                event_type=type(event).__name__,
                batch_id=getattr(event, "batch_id", None),
                error=str(exc),
            )
