"""Weight calculator — derives an order's shipping weight from its line items."""

import structlog

from dispatch.collaborators.ports import OrderStore, ProductCatalog
from dispatch.settings import BatchingPolicy

logger = structlog.get_logger(__name__)


class WeightCalculator:
    def __init__(self, orders: OrderStore, catalog: ProductCatalog, policy: BatchingPolicy):
        self.orders = orders
        self.catalog = catalog
        self.policy = policy

    def unit_weight(self, product_id: str) -> float:
        weight = self.catalog.get_unit_weight(product_id)
        if weight is None or weight <= 0:
            logger.debug("unit_weight_defaulted", product_id=product_id)
            return self.policy.default_unit_weight
        return float(weight)

    def compute_weight(self, order_id: str) -> float:
        """Σ quantity × unit weight, floored at the minimum order weight."""
        total = 0.0
        for item in self.orders.line_items(order_id):
            if item.quantity <= 0:
                continue
            total += item.quantity * self.unit_weight(item.product_id)
        return round(max(total, self.policy.minimum_order_weight), 3)
